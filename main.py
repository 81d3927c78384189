
import asyncio
import signal
import sys

from core.initialization import initialize_components, load_configuration
from utils.config_validator import validate_config
from utils.logger import setup_logger


async def run_bot(env_path: str = "config.env") -> int:
    """
    Entrypoint coroutine for the momentum engine.

    Loads and validates the configuration, wires the components and runs
    until SIGINT/SIGTERM or a fatal feed rejection. Returns the process
    exit code.
    """
    logger = setup_logger("MomentumEngine", to_console=True)

    try:
        config = load_configuration(env_path)
        validate_config(config)
    except (ValueError, TypeError) as e:
        logger.error("❌ Configuration error: %s", e)
        return 1

    components = initialize_components(config, overrides={"logger": logger})
    engine = components["engine"]

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.request_stop)
        except NotImplementedError:  # Windows
            pass

    return await engine.run()


def main():
    try:
        code = asyncio.run(run_bot())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
