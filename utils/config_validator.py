def validate_config(config: dict):
    endpoint = config.get("ENDPOINT")
    if not endpoint or not str(endpoint).strip():
        raise ValueError(
            "Missing required configuration key: ENDPOINT "
            "(e.g. ENDPOINT=foo-api.example.net in config.env)"
        )

    positive = [
        "MOMENTUM_WINDOW_SECONDS",
        "POSITION_SIZE",
        "MAX_OPEN_POSITIONS",
        "PRICE_CHECK_INTERVAL_MS",
        "MAX_POSITION_AGE_MS",
        "RECONNECT_DELAY_MS",
    ]
    bad = [k for k in positive if k in config and not config[k] > 0]
    if bad:
        raise ValueError(f"Configuration values must be positive: {bad}")

    non_negative = ["MIN_VOLUME", "MOMENTUM_MIN_VOLUME", "MOMENTUM_MIN_TRADES", "COOLDOWN_TIME"]
    bad = [k for k in non_negative if k in config and config[k] < 0]
    if bad:
        raise ValueError(f"Configuration values must not be negative: {bad}")

    bias = config.get("MOMENTUM_MIN_DIRECTIONAL_BIAS", 0.7)
    if not 0.5 <= bias <= 1.0:
        raise ValueError("MOMENTUM_MIN_DIRECTIONAL_BIAS must be between 0.5 and 1.0")

    for key in ("PROFIT_TARGET", "STOP_LOSS"):
        value = config.get(key)
        if value is not None and value <= 0:
            raise ValueError(f"{key} must be positive when set")

    if not isinstance(config.get("SUBSCRIBE_TICKERS", []), list):
        raise TypeError("SUBSCRIBE_TICKERS must be a list.")

    if not config.get("PAPER_TRADE_ONLY", True) and not config.get("ORDER_API_ENDPOINT"):
        raise ValueError("ORDER_API_ENDPOINT is required when PAPER_TRADE_ONLY=0")
