from __future__ import annotations
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.signal import Side


class Quote(NamedTuple):
    """Mid prices in cents."""
    yes_price: float
    no_price: float

    def price_for(self, side: Side) -> float:
        return self.yes_price if side == "yes" else self.no_price


class Market(BaseModel):
    """Market metadata as returned by `GET /market/{ticker}`.

    Bid/ask quotes arrive as nullable dollar strings ("0.14") and are kept in
    dollars here; `mid_price()` converts to cents. Display fields are only
    carried along for collaborators.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ticker: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    status: Optional[str] = None
    volume: float = 0
    yes_bid: Optional[float] = Field(None, alias="yesBid")
    yes_ask: Optional[float] = Field(None, alias="yesAsk")
    no_bid: Optional[float] = Field(None, alias="noBid")
    no_ask: Optional[float] = Field(None, alias="noAsk")

    @field_validator("yes_bid", "yes_ask", "no_bid", "no_ask", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v == "":
            return None
        return v

    @field_validator("volume", mode="before")
    @classmethod
    def null_volume(cls, v):
        return 0 if v is None else v

    @staticmethod
    def _mid(bid: Optional[float], ask: Optional[float]) -> Optional[float]:
        # a zero quote means "no quote", same as a missing one
        if bid and ask:
            return (bid * 100 + ask * 100) / 2
        if bid:
            return bid * 100
        if ask:
            return ask * 100
        return None

    def mid_price(self, side: Side) -> Optional[float]:
        if side == "yes":
            return self._mid(self.yes_bid, self.yes_ask)
        return self._mid(self.no_bid, self.no_ask)

    def quote(self) -> Optional[Quote]:
        yes = self.mid_price("yes")
        no = self.mid_price("no")
        if yes is None or no is None:
            return None
        return Quote(yes_price=yes, no_price=no)
