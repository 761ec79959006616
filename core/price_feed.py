"""
Price Feed Model for the USDF CDP engine.

Simple aggregator-style price feed for simulations. It answers with the raw
integer price in its own number of decimals plus the time of the last update,
the way an on-chain aggregator's latest round data does. The PriceOracle is
responsible for rescaling and sanity-checking these answers.
"""

from dataclasses import dataclass
from decimal import Decimal

from execution_context import SharedHandle
from protocol_errors import FeedUnavailable


@dataclass(frozen=True)
class RoundData:
    round_id: int
    answer: int
    started_at: int
    updated_at: int
    answered_in_round: int


class PriceFeed(SharedHandle):
    """Simple price feed implementation for simulations."""

    def __init__(self, initial_price=2000, decimals=8, updated_at=None, clock=None, description=""):
        if decimals < 0:
            raise ValueError("Decimals cannot be negative")
        self._decimals = decimals
        self.clock = clock
        self.description = description

        self.round_id = 0
        self.answer = 0
        self.updated_at = 0
        self.unavailable = False

        # Number of answered queries, lets callers verify caching
        self.query_count = 0

        self.set_price(initial_price, updated_at)

    def __repr__(self):
        return f"PriceFeed({self.description or self.get_price()!r})"

    def decimals(self):
        return self._decimals

    def latest_round_data(self):
        """
        Returns the latest round.

        Raises:
            FeedUnavailable: If the feed has been switched off
        """
        if self.unavailable:
            raise FeedUnavailable("Price feed is not answering")
        self.query_count += 1
        return RoundData(
            round_id=self.round_id,
            answer=self.answer,
            started_at=self.updated_at,
            updated_at=self.updated_at,
            answered_in_round=self.round_id,
        )

    def set_price(self, new_price, updated_at=None):
        """
        Sets a new price given in whole units (e.g. 2000 or 1999.5).
        """
        raw = int(Decimal(str(new_price)) * (10 ** self._decimals))
        self.set_answer(raw, updated_at)

    def set_answer(self, raw_answer, updated_at=None):
        """Sets the raw answer in feed decimals. Non-positive answers are allowed."""
        self.round_id += 1
        self.answer = int(raw_answer)
        if updated_at is not None:
            self.updated_at = int(updated_at)
        elif self.clock is not None:
            self.updated_at = int(self.clock())

    def set_updated_at(self, timestamp):
        self.updated_at = int(timestamp)

    def set_unavailable(self, unavailable=True):
        self.unavailable = unavailable

    def get_price(self):
        """Current answer in whole units, for reporting."""
        return self.answer / 10 ** self._decimals
