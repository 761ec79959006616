"""
Protocol Events for the USDF CDP engine.

Components append event records to a shared EventLog. The log is tracked by
the execution context, so events of a reverted operation disappear with it.
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class TroveOperation(Enum):
    OPEN = 0
    CLOSE = 1
    ADJUST = 2
    LIQUIDATE = 3
    APPLY_PENDING_REWARDS = 4


@dataclass(frozen=True)
class TroveUpdated:
    borrower: str
    asset: str
    debt: int
    coll: int
    stake: int
    operation: TroveOperation


@dataclass(frozen=True)
class TroveLiquidated:
    borrower: str
    asset: str
    debt: int
    coll: int


@dataclass(frozen=True)
class Liquidation:
    asset: str
    liquidated_debt: int
    liquidated_coll: int
    coll_gas_compensation: int
    usdf_gas_compensation: int


@dataclass(frozen=True)
class Redistribution:
    asset: str
    debt: int
    coll: int
    L_coll: int
    L_debt: int


@dataclass(frozen=True)
class BorrowingFeePaid:
    borrower: str
    asset: str
    fee: int


@dataclass(frozen=True)
class Offset:
    asset: str
    debt_absorbed: int
    collateral_added: int


@dataclass(frozen=True)
class DepositChanged:
    depositor: str
    new_deposit: int


@dataclass(frozen=True)
class CollateralGainWithdrawn:
    depositor: str
    asset: str
    amount: int


@dataclass(frozen=True)
class OracleRegistered:
    asset: str
    feed: object
    heartbeat: int


@dataclass(frozen=True)
class OracleUpdated:
    asset: str
    feed: object
    heartbeat: int


@dataclass(frozen=True)
class OracleFrozen:
    asset: str
    reason: str


@dataclass(frozen=True)
class OracleUnfrozen:
    asset: str


class EventLog:
    """
    Append-only list of emitted events.
    """

    _STATE_FIELDS = ("events",)

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)
        logger.debug("Event %s", event)
        return event

    def of_type(self, event_type):
        return [event for event in self.events if isinstance(event, event_type)]

    def last(self, event_type=None):
        events = self.events if event_type is None else self.of_type(event_type)
        return events[-1] if events else None

    def clear(self):
        self.events = []

    def __len__(self):
        return len(self.events)
