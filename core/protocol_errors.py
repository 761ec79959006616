"""
Protocol errors for the USDF CDP engine.

Every rule violation is a ValueError, so callers may catch ValueError the way
the simulations do, while the subclass names the failure.
"""


class ProtocolError(ValueError):
    """Base class for all protocol failures."""


# --- Trove errors ---

class TroveAlreadyExists(ProtocolError):
    pass


class TroveNotActive(ProtocolError):
    pass


class InsufficientCollateralRatio(ProtocolError):
    pass


class DebtBelowMinimum(ProtocolError):
    pass


class FeeExceedsMax(ProtocolError):
    pass


class InvalidFeeRate(ProtocolError):
    pass


class EmptyArray(ProtocolError):
    pass


class NoTrovesToLiquidate(ProtocolError):
    pass


# --- Generic validation ---

class InvalidAmount(ProtocolError):
    pass


class InvalidAddress(ProtocolError):
    pass


class InsufficientBalance(ProtocolError):
    pass


class UnknownAsset(ProtocolError):
    pass


# --- Sorted list ---

class ListFull(ProtocolError):
    pass


class NodeAlreadyExists(ProtocolError):
    pass


class NodeNotFound(ProtocolError):
    pass


# --- Stability pool ---

class NoDeposit(ProtocolError):
    pass


class NothingToClaim(ProtocolError):
    pass


# --- Oracle ---

class InvalidFeed(ProtocolError):
    pass


class InvalidHeartbeat(ProtocolError):
    pass


class OracleNotRegistered(ProtocolError):
    pass


class OracleAlreadyRegistered(ProtocolError):
    pass


class OracleFrozen(ProtocolError):
    pass


class InvalidPrice(ProtocolError):
    """Raised when a debt-affecting operation would run on a degraded price."""


class FeedUnavailable(Exception):
    """Raised by a price feed that cannot answer. The oracle treats it as a bad read."""


# --- Guards ---

class Unauthorized(ProtocolError):
    pass


class ReentrantCall(ProtocolError):
    pass


class AlreadyInitialized(ProtocolError):
    pass
