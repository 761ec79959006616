"""
Protocol Configuration for the USDF CDP engine.

All amounts, prices and ratios are integers scaled by DECIMAL_PRECISION (1e18),
so that 110% is written as 11 * 10**17 and 2000 USDF as 2000 * 10**18.
"""

from dataclasses import dataclass
from decimal import Decimal

DECIMAL_PRECISION = 10**18

# Nominal ICR is computed as coll * NICR_PRECISION / debt and carries no price
NICR_PRECISION = 10**20

# Collateral ratios
MCR = 11 * 10**17  # Minimum collateral ratio (110%)
CCR = 15 * 10**17  # Critical collateral ratio (150%), monitoring only

# Debt limits
MIN_NET_DEBT = 2000 * DECIMAL_PRECISION
GAS_COMPENSATION = 200 * DECIMAL_PRECISION

# Borrowing fee bounds
BORROWING_FEE_FLOOR = 5 * 10**15  # 0.5%
BORROWING_FEE_CAP = 5 * 10**16  # 5%

# Liquidation reward for the caller: coll / 200 (0.5%)
COLL_GAS_COMPENSATION_DIVISOR = 200

# Oracle
MAX_PRICE_DEVIATION = 5 * 10**17  # 50%
TARGET_PRICE_DECIMALS = 18

# Stability pool
SCALE_FACTOR = 10**9

# Sorted troves
DEFAULT_MAX_SORTED_SIZE = 10_000

# Well-known addresses
GAS_POOL_ADDRESS = "gas_pool"
DEFAULT_FEE_RECIPIENT = "fee_recipient"
ADMIN_ADDRESS = "admin"


@dataclass(frozen=True)
class ProtocolConfig:
    """Bundle of protocol parameters handed to every component."""
    decimal_precision: int = DECIMAL_PRECISION
    nicr_precision: int = NICR_PRECISION
    mcr: int = MCR
    ccr: int = CCR
    min_net_debt: int = MIN_NET_DEBT
    gas_compensation: int = GAS_COMPENSATION
    borrowing_fee_floor: int = BORROWING_FEE_FLOOR
    borrowing_fee_cap: int = BORROWING_FEE_CAP
    coll_gas_compensation_divisor: int = COLL_GAS_COMPENSATION_DIVISOR
    max_price_deviation: int = MAX_PRICE_DEVIATION
    target_price_decimals: int = TARGET_PRICE_DECIMALS
    scale_factor: int = SCALE_FACTOR
    default_max_sorted_size: int = DEFAULT_MAX_SORTED_SIZE
    gas_pool_address: str = GAS_POOL_ADDRESS
    fee_recipient: str = DEFAULT_FEE_RECIPIENT

    def __post_init__(self):
        if self.borrowing_fee_floor > self.borrowing_fee_cap:
            raise ValueError("Borrowing fee floor cannot exceed the cap")
        if self.mcr <= self.decimal_precision:
            raise ValueError("MCR must be above 100%")
        if self.gas_compensation >= self.min_net_debt:
            raise ValueError("Gas compensation must be below the minimum net debt")


DEFAULT_CONFIG = ProtocolConfig()


def to_wei(amount):
    """Converts a whole-unit amount (int, float or str) to an 18-decimal integer."""
    return int(Decimal(str(amount)) * DECIMAL_PRECISION)


def from_wei(amount):
    """Converts an 18-decimal integer to a float in whole units, for reporting."""
    return amount / DECIMAL_PRECISION
