"""
Active Pool Model for the USDF CDP engine.

This module simulates the ActivePool contract which holds the collateral and
USDF debt of all active troves, per collateral asset. When a trove is
liquidated, its collateral and debt move from the Active Pool to the
Stability Pool, the Default Pool, or both.
"""

import logging

from access_control import Role
from protocol_errors import InsufficientBalance, InvalidAmount, Unauthorized

logger = logging.getLogger(__name__)


class ActivePool:
    """
    Simulates the ActivePool contract which manages collateral and debt for active troves.
    """

    _STATE_FIELDS = ("coll_balance", "usdf_debt")

    def __init__(self, access_control, collateral_registry, context, address="active_pool"):
        self.address = address
        self.access_control = access_control
        self.collateral_registry = collateral_registry
        self.context = context

        # Deposited collateral tracker, per asset
        self.coll_balance = {}

        # Aggregate recorded debt of active troves, per asset
        self.usdf_debt = {}

        # Wired after construction
        self.default_pool = None

        context.track(self)

    def set_default_pool(self, default_pool):
        self.default_pool = default_pool

    def get_coll_balance(self, asset):
        """Returns the collateral balance in the Active Pool."""
        return self.coll_balance.get(asset, 0)

    def get_usdf_debt(self, asset):
        return self.usdf_debt.get(asset, 0)

    # --- Collateral movements ---

    def receive_coll(self, caller, asset, sender, amount):
        """Pulls collateral from a borrower into the pool."""
        self.access_control.require(caller, Role.POSITION_GATEWAY)
        if not self._check_amount(amount):
            return False
        self.collateral_registry.transfer_in(asset, sender, self.address, amount)
        self.coll_balance[asset] = self.get_coll_balance(asset) + amount
        return True

    def send_coll(self, caller, asset, account, amount):
        """Send collateral to an account (stability pool, borrower, liquidator)."""
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        if not self._check_amount(amount):
            return False
        self._decrease_coll(asset, amount)
        self.collateral_registry.transfer_out(asset, self.address, account, amount)
        return True

    def send_coll_to_default_pool(self, caller, asset, amount):
        """Send collateral to the Default Pool for redistribution."""
        self.access_control.require(caller, Role.LEDGER)
        if not self._check_amount(amount):
            return False
        self._decrease_coll(asset, amount)
        self.collateral_registry.transfer_out(asset, self.address, self.default_pool.address, amount)
        self.default_pool.receive_coll(self.address, asset, amount)
        return True

    def receive_coll_from_default_pool(self, caller, asset, amount):
        """Books collateral the Default Pool has already transferred back."""
        if self.default_pool is None or caller != self.default_pool.address:
            raise Unauthorized("Only the Default Pool can return collateral")
        if not self._check_amount(amount):
            return False
        self.coll_balance[asset] = self.get_coll_balance(asset) + amount
        return True

    # --- Debt tracking ---

    def increase_usdf_debt(self, caller, asset, amount):
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        if not self._check_amount(amount):
            return False
        self.usdf_debt[asset] = self.get_usdf_debt(asset) + amount
        return True

    def decrease_usdf_debt(self, caller, asset, amount):
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        if not self._check_amount(amount):
            return False
        current = self.get_usdf_debt(asset)
        if amount > current:
            raise InsufficientBalance(f"Active debt for {asset} is {current}, cannot remove {amount}")
        self.usdf_debt[asset] = current - amount
        return True

    def _decrease_coll(self, asset, amount):
        current = self.get_coll_balance(asset)
        if amount > current:
            raise InsufficientBalance(f"Active Pool holds {current} {asset}, cannot send {amount}")
        self.coll_balance[asset] = current - amount

    @staticmethod
    def _check_amount(amount):
        # Zero moves are no-ops so liquidation paths need no special cases
        if amount < 0:
            raise InvalidAmount(f"Invalid amount: {amount}")
        return amount > 0
