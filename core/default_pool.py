"""
Default Pool Model for the USDF CDP engine.

This module simulates the DefaultPool contract which holds the collateral and
USDF debt from liquidated troves that couldn't be offset with the
StabilityPool. The TroveManager pulls a trove's share back into the Active
Pool whenever that trove is touched.
"""

from access_control import Role
from protocol_errors import InsufficientBalance, InvalidAmount, Unauthorized


class DefaultPool:
    """
    Simulates the DefaultPool contract which holds collateral and debt for redistribution.
    """

    _STATE_FIELDS = ("coll_balance", "usdf_debt")

    def __init__(self, access_control, collateral_registry, active_pool, context, address="default_pool"):
        self.address = address
        self.access_control = access_control
        self.collateral_registry = collateral_registry
        self.active_pool = active_pool
        self.context = context

        self.coll_balance = {}  # asset -> collateral awaiting application
        self.usdf_debt = {}  # asset -> debt awaiting application

        context.track(self)

    def get_coll_balance(self, asset):
        """Returns the collateral balance in the Default Pool."""
        return self.coll_balance.get(asset, 0)

    def get_usdf_debt(self, asset):
        """Returns the USDF debt in the Default Pool."""
        return self.usdf_debt.get(asset, 0)

    def receive_coll(self, caller, asset, amount):
        """
        Books collateral sent by the Active Pool when trove collateral is redistributed.
        """
        if caller != self.active_pool.address:
            raise Unauthorized("Only the Active Pool can send collateral here")
        if amount < 0:
            raise InvalidAmount(f"Invalid collateral amount: {amount}")
        self.coll_balance[asset] = self.get_coll_balance(asset) + amount
        return True

    def send_coll_to_active_pool(self, caller, asset, amount):
        """
        Sends collateral from the Default Pool to the Active Pool.
        Called when a trove's pending collateral rewards are applied.
        """
        self.access_control.require(caller, Role.LEDGER)
        if amount < 0:
            raise InvalidAmount(f"Invalid collateral amount: {amount}")
        if amount == 0:
            return False
        current = self.get_coll_balance(asset)
        if amount > current:
            raise InsufficientBalance(f"Default Pool holds {current} {asset}, cannot send {amount}")

        self.coll_balance[asset] = current - amount
        self.collateral_registry.transfer_out(asset, self.address, self.active_pool.address, amount)
        self.active_pool.receive_coll_from_default_pool(self.address, asset, amount)
        return True

    def increase_usdf_debt(self, caller, asset, amount):
        """
        Increases the USDF debt in the Default Pool.
        Called during liquidations when debt is redistributed.
        """
        self.access_control.require(caller, Role.LEDGER)
        if amount < 0:
            raise InvalidAmount(f"Invalid debt amount: {amount}")
        self.usdf_debt[asset] = self.get_usdf_debt(asset) + amount
        return True

    def decrease_usdf_debt(self, caller, asset, amount):
        """
        Decreases the USDF debt in the Default Pool.
        Called when a trove's pending debt rewards are applied.
        """
        self.access_control.require(caller, Role.LEDGER)
        if amount < 0:
            raise InvalidAmount(f"Invalid debt amount: {amount}")
        current = self.get_usdf_debt(asset)
        if amount > current:
            raise InsufficientBalance(f"Default Pool debt for {asset} is {current}, cannot remove {amount}")
        self.usdf_debt[asset] = current - amount
        return True
