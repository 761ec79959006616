"""
Collateral Registry for the USDF CDP engine.

Maps each collateral asset symbol to its token and moves collateral between
users and protocol custody.
"""

import logging

from access_control import Role
from execution_context import atomic
from protocol_errors import AlreadyInitialized, InvalidAddress, UnknownAsset

logger = logging.getLogger(__name__)


class CollateralRegistry:
    """
    Registry of supported collateral assets.
    """

    _STATE_FIELDS = ("tokens",)

    def __init__(self, access_control, context):
        self.access_control = access_control
        self.context = context
        self.tokens = {}  # asset -> CollateralToken
        context.track(self)

    @atomic
    def add_collateral(self, caller, asset, token):
        self.access_control.require(caller, Role.ADMIN)
        if token is None or not asset:
            raise InvalidAddress("Asset and token are required")
        if asset in self.tokens:
            raise AlreadyInitialized(f"Collateral {asset} already registered")
        self.tokens[asset] = token
        logger.info("Registered collateral %s", asset)

    def has_collateral(self, asset):
        return asset in self.tokens

    def get_assets(self):
        return list(self.tokens)

    def get_token(self, asset):
        token = self.tokens.get(asset)
        if token is None:
            raise UnknownAsset(f"Unknown collateral asset {asset}")
        return token

    def balance_of(self, asset, account):
        return self.get_token(asset).balance_of(account)

    def transfer_in(self, asset, sender, recipient, amount):
        """Moves collateral from a user into protocol custody."""
        return self.get_token(asset).transfer(sender, recipient, amount)

    def transfer_out(self, asset, sender, recipient, amount):
        """Moves collateral from protocol custody to a user or another pool."""
        return self.get_token(asset).transfer(sender, recipient, amount)
