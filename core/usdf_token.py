"""
Token Models for the USDF CDP engine.

This module simulates the fungible tokens the protocol moves around: the
USDF debt token, which only protocol components may mint and burn, and plain
collateral tokens with an open faucet for simulations.
"""

import logging

from execution_context import SharedHandle
from protocol_errors import InsufficientBalance, InvalidAddress, InvalidAmount, Unauthorized

logger = logging.getLogger(__name__)


class Token(SharedHandle):
    """
    Balance ledger shared by every token type.

    `on_transfer`, when set, is called after each transfer with
    (sender, recipient, amount), the way a receiving contract hook would be.
    """

    _STATE_FIELDS = ("balances", "total_supply")

    def __init__(self, symbol, context=None, decimals=18):
        self.symbol = symbol
        self.decimals = decimals

        # Mapping of addresses to token balances
        self.balances = {}
        self.total_supply = 0

        self.on_transfer = None

        if context is not None:
            context.track(self)

    def __repr__(self):
        return f"{type(self).__name__}({self.symbol!r})"

    def balance_of(self, account):
        """Returns the token balance of the given account."""
        return self.balances.get(account, 0)

    def transfer(self, sender, recipient, amount):
        """
        Transfers tokens from sender to recipient.

        Args:
            sender: Address sending the tokens
            recipient: Address receiving the tokens
            amount: Amount of tokens to transfer

        Returns:
            True if successful
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        if not recipient:
            raise InvalidAddress("Cannot transfer to an empty address")

        sender_balance = self.balances.get(sender, 0)
        if sender_balance < amount:
            raise InsufficientBalance(
                f"{sender} holds {sender_balance} {self.symbol}, needs {amount}")

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount

        if self.on_transfer is not None:
            self.on_transfer(sender, recipient, amount)
        return True

    def _mint(self, recipient, amount):
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.total_supply += amount
        return True

    def _burn(self, account, amount):
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        balance = self.balances.get(account, 0)
        if balance < amount:
            raise InsufficientBalance(
                f"Cannot burn {amount} {self.symbol} from {account}, balance is {balance}")
        self.balances[account] = balance - amount
        self.total_supply -= amount
        return True


class CollateralToken(Token):
    """Collateral asset. Anyone may mint, which stands in for acquiring it on a market."""

    def mint(self, recipient, amount):
        return self._mint(recipient, amount)


class USDFToken(Token):
    """
    Simulates the USDF stablecoin contract.

    Minting and burning are restricted to registered protocol components
    (BorrowerOperations for issuance and repayment, StabilityPool for
    burning absorbed debt).
    """

    _STATE_FIELDS = ("balances", "total_supply", "minters")

    def __init__(self, owner, context=None):
        super().__init__("USDF", context=context)
        if not owner:
            raise InvalidAddress("Owner required")
        self.owner = owner

        # Accounts allowed to mint and burn
        self.minters = set()

    def add_minter(self, caller, minter):
        """Adds an address to the allowed minters. Only callable by the owner."""
        if caller != self.owner:
            raise Unauthorized("Only the owner can add minters")
        self.minters.add(minter)

    def remove_minter(self, caller, minter):
        if caller != self.owner:
            raise Unauthorized("Only the owner can remove minters")
        self.minters.discard(minter)

    def mint(self, caller, recipient, amount):
        """
        Mints new USDF to the recipient.

        Args:
            caller: Protocol component requesting the mint
            recipient: Address receiving the minted tokens
            amount: Amount of tokens to mint
        """
        if caller not in self.minters:
            raise Unauthorized(f"{caller} is not a USDF minter")
        return self._mint(recipient, amount)

    def burn(self, caller, account, amount):
        """Burns USDF held by account. Only callable by minters."""
        if caller not in self.minters:
            raise Unauthorized(f"{caller} is not a USDF minter")
        return self._burn(account, amount)
