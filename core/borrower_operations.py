"""
Borrower Operations Model for the USDF CDP engine.

This module simulates the BorrowerOperations contract, the entry point
borrowers use to open, adjust and close troves. It validates every request
against the price, fee and minimum-debt rules, moves collateral and USDF, and
then hands the new trove state to the TroveManager, which keeps the record.

BorrowerOperations itself only remembers which collateral assets each user
has an open trove in, so front ends can list a user's positions.
"""

import logging

from access_control import Role
from execution_context import atomic, nonreentrant
from protocol_config import DEFAULT_CONFIG
from protocol_errors import (
    AlreadyInitialized, DebtBelowMinimum, FeeExceedsMax, InsufficientBalance,
    InsufficientCollateralRatio, InvalidAddress, InvalidAmount, InvalidFeeRate,
    TroveAlreadyExists, TroveNotActive,
)
from protocol_events import BorrowingFeePaid

logger = logging.getLogger(__name__)


class BorrowerOperations:
    """
    Simulates the BorrowerOperations contract.

    The TroveManager is wired in after construction with `set_trove_manager`,
    because the TroveManager itself needs a reference to this object.
    """

    _STATE_FIELDS = ("user_trove_assets", "borrowing_fee_rates", "fee_recipient")

    def __init__(self, access_control, active_pool, sorted_troves, price_oracle, usdf_token,
                 context, events, config=DEFAULT_CONFIG, address="borrower_operations"):
        self.address = address
        self.access_control = access_control
        self.active_pool = active_pool
        self.sorted_troves = sorted_troves
        self.price_oracle = price_oracle
        self.usdf_token = usdf_token
        self.context = context
        self.events = events

        self.trove_manager = None

        # Constants
        self.DECIMAL_PRECISION = config.decimal_precision
        self.NICR_PRECISION = config.nicr_precision
        self.MCR = config.mcr
        self.MIN_NET_DEBT = config.min_net_debt
        self.GAS_COMPENSATION = config.gas_compensation
        self.BORROWING_FEE_FLOOR = config.borrowing_fee_floor
        self.BORROWING_FEE_CAP = config.borrowing_fee_cap
        self.GAS_POOL_ADDRESS = config.gas_pool_address

        self.fee_recipient = config.fee_recipient
        self.borrowing_fee_rates = {}  # asset -> rate
        self.user_trove_assets = {}  # user -> [asset, ...] in opening order

        context.track(self)

    def set_trove_manager(self, caller, trove_manager):
        """Completes the wiring. Can only be done once."""
        self.access_control.require(caller, Role.ADMIN)
        if trove_manager is None:
            raise InvalidAddress("TroveManager required")
        if self.trove_manager is not None:
            raise AlreadyInitialized("TroveManager already set")
        self.trove_manager = trove_manager

    # --- Admin ---

    @atomic
    def set_borrowing_fee_rate(self, caller, asset, rate):
        self.access_control.require(caller, Role.ADMIN)
        if rate < self.BORROWING_FEE_FLOOR or rate > self.BORROWING_FEE_CAP:
            raise InvalidFeeRate(
                f"Fee rate must be between {self.BORROWING_FEE_FLOOR} and {self.BORROWING_FEE_CAP}")
        self.borrowing_fee_rates[asset] = rate
        logger.info("Borrowing fee rate for %s set to %s", asset, rate)

    @atomic
    def set_fee_recipient(self, caller, recipient):
        self.access_control.require(caller, Role.ADMIN)
        if not recipient:
            raise InvalidAddress("Fee recipient required")
        self.fee_recipient = recipient

    # --- Borrower operations ---

    @nonreentrant
    def open_trove(self, borrower, asset, max_fee_pct, coll_amount, debt_amount, prev_hint=None, next_hint=None):
        """
        Opens a new trove.

        The borrower receives debt_amount USDF. The trove's debt is the
        composite debt: debt_amount plus the borrowing fee plus the gas
        compensation reserve held in the gas pool.

        Args:
            borrower: Owner of the new trove
            asset: Collateral asset
            max_fee_pct: Highest acceptable fee as a fraction of debt_amount (1e18 = 100%)
            coll_amount: Collateral to deposit
            debt_amount: USDF to borrow
            prev_hint: Sorted list hint
            next_hint: Sorted list hint

        Returns:
            The trove's composite debt

        Raises:
            TroveAlreadyExists: If the borrower already has an active trove for this asset
            FeeExceedsMax: If the fee is above max_fee_pct
            DebtBelowMinimum: If the composite debt is below MIN_NET_DEBT
            InsufficientCollateralRatio: If the ICR would be below the MCR
        """
        trove_manager = self._require_trove_manager()
        if trove_manager.is_trove_active(borrower, asset):
            raise TroveAlreadyExists(f"{borrower} already has an active {asset} trove")
        if coll_amount <= 0 or debt_amount <= 0:
            raise InvalidAmount("Collateral and debt must be greater than zero")

        fee = self.get_borrowing_fee(asset, debt_amount)
        self._require_valid_max_fee(fee, debt_amount, max_fee_pct)

        composite_debt = debt_amount + fee + self.GAS_COMPENSATION
        if composite_debt < self.MIN_NET_DEBT:
            raise DebtBelowMinimum(f"Debt {composite_debt} is below the minimum {self.MIN_NET_DEBT}")

        price = self.price_oracle.get_validated_price(asset)
        self._require_icr_above_mcr(coll_amount, composite_debt, price)

        # Record
        trove_manager.update_trove(self.address, borrower, asset, composite_debt, coll_amount, True)
        nicr = coll_amount * self.NICR_PRECISION // composite_debt
        self.sorted_troves.insert(self.address, asset, borrower, nicr, prev_hint, next_hint)
        self._add_user_trove_asset(borrower, asset)

        # Move funds
        self.active_pool.receive_coll(self.address, asset, borrower, coll_amount)
        self.usdf_token.mint(self.address, borrower, debt_amount)
        if fee > 0:
            self.usdf_token.mint(self.address, self.fee_recipient, fee)
            self.events.emit(BorrowingFeePaid(borrower, asset, fee))
        self.usdf_token.mint(self.address, self.GAS_POOL_ADDRESS, self.GAS_COMPENSATION)
        self.active_pool.increase_usdf_debt(self.address, asset, composite_debt)

        logger.info("%s opened %s trove: coll %s, debt %s (fee %s)",
                    borrower, asset, coll_amount, composite_debt, fee)
        return composite_debt

    @nonreentrant
    def close_trove(self, borrower, asset):
        """
        Closes a trove.

        The borrower repays the debt minus the gas compensation reserve, which
        is burned from the gas pool, and gets all collateral back.
        """
        trove_manager = self._require_trove_manager()
        if not trove_manager.is_trove_active(borrower, asset):
            raise TroveNotActive(f"{borrower} has no active {asset} trove")

        trove_manager.apply_pending_rewards(self.address, borrower, asset)
        debt, coll = trove_manager.get_trove_debt_and_coll(borrower, asset)

        repayment = debt - self.GAS_COMPENSATION
        balance = self.usdf_token.balance_of(borrower)
        if balance < repayment:
            raise InsufficientBalance(f"{borrower} holds {balance} USDF, needs {repayment} to close")

        self.usdf_token.burn(self.address, borrower, repayment)
        self.usdf_token.burn(self.address, self.GAS_POOL_ADDRESS, self.GAS_COMPENSATION)
        self.active_pool.decrease_usdf_debt(self.address, asset, debt)

        trove_manager.close_trove(self.address, borrower, asset)
        self.active_pool.send_coll(self.address, asset, borrower, coll)
        self._remove_user_trove_asset(borrower, asset)

        logger.info("%s closed %s trove: repaid %s, returned %s collateral", borrower, asset, repayment, coll)
        return coll

    @nonreentrant
    def adjust_trove(self, borrower, asset, max_fee_pct, coll_change, debt_change,
                     is_coll_increase, is_debt_increase, prev_hint=None, next_hint=None):
        """
        Adds or withdraws collateral and borrows or repays USDF in one step.

        A fee is charged only on new borrowing. The resulting trove must still
        have an ICR of at least the MCR and debt of at least MIN_NET_DEBT.

        Returns:
            Tuple of (new debt, new coll)
        """
        trove_manager = self._require_trove_manager()
        if not trove_manager.is_trove_active(borrower, asset):
            raise TroveNotActive(f"{borrower} has no active {asset} trove")
        if coll_change < 0 or debt_change < 0:
            raise InvalidAmount("Changes cannot be negative")
        if coll_change == 0 and debt_change == 0:
            raise InvalidAmount("Debt or collateral change required")

        trove_manager.apply_pending_rewards(self.address, borrower, asset)
        debt, coll = trove_manager.get_trove_debt_and_coll(borrower, asset)

        fee = 0
        if is_debt_increase:
            if debt_change > 0:
                fee = self.get_borrowing_fee(asset, debt_change)
                self._require_valid_max_fee(fee, debt_change, max_fee_pct)
            new_debt = debt + debt_change + fee
        else:
            if debt_change > debt - self.GAS_COMPENSATION:
                raise InvalidAmount("Repayment exceeds the trove's debt")
            new_debt = debt - debt_change

        if is_coll_increase:
            new_coll = coll + coll_change
        else:
            if coll_change > coll:
                raise InvalidAmount("Cannot withdraw more collateral than the trove holds")
            new_coll = coll - coll_change

        if new_debt < self.MIN_NET_DEBT:
            raise DebtBelowMinimum(f"Debt {new_debt} is below the minimum {self.MIN_NET_DEBT}")

        price = self.price_oracle.get_validated_price(asset)
        self._require_icr_above_mcr(new_coll, new_debt, price)

        # Record
        trove_manager.update_trove(self.address, borrower, asset, new_debt, new_coll, False)
        nicr = new_coll * self.NICR_PRECISION // new_debt
        self.sorted_troves.re_insert(self.address, asset, borrower, nicr, prev_hint, next_hint)

        # Move funds
        if coll_change > 0:
            if is_coll_increase:
                self.active_pool.receive_coll(self.address, asset, borrower, coll_change)
            else:
                self.active_pool.send_coll(self.address, asset, borrower, coll_change)
        if debt_change > 0:
            if is_debt_increase:
                self.usdf_token.mint(self.address, borrower, debt_change)
                if fee > 0:
                    self.usdf_token.mint(self.address, self.fee_recipient, fee)
                    self.events.emit(BorrowingFeePaid(borrower, asset, fee))
                self.active_pool.increase_usdf_debt(self.address, asset, debt_change + fee)
            else:
                self.usdf_token.burn(self.address, borrower, debt_change)
                self.active_pool.decrease_usdf_debt(self.address, asset, debt_change)

        logger.info("%s adjusted %s trove: coll %s, debt %s", borrower, asset, new_coll, new_debt)
        return new_debt, new_coll

    def add_coll(self, borrower, asset, amount, prev_hint=None, next_hint=None):
        return self.adjust_trove(borrower, asset, 0, amount, 0, True, False, prev_hint, next_hint)

    def withdraw_coll(self, borrower, asset, amount, prev_hint=None, next_hint=None):
        return self.adjust_trove(borrower, asset, 0, amount, 0, False, False, prev_hint, next_hint)

    def withdraw_usdf(self, borrower, asset, max_fee_pct, amount, prev_hint=None, next_hint=None):
        return self.adjust_trove(borrower, asset, max_fee_pct, 0, amount, False, True, prev_hint, next_hint)

    def repay_usdf(self, borrower, asset, amount, prev_hint=None, next_hint=None):
        return self.adjust_trove(borrower, asset, 0, 0, amount, False, False, prev_hint, next_hint)

    # --- TroveManager hook ---

    @atomic
    def remove_user_trove_asset(self, caller, borrower, asset):
        """Drops the asset from the user's list after a liquidation."""
        self.access_control.require(caller, Role.LEDGER)
        self._remove_user_trove_asset(borrower, asset)

    # --- Views ---

    def get_user_trove_assets(self, user):
        return list(self.user_trove_assets.get(user, []))

    def get_user_trove_count(self, user):
        return len(self.user_trove_assets.get(user, []))

    def is_trove_active(self, user, asset):
        return self._require_trove_manager().is_trove_active(user, asset)

    def get_borrowing_fee_rate(self, asset):
        rate = self.borrowing_fee_rates.get(asset, self.BORROWING_FEE_FLOOR)
        return min(max(rate, self.BORROWING_FEE_FLOOR), self.BORROWING_FEE_CAP)

    def get_borrowing_fee(self, asset, debt_amount):
        return debt_amount * self.get_borrowing_fee_rate(asset) // self.DECIMAL_PRECISION

    def get_composite_debt(self, asset, debt_amount):
        """Trove debt resulting from borrowing debt_amount: amount + fee + gas compensation."""
        return debt_amount + self.get_borrowing_fee(asset, debt_amount) + self.GAS_COMPENSATION

    def get_entire_debt_and_coll(self, user, asset):
        debt, coll, _, _ = self._require_trove_manager().get_entire_debt_and_coll(user, asset)
        return debt, coll

    def get_current_icr(self, user, asset, price=None):
        return self._require_trove_manager().get_current_icr(user, asset, price)

    # --- Internal helpers ---

    def _require_trove_manager(self):
        if self.trove_manager is None:
            raise InvalidAddress("TroveManager not set")
        return self.trove_manager

    def _require_valid_max_fee(self, fee, debt_amount, max_fee_pct):
        if fee * self.DECIMAL_PRECISION > max_fee_pct * debt_amount:
            raise FeeExceedsMax(f"Fee {fee} exceeds the accepted maximum of {max_fee_pct} per unit")

    def _require_icr_above_mcr(self, coll, debt, price):
        icr = coll * price // debt
        if icr < self.MCR:
            raise InsufficientCollateralRatio(f"ICR {icr} is below the MCR {self.MCR}")

    def _add_user_trove_asset(self, user, asset):
        assets = self.user_trove_assets.setdefault(user, [])
        if asset not in assets:
            assets.append(asset)

    def _remove_user_trove_asset(self, user, asset):
        assets = self.user_trove_assets.get(user)
        if not assets or asset not in assets:
            return
        assets.remove(asset)
        if not assets:
            del self.user_trove_assets[user]
