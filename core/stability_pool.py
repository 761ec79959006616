"""
Stability Pool Model for the USDF CDP engine.

This module simulates the StabilityPool contract which holds USDF deposited by
Stability Pool depositors. When a trove is liquidated, the Stability Pool
offsets the debt and receives the trove's collateral as compensation, shared
pro rata among depositors.

Deposits are never iterated. Two running values track every depositor at once:
- P, a running product: a deposit made when the product was P_snap is now
  worth initial * P / P_snap
- S, a running sum per collateral asset: collateral earned per unit deposited,
  weighted by P at the time of each liquidation

When a liquidation empties the pool exactly, every deposit is worth zero; the
pool starts a new epoch and resets P. When P would get too small to keep
precision, it is multiplied by SCALE_FACTOR and the scale counter advances.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

from access_control import Role
from execution_context import atomic, nonreentrant
from protocol_config import DEFAULT_CONFIG
from protocol_errors import InvalidAmount, NoDeposit, NothingToClaim
from protocol_events import CollateralGainWithdrawn, DepositChanged, Offset

logger = logging.getLogger(__name__)


@dataclass
class Deposit:
    """Represents a user's deposit in the Stability Pool."""
    initial_value: int  # Deposit value at the last snapshot


@dataclass
class Snapshots:
    """Snapshots of system state when a deposit was last touched."""
    S: Dict[str, int] = field(default_factory=dict)  # asset -> collateral reward sum
    P: int = 0      # Product used to track compounded deposits
    scale: int = 0
    epoch: int = 0


class StabilityPool:
    """
    Simulates the StabilityPool contract which holds USDF deposits and absorbs liquidated debt.
    """

    _STATE_FIELDS = (
        "coll_balance", "total_usdf_deposits", "deposits", "deposit_snapshots",
        "stashed_coll", "P", "current_scale", "current_epoch",
        "epoch_to_scale_to_sum", "last_coll_error_offset", "last_usdf_loss_error_offset",
    )

    def __init__(self, access_control, usdf_token, collateral_registry, context, events,
                 config=DEFAULT_CONFIG, address="stability_pool"):
        self.address = address
        self.access_control = access_control
        self.usdf_token = usdf_token
        self.collateral_registry = collateral_registry
        self.context = context
        self.events = events

        # Constants
        self.DECIMAL_PRECISION = config.decimal_precision
        self.SCALE_FACTOR = config.scale_factor

        # Collateral gained from liquidations and not yet paid out, per asset
        self.coll_balance = {}

        # Tracker for USDF held in the pool
        self.total_usdf_deposits = 0

        # User deposits and snapshots
        self.deposits = {}  # address -> Deposit
        self.deposit_snapshots = {}  # address -> Snapshots
        self.stashed_coll = {}  # address -> {asset: amount}

        # Running product, starts at 1
        self.P = self.DECIMAL_PRECISION
        self.current_scale = 0
        self.current_epoch = 0

        # epoch -> scale -> asset -> S
        self.epoch_to_scale_to_sum = {0: {0: {}}}

        # Rounding error feedback for offset calculations
        self.last_coll_error_offset = {}  # asset -> error
        self.last_usdf_loss_error_offset = 0

        context.track(self)

    # --- Getters ---

    def get_coll_balance(self, asset):
        """Returns the collateral balance in the Stability Pool."""
        return self.coll_balance.get(asset, 0)

    def get_total_usdf_deposits(self):
        return self.total_usdf_deposits

    def get_deposit(self, depositor):
        deposit = self.deposits.get(depositor)
        return deposit.initial_value if deposit else 0

    def get_deposit_snapshot(self, depositor):
        return self.deposit_snapshots.get(depositor)

    def get_P(self):
        return self.P

    def get_current_scale(self):
        return self.current_scale

    def get_current_epoch(self):
        return self.current_epoch

    def get_sum(self, epoch, scale, asset):
        return self.epoch_to_scale_to_sum.get(epoch, {}).get(scale, {}).get(asset, 0)

    # --- Depositor operations ---

    @nonreentrant
    def provide_to_sp(self, depositor, amount, do_claim=True):
        """
        Allows a user to provide USDF to the Stability Pool.

        Collateral gains earned so far are paid out, or kept stashed when
        do_claim is False.

        Args:
            depositor: Address of the depositor
            amount: Amount of USDF to add to the pool
            do_claim: Whether to claim collateral gains or keep them stashed

        Returns:
            The depositor's new deposit
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        compounded = self.get_compounded_usdf_deposit(depositor)
        gains = self._pending_coll_gains(depositor)

        self.usdf_token.transfer(depositor, self.address, amount)
        self.total_usdf_deposits += amount

        new_deposit = compounded + amount
        self._settle_coll_gains(depositor, gains, do_claim)
        self._update_deposit_and_snapshots(depositor, new_deposit)

        self.events.emit(DepositChanged(depositor, new_deposit))
        logger.info("%s deposited %s USDF, deposit now %s", depositor, amount, new_deposit)
        return new_deposit

    @nonreentrant
    def withdraw_from_sp(self, depositor, amount, do_claim=True):
        """
        Allows a user to withdraw USDF from the Stability Pool.

        Withdrawing more than the compounded deposit withdraws the whole
        deposit. Withdrawing zero only settles collateral gains.

        Args:
            depositor: Address of the depositor
            amount: Amount of USDF to withdraw
            do_claim: Whether to claim collateral gains or keep them stashed

        Returns:
            The amount of USDF sent to the depositor
        """
        if amount < 0:
            raise InvalidAmount("Amount cannot be negative")
        if self.get_deposit(depositor) == 0:
            raise NoDeposit(f"{depositor} has no deposit")

        compounded = self.get_compounded_usdf_deposit(depositor)
        gains = self._pending_coll_gains(depositor)

        usdf_to_withdraw = min(amount, compounded)
        new_deposit = compounded - usdf_to_withdraw

        if usdf_to_withdraw > 0:
            self.total_usdf_deposits -= usdf_to_withdraw
            self.usdf_token.transfer(self.address, depositor, usdf_to_withdraw)

        self._settle_coll_gains(depositor, gains, do_claim)
        self._update_deposit_and_snapshots(depositor, new_deposit)

        self.events.emit(DepositChanged(depositor, new_deposit))
        logger.info("%s withdrew %s USDF, deposit now %s", depositor, usdf_to_withdraw, new_deposit)
        return usdf_to_withdraw

    def withdraw_all_from_sp(self, depositor, do_claim=True):
        return self.withdraw_from_sp(depositor, self.get_compounded_usdf_deposit(depositor), do_claim)

    @nonreentrant
    def claim_collateral_gains(self, depositor, asset):
        """Pays out the depositor's gains in one collateral asset."""
        paid = self._claim(depositor, [asset])
        return paid.get(asset, 0)

    @nonreentrant
    def claim_all_collateral_gains(self, depositor, assets=None):
        """
        Pays out the depositor's gains in every listed asset (all assets by default).

        Returns:
            Dict of asset -> amount paid
        """
        if assets is None:
            assets = self.collateral_registry.get_assets()
        return self._claim(depositor, assets)

    # --- Liquidation offset ---

    @atomic
    def offset(self, caller, asset, debt_to_offset, coll_to_add):
        """
        Cancels liquidated debt against pool deposits.

        The pool absorbs as much debt as it holds USDF for, and takes the
        matching share of the collateral. The TroveManager moves that
        collateral in from the Active Pool.

        Args:
            caller: Must be the TroveManager
            asset: Collateral asset of the liquidated trove
            debt_to_offset: Debt of the liquidated trove
            coll_to_add: Collateral of the liquidated trove after gas compensation

        Returns:
            (debt absorbed, collateral taken)
        """
        self.access_control.require(caller, Role.LEDGER)
        if debt_to_offset < 0 or coll_to_add < 0:
            raise InvalidAmount("Offset amounts cannot be negative")

        total_usdf = self.total_usdf_deposits
        if total_usdf == 0 or debt_to_offset == 0:
            return 0, 0

        debt_absorbed = min(debt_to_offset, total_usdf)
        coll_taken = coll_to_add * debt_absorbed // debt_to_offset

        coll_gain_per_unit_staked, usdf_loss_per_unit_staked = self._compute_rewards_per_unit_staked(
            asset, coll_taken, debt_absorbed, total_usdf)
        self._update_reward_sum_and_product(asset, coll_gain_per_unit_staked, usdf_loss_per_unit_staked)

        # Cancel absorbed debt with USDF held by the pool
        self.total_usdf_deposits = total_usdf - debt_absorbed
        self.usdf_token.burn(self.address, self.address, debt_absorbed)
        self.coll_balance[asset] = self.get_coll_balance(asset) + coll_taken

        self.events.emit(Offset(asset, debt_absorbed, coll_taken))
        logger.info("Stability Pool absorbed %s USDF of %s debt for %s %s",
                    debt_absorbed, debt_to_offset, coll_taken, asset)
        return debt_absorbed, coll_taken

    def _compute_rewards_per_unit_staked(self, asset, coll_to_add, debt_to_offset, total_usdf):
        """
        Computes collateral gain and USDF loss per unit deposited.

        The previous rounding errors are fed back in. The loss is rounded up
        so that depositors can never withdraw more than the pool holds.
        """
        coll_numerator = coll_to_add * self.DECIMAL_PRECISION + self.last_coll_error_offset.get(asset, 0)

        if debt_to_offset == total_usdf:
            usdf_loss_per_unit_staked = self.DECIMAL_PRECISION
            self.last_usdf_loss_error_offset = 0
        else:
            usdf_loss_numerator = debt_to_offset * self.DECIMAL_PRECISION - self.last_usdf_loss_error_offset
            usdf_loss_per_unit_staked = max(-(-usdf_loss_numerator // total_usdf), 0)
            self.last_usdf_loss_error_offset = usdf_loss_per_unit_staked * total_usdf - usdf_loss_numerator

        coll_gain_per_unit_staked = coll_numerator // total_usdf
        self.last_coll_error_offset[asset] = coll_numerator - coll_gain_per_unit_staked * total_usdf

        return coll_gain_per_unit_staked, usdf_loss_per_unit_staked

    def _update_reward_sum_and_product(self, asset, coll_gain_per_unit_staked, usdf_loss_per_unit_staked):
        current_P = self.P
        new_product_factor = self.DECIMAL_PRECISION - usdf_loss_per_unit_staked

        # S is credited at the scale in force when the liquidation happens
        sums = self.epoch_to_scale_to_sum[self.current_epoch].setdefault(self.current_scale, {})
        sums[asset] = sums.get(asset, 0) + coll_gain_per_unit_staked * current_P

        if new_product_factor == 0:
            # Pool emptied: every deposit is now worth zero
            self.current_epoch += 1
            self.current_scale = 0
            self.epoch_to_scale_to_sum[self.current_epoch] = {0: {}}
            new_P = self.DECIMAL_PRECISION
            logger.info("Stability Pool emptied, starting epoch %s", self.current_epoch)
        elif current_P * new_product_factor // self.DECIMAL_PRECISION < self.SCALE_FACTOR:
            new_P = current_P * new_product_factor * self.SCALE_FACTOR // self.DECIMAL_PRECISION
            self.current_scale += 1
            self.epoch_to_scale_to_sum[self.current_epoch].setdefault(self.current_scale, {})
        else:
            new_P = current_P * new_product_factor // self.DECIMAL_PRECISION

        if new_P <= 0:
            raise ArithmeticError("P must never decrease to 0")
        self.P = new_P

    # --- Depositor views ---

    def get_compounded_usdf_deposit(self, depositor):
        """
        Calculates a depositor's compounded USDF deposit.

        Returns 0 if the pool was emptied since the snapshot, or if the
        deposit has shrunk by more than one scale factor.
        """
        initial_deposit = self.get_deposit(depositor)
        if initial_deposit == 0:
            return 0

        snapshots = self.deposit_snapshots[depositor]
        if snapshots.epoch < self.current_epoch:
            return 0

        scale_diff = self.current_scale - snapshots.scale
        if scale_diff == 0:
            compounded_deposit = initial_deposit * self.P // snapshots.P
        elif scale_diff == 1:
            compounded_deposit = initial_deposit * self.P // snapshots.P // self.SCALE_FACTOR
        else:
            compounded_deposit = 0

        # Below a billionth of the initial value is rounding dust
        if compounded_deposit < initial_deposit // self.SCALE_FACTOR:
            return 0
        return compounded_deposit

    def get_depositor_collateral_gain(self, depositor, asset):
        """
        Calculates the collateral a depositor can claim in one asset:
        stashed gains plus gains earned since the last snapshot.
        """
        stashed = self.stashed_coll.get(depositor, {}).get(asset, 0)
        return stashed + self._pending_coll_gain(depositor, asset)

    def _pending_coll_gain(self, depositor, asset):
        initial_deposit = self.get_deposit(depositor)
        if initial_deposit == 0:
            return 0

        snapshots = self.deposit_snapshots[depositor]
        scale_sums = self.epoch_to_scale_to_sum.get(snapshots.epoch, {})

        # Gains earned at the snapshot scale plus the next scale, which was
        # credited in units SCALE_FACTOR times larger
        first_portion = scale_sums.get(snapshots.scale, {}).get(asset, 0) - snapshots.S.get(asset, 0)
        second_portion = scale_sums.get(snapshots.scale + 1, {}).get(asset, 0) // self.SCALE_FACTOR

        return initial_deposit * (first_portion + second_portion) // snapshots.P // self.DECIMAL_PRECISION

    def _pending_coll_gains(self, depositor):
        gains = {}
        for asset in self.collateral_registry.get_assets():
            gain = self._pending_coll_gain(depositor, asset)
            if gain > 0:
                gains[asset] = gain
        return gains

    # --- Internal helpers ---

    def _claim(self, depositor, assets):
        if self.get_deposit(depositor) > 0:
            gains = self._pending_coll_gains(depositor)
            self._settle_coll_gains(depositor, gains, do_claim=False)
            self._update_deposit_and_snapshots(depositor, self.get_compounded_usdf_deposit(depositor))

        paid = {}
        for asset in assets:
            amount = self._send_coll_gain_to_depositor(depositor, asset)
            if amount > 0:
                paid[asset] = amount
        if not paid:
            raise NothingToClaim(f"{depositor} has no collateral gains to claim")
        return paid

    def _settle_coll_gains(self, depositor, gains, do_claim):
        stash = self.stashed_coll.setdefault(depositor, {})
        for asset, gain in gains.items():
            stash[asset] = stash.get(asset, 0) + gain
        if do_claim:
            for asset in list(stash):
                self._send_coll_gain_to_depositor(depositor, asset)
        if not stash:
            self.stashed_coll.pop(depositor, None)

    def _send_coll_gain_to_depositor(self, depositor, asset):
        stash = self.stashed_coll.get(depositor, {})
        # Rounding can leave the stash a few wei above what the pool holds
        amount = min(stash.get(asset, 0), self.get_coll_balance(asset))
        stash.pop(asset, None)
        if not stash:
            self.stashed_coll.pop(depositor, None)
        if amount == 0:
            return 0

        self.coll_balance[asset] -= amount
        self.collateral_registry.transfer_out(asset, self.address, depositor, amount)
        self.events.emit(CollateralGainWithdrawn(depositor, asset, amount))
        return amount

    def _update_deposit_and_snapshots(self, depositor, new_deposit):
        if new_deposit == 0:
            self.deposits.pop(depositor, None)
            self.deposit_snapshots.pop(depositor, None)
            return

        self.deposits[depositor] = Deposit(new_deposit)
        current_sums = self.epoch_to_scale_to_sum[self.current_epoch].get(self.current_scale, {})
        self.deposit_snapshots[depositor] = Snapshots(
            S=dict(current_sums),
            P=self.P,
            scale=self.current_scale,
            epoch=self.current_epoch,
        )
