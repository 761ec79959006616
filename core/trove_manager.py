"""
Trove Manager Model for the USDF CDP engine.

This module simulates the TroveManager contract which holds the record of
every trove (borrower position) and handles liquidations.

The TroveManager is the single source of truth for trove debt, collateral and
stake. It is responsible for:
1. Recording trove state when BorrowerOperations opens, adjusts or closes a trove
2. Tracking stakes so redistributed debt and collateral are shared fairly
3. Liquidating troves whose collateral ratio fell below the MCR (110%)
4. Offsetting liquidated debt against the Stability Pool
5. Redistributing whatever the Stability Pool cannot absorb to the remaining troves

Redistribution never iterates over troves. Two running sums per asset,
L_coll and L_debt, hold the collateral and debt owed per unit of stake; each
trove keeps a snapshot of them and collects the difference, multiplied by its
stake, the next time it is touched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from access_control import Role
from execution_context import atomic, nonreentrant
from protocol_config import DEFAULT_CONFIG
from protocol_errors import (
    EmptyArray, InsufficientCollateralRatio, InvalidAmount, NoTrovesToLiquidate,
    TroveAlreadyExists, TroveNotActive,
)
from protocol_events import Liquidation, Redistribution, TroveLiquidated, TroveOperation, TroveUpdated

logger = logging.getLogger(__name__)

# ICR of a trove without debt
MAX_ICR = 2**256 - 1


class Status(Enum):
    """
    Represents the possible states of a trove.
    """
    NON_EXISTENT = 0           # Trove has never been opened
    ACTIVE = 1                 # Normal active trove with debt and collateral
    CLOSED_BY_OWNER = 2        # Trove was voluntarily closed by its owner
    CLOSED_BY_LIQUIDATION = 3  # Trove was liquidated due to insufficient collateral


@dataclass
class Trove:
    """
    Represents a single trove (borrower position) for one collateral asset.
    """
    owner: str
    asset: str
    debt: int = 0    # Recorded USDF debt, including gas compensation and fees
    coll: int = 0    # Recorded collateral
    stake: int = 0   # Stake for redistribution calculations
    status: Status = Status.NON_EXISTENT


@dataclass
class RewardSnapshot:
    """L_coll and L_debt at the time the trove was last touched."""
    coll: int = 0
    debt: int = 0


@dataclass
class AssetState:
    """
    Per-asset totals and redistribution accumulators.
    """
    total_stakes: int = 0
    total_stakes_snapshot: int = 0       # total_stakes right after the last liquidation
    total_collateral_snapshot: int = 0   # system collateral right after the last liquidation
    total_collateral: int = 0            # Sum of recorded collateral of active troves
    total_debt: int = 0                  # Sum of recorded debt of active troves
    L_coll: int = 0                      # Collateral reward per unit staked
    L_debt: int = 0                      # Debt reward per unit staked
    last_coll_error_redistribution: int = 0
    last_debt_error_redistribution: int = 0
    unallocated_collateral: int = 0      # Residual collateral no trove could take
    burned_debt: int = 0                 # Residual debt no trove could take


@dataclass
class LiquidationValues:
    """
    Values calculated during the liquidation of a trove.

    The trove's collateral, minus the liquidator's gas compensation, goes to
    the Stability Pool in proportion to the debt it absorbs; the rest of the
    debt and collateral is redistributed to the remaining troves.
    """
    borrower: str
    entire_debt: int = 0
    entire_coll: int = 0
    coll_gas_compensation: int = 0   # Collateral paid to the liquidator
    usdf_gas_compensation: int = 0   # USDF paid to the liquidator from the gas pool
    debt_to_offset: int = 0          # Debt absorbed by the Stability Pool
    coll_to_send_to_sp: int = 0      # Collateral sent to Stability Pool depositors
    debt_to_redistribute: int = 0    # Debt spread among other troves
    coll_to_redistribute: int = 0    # Collateral spread among other troves


@dataclass
class LiquidationTotals:
    """Combined result of one liquidation call."""
    asset: str
    price: int
    liquidations: List[LiquidationValues] = field(default_factory=list)

    @property
    def liquidated_borrowers(self):
        return [values.borrower for values in self.liquidations]

    @property
    def total_debt(self):
        return sum(values.entire_debt for values in self.liquidations)

    @property
    def total_coll(self):
        return sum(values.entire_coll for values in self.liquidations)

    @property
    def coll_gas_compensation(self):
        return sum(values.coll_gas_compensation for values in self.liquidations)

    @property
    def usdf_gas_compensation(self):
        return sum(values.usdf_gas_compensation for values in self.liquidations)

    @property
    def debt_to_offset(self):
        return sum(values.debt_to_offset for values in self.liquidations)

    @property
    def coll_to_send_to_sp(self):
        return sum(values.coll_to_send_to_sp for values in self.liquidations)

    @property
    def debt_to_redistribute(self):
        return sum(values.debt_to_redistribute for values in self.liquidations)

    @property
    def coll_to_redistribute(self):
        return sum(values.coll_to_redistribute for values in self.liquidations)


class TroveManager:
    """
    Simulates the TroveManager contract which handles trove records and liquidations.

    The TroveManager interacts with several other components:
    - BorrowerOperations: the only component allowed to change trove records
    - ActivePool: holds active collateral and debt
    - StabilityPool: absorbs liquidated debt in exchange for collateral
    - DefaultPool: holds redistributed collateral and debt until applied
    - SortedTroves: ordering used to find the riskiest troves
    - PriceOracle: collateral prices
    """

    _STATE_FIELDS = ("troves", "reward_snapshots", "assets")

    def __init__(self, access_control, borrower_operations, active_pool, default_pool,
                 stability_pool, sorted_troves, price_oracle, usdf_token, context, events,
                 config=DEFAULT_CONFIG, address="trove_manager", require_liquidator_role=False):
        self.address = address
        self.access_control = access_control
        self.context = context
        self.events = events

        # Connected contracts
        self.borrower_operations = borrower_operations
        self.active_pool = active_pool
        self.default_pool = default_pool
        self.stability_pool = stability_pool
        self.sorted_troves = sorted_troves
        self.price_oracle = price_oracle
        self.usdf_token = usdf_token

        # Critical system parameters
        self.DECIMAL_PRECISION = config.decimal_precision
        self.NICR_PRECISION = config.nicr_precision
        self.MCR = config.mcr
        self.CCR = config.ccr
        self.COLL_GAS_COMPENSATION_DIVISOR = config.coll_gas_compensation_divisor
        self.GAS_COMPENSATION = config.gas_compensation
        self.GAS_POOL_ADDRESS = config.gas_pool_address

        # Liquidations are open to anyone unless restricted to LIQUIDATOR holders
        self.require_liquidator_role = require_liquidator_role

        # State variables
        self.troves = {}  # (owner, asset) -> Trove
        self.reward_snapshots = {}  # (owner, asset) -> RewardSnapshot
        self.assets = {}  # asset -> AssetState

        context.track(self)

    # --- Getter functions ---

    def get_trove(self, borrower, asset):
        """Returns a copy of the trove record, or None if it never existed."""
        trove = self.troves.get((borrower, asset))
        return None if trove is None else Trove(**vars(trove))

    def get_trove_status(self, borrower, asset):
        trove = self.troves.get((borrower, asset))
        return trove.status if trove else Status.NON_EXISTENT

    def is_trove_active(self, borrower, asset):
        return self.get_trove_status(borrower, asset) is Status.ACTIVE

    def get_trove_debt_and_coll(self, borrower, asset):
        """Returns the recorded (debt, coll), without pending rewards."""
        trove = self.troves.get((borrower, asset))
        if trove is None:
            return 0, 0
        return trove.debt, trove.coll

    def get_trove_stake(self, borrower, asset):
        trove = self.troves.get((borrower, asset))
        return trove.stake if trove else 0

    def get_pending_collateral_reward(self, borrower, asset):
        """Collateral redistributed to the trove and not yet applied."""
        trove = self.troves.get((borrower, asset))
        if trove is None or trove.status is not Status.ACTIVE:
            return 0
        state = self._asset(asset)
        snapshot = self.reward_snapshots[(borrower, asset)]
        reward_per_unit_staked = state.L_coll - snapshot.coll
        if reward_per_unit_staked == 0:
            return 0
        return trove.stake * reward_per_unit_staked // self.DECIMAL_PRECISION

    def get_pending_debt_reward(self, borrower, asset):
        """Debt redistributed to the trove and not yet applied."""
        trove = self.troves.get((borrower, asset))
        if trove is None or trove.status is not Status.ACTIVE:
            return 0
        state = self._asset(asset)
        snapshot = self.reward_snapshots[(borrower, asset)]
        reward_per_unit_staked = state.L_debt - snapshot.debt
        if reward_per_unit_staked == 0:
            return 0
        return trove.stake * reward_per_unit_staked // self.DECIMAL_PRECISION

    def has_pending_rewards(self, borrower, asset):
        trove = self.troves.get((borrower, asset))
        if trove is None or trove.status is not Status.ACTIVE:
            return False
        return self.reward_snapshots[(borrower, asset)].coll < self._asset(asset).L_coll

    def get_entire_debt_and_coll(self, borrower, asset):
        """
        Returns the trove's debt and collateral including pending rewards.

        Returns:
            Tuple of (debt, coll, pending_debt_reward, pending_coll_reward)
        """
        recorded_debt, recorded_coll = self.get_trove_debt_and_coll(borrower, asset)
        pending_debt = self.get_pending_debt_reward(borrower, asset)
        pending_coll = self.get_pending_collateral_reward(borrower, asset)
        return recorded_debt + pending_debt, recorded_coll + pending_coll, pending_debt, pending_coll

    def get_nominal_icr(self, borrower, asset):
        debt, coll, _, _ = self.get_entire_debt_and_coll(borrower, asset)
        return self.compute_nominal_cr(coll, debt)

    def get_current_icr(self, borrower, asset, price=None):
        """
        Returns the trove's collateral ratio at the given price (the oracle's
        current price when omitted), including pending rewards.
        """
        if price is None:
            price = self.price_oracle.get_price(asset)
        debt, coll, _, _ = self.get_entire_debt_and_coll(borrower, asset)
        return self.compute_cr(coll, debt, price)

    def compute_nominal_cr(self, coll, debt):
        if debt == 0:
            return MAX_ICR
        return coll * self.NICR_PRECISION // debt

    @staticmethod
    def compute_cr(coll, debt, price):
        if debt == 0:
            return MAX_ICR
        return coll * price // debt

    def get_total_stakes(self, asset):
        return self._asset(asset).total_stakes

    def get_total_debt(self, asset):
        """Sum of recorded debt of active troves."""
        return self._asset(asset).total_debt

    def get_total_collateral(self, asset):
        """Sum of recorded collateral of active troves."""
        return self._asset(asset).total_collateral

    def get_entire_system_debt(self, asset):
        return self.active_pool.get_usdf_debt(asset) + self.default_pool.get_usdf_debt(asset)

    def get_entire_system_coll(self, asset):
        active_coll = self.active_pool.get_coll_balance(asset) - self._asset(asset).unallocated_collateral
        return active_coll + self.default_pool.get_coll_balance(asset)

    def get_tcr(self, asset, price=None):
        """Total collateral ratio of the whole system for an asset."""
        if price is None:
            price = self.price_oracle.get_price(asset)
        return self.compute_cr(self.get_entire_system_coll(asset), self.get_entire_system_debt(asset), price)

    def check_recovery_mode(self, asset, price=None):
        """True when the TCR is below the CCR (150%). Reported only, never enforced."""
        return self.get_tcr(asset, price) < self.CCR

    def get_reward_per_unit_staked(self, asset):
        """Returns (L_coll, L_debt)."""
        state = self._asset(asset)
        return state.L_coll, state.L_debt

    def get_reward_snapshot(self, borrower, asset):
        snapshot = self.reward_snapshots.get((borrower, asset))
        return None if snapshot is None else RewardSnapshot(snapshot.coll, snapshot.debt)

    def get_unallocated_collateral(self, asset):
        return self._asset(asset).unallocated_collateral

    def get_burned_debt(self, asset):
        return self._asset(asset).burned_debt

    def get_active_trove_owners(self, asset):
        return [owner for (owner, trove_asset), trove in self.troves.items()
                if trove_asset == asset and trove.status is Status.ACTIVE]

    # --- Trove record updates (BorrowerOperations only) ---

    @atomic
    def update_trove(self, caller, borrower, asset, new_debt, new_coll, is_opening):
        """
        Records a trove's new debt and collateral.

        The collateral ratio is not checked here; BorrowerOperations does that
        before calling. When adjusting, pending rewards must already have been
        applied.

        Args:
            caller: Must be BorrowerOperations
            borrower: Owner of the trove
            asset: Collateral asset of the trove
            new_debt: New recorded debt
            new_coll: New recorded collateral
            is_opening: True when the trove is being opened

        Returns:
            The trove's new stake
        """
        self.access_control.require(caller, Role.POSITION_GATEWAY)
        if new_debt < 0 or new_coll < 0:
            raise InvalidAmount("Debt and collateral cannot be negative")

        key = (borrower, asset)
        if is_opening:
            existing = self.troves.get(key)
            if existing is not None and existing.status is Status.ACTIVE:
                raise TroveAlreadyExists(f"{borrower} already has an active {asset} trove")
            trove = Trove(owner=borrower, asset=asset, status=Status.ACTIVE)
            self.troves[key] = trove
            operation = TroveOperation.OPEN
        else:
            trove = self._require_active(borrower, asset)
            operation = TroveOperation.ADJUST

        state = self._asset(asset)
        state.total_debt += new_debt - trove.debt
        state.total_collateral += new_coll - trove.coll
        trove.debt = new_debt
        trove.coll = new_coll

        self._update_stake_and_total_stakes(trove)
        self._update_trove_reward_snapshots(trove)

        self.events.emit(TroveUpdated(borrower, asset, new_debt, new_coll, trove.stake, operation))
        return trove.stake

    @atomic
    def close_trove(self, caller, borrower, asset):
        """
        Closes a trove at its owner's request. BorrowerOperations has already
        taken the repayment and returns the collateral.
        """
        self.access_control.require(caller, Role.POSITION_GATEWAY)
        trove = self._require_active(borrower, asset)
        self._remove_stake(trove)
        self._close_trove(trove, Status.CLOSED_BY_OWNER)
        self.events.emit(TroveUpdated(borrower, asset, 0, 0, 0, TroveOperation.CLOSE))

    @atomic
    def remove_stake(self, caller, borrower, asset):
        self.access_control.require(caller, Role.POSITION_GATEWAY)
        self._remove_stake(self._require_active(borrower, asset))

    @atomic
    def apply_pending_rewards(self, caller, borrower, asset):
        """
        Moves the trove's share of redistributed debt and collateral from the
        Default Pool into the trove.

        Returns:
            Tuple of (debt applied, collateral applied)
        """
        self.access_control.require(caller, Role.POSITION_GATEWAY)
        return self._apply_pending_rewards(self._require_active(borrower, asset))

    # --- Liquidation functions ---

    @nonreentrant
    def liquidate(self, liquidator, borrower, asset):
        """
        Liquidates a single undercollateralized trove.

        The liquidation process follows these steps:
        1. Check the trove is active and its ICR is below the MCR
        2. Apply its pending redistribution rewards
        3. Reserve 0.5% of its collateral as the liquidator's compensation
        4. Offset as much debt as possible against the Stability Pool
        5. Redistribute the remaining debt and collateral to other troves
        6. Close the trove and pay the liquidator

        Args:
            liquidator: Address receiving the gas compensation
            borrower: Owner of the trove to liquidate
            asset: Collateral asset of the trove

        Returns:
            LiquidationTotals with the detailed results

        Raises:
            TroveNotActive: If the trove is not active
            InsufficientCollateralRatio: If the trove's ICR is not below the MCR
            InvalidPrice: If no valid price is available
        """
        self._require_liquidator(liquidator)
        trove = self._require_active(borrower, asset)

        price = self.price_oracle.get_validated_price(asset)
        icr = self._get_current_icr(trove, price)
        if icr >= self.MCR:
            raise InsufficientCollateralRatio(
                f"Cannot liquidate trove with ICR >= MCR. Current ICR: {icr}")

        totals = LiquidationTotals(asset=asset, price=price)
        totals.liquidations.append(self._liquidate(trove, price))
        return self._finalize_liquidations(liquidator, totals)

    @nonreentrant
    def batch_liquidate_troves(self, liquidator, asset, borrowers, max_iterations=None):
        """
        Liquidates the listed troves that are below the MCR.

        Inactive and healthy troves are skipped. At most max_iterations
        entries of the list are looked at.

        Raises:
            EmptyArray: If the list is empty
            NoTrovesToLiquidate: If none of the troves could be liquidated
        """
        self._require_liquidator(liquidator)
        if not borrowers:
            raise EmptyArray("Empty trove array")
        if max_iterations is not None and max_iterations <= 0:
            raise InvalidAmount("max_iterations must be positive")

        price = self.price_oracle.get_validated_price(asset)
        totals = LiquidationTotals(asset=asset, price=price)

        candidates = borrowers if max_iterations is None else borrowers[:max_iterations]
        for borrower in candidates:
            trove = self.troves.get((borrower, asset))
            if trove is None or trove.status is not Status.ACTIVE:
                continue
            if self._get_current_icr(trove, price) >= self.MCR:
                continue
            totals.liquidations.append(self._liquidate(trove, price))

        if not totals.liquidations:
            raise NoTrovesToLiquidate("Nothing to liquidate")
        return self._finalize_liquidations(liquidator, totals)

    @nonreentrant
    def liquidate_troves(self, liquidator, asset, max_iterations):
        """
        Liquidates troves from the bottom of the sorted list until one is
        healthy or max_iterations troves have been liquidated.

        Raises:
            InvalidAmount: If max_iterations is not positive
            NoTrovesToLiquidate: If the riskiest trove is healthy
        """
        self._require_liquidator(liquidator)
        if max_iterations is None or max_iterations <= 0:
            raise InvalidAmount("max_iterations must be positive")

        price = self.price_oracle.get_validated_price(asset)
        totals = LiquidationTotals(asset=asset, price=price)

        for _ in range(max_iterations):
            borrower = self.sorted_troves.get_last(asset)
            if borrower is None:
                break
            trove = self.troves[(borrower, asset)]
            if self._get_current_icr(trove, price) >= self.MCR:
                break
            totals.liquidations.append(self._liquidate(trove, price))

        if not totals.liquidations:
            raise NoTrovesToLiquidate("Nothing to liquidate")
        return self._finalize_liquidations(liquidator, totals)

    def _liquidate(self, trove, price):
        """
        Internal function to liquidate a single trove. The caller has checked
        that the trove is active and below the MCR.
        """
        asset = trove.asset
        borrower = trove.owner

        self._apply_pending_rewards(trove)
        values = LiquidationValues(borrower=borrower, entire_debt=trove.debt, entire_coll=trove.coll)

        values.coll_gas_compensation = self._get_coll_gas_compensation(trove.coll)
        values.usdf_gas_compensation = self.GAS_COMPENSATION
        coll_to_liquidate = trove.coll - values.coll_gas_compensation

        # Stability Pool first
        values.debt_to_offset, values.coll_to_send_to_sp = self.stability_pool.offset(
            self.address, asset, values.entire_debt, coll_to_liquidate)
        self.active_pool.decrease_usdf_debt(self.address, asset, values.debt_to_offset)
        self.active_pool.send_coll(self.address, asset, self.stability_pool.address, values.coll_to_send_to_sp)

        values.debt_to_redistribute = values.entire_debt - values.debt_to_offset
        values.coll_to_redistribute = coll_to_liquidate - values.coll_to_send_to_sp

        # The liquidated trove must not receive a share of its own residual
        self._remove_stake(trove)
        self._close_trove(trove, Status.CLOSED_BY_LIQUIDATION)
        self._redistribute_debt_and_coll(asset, values.debt_to_redistribute, values.coll_to_redistribute)

        self.borrower_operations.remove_user_trove_asset(self.address, borrower, asset)

        self.events.emit(TroveLiquidated(borrower, asset, values.entire_debt, values.entire_coll))
        logger.info("Liquidated %s trove of %s: debt %s, coll %s (offset %s, redistributed %s)",
                    asset, borrower, values.entire_debt, values.entire_coll,
                    values.debt_to_offset, values.debt_to_redistribute)
        return values

    def _finalize_liquidations(self, liquidator, totals):
        asset = totals.asset

        # Pay the liquidator
        self.active_pool.send_coll(self.address, asset, liquidator, totals.coll_gas_compensation)
        if totals.usdf_gas_compensation > 0:
            self.usdf_token.transfer(self.GAS_POOL_ADDRESS, liquidator, totals.usdf_gas_compensation)

        self._update_system_snapshots(asset)

        self.events.emit(Liquidation(
            asset, totals.total_debt, totals.total_coll,
            totals.coll_gas_compensation, totals.usdf_gas_compensation))
        return totals

    def _get_coll_gas_compensation(self, entire_coll):
        """Returns the amount of collateral to be drawn as gas compensation."""
        return entire_coll // self.COLL_GAS_COMPENSATION_DIVISOR

    # --- Redistribution functions ---

    def _redistribute_debt_and_coll(self, asset, debt, coll):
        """
        Redistributes debt and collateral to all active troves of the asset,
        in proportion to their stakes.

        The division remainders are carried over to the next redistribution.
        With no stakes left, the debt is written off and the collateral stays
        unallocated in the Active Pool.
        """
        if debt == 0 and coll == 0:
            return

        state = self._asset(asset)
        if state.total_stakes == 0:
            self.active_pool.decrease_usdf_debt(self.address, asset, debt)
            state.burned_debt += debt
            state.unallocated_collateral += coll
            logger.warning("No %s troves left to take %s debt and %s collateral from liquidation",
                           asset, debt, coll)
            return

        coll_numerator = coll * self.DECIMAL_PRECISION + state.last_coll_error_redistribution
        coll_reward_per_unit_staked = coll_numerator // state.total_stakes
        state.last_coll_error_redistribution = coll_numerator - coll_reward_per_unit_staked * state.total_stakes

        debt_numerator = debt * self.DECIMAL_PRECISION + state.last_debt_error_redistribution
        debt_reward_per_unit_staked = debt_numerator // state.total_stakes
        state.last_debt_error_redistribution = debt_numerator - debt_reward_per_unit_staked * state.total_stakes

        state.L_coll += coll_reward_per_unit_staked
        state.L_debt += debt_reward_per_unit_staked

        # Move the residual to the Default Pool until troves collect it
        self.active_pool.decrease_usdf_debt(self.address, asset, debt)
        self.default_pool.increase_usdf_debt(self.address, asset, debt)
        self.active_pool.send_coll_to_default_pool(self.address, asset, coll)

        self.events.emit(Redistribution(asset, debt, coll, state.L_coll, state.L_debt))

    def _apply_pending_rewards(self, trove):
        key = (trove.owner, trove.asset)
        state = self._asset(trove.asset)
        if self.reward_snapshots[key].coll >= state.L_coll and self.reward_snapshots[key].debt >= state.L_debt:
            return 0, 0

        pending_debt = self.get_pending_debt_reward(trove.owner, trove.asset)
        pending_coll = self.get_pending_collateral_reward(trove.owner, trove.asset)

        trove.debt += pending_debt
        trove.coll += pending_coll
        state.total_debt += pending_debt
        state.total_collateral += pending_coll

        self._update_trove_reward_snapshots(trove)
        self._move_pending_trove_rewards_to_active_pool(trove.asset, pending_debt, pending_coll)

        self.events.emit(TroveUpdated(trove.owner, trove.asset, trove.debt, trove.coll, trove.stake,
                                      TroveOperation.APPLY_PENDING_REWARDS))
        return pending_debt, pending_coll

    def _move_pending_trove_rewards_to_active_pool(self, asset, debt, coll):
        if debt > 0:
            self.default_pool.decrease_usdf_debt(self.address, asset, debt)
            self.active_pool.increase_usdf_debt(self.address, asset, debt)
        self.default_pool.send_coll_to_active_pool(self.address, asset, coll)

    def _update_trove_reward_snapshots(self, trove):
        state = self._asset(trove.asset)
        self.reward_snapshots[(trove.owner, trove.asset)] = RewardSnapshot(coll=state.L_coll, debt=state.L_debt)

    def _update_system_snapshots(self, asset):
        """Records total stakes and system collateral after liquidations."""
        state = self._asset(asset)
        state.total_stakes_snapshot = state.total_stakes
        state.total_collateral_snapshot = self.get_entire_system_coll(asset)

    # --- Stake functions ---

    def _compute_new_stake(self, asset, coll):
        """
        Stake is collateral scaled by the stake/collateral ratio left by past
        liquidations, so that new troves do not share in rewards earned
        before they existed.
        """
        state = self._asset(asset)
        if state.total_collateral_snapshot == 0 or state.total_stakes_snapshot == 0:
            return coll
        return coll * state.total_stakes_snapshot // state.total_collateral_snapshot

    def _update_stake_and_total_stakes(self, trove):
        state = self._asset(trove.asset)
        new_stake = self._compute_new_stake(trove.asset, trove.coll)
        state.total_stakes = state.total_stakes - trove.stake + new_stake
        trove.stake = new_stake
        return new_stake

    def _remove_stake(self, trove):
        state = self._asset(trove.asset)
        state.total_stakes -= trove.stake
        trove.stake = 0

    def _close_trove(self, trove, status):
        state = self._asset(trove.asset)
        state.total_debt -= trove.debt
        state.total_collateral -= trove.coll

        trove.debt = 0
        trove.coll = 0
        trove.stake = 0
        trove.status = status
        self.reward_snapshots.pop((trove.owner, trove.asset), None)

        if self.sorted_troves.contains(trove.asset, trove.owner):
            self.sorted_troves.remove(self.address, trove.asset, trove.owner)

    # --- Internal helpers ---

    def _asset(self, asset):
        state = self.assets.get(asset)
        if state is None:
            state = AssetState()
            self.assets[asset] = state
        return state

    def _require_active(self, borrower, asset):
        trove = self.troves.get((borrower, asset))
        if trove is None or trove.status is not Status.ACTIVE:
            raise TroveNotActive(f"{borrower} has no active {asset} trove")
        return trove

    def _require_liquidator(self, liquidator):
        if self.require_liquidator_role:
            self.access_control.require(liquidator, Role.LIQUIDATOR)

    def _get_current_icr(self, trove, price):
        return self.get_current_icr(trove.owner, trove.asset, price)
