"""
Economic Model for the USDF CDP engine.

This main module combines all the individual components into a complete model
of the USDF stablecoin system. It can be used to simulate various scenarios
and study the behaviour of the protocol under market stress.

Amounts passed to the model's helper methods are in whole units (2000 means
2000 USDF); the components underneath work in 18-decimal integers.
"""

import logging
import time

import matplotlib.pyplot as plt
import numpy as np

from access_control import AccessControl, Role
from active_pool import ActivePool
from borrower_operations import BorrowerOperations
from collateral_registry import CollateralRegistry
from default_pool import DefaultPool
from execution_context import ExecutionContext, ManualClock
from price_feed import PriceFeed
from price_oracle import PriceOracle
from protocol_config import ADMIN_ADDRESS, DEFAULT_CONFIG, from_wei, to_wei
from protocol_errors import InvalidPrice, NoTrovesToLiquidate
from protocol_events import EventLog
from sorted_troves import SortedTroves
from stability_pool import StabilityPool
from trove_manager import Status, TroveManager
from usdf_token import CollateralToken, USDFToken

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT = 3600
KEEPER_ADDRESS = "keeper"


def build_protocol(admin=ADMIN_ADDRESS, clock=None, config=DEFAULT_CONFIG, require_liquidator_role=False):
    """
    Creates and wires every protocol component.

    BorrowerOperations is created first, then the TroveManager that refers to
    it, then BorrowerOperations is pointed at the TroveManager.

    Returns:
        Dictionary of component name -> component
    """
    context = ExecutionContext(clock=clock)
    events = context.track(EventLog())
    access_control = AccessControl(admin)

    collateral_registry = CollateralRegistry(access_control, context)
    usdf_token = USDFToken(admin, context=context)
    price_oracle = PriceOracle(access_control, context, events, config)
    sorted_troves = SortedTroves(access_control, context, config)
    active_pool = ActivePool(access_control, collateral_registry, context)
    default_pool = DefaultPool(access_control, collateral_registry, active_pool, context)
    active_pool.set_default_pool(default_pool)
    stability_pool = StabilityPool(access_control, usdf_token, collateral_registry, context, events, config)

    borrower_operations = BorrowerOperations(
        access_control, active_pool, sorted_troves, price_oracle, usdf_token, context, events, config)
    trove_manager = TroveManager(
        access_control, borrower_operations, active_pool, default_pool, stability_pool,
        sorted_troves, price_oracle, usdf_token, context, events, config,
        require_liquidator_role=require_liquidator_role)
    borrower_operations.set_trove_manager(admin, trove_manager)

    # Permissions
    access_control.grant_role(admin, Role.POSITION_GATEWAY, borrower_operations.address)
    access_control.grant_role(admin, Role.LEDGER, trove_manager.address)
    usdf_token.add_minter(admin, borrower_operations.address)
    usdf_token.add_minter(admin, stability_pool.address)

    return {
        "admin": admin,
        "context": context,
        "events": events,
        "access_control": access_control,
        "collateral_registry": collateral_registry,
        "usdf_token": usdf_token,
        "price_oracle": price_oracle,
        "sorted_troves": sorted_troves,
        "active_pool": active_pool,
        "default_pool": default_pool,
        "stability_pool": stability_pool,
        "borrower_operations": borrower_operations,
        "trove_manager": trove_manager,
    }


class USDFEconomicModel:
    """
    Complete economic model of the USDF protocol.
    Combines all components and provides simulation capabilities.
    """

    def __init__(self, collaterals=None, initial_time=None, heartbeat=DEFAULT_HEARTBEAT,
                 admin=ADMIN_ADDRESS, config=DEFAULT_CONFIG):
        if collaterals is None:
            collaterals = {"WETH": 2000.0}

        # Current time for simulation
        self.clock = ManualClock(int(time.time()) if initial_time is None else initial_time)
        self.config = config
        self.admin = admin

        components = build_protocol(admin=admin, clock=self.clock, config=config)
        self.context = components["context"]
        self.events = components["events"]
        self.access_control = components["access_control"]
        self.collateral_registry = components["collateral_registry"]
        self.usdf_token = components["usdf_token"]
        self.price_oracle = components["price_oracle"]
        self.sorted_troves = components["sorted_troves"]
        self.active_pool = components["active_pool"]
        self.default_pool = components["default_pool"]
        self.stability_pool = components["stability_pool"]
        self.borrower_operations = components["borrower_operations"]
        self.trove_manager = components["trove_manager"]

        self.price_feeds = {}  # asset -> PriceFeed
        for asset, price in collaterals.items():
            self.add_collateral(asset, price, heartbeat)
        self.primary_asset = next(iter(collaterals))

        # History tracking for simulations
        self._reset_history(self.primary_asset)

    @property
    def current_time(self):
        return self.clock.now

    def add_collateral(self, asset, initial_price, heartbeat=DEFAULT_HEARTBEAT, decimals=8):
        """Registers a new collateral asset with its token and price feed."""
        token = CollateralToken(asset, context=self.context)
        feed = PriceFeed(initial_price, decimals=decimals, clock=self.clock, description=f"{asset} / USD")
        self.collateral_registry.add_collateral(self.admin, asset, token)
        self.price_oracle.register_oracle(self.admin, asset, feed, heartbeat)
        self.price_feeds[asset] = feed
        return token

    def fund(self, account, asset, amount):
        """Gives an account collateral to work with."""
        self.collateral_registry.get_token(asset).mint(account, to_wei(amount))

    # --- Borrower actions ---

    def open_trove(self, owner, asset, collateral, debt, max_fee_pct=None):
        """
        Opens a new trove, funding the owner with the collateral first.

        Args:
            owner: Address of the trove owner
            asset: Collateral asset
            collateral: Amount of collateral to deposit
            debt: Amount of USDF to borrow
            max_fee_pct: Highest acceptable borrowing fee (defaults to the fee cap)

        Returns:
            The trove's composite debt, in whole units
        """
        coll_amount = to_wei(collateral)
        debt_amount = to_wei(debt)
        if max_fee_pct is None:
            max_fee_pct = self.config.borrowing_fee_cap

        token = self.collateral_registry.get_token(asset)
        shortfall = coll_amount - token.balance_of(owner)
        if shortfall > 0:
            token.mint(owner, shortfall)

        # Hints are computed off-line, as a front end would
        composite_debt = self.borrower_operations.get_composite_debt(asset, debt_amount)
        nicr = self.trove_manager.compute_nominal_cr(coll_amount, composite_debt)
        prev_hint, next_hint = self.sorted_troves.find_insert_position(asset, nicr)

        composite = self.borrower_operations.open_trove(
            owner, asset, max_fee_pct, coll_amount, debt_amount, prev_hint, next_hint)
        self._update_history(asset)
        return from_wei(composite)

    def close_trove(self, owner, asset):
        returned = self.borrower_operations.close_trove(owner, asset)
        self._update_history(asset)
        return from_wei(returned)

    # --- Stability Pool actions ---

    def provide_to_stability_pool(self, depositor, amount, do_claim=True):
        """
        Provides USDF to the Stability Pool.

        Args:
            depositor: Address of the depositor
            amount: Amount of USDF to deposit
            do_claim: Whether to claim collateral gains or keep them stashed
        """
        new_deposit = self.stability_pool.provide_to_sp(depositor, to_wei(amount), do_claim)
        self._update_history(self.primary_asset)
        return from_wei(new_deposit)

    def withdraw_from_stability_pool(self, depositor, amount, do_claim=True):
        """
        Withdraws USDF from the Stability Pool.

        Returns:
            Amount of USDF actually withdrawn
        """
        withdrawn = self.stability_pool.withdraw_from_sp(depositor, to_wei(amount), do_claim)
        self._update_history(self.primary_asset)
        return from_wei(withdrawn)

    # --- Liquidations ---

    def liquidate_trove(self, owner, asset, liquidator=KEEPER_ADDRESS):
        results = self.trove_manager.liquidate(liquidator, owner, asset)
        self._update_history(asset)
        return results

    def batch_liquidate_troves(self, owners, asset, liquidator=KEEPER_ADDRESS):
        results = self.trove_manager.batch_liquidate_troves(liquidator, asset, owners)
        self._update_history(asset)
        return results

    def update_price(self, asset, new_price, max_liquidations=100):
        """
        Updates the price of an asset and liquidates troves that fell below the MCR.

        Args:
            asset: Collateral asset
            new_price: New price in USD
            max_liquidations: Upper bound on troves liquidated in this sweep

        Returns:
            List of liquidated trove owners
        """
        self.price_feeds[asset].set_price(new_price)

        # Refresh the oracle on its own so a sweep with nothing to do does not undo it
        self.price_oracle.get_price(asset)

        liquidated = []
        try:
            totals = self.trove_manager.liquidate_troves(KEEPER_ADDRESS, asset, max_liquidations)
            liquidated = totals.liquidated_borrowers
        except NoTrovesToLiquidate:
            pass
        except InvalidPrice:
            logger.warning("Skipping liquidation sweep for %s: no valid price", asset)

        self._update_history(asset)
        return liquidated

    def update_time(self, seconds):
        """
        Advances the simulation by the specified number of seconds.
        """
        self.clock.advance(seconds)

    # --- Reporting ---

    def get_system_state(self, asset=None):
        """
        Returns the current state of the system for one collateral asset.

        Returns:
            Dictionary with system state, amounts in whole units
        """
        asset = asset or self.primary_asset
        response = self.price_oracle.get_price_with_status(asset)
        price = response.price

        active_coll = self.active_pool.get_coll_balance(asset)
        active_debt = self.active_pool.get_usdf_debt(asset)
        default_coll = self.default_pool.get_coll_balance(asset)
        default_debt = self.default_pool.get_usdf_debt(asset)

        total_coll = self.trove_manager.get_entire_system_coll(asset)
        total_debt = self.trove_manager.get_entire_system_debt(asset)

        # Calculate Total Collateralization Ratio (TCR)
        tcr = total_coll * price / total_debt / 1e18 if total_debt > 0 else float('inf')

        active_troves = sum(1 for (_, trove_asset), trove in self.trove_manager.troves.items()
                            if trove_asset == asset and trove.status is Status.ACTIVE)

        return {
            'price': from_wei(price),
            'price_valid': response.is_valid,
            'active_coll': from_wei(active_coll),
            'active_debt': from_wei(active_debt),
            'default_coll': from_wei(default_coll),
            'default_debt': from_wei(default_debt),
            'stability_coll': from_wei(self.stability_pool.get_coll_balance(asset)),
            'stability_usdf': from_wei(self.stability_pool.get_total_usdf_deposits()),
            'total_coll': from_wei(total_coll),
            'total_debt': from_wei(total_debt),
            'tcr': tcr,
            'recovery_mode': total_debt > 0 and tcr * 1e18 < self.config.ccr,
            'active_troves': active_troves,
        }

    def _reset_history(self, asset):
        state = self.get_system_state(asset)
        self.price_history = [state['price']]
        self.total_coll_history = [state['total_coll']]
        self.total_debt_history = [state['total_debt']]
        self.active_troves_history = [state['active_troves']]
        self.tcr_history = [state['tcr']]

    def _update_history(self, asset):
        """Updates history tracking for simulations."""
        state = self.get_system_state(asset)

        self.price_history.append(state['price'])
        self.total_coll_history.append(state['total_coll'])
        self.total_debt_history.append(state['total_debt'])
        self.active_troves_history.append(state['active_troves'])
        self.tcr_history.append(state['tcr'])

    def simulate_market_scenario(self, days, price_volatility=0.02, plot_results=True, asset=None, seed=None):
        """
        Runs a simulation with random price movements over the specified period.

        Args:
            days: Number of days to simulate
            price_volatility: Daily price volatility (standard deviation of log returns)
            plot_results: Whether to plot the results
            asset: Collateral asset whose price moves (the first asset by default)
            seed: Seed for the random generator

        Returns:
            Dictionary with simulation results
        """
        asset = asset or self.primary_asset
        steps = days * 24  # hourly steps
        step_size = 60 * 60

        self._reset_history(asset)
        start_time = self.current_time

        # Generate random price movements (log-normal)
        rng = np.random.default_rng(seed)
        hourly_volatility = price_volatility / np.sqrt(24)
        log_returns = rng.normal(0, hourly_volatility, steps)

        price = self.price_feeds[asset].get_price()
        time_points = np.zeros(steps)
        liquidated = []

        for i in range(steps):
            # Advance time by one step, then move the price
            self.update_time(step_size)
            price *= float(np.exp(log_returns[i]))
            liquidated.extend(self.update_price(asset, round(price, 8)))

            # Record time in days
            time_points[i] = (self.current_time - start_time) / (24 * 60 * 60)

        if plot_results:
            self.plot_history(time_points, asset)

        final_state = self.get_system_state(asset)
        return {
            'final_price': final_state['price'],
            'final_system_debt': final_state['total_debt'],
            'final_collateral': final_state['total_coll'],
            'active_troves': final_state['active_troves'],
            'liquidations': len(liquidated),
            'liquidated_troves': liquidated,
            'final_tcr': final_state['tcr'],
            'price_path': np.array(self.price_history[1:]),
        }

    def plot_history(self, time_points, asset):
        fig, axs = plt.subplots(5, 1, figsize=(12, 20), sharex=True)

        axs[0].plot(time_points, self.price_history[1:])
        axs[0].set_title(f'{asset} Price')
        axs[0].set_ylabel('USD')

        axs[1].plot(time_points, self.total_debt_history[1:])
        axs[1].set_title('Total System Debt')
        axs[1].set_ylabel('USDF')

        axs[2].plot(time_points, self.total_coll_history[1:])
        axs[2].set_title('Total Collateral')
        axs[2].set_ylabel(asset)

        axs[3].plot(time_points, self.active_troves_history[1:])
        axs[3].set_title('Active Troves')
        axs[3].set_ylabel('Count')

        axs[4].plot(time_points, self.tcr_history[1:])
        axs[4].axhline(self.config.ccr / 1e18, color='orange', linestyle='--', label='CCR')
        axs[4].axhline(self.config.mcr / 1e18, color='red', linestyle='--', label='MCR')
        axs[4].set_title('Total Collateralization Ratio')
        axs[4].set_ylabel('Ratio')
        axs[4].set_xlabel('Days')
        axs[4].legend()

        plt.tight_layout()
        plt.show()
        return fig
