"""
Simple simulation for the USDF Economic Model.

This script opens a handful of troves, fills the Stability Pool, drops the
collateral price and shows how liquidations are absorbed.
"""

import logging
import os
import sys

import numpy as np

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from economic_model import USDFEconomicModel
from protocol_config import from_wei


def print_state(model, asset):
    state = model.get_system_state(asset)
    print(f"  Total collateral: {state['total_coll']:.2f} {asset}")
    print(f"  Total debt: {state['total_debt']:.2f} USDF")
    print(f"  {asset} price: ${state['price']:.2f}")
    print(f"  Active troves: {state['active_troves']}")
    print(f"  Stability pool balance: {state['stability_usdf']:.2f} USDF")
    print(f"  Stability pool collateral: {state['stability_coll']:.4f} {asset}")
    print(f"  TCR: {state['tcr'] * 100:.1f}%  recovery mode: {state['recovery_mode']}")


def run_basic_simulation(seed=7):
    asset = "WETH"
    model = USDFEconomicModel({asset: 2000.0})
    rng = np.random.default_rng(seed)

    print("Creating initial troves...")
    for i in range(5):
        collateral = round(float(rng.uniform(3.0, 8.0)), 4)
        target_cr = 1.25 + 0.1 * i
        debt = round(collateral * 2000 / target_cr, 2)
        composite = model.open_trove(f"user{i}", asset, collateral, debt)
        print(f"user{i}: {collateral:.2f} {asset}, {composite:.2f} USDF debt, target CR {target_cr * 100:.0f}%")

    print("\nAdding to stability pool...")
    model.provide_to_stability_pool("user3", 3000)
    model.provide_to_stability_pool("user4", 3000)
    print("Added 6000 USDF to stability pool")

    print("\nInitial protocol state:")
    print_state(model, asset)

    new_price = 1700.0
    print(f"\nSimulating price drop to ${new_price:.2f}")
    model.update_time(600)
    liquidated = model.update_price(asset, new_price)
    if liquidated:
        print(f"Liquidated troves: {liquidated}")
    else:
        print("No troves eligible for liquidation at this price")

    print("\nFinal protocol state:")
    print_state(model, asset)

    for depositor in ("user3", "user4"):
        gain = model.stability_pool.get_depositor_collateral_gain(depositor, asset)
        deposit = model.stability_pool.get_compounded_usdf_deposit(depositor)
        print(f"  {depositor}: deposit {from_wei(deposit):.2f} USDF, gain {from_wei(gain):.4f} {asset}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    run_basic_simulation()
