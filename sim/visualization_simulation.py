"""
Visualization simulation for the USDF Economic Model.

This script runs a month of random hourly price moves and plots the system.
"""

import logging
import os
import sys

import numpy as np

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from economic_model import USDFEconomicModel


def run_visualization_simulation(seed=42):
    asset = "WETH"
    model = USDFEconomicModel({asset: 2000.0})
    rng = np.random.default_rng(seed)

    print("Creating initial troves...")
    # Troves with collateral ratios from 120% to 200%
    for i in range(10):
        collateral = round(float(rng.uniform(2.0, 10.0)), 4)
        target_cr = 1.2 + (i * 0.8 / 10)
        debt = round(collateral * 2000 / target_cr, 2)
        model.open_trove(f"user{i}", asset, collateral, debt)
        print(f"user{i}: {collateral:.2f} {asset}, {debt:.2f} USDF, CR: {target_cr * 100:.0f}%")

    print("\nAdding to stability pool...")
    model.provide_to_stability_pool("user8", 6000)
    model.provide_to_stability_pool("user9", 4000)
    print("Added 10000 USDF to stability pool")

    print("\nRunning simulation with visualizations...")
    results = model.simulate_market_scenario(30, price_volatility=0.03, plot_results=True, seed=seed)

    print("\nSimulation Results:")
    for key, value in results.items():
        if key == 'price_path':
            print(f"  price range: {value.min():.2f} - {value.max():.2f}")
        else:
            print(f"  {key}: {value}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    run_visualization_simulation()
