"""
Unit tests for atomic operations and re-entrancy guards.
"""

import unittest

from protocol_fixture import ADMIN, WETH, ProtocolTestCase, dec

from execution_context import ExecutionContext, ManualClock, ReentrancyGuard
from protocol_errors import InsufficientCollateralRatio, ListFull, ReentrantCall
from trove_manager import Status


class TestAtomicity(ProtocolTestCase):

    def test_failed_open_trove_leaves_no_trace(self):
        """ListFull is raised after the trove was recorded."""
        self.sorted_troves.set_max_size(ADMIN, WETH, 1)
        self.open_trove(self.alice, 10, 10000)

        supply = self.usdf_token.total_supply
        stakes = self.trove_manager.get_total_stakes(WETH)
        event_count = len(self.events)

        with self.assertRaises(ListFull):
            self.open_trove(self.bob, 10, 5000)

        self.assertEqual(self.trove_manager.get_trove_status(self.bob, WETH), Status.NON_EXISTENT)
        self.assertEqual(self.weth.balance_of(self.bob), dec(10))
        self.assertEqual(self.usdf_token.balance_of(self.bob), 0)
        self.assertEqual(self.usdf_token.total_supply, supply)
        self.assertEqual(self.active_pool.get_coll_balance(WETH), dec(10))
        self.assertEqual(self.active_pool.get_usdf_debt(WETH), dec(10250))
        self.assertEqual(self.trove_manager.get_total_stakes(WETH), stakes)
        self.assertEqual(self.trove_manager.get_total_debt(WETH), dec(10250))
        self.assertEqual(self.borrower_operations.get_user_trove_assets(self.bob), [])
        self.assertEqual(len(self.events), event_count)

    def test_outermost_scope_restores(self):
        with self.assertRaises(RuntimeError):
            with self.context.transaction():
                self.open_trove(self.alice, 10, 10000)
                self.assertTrue(self.trove_manager.is_trove_active(self.alice, WETH))
                raise RuntimeError("abort")

        self.assertFalse(self.trove_manager.is_trove_active(self.alice, WETH))
        self.assertEqual(self.usdf_token.total_supply, 0)
        self.assertTrue(self.sorted_troves.is_empty(WETH))

    def test_call_scope_is_closed_after_each_operation(self):
        self.open_trove(self.alice, 10, 10000)
        self.assertIsNone(self.context.call_id)
        self.assertEqual(self.context.depth, 0)
        self.assertFalse(self.context.in_call)

        with self.context.transaction() as call_id:
            self.assertEqual(self.context.call_id, call_id)
            with self.context.transaction() as inner_call_id:
                self.assertEqual(inner_call_id, call_id)
                self.assertEqual(self.context.depth, 2)

    def test_track_requires_state_fields(self):
        with self.assertRaises(TypeError):
            self.context.track(object())


class TestReentrancy(ProtocolTestCase):

    def test_guard(self):
        guard = ReentrancyGuard("test")
        with guard:
            self.assertTrue(guard.locked)
            with self.assertRaises(ReentrantCall):
                with guard:
                    pass
        self.assertFalse(guard.locked)

    def test_stability_pool_reentry_from_transfer_hook(self):
        self.mint_usdf(self.alice, dec(2000))

        def reenter(sender, recipient, amount):
            if recipient == self.stability_pool.address:
                self.stability_pool.provide_to_sp(sender, dec(1))

        self.usdf_token.on_transfer = reenter
        with self.assertRaises(ReentrantCall):
            self.stability_pool.provide_to_sp(self.alice, dec(1000))

        self.assertEqual(self.stability_pool.get_total_usdf_deposits(), 0)
        self.assertEqual(self.usdf_token.balance_of(self.alice), dec(2000))

        # The guard was released by the failed call
        self.usdf_token.on_transfer = None
        self.stability_pool.provide_to_sp(self.alice, dec(1000))
        self.assertEqual(self.stability_pool.get_deposit(self.alice), dec(1000))

    def test_borrower_operations_reentry_from_collateral_hook(self):
        self.weth.mint(self.bob, dec(10))

        def reenter(sender, recipient, amount):
            if recipient == self.active_pool.address and sender == self.alice:
                self.borrower_operations.open_trove(self.bob, WETH, dec("0.05"), dec(10), dec(5000))

        self.weth.on_transfer = reenter
        with self.assertRaises(ReentrantCall):
            self.open_trove(self.alice, 10, 10000)

        self.assertFalse(self.trove_manager.is_trove_active(self.alice, WETH))
        self.assertFalse(self.trove_manager.is_trove_active(self.bob, WETH))
        self.assertEqual(self.weth.balance_of(self.alice), dec(10))

    def test_liquidation_from_collateral_hook_during_adjustment(self):
        """A liquidation cannot run while another trove is being adjusted."""
        self.open_trove(self.whale, 100, 30000)
        self.open_trove(self.carol, 50, 10000)
        self.open_trove(self.bob, dec(10), self.borrow_amount_for(dec(17000)), raw=True)
        self.set_price(1700)

        def liquidate_bob(sender, recipient, amount):
            if recipient == self.carol:
                self.trove_manager.liquidate(self.liquidator, self.bob, WETH)

        self.weth.on_transfer = liquidate_bob
        with self.assertRaises(ReentrantCall):
            self.borrower_operations.withdraw_coll(self.carol, WETH, dec(1))

        self.assertTrue(self.trove_manager.is_trove_active(self.bob, WETH))
        self.assertEqual(self.trove_manager.get_trove_debt_and_coll(self.carol, WETH)[1], dec(50))
        self.assertEqual(self.weth.balance_of(self.carol), 0)
        self.assertEqual(self.default_pool.get_usdf_debt(WETH), 0)

        # Run one after the other, every redistributed unit is owed to a trove
        self.weth.on_transfer = None
        self.borrower_operations.withdraw_coll(self.carol, WETH, dec(1))
        self.trove_manager.liquidate(self.liquidator, self.bob, WETH)

        self.assertEqual(self.default_pool.get_usdf_debt(WETH), dec(17000))
        pending = sum(self.trove_manager.get_pending_debt_reward(borrower, WETH)
                      for borrower in (self.whale, self.carol))
        self.assertAlmostEqual(pending, dec(17000), delta=10**6)
        self.assertGreater(self.trove_manager.get_pending_debt_reward(self.carol, WETH), 0)

    def test_guard_released_after_rule_violation(self):
        with self.assertRaises(InsufficientCollateralRatio):
            self.open_trove(self.alice, 1, 2100)
        self.assertFalse(self.context.guard.locked)

        self.open_trove(self.alice, 10, 10000)
        self.assertTrue(self.trove_manager.is_trove_active(self.alice, WETH))


class TestManualClock(unittest.TestCase):

    def test_clock_only_moves_forward(self):
        clock = ManualClock(100)
        self.assertEqual(clock(), 100)
        self.assertEqual(clock.advance(50), 150)
        self.assertEqual(clock.set(200), 200)
        with self.assertRaises(ValueError):
            clock.advance(-1)
        with self.assertRaises(ValueError):
            clock.set(199)

    def test_context_reads_clock(self):
        clock = ManualClock(1234)
        context = ExecutionContext(clock=clock)
        clock.advance(6)
        self.assertEqual(context.now(), 1240)


if __name__ == '__main__':
    unittest.main()
