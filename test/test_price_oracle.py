"""
Unit tests for the PriceOracle module.
"""

import unittest
from unittest import mock

from protocol_fixture import ADMIN, HEARTBEAT, START_TIME, WETH, ProtocolTestCase, dec

from price_feed import PriceFeed
from protocol_errors import (
    InvalidFeed, InvalidHeartbeat, InvalidPrice, OracleAlreadyRegistered,
    OracleFrozen, OracleNotRegistered, Unauthorized,
)
from protocol_events import OracleRegistered


class TestPriceOracleRegistration(ProtocolTestCase):

    def test_register_seeds_last_good_price(self):
        self.assertTrue(self.price_oracle.has_oracle(WETH))
        self.assertEqual(self.price_oracle.get_last_good_price(WETH), dec(2000))
        self.assertIn(WETH, self.price_oracle.get_registered_assets())
        self.assertIsInstance(self.events.last(OracleRegistered), OracleRegistered)

    def test_register_rejects_missing_feed(self):
        with self.assertRaises(InvalidFeed):
            self.price_oracle.register_oracle(ADMIN, "WBTC", None, HEARTBEAT)

    def test_register_rejects_zero_heartbeat(self):
        feed = PriceFeed(30000, clock=self.clock)
        with self.assertRaises(InvalidHeartbeat):
            self.price_oracle.register_oracle(ADMIN, "WBTC", feed, 0)
        self.assertFalse(self.price_oracle.has_oracle("WBTC"))

    def test_register_twice_fails(self):
        with self.assertRaises(OracleAlreadyRegistered):
            self.price_oracle.register_oracle(ADMIN, WETH, PriceFeed(2000, clock=self.clock), HEARTBEAT)

    def test_only_admin_can_register(self):
        with self.assertRaises(Unauthorized):
            self.price_oracle.register_oracle(self.alice, "WBTC", PriceFeed(30000, clock=self.clock), HEARTBEAT)

    def test_unregistered_asset(self):
        with self.assertRaises(OracleNotRegistered):
            self.price_oracle.get_price("DOGE")
        response = self.price_oracle.get_price_with_status("DOGE")
        self.assertEqual(response.price, 0)
        self.assertFalse(response.is_valid)

    def test_update_oracle_replaces_feed(self):
        new_feed = PriceFeed(2100, decimals=18, clock=self.clock)
        self.price_oracle.update_oracle(ADMIN, WETH, new_feed, 2 * HEARTBEAT)
        config = self.price_oracle.get_oracle_config(WETH)
        self.assertIs(config.feed, new_feed)
        self.assertEqual(config.heartbeat, 2 * HEARTBEAT)
        self.assertEqual(config.decimals, 18)
        self.assertEqual(self.price_oracle.get_price(WETH), dec(2100))


class TestPriceOracleReads(ProtocolTestCase):

    def test_rescales_feed_decimals(self):
        for decimals in (6, 8, 18, 20):
            asset = f"TKN{decimals}"
            feed = PriceFeed("1234.5", decimals=decimals, clock=self.clock)
            self.price_oracle.register_oracle(ADMIN, asset, feed, HEARTBEAT)
            self.assertEqual(self.price_oracle.get_price(asset), dec("1234.5"))

    def test_stale_price_returns_last_good_price(self):
        # Feed publishes a new answer, but with an old timestamp
        self.feeds[WETH].set_price(2100, updated_at=START_TIME)
        self.clock.advance(2 * HEARTBEAT)

        response = self.price_oracle.get_price_with_status(WETH)
        self.assertEqual(response.price, dec(2000))
        self.assertFalse(response.is_valid)
        self.assertEqual(self.price_oracle.get_price(WETH), dec(2000))
        with self.assertRaises(InvalidPrice):
            self.price_oracle.get_validated_price(WETH)

    def test_heartbeat_boundary_is_fresh(self):
        self.feeds[WETH].set_price(2100, updated_at=START_TIME)
        self.clock.advance(HEARTBEAT)
        response = self.price_oracle.get_price_with_status(WETH)
        self.assertTrue(response.is_valid)
        self.assertEqual(response.price, dec(2100))

    def test_deviation_above_fifty_percent_is_rejected(self):
        self.set_price(3001)
        self.assertEqual(self.price_oracle.get_last_good_price(WETH), dec(2000))
        self.assertFalse(self.price_oracle.get_price_with_status(WETH).is_valid)

    def test_deviation_of_exactly_fifty_percent_is_accepted(self):
        self.assertEqual(self.set_price(1000), dec(1000))
        self.assertEqual(self.price_oracle.get_last_good_price(WETH), dec(1000))
        self.assertEqual(self.set_price(1500), dec(1500))

    def test_non_positive_answer_is_rejected(self):
        self.feeds[WETH].set_answer(0)
        response = self.price_oracle.get_price_with_status(WETH)
        self.assertFalse(response.is_valid)
        self.assertEqual(response.price, dec(2000))

    def test_unavailable_feed_falls_back(self):
        self.feeds[WETH].set_unavailable()
        self.assertEqual(self.price_oracle.get_price(WETH), dec(2000))
        with self.assertRaises(InvalidPrice):
            self.price_oracle.get_validated_price(WETH)
        self.feeds[WETH].set_unavailable(False)
        self.assertEqual(self.price_oracle.get_validated_price(WETH), dec(2000))

    def test_status_read_does_not_move_last_good_price(self):
        self.feeds[WETH].set_price(2200)
        response = self.price_oracle.get_price_with_status(WETH)
        self.assertTrue(response.is_valid)
        self.assertEqual(response.price, dec(2200))
        self.assertEqual(self.price_oracle.get_last_good_price(WETH), dec(2000))

    def test_time_since_last_update(self):
        self.clock.advance(120)
        self.assertEqual(self.price_oracle.get_time_since_last_update(WETH), 120)


class TestPriceOracleFreeze(ProtocolTestCase):

    def test_frozen_oracle(self):
        self.price_oracle.freeze_oracle(ADMIN, WETH, "feed under investigation")
        self.assertTrue(self.price_oracle.is_frozen(WETH))

        with self.assertRaises(OracleFrozen):
            self.price_oracle.get_price(WETH)
        response = self.price_oracle.get_price_with_status(WETH)
        self.assertEqual(response.price, dec(2000))
        self.assertFalse(response.is_valid)

        self.price_oracle.unfreeze_oracle(ADMIN, WETH)
        self.assertEqual(self.price_oracle.get_price(WETH), dec(2000))

    def test_only_admin_can_freeze(self):
        with self.assertRaises(Unauthorized):
            self.price_oracle.freeze_oracle(self.alice, WETH)

    def test_frozen_oracle_blocks_borrowing(self):
        self.price_oracle.freeze_oracle(ADMIN, WETH)
        with self.assertRaises(OracleFrozen):
            self.open_trove(self.alice, 10, 5000)


class TestPriceOracleCaching(ProtocolTestCase):

    def test_one_feed_query_per_operation(self):
        feed = self.feeds[WETH]
        before = feed.query_count
        with self.context.transaction():
            first = self.price_oracle.get_price(WETH)
            second = self.price_oracle.get_price_with_status(WETH)
            third = self.price_oracle.get_validated_price(WETH)
        self.assertEqual(feed.query_count - before, 1)
        self.assertEqual(first, second.price)
        self.assertEqual(first, third)
        self.assertTrue(second.is_cached)

    def test_price_change_within_operation_is_not_seen(self):
        with self.context.transaction():
            first = self.price_oracle.get_price(WETH)
            self.feeds[WETH].set_price(2500)
            second = self.price_oracle.get_price(WETH)
        self.assertEqual(first, second)
        self.assertEqual(self.price_oracle.get_price(WETH), dec(2500))

    def test_separate_operations_query_again(self):
        feed = self.feeds[WETH]
        before = feed.query_count
        self.price_oracle.get_price(WETH)
        self.price_oracle.get_price(WETH)
        self.assertEqual(feed.query_count - before, 2)

    def test_open_trove_queries_feed_once(self):
        feed = self.feeds[WETH]
        before = feed.query_count
        self.open_trove(self.alice, 10, 5000)
        self.assertEqual(feed.query_count - before, 1)

    def test_standalone_read_takes_no_snapshot(self):
        with mock.patch.object(self.context, "_take_snapshot", wraps=self.context._take_snapshot) as snapshot:
            self.price_oracle.get_price(WETH)
            self.price_oracle.get_validated_price(WETH)
            snapshot.assert_not_called()

            self.open_trove(self.alice, 10, 5000)
            snapshot.assert_called_once()
        self.assertIsNone(self.context.call_id)
        self.assertEqual(self.context.depth, 0)


if __name__ == '__main__':
    unittest.main()
