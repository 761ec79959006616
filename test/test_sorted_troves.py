"""
Unit tests for the SortedTroves module.

The list is driven directly here, acting as BorrowerOperations.
"""

import unittest

from protocol_fixture import ADMIN, WBTC, WETH, ProtocolTestCase

from protocol_errors import InvalidAmount, ListFull, NodeAlreadyExists, NodeNotFound, Unauthorized


class TestSortedTroves(ProtocolTestCase):

    def setUp(self):
        super().setUp()
        self.gateway = self.borrower_operations.address

    def insert(self, trove_id, nicr, prev_id=None, next_id=None, asset=WETH):
        self.sorted_troves.insert(self.gateway, asset, trove_id, nicr, prev_id, next_id)

    def ids(self, asset=WETH):
        return [trove_id for trove_id, _ in self.sorted_troves.iter_troves(asset)]

    def test_insert_keeps_descending_order(self):
        """Nodes end up ordered by NICR whatever the insertion order."""
        for trove_id, nicr in (("b", 200), ("d", 50), ("a", 300), ("c", 100)):
            self.insert(trove_id, nicr)

        self.assertEqual(self.ids(), ["a", "b", "c", "d"])
        self.assertEqual(self.sorted_troves.get_first(WETH), "a")
        self.assertEqual(self.sorted_troves.get_last(WETH), "d")
        self.assertEqual(self.sorted_troves.get_size(WETH), 4)
        self.assertEqual(self.sorted_troves.get_next(WETH, "b"), "c")
        self.assertEqual(self.sorted_troves.get_prev(WETH, "b"), "a")
        self.assertIsNone(self.sorted_troves.get_prev(WETH, "a"))
        self.assertIsNone(self.sorted_troves.get_next(WETH, "d"))

    def test_lists_are_per_asset(self):
        self.insert("a", 300)
        self.insert("a", 100, asset=WBTC)
        self.assertTrue(self.sorted_troves.contains(WETH, "a"))
        self.assertTrue(self.sorted_troves.contains(WBTC, "a"))
        self.assertEqual(self.sorted_troves.get_nicr(WBTC, "a"), 100)
        self.assertTrue(self.sorted_troves.is_empty("DOGE"))

    def test_exact_hints(self):
        self.insert("a", 300)
        self.insert("c", 100)
        self.assertTrue(self.sorted_troves.valid_insert_position(WETH, 200, "a", "c"))

        self.insert("b", 200, "a", "c")
        self.assertEqual(self.ids(), ["a", "b", "c"])

    def test_stale_hints_fall_back(self):
        """Hints that do not bracket the NICR still give the right position."""
        for trove_id, nicr in (("a", 500), ("b", 400), ("c", 300), ("d", 200), ("e", 100)):
            self.insert(trove_id, nicr)

        # Wrong neighbours
        self.assertFalse(self.sorted_troves.valid_insert_position(WETH, 250, "a", "b"))
        self.insert("x", 250, "a", "b")
        # Unknown ids
        self.insert("y", 450, "ghost", "phantom")
        # Prev hint lower than the new value
        self.insert("z", 350, "e", None)

        self.assertEqual(self.ids(), ["a", "y", "b", "z", "c", "x", "d", "e"])

    def test_find_insert_position(self):
        self.assertEqual(self.sorted_troves.find_insert_position(WETH, 100), (None, None))

        self.insert("a", 300)
        self.insert("b", 100)
        self.assertEqual(self.sorted_troves.find_insert_position(WETH, 400), (None, "a"))
        self.assertEqual(self.sorted_troves.find_insert_position(WETH, 200), ("a", "b"))
        self.assertEqual(self.sorted_troves.find_insert_position(WETH, 50), ("b", None))

    def test_remove_relinks_neighbours(self):
        for trove_id, nicr in (("a", 300), ("b", 200), ("c", 100)):
            self.insert(trove_id, nicr)

        self.sorted_troves.remove(self.gateway, WETH, "b")
        self.assertEqual(self.ids(), ["a", "c"])
        self.assertEqual(self.sorted_troves.get_next(WETH, "a"), "c")

        self.sorted_troves.remove(self.gateway, WETH, "a")
        self.sorted_troves.remove(self.gateway, WETH, "c")
        self.assertTrue(self.sorted_troves.is_empty(WETH))
        self.assertIsNone(self.sorted_troves.get_first(WETH))
        self.assertIsNone(self.sorted_troves.get_last(WETH))

        with self.assertRaises(NodeNotFound):
            self.sorted_troves.remove(self.gateway, WETH, "a")

    def test_re_insert_moves_node(self):
        for trove_id, nicr in (("a", 300), ("b", 200), ("c", 100)):
            self.insert(trove_id, nicr)

        self.sorted_troves.re_insert(self.gateway, WETH, "c", 400)
        self.assertEqual(self.ids(), ["c", "a", "b"])
        self.assertEqual(self.sorted_troves.get_nicr(WETH, "c"), 400)

        with self.assertRaises(NodeNotFound):
            self.sorted_troves.re_insert(self.gateway, WETH, "ghost", 400)

    def test_re_insert_with_invalid_nicr_keeps_node(self):
        self.insert("a", 300)
        with self.assertRaises(InvalidAmount):
            self.sorted_troves.re_insert(self.gateway, WETH, "a", 0)
        self.assertEqual(self.sorted_troves.get_nicr(WETH, "a"), 300)

    def test_rejects_duplicates_and_zero_nicr(self):
        self.insert("a", 300)
        with self.assertRaises(NodeAlreadyExists):
            self.insert("a", 200)
        with self.assertRaises(InvalidAmount):
            self.insert("b", 0)
        self.assertEqual(self.sorted_troves.get_size(WETH), 1)

    def test_list_full(self):
        self.sorted_troves.set_max_size(ADMIN, WETH, 2)
        self.insert("a", 300)
        self.insert("b", 200)
        self.assertTrue(self.sorted_troves.is_full(WETH))

        with self.assertRaises(ListFull):
            self.insert("c", 100)
        self.assertEqual(self.sorted_troves.get_size(WETH), 2)
        self.assertFalse(self.sorted_troves.contains(WETH, "c"))

    def test_max_size_cannot_drop_below_size(self):
        self.insert("a", 300)
        self.insert("b", 200)
        with self.assertRaises(InvalidAmount):
            self.sorted_troves.set_max_size(ADMIN, WETH, 1)
        with self.assertRaises(Unauthorized):
            self.sorted_troves.set_max_size(self.alice, WETH, 10)
        self.assertEqual(self.sorted_troves.get_max_size(WETH), 10_000)

    def test_only_protocol_components_can_mutate(self):
        with self.assertRaises(Unauthorized):
            self.sorted_troves.insert(self.alice, WETH, "a", 300)
        self.insert("a", 300)
        with self.assertRaises(Unauthorized):
            self.sorted_troves.remove(self.alice, WETH, "a")
        with self.assertRaises(Unauthorized):
            self.sorted_troves.re_insert(self.alice, WETH, "a", 100)
        self.assertEqual(self.ids(), ["a"])

    def test_trove_manager_may_mutate(self):
        self.sorted_troves.insert(self.trove_manager.address, WETH, "a", 300)
        self.sorted_troves.remove(self.trove_manager.address, WETH, "a")
        self.assertTrue(self.sorted_troves.is_empty(WETH))


if __name__ == '__main__':
    unittest.main()
