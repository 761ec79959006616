"""
Sorted Troves Model for the USDF CDP engine.

This module simulates the SortedTroves contract: for each collateral asset, a
doubly linked list of trove owners ordered by nominal individual
collateralization ratio (NICR), highest at the head and lowest at the tail.
Liquidations walk the list from the tail.

Nodes live in a per-asset dictionary keyed by owner address, so every
neighbour lookup is a dictionary access. Callers pass position hints
(prev_id, next_id) computed off-line; a hint that no longer brackets the new
value falls back to a scan from whichever end of the list is closer in NICR.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from access_control import Role
from execution_context import atomic
from protocol_config import DEFAULT_CONFIG
from protocol_errors import InvalidAmount, ListFull, NodeAlreadyExists, NodeNotFound

logger = logging.getLogger(__name__)


@dataclass
class Node:
    prev_id: Optional[str]
    next_id: Optional[str]
    nicr: int


@dataclass
class SortedList:
    """State of the list for one asset."""
    max_size: int
    head: Optional[str] = None  # Largest NICR
    tail: Optional[str] = None  # Smallest NICR
    size: int = 0
    nodes: Dict[str, Node] = field(default_factory=dict)


class SortedTroves:
    """
    Simulates the SortedTroves contract for every collateral asset.
    """

    _STATE_FIELDS = ("lists",)

    def __init__(self, access_control, context, config=DEFAULT_CONFIG):
        self.access_control = access_control
        self.context = context
        self.DEFAULT_MAX_SIZE = config.default_max_sorted_size

        self.lists = {}  # asset -> SortedList

        context.track(self)

    # --- Mutations ---

    @atomic
    def set_max_size(self, caller, asset, max_size):
        self.access_control.require(caller, Role.ADMIN)
        data = self._list(asset)
        if max_size <= 0 or max_size < data.size:
            raise InvalidAmount(f"Max size {max_size} is below the current size {data.size}")
        data.max_size = max_size

    @atomic
    def insert(self, caller, asset, trove_id, nicr, prev_id=None, next_id=None):
        """
        Adds a node at the position its NICR dictates.

        Args:
            caller: BorrowerOperations or TroveManager
            asset: Collateral asset of the list
            trove_id: Owner address of the trove
            nicr: Nominal ICR, the ordering key
            prev_id: Hint for the node that should precede the new one
            next_id: Hint for the node that should follow the new one

        Raises:
            ListFull: If the list reached its maximum size
            NodeAlreadyExists: If the trove is already listed
            InvalidAmount: If nicr is not positive
        """
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        self._insert(self._list(asset), trove_id, nicr, prev_id, next_id)

    @atomic
    def remove(self, caller, asset, trove_id):
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        self._remove(self._list(asset), trove_id)

    @atomic
    def re_insert(self, caller, asset, trove_id, new_nicr, prev_id=None, next_id=None):
        """Moves a node after its NICR changed."""
        self.access_control.require(caller, Role.POSITION_GATEWAY, Role.LEDGER)
        data = self._list(asset)
        if trove_id not in data.nodes:
            raise NodeNotFound(f"{trove_id} is not in the {asset} list")
        if new_nicr <= 0:
            raise InvalidAmount("NICR must be positive")
        self._remove(data, trove_id)
        self._insert(data, trove_id, new_nicr, prev_id, next_id)

    # --- Views ---

    def contains(self, asset, trove_id):
        data = self.lists.get(asset)
        return data is not None and trove_id in data.nodes

    def is_empty(self, asset):
        return self.get_size(asset) == 0

    def is_full(self, asset):
        data = self._list(asset)
        return data.size >= data.max_size

    def get_size(self, asset):
        data = self.lists.get(asset)
        return data.size if data else 0

    def get_max_size(self, asset):
        return self._list(asset).max_size

    def get_first(self, asset):
        data = self.lists.get(asset)
        return data.head if data else None

    def get_last(self, asset):
        data = self.lists.get(asset)
        return data.tail if data else None

    def get_next(self, asset, trove_id):
        return self._node(asset, trove_id).next_id

    def get_prev(self, asset, trove_id):
        return self._node(asset, trove_id).prev_id

    def get_nicr(self, asset, trove_id):
        return self._node(asset, trove_id).nicr

    def iter_troves(self, asset):
        """Yields (trove_id, nicr) from head to tail."""
        data = self.lists.get(asset)
        if data is None:
            return
        current = data.head
        while current is not None:
            node = data.nodes[current]
            yield current, node.nicr
            current = node.next_id

    def valid_insert_position(self, asset, nicr, prev_id, next_id):
        return self._valid_insert_position(self._list(asset), nicr, prev_id, next_id)

    def find_insert_position(self, asset, nicr, prev_id=None, next_id=None):
        """Returns the (prev_id, next_id) pair a node with this NICR belongs between."""
        return self._find_insert_position(self._list(asset), nicr, prev_id, next_id)

    # --- Internal helpers ---

    def _list(self, asset):
        data = self.lists.get(asset)
        if data is None:
            data = SortedList(max_size=self.DEFAULT_MAX_SIZE)
            self.lists[asset] = data
        return data

    def _node(self, asset, trove_id):
        data = self.lists.get(asset)
        if data is None or trove_id not in data.nodes:
            raise NodeNotFound(f"{trove_id} is not in the {asset} list")
        return data.nodes[trove_id]

    def _insert(self, data, trove_id, nicr, prev_id, next_id):
        if data.size >= data.max_size:
            raise ListFull(f"List is full ({data.max_size} nodes)")
        if trove_id in data.nodes:
            raise NodeAlreadyExists(f"{trove_id} is already listed")
        if nicr <= 0:
            raise InvalidAmount("NICR must be positive")

        if not self._valid_insert_position(data, nicr, prev_id, next_id):
            prev_id, next_id = self._find_insert_position(data, nicr, prev_id, next_id)

        data.nodes[trove_id] = Node(prev_id=prev_id, next_id=next_id, nicr=nicr)
        if prev_id is None:
            data.head = trove_id
        else:
            data.nodes[prev_id].next_id = trove_id
        if next_id is None:
            data.tail = trove_id
        else:
            data.nodes[next_id].prev_id = trove_id
        data.size += 1

    def _remove(self, data, trove_id):
        node = data.nodes.pop(trove_id, None)
        if node is None:
            raise NodeNotFound(f"{trove_id} is not listed")
        if node.prev_id is None:
            data.head = node.next_id
        else:
            data.nodes[node.prev_id].next_id = node.next_id
        if node.next_id is None:
            data.tail = node.prev_id
        else:
            data.nodes[node.next_id].prev_id = node.prev_id
        data.size -= 1

    @staticmethod
    def _valid_insert_position(data, nicr, prev_id, next_id):
        nodes = data.nodes
        if prev_id is None and next_id is None:
            return data.size == 0
        if prev_id is None:
            return next_id in nodes and data.head == next_id and nicr >= nodes[next_id].nicr
        if next_id is None:
            return prev_id in nodes and data.tail == prev_id and nicr <= nodes[prev_id].nicr
        return (prev_id in nodes and next_id in nodes
                and nodes[prev_id].next_id == next_id
                and nodes[prev_id].nicr >= nicr >= nodes[next_id].nicr)

    def _find_insert_position(self, data, nicr, prev_id, next_id):
        nodes = data.nodes
        if prev_id is not None and (prev_id not in nodes or nicr > nodes[prev_id].nicr):
            prev_id = None
        if next_id is not None and (next_id not in nodes or nicr < nodes[next_id].nicr):
            next_id = None

        if prev_id is not None:
            return self._descend(data, nicr, prev_id)
        if next_id is not None:
            return self._ascend(data, nicr, next_id)
        if data.size == 0:
            return None, None

        # No usable hint: start from the end closer in NICR
        head_distance = abs(nodes[data.head].nicr - nicr)
        tail_distance = abs(nicr - nodes[data.tail].nicr)
        if head_distance <= tail_distance:
            return self._descend(data, nicr, data.head)
        return self._ascend(data, nicr, data.tail)

    def _descend(self, data, nicr, start_id):
        """Walks towards the tail from start_id until the position is found."""
        nodes = data.nodes
        if start_id == data.head and nicr >= nodes[start_id].nicr:
            return None, start_id
        prev_id, next_id = start_id, nodes[start_id].next_id
        while prev_id is not None and not self._valid_insert_position(data, nicr, prev_id, next_id):
            prev_id = next_id
            next_id = nodes[next_id].next_id if next_id is not None else None
        return prev_id, next_id

    def _ascend(self, data, nicr, start_id):
        """Walks towards the head from start_id until the position is found."""
        nodes = data.nodes
        if start_id == data.tail and nicr <= nodes[start_id].nicr:
            return start_id, None
        prev_id, next_id = nodes[start_id].prev_id, start_id
        while next_id is not None and not self._valid_insert_position(data, nicr, prev_id, next_id):
            next_id = prev_id
            prev_id = nodes[prev_id].prev_id if prev_id is not None else None
        return prev_id, next_id
