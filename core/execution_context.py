"""
Execution Context for the USDF CDP engine.

Every state-mutating entry point runs as one atomic unit: the context takes a
snapshot of every tracked component when the outermost call begins and puts it
back if an exception escapes, so a failed operation leaves no trace.

The context also owns the single ReentrancyGuard shared by every user-facing
entry point. Any such call made while another is running (for example from a
token transfer hook) gets ReentrantCall instead of seeing half-updated state.
Role-gated hooks that components call on each other only open a call scope.
"""

import copy
import functools
import logging
import time
from contextlib import contextmanager
from enum import Enum

from protocol_errors import ReentrantCall

logger = logging.getLogger(__name__)


class GuardState(Enum):
    FREE = 0
    LOCKED = 1


class ReentrancyGuard:
    """Two-state lock held for the duration of one entry point."""

    def __init__(self, name):
        self.name = name
        self.state = GuardState.FREE

    @property
    def locked(self):
        return self.state is GuardState.LOCKED

    def __enter__(self):
        if self.state is GuardState.LOCKED:
            raise ReentrantCall(f"Reentrant call into {self.name}")
        self.state = GuardState.LOCKED
        return self

    def __exit__(self, exc_type, exc, tb):
        self.state = GuardState.FREE
        return False


class SharedHandle:
    """
    Base for objects that protocol state refers to but does not own
    (tokens, price feeds). Snapshots keep the reference instead of copying.
    """

    def __deepcopy__(self, memo):
        return self


class ManualClock:
    """Settable clock for simulations and tests."""

    def __init__(self, start=0):
        self.now = int(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self.now += int(seconds)
        return self.now

    def set(self, timestamp):
        if timestamp < self.now:
            raise ValueError("Time cannot move backwards")
        self.now = int(timestamp)
        return self.now


class ExecutionContext:
    """
    Shared call scope for all protocol components.

    Components register themselves with `track`; each must list the attribute
    names that hold its mutable state in `_STATE_FIELDS`.

    Attributes:
        guard: Lock held by the running user-facing operation
        call_id: Identifier of the running top-level operation, None between calls
        depth: Nesting level of the running operation
    """

    def __init__(self, clock=None):
        self._clock = clock or time.time
        self.guard = ReentrancyGuard("protocol")
        self._components = []
        self._snapshot = None
        self._call_counter = 0
        self.call_id = None
        self.depth = 0

    def now(self):
        """Current timestamp in whole seconds."""
        return int(self._clock())

    def track(self, component):
        if not hasattr(component, "_STATE_FIELDS"):
            raise TypeError(f"{type(component).__name__} does not declare _STATE_FIELDS")
        if component not in self._components:
            self._components.append(component)
        return component

    @property
    def in_call(self):
        return self.depth > 0

    @contextmanager
    def transaction(self, snapshot=True):
        """
        Opens a call scope. Only the outermost scope snapshots and restores.

        Args:
            snapshot: False opens a read-only scope that only assigns a call id

        Yields:
            The call id of the enclosing top-level operation
        """
        outermost = self.depth == 0
        if outermost:
            if snapshot:
                self._snapshot = self._take_snapshot()
            self._call_counter += 1
            self.call_id = self._call_counter
        self.depth += 1
        try:
            yield self.call_id
        except Exception:
            if outermost and self._snapshot is not None:
                self._restore_snapshot()
                logger.debug("Call %s reverted", self.call_id)
            raise
        finally:
            self.depth -= 1
            if outermost:
                self._snapshot = None
                self.call_id = None

    def _take_snapshot(self):
        return [
            (component, {name: copy.deepcopy(getattr(component, name))
                         for name in component._STATE_FIELDS})
            for component in self._components
        ]

    def _restore_snapshot(self):
        for component, fields in self._snapshot:
            for name, value in fields.items():
                setattr(component, name, value)


def atomic(method):
    """Runs a method inside the owner's call scope."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.context.transaction():
            return method(self, *args, **kwargs)
    return wrapper


def call_scoped(method):
    """Runs a read inside a call scope without taking a snapshot."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.context.transaction(snapshot=False):
            return method(self, *args, **kwargs)
    return wrapper


def nonreentrant(method):
    """Runs a user-facing method inside the call scope while holding the shared guard."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.context.guard:
            with self.context.transaction():
                return method(self, *args, **kwargs)
    return wrapper
