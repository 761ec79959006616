"""
Price Oracle Model for the USDF CDP engine.

This module simulates the PriceOracle contract which turns raw aggregator
answers into 18-decimal prices the rest of the protocol can trust.

Every read goes through the same checks:
1. The feed must answer (a feed that raises is treated as a bad read)
2. The answer must be positive
3. The answer must be fresh: now - updated_at <= heartbeat
4. The answer must not move more than 50% away from the last good price

A read that fails any check is discarded and the last good price is served
instead, flagged as invalid. Callers that change debt positions use
`get_validated_price`, which refuses to serve a degraded price at all.

Within one top-level operation the first lookup for an asset is remembered,
so every later lookup in the same operation sees the same price and no
further feed query is made.
"""

import logging
from dataclasses import dataclass, replace

from access_control import Role
from execution_context import atomic, call_scoped
from protocol_config import DEFAULT_CONFIG
from protocol_errors import (
    FeedUnavailable, InvalidFeed, InvalidHeartbeat, InvalidPrice,
    OracleAlreadyRegistered, OracleFrozen, OracleNotRegistered,
)
from protocol_events import OracleFrozen as OracleFrozenEvent
from protocol_events import OracleRegistered, OracleUnfrozen, OracleUpdated

logger = logging.getLogger(__name__)


@dataclass
class OracleConfig:
    """Per-asset oracle settings and the last accepted reading."""
    asset: str
    feed: object
    heartbeat: int           # Maximum accepted age of an answer, in seconds
    decimals: int            # Decimals of the feed's raw answer
    last_good_price: int = 0  # 18 decimals
    last_good_timestamp: int = 0
    frozen: bool = False
    freeze_reason: str = ""


@dataclass(frozen=True)
class PriceResponse:
    price: int
    is_valid: bool
    is_cached: bool
    timestamp: int


class PriceOracle:
    """
    Simulates the PriceOracle contract: registered feeds, staleness and
    deviation checks, freezing, and a per-operation price cache.
    """

    _STATE_FIELDS = ("oracles",)

    def __init__(self, access_control, context, events, config=DEFAULT_CONFIG):
        self.access_control = access_control
        self.context = context
        self.events = events

        self.DECIMAL_PRECISION = config.decimal_precision
        self.MAX_PRICE_DEVIATION = config.max_price_deviation
        self.TARGET_DECIMALS = config.target_price_decimals

        self.oracles = {}  # asset -> OracleConfig

        # Prices seen during the running operation
        self._cache_call_id = None
        self._price_cache = {}

        context.track(self)

    # --- Administration ---

    @atomic
    def register_oracle(self, caller, asset, feed, heartbeat):
        """
        Registers the price feed for a collateral asset.

        The feed is read once on registration; a valid answer becomes the
        first last good price.

        Args:
            caller: Must hold the ADMIN role
            asset: Collateral asset symbol
            feed: Object answering `latest_round_data()` and `decimals()`
            heartbeat: Maximum age of an accepted answer, in seconds

        Raises:
            InvalidFeed: If feed is None
            InvalidHeartbeat: If heartbeat is not positive
            OracleAlreadyRegistered: If the asset already has an oracle
        """
        self.access_control.require(caller, Role.ADMIN)
        self._validate_feed(feed, heartbeat)
        if asset in self.oracles:
            raise OracleAlreadyRegistered(f"Oracle for {asset} already registered")

        config = OracleConfig(asset=asset, feed=feed, heartbeat=heartbeat, decimals=feed.decimals())
        self.oracles[asset] = config
        self._seed_last_good_price(config)

        self.events.emit(OracleRegistered(asset, feed, heartbeat))
        logger.info("Registered oracle for %s (heartbeat %ss, last good price %s)",
                    asset, heartbeat, config.last_good_price)

    @atomic
    def update_oracle(self, caller, asset, feed, heartbeat):
        """Replaces the feed and heartbeat of a registered asset."""
        self.access_control.require(caller, Role.ADMIN)
        self._validate_feed(feed, heartbeat)
        config = self._require_oracle(asset)

        config.feed = feed
        config.heartbeat = heartbeat
        config.decimals = feed.decimals()
        self._price_cache.pop(asset, None)
        if config.last_good_price == 0:
            self._seed_last_good_price(config)

        self.events.emit(OracleUpdated(asset, feed, heartbeat))
        logger.info("Updated oracle for %s (heartbeat %ss)", asset, heartbeat)

    @atomic
    def freeze_oracle(self, caller, asset, reason=""):
        self.access_control.require(caller, Role.ADMIN)
        config = self._require_oracle(asset)
        config.frozen = True
        config.freeze_reason = reason
        self.events.emit(OracleFrozenEvent(asset, reason))
        logger.warning("Oracle for %s frozen: %s", asset, reason or "no reason given")

    @atomic
    def unfreeze_oracle(self, caller, asset):
        self.access_control.require(caller, Role.ADMIN)
        config = self._require_oracle(asset)
        config.frozen = False
        config.freeze_reason = ""
        self.events.emit(OracleUnfrozen(asset))
        logger.info("Oracle for %s unfrozen", asset)

    # --- Price reads ---

    @call_scoped
    def get_price(self, asset):
        """
        Returns the current price of an asset, or the last good price when
        the feed's answer is rejected.

        Raises:
            OracleNotRegistered: If the asset has no oracle
            OracleFrozen: If the oracle is frozen
        """
        config = self._require_live_oracle(asset)
        return self._read(config, commit=True).price

    @call_scoped
    def get_validated_price(self, asset):
        """
        Returns the current price for operations that change debt positions.

        Raises:
            OracleNotRegistered: If the asset has no oracle
            OracleFrozen: If the oracle is frozen
            InvalidPrice: If the feed's answer is rejected
        """
        config = self._require_live_oracle(asset)
        response = self._read(config, commit=True)
        if not response.is_valid or response.price <= 0:
            raise InvalidPrice(f"No valid price for {asset}")
        return response.price

    def get_price_with_status(self, asset):
        """
        Non-raising read for monitoring. Never changes the last good price.

        Returns:
            PriceResponse(price, is_valid, is_cached, timestamp)
        """
        config = self.oracles.get(asset)
        if config is None:
            return PriceResponse(0, False, False, 0)
        if config.frozen:
            return PriceResponse(config.last_good_price, False, False, config.last_good_timestamp)
        return self._read(config, commit=False)

    # --- Views ---

    def has_oracle(self, asset):
        return asset in self.oracles

    def is_frozen(self, asset):
        return self._require_oracle(asset).frozen

    def get_oracle_config(self, asset):
        return replace(self._require_oracle(asset))

    def get_last_good_price(self, asset):
        return self._require_oracle(asset).last_good_price

    def get_registered_assets(self):
        return list(self.oracles)

    def get_time_since_last_update(self, asset):
        config = self._require_oracle(asset)
        return self.context.now() - config.last_good_timestamp

    # --- Internal helpers ---

    @staticmethod
    def _validate_feed(feed, heartbeat):
        if feed is None:
            raise InvalidFeed("Price feed required")
        if heartbeat is None or heartbeat <= 0:
            raise InvalidHeartbeat(f"Heartbeat must be positive, got {heartbeat}")

    def _require_oracle(self, asset):
        config = self.oracles.get(asset)
        if config is None:
            raise OracleNotRegistered(f"No oracle registered for {asset}")
        return config

    def _require_live_oracle(self, asset):
        config = self._require_oracle(asset)
        if config.frozen:
            raise OracleFrozen(f"Oracle for {asset} is frozen: {config.freeze_reason}")
        return config

    def _seed_last_good_price(self, config):
        response = self._query_feed(config)
        if response.is_valid:
            self._accept(config, response)

    def _read(self, config, commit):
        response = self._cached(config.asset)
        if response is None:
            response = self._query_feed(config)
            self._store(config.asset, response)
        if commit and response.is_valid:
            self._accept(config, response)
        return response

    def _cached(self, asset):
        call_id = self.context.call_id
        if call_id is None or call_id != self._cache_call_id:
            return None
        response = self._price_cache.get(asset)
        if response is None:
            return None
        return replace(response, is_cached=True)

    def _store(self, asset, response):
        call_id = self.context.call_id
        if call_id is None:
            return
        if call_id != self._cache_call_id:
            self._cache_call_id = call_id
            self._price_cache = {}
        self._price_cache[asset] = response

    def _accept(self, config, response):
        config.last_good_price = response.price
        config.last_good_timestamp = response.timestamp

    def _query_feed(self, config):
        asset = config.asset
        try:
            round_data = config.feed.latest_round_data()
        except FeedUnavailable as exc:
            logger.warning("Feed for %s unavailable (%s), using last good price", asset, exc)
            return self._fallback(config)

        if round_data.answer <= 0:
            logger.warning("Feed for %s returned non-positive answer %s", asset, round_data.answer)
            return self._fallback(config)

        now = self.context.now()
        if round_data.updated_at > now:
            logger.warning("Feed for %s reports a future timestamp %s", asset, round_data.updated_at)
            return self._fallback(config)
        if now - round_data.updated_at > config.heartbeat:
            logger.warning("Feed for %s is stale (%ss old, heartbeat %ss)",
                           asset, now - round_data.updated_at, config.heartbeat)
            return self._fallback(config)

        price = self._scale_price(round_data.answer, config.decimals)
        if self._deviates(price, config.last_good_price):
            logger.warning("Feed for %s moved from %s to %s, beyond the allowed deviation",
                           asset, config.last_good_price, price)
            return self._fallback(config)

        return PriceResponse(price, True, False, round_data.updated_at)

    @staticmethod
    def _fallback(config):
        return PriceResponse(config.last_good_price, False, False, config.last_good_timestamp)

    def _scale_price(self, answer, decimals):
        if decimals < self.TARGET_DECIMALS:
            return answer * 10 ** (self.TARGET_DECIMALS - decimals)
        if decimals > self.TARGET_DECIMALS:
            return answer // 10 ** (decimals - self.TARGET_DECIMALS)
        return answer

    def _deviates(self, price, last_good_price):
        if last_good_price == 0:
            return False
        # Exactly 50% is still accepted
        return abs(price - last_good_price) * self.DECIMAL_PRECISION > self.MAX_PRICE_DEVIATION * last_good_price
