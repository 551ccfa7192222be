"""Price lookup collaborators.

Provides:
- ``PriceProvider``: the protocol the snapshot tracker depends on
- ``DexScreenerPriceProvider``: HTTP client for the DexScreener token endpoint
- ``CachedPriceProvider``: Redis read-through cache wrapping another provider
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import aiohttp
from redis.asyncio import Redis

from memecoin_lifecycle_tracker.errors import TransientUpstreamError
from memecoin_lifecycle_tracker.ingestor.models import PriceQuote, _to_decimal

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BASE_URL = "https://api.dexscreener.com"
DEFAULT_CHAIN_ID = "solana"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 5.0
DEFAULT_CACHE_TTL_SECONDS = 60
DEFAULT_REDIS_KEY_PREFIX = "lifecycle:price:"


class PriceProvider(Protocol):
    """Collaborator interface for current token prices.

    ``None`` means the price is unavailable this cycle and is never an error.
    Implementations may raise ``TransientUpstreamError`` when the source is down.
    """

    async def get_current_price(self, token_address: str) -> PriceQuote | None: ...


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class DexScreenerPriceProvider:
    """Fetches the current USD price of a token from DexScreener.

    The first pair returned for the configured chain is used. Market cap falls
    back from ``marketCap`` to ``fdv`` and to zero when neither is present.

    Example:
        ```python
        provider = DexScreenerPriceProvider()
        quote = await provider.get_current_price("So11111111111111111111111111111111111111112")
        await provider.close()
        ```
    """

    source = "dexscreener"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        chain_id: str = DEFAULT_CHAIN_ID,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._chain_id = chain_id
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        session = self._session
        self._session = None
        if self._owns_session and session is not None and not session.closed:
            await session.close()

    async def get_current_price(self, token_address: str) -> PriceQuote | None:
        url = f"{self._base_url}/latest/dex/tokens/{token_address}"
        await self._rate_limiter.acquire()
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status == 404:
                    return None
                if response.status == 429 or response.status >= 500:
                    raise TransientUpstreamError(self.source, f"HTTP {response.status} for {token_address}")
                if response.status >= 400:
                    logger.info("DexScreener returned HTTP %d for %s", response.status, token_address)
                    return None
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientUpstreamError(self.source, str(e) or type(e).__name__) from e

        return self._parse_quote(payload, token_address)

    def _parse_quote(self, payload: Any, token_address: str) -> PriceQuote | None:
        if not isinstance(payload, dict):
            return None
        pairs = [p for p in payload.get("pairs") or [] if p.get("chainId") == self._chain_id]
        if not pairs:
            logger.debug("No price data for %s", token_address)
            return None
        pair = pairs[0]
        price = _to_decimal(pair.get("priceUsd"))
        if price <= 0:
            return None
        market_cap = _to_decimal(pair.get("marketCap"), default=_to_decimal(pair.get("fdv")))
        return PriceQuote(price=price, market_cap=market_cap, source=self.source)


class CachedPriceProvider:
    """Redis read-through cache in front of another price provider.

    Cache failures degrade to a direct lookup; they never fail the caller.
    """

    def __init__(
        self,
        inner: PriceProvider,
        redis: Redis,
        *,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        self._inner = inner
        self._redis = redis
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    def _cache_key(self, token_address: str) -> str:
        return f"{self._key_prefix}{token_address}"

    async def get_current_price(self, token_address: str) -> PriceQuote | None:
        key = self._cache_key(token_address)
        try:
            cached = await self._redis.get(key)
        except Exception as e:
            logger.warning("Price cache get failed: %s", e)
            cached = None
        if cached is not None:
            raw = cached.decode() if isinstance(cached, bytes) else str(cached)
            return PriceQuote.from_dict(json.loads(raw))

        quote = await self._inner.get_current_price(token_address)
        if quote is None:
            return None
        try:
            await self._redis.set(key, json.dumps(quote.to_dict()), ex=self._ttl)
        except Exception as e:
            logger.warning("Price cache set failed: %s", e)
        return quote

    async def close(self) -> None:
        close = getattr(self._inner, "close", None)
        if close is not None:
            await close()
