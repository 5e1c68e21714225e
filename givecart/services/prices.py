# givecart/services/prices.py
"""
Vendor price prefetch guarded by a circuit breaker.

Items are fetched in fixed-size batches. Within a batch lookups run in
parallel and are joined; across batches the job is sequential with a fixed
pause. Item failures are counted toward the breaker and never raised to the
caller. Once the breaker opens, remaining batches are skipped without any
vendor call until the cooldown elapses (closed again, no half-open trial).
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import requests

from givecart.errors import VendorUnavailableError

log = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"


# ----------------------------
# Circuit breaker
# ----------------------------
class CircuitBreaker:
    """
    Consecutive-failure breaker with a time-bounded open state.

    The clock is injected so tests can move time without sleeping. The reset
    deadline is checked lazily on ``allow()``/``state``.
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = int(threshold)
        self.cooldown = float(cooldown)
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._reset_at: Optional[float] = None

    def _maybe_reset(self) -> None:
        if self._reset_at is not None and self._clock() >= self._reset_at:
            log.info("prices: breaker cooldown elapsed; closing")
            self._failures = 0
            self._reset_at = None

    @property
    def state(self) -> str:
        with self._lock:
            self._maybe_reset()
            return OPEN if self._reset_at is not None else CLOSED

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            self._maybe_reset()
            return self._failures

    def allow(self) -> bool:
        return self.state == CLOSED

    def record_success(self) -> None:
        with self._lock:
            if self._reset_at is None:
                self._failures = 0

    def record_failures(self, n: int = 1) -> None:
        if n <= 0:
            return
        with self._lock:
            self._maybe_reset()
            if self._reset_at is not None:
                return
            self._failures += n
            if self._failures >= self.threshold:
                self._open()

    def trip(self) -> None:
        with self._lock:
            self._open()

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._reset_at = None

    def _open(self) -> None:
        self._reset_at = self._clock() + self.cooldown
        log.warning(
            "prices: breaker open after %s failures; retry in %.0fs",
            self._failures,
            self.cooldown,
        )


# ----------------------------
# Cache + keys
# ----------------------------
def variant_key(option_ids: Iterable[Any]) -> str:
    """Sorted (numbers numerically), hyphen-joined option ids: [30, 2, 7] -> "2-7-30"."""

    def _sort_key(v: Any) -> Tuple[int, Any]:
        s = str(v).strip()
        try:
            return (0, int(s))
        except ValueError:
            return (1, s)

    ids = [str(v).strip() for v in option_ids if v is not None and str(v).strip()]
    return "-".join(sorted(ids, key=_sort_key))


class PriceCache:
    """In-process variant_key -> price_cents map. Best effort, never persisted."""

    def __init__(self, initial: Optional[Mapping[str, int]] = None) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, int] = dict(initial or {})

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, cents: int) -> None:
        with self._lock:
            self._data[key] = int(cents)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# ----------------------------
# Items + vendor client
# ----------------------------
@dataclass(frozen=True)
class PriceItem:
    product_id: Any
    vendor_product_id: Any
    option_ids: Tuple[Any, ...] = ()

    @property
    def key(self) -> str:
        return variant_key(self.option_ids)

    @classmethod
    def from_product(cls, row: Mapping[str, Any]) -> "PriceItem":
        """
        Build from a catalog row whose ``pricing_data`` is
        ``[options, combinations]``; the first combination is priced.
        Unusable pricing data yields an item with no option ids.
        """
        pricing = row.get("pricing_data")
        option_ids: Sequence[Any] = ()
        if isinstance(pricing, list) and len(pricing) >= 2 and pricing[0] and pricing[1]:
            first = pricing[1][0] if isinstance(pricing[1], list) else None
            if isinstance(first, dict):
                option_ids = first.get("options") or ()
        return cls(
            product_id=row.get("id"),
            vendor_product_id=row.get("vendor_product_id"),
            option_ids=tuple(option_ids),
        )


class VendorPriceClient:
    """Price-by-key lookup against the print vendor's pricing endpoint."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        store_code: int = 9,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.token = token
        self.store_code = store_code
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "VendorPriceClient":
        return cls(
            str(cfg.get("VENDOR_PRICE_URL") or ""),
            token=cfg.get("VENDOR_API_TOKEN") or None,
            store_code=int(cfg.get("VENDOR_STORE_CODE") or 9),
            timeout=float(cfg.get("VENDOR_TIMEOUT_SECONDS") or 8.0),
        )

    def __call__(self, item: PriceItem) -> int:
        if not self.url:
            raise VendorUnavailableError("vendor price url not configured")
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = self.session.post(
                self.url,
                json={
                    "productId": item.vendor_product_id,
                    "storeCode": self.store_code,
                    "variantKey": item.key,
                    "method": "PRICEBYKEY",
                },
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise VendorUnavailableError(
                f"price lookup failed: {e}", context={"product_id": item.product_id}
            ) from e

        cents = _price_cents(data)
        if cents is None:
            raise VendorUnavailableError(
                "vendor returned no price", context={"product_id": item.product_id}
            )
        return cents


def _price_cents(data: Any) -> Optional[int]:
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    raw = data[0].get("price")
    if raw in (None, "", 0, "0"):
        return None
    try:
        d = Decimal(str(raw))
    except InvalidOperation:
        return None
    if not d.is_finite() or d <= 0:
        return None
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ----------------------------
# Prefetcher
# ----------------------------
@dataclass
class PrefetchResult:
    success: int = 0
    failed: int = 0
    cached: int = 0
    skipped: int = 0
    batches: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "success": self.success,
            "failed": self.failed,
            "cached": self.cached,
            "skipped": self.skipped,
            "batches": self.batches,
        }


@dataclass
class _BatchOutcome:
    success: int = 0
    failed: int = 0
    cached: int = 0
    vendor_failures: int = 0


class PricePrefetcher:
    def __init__(
        self,
        fetch_price: Callable[[PriceItem], int],
        breaker: CircuitBreaker,
        cache: Optional[PriceCache] = None,
        *,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: Optional[int] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.fetch_price = fetch_price
        self.breaker = breaker
        self.cache = cache if cache is not None else PriceCache()
        self.batch_size = int(batch_size)
        self.batch_delay = float(batch_delay)
        self._sleep = sleep
        self.max_workers = max_workers or self.batch_size

    def run(self, items: Sequence[PriceItem]) -> PrefetchResult:
        items = list(items)
        result = PrefetchResult()
        batches = [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]
        log.info("prices: prefetch start items=%s batches=%s", len(items), len(batches))

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="price") as pool:
            for idx, batch in enumerate(batches):
                if not self.breaker.allow():
                    remaining = sum(len(b) for b in batches[idx:])
                    result.skipped += remaining
                    log.warning("prices: breaker open; skipping %s items", remaining)
                    break

                outcome = self._run_batch(pool, batch)
                result.batches += 1
                result.success += outcome.success
                result.failed += outcome.failed
                result.cached += outcome.cached

                if outcome.vendor_failures:
                    self.breaker.record_failures(outcome.vendor_failures)
                else:
                    self.breaker.record_success()

                if idx + 1 < len(batches) and self.breaker.allow() and self.batch_delay > 0:
                    self._sleep(self.batch_delay)

        log.info("prices: prefetch done %s", result.as_dict())
        return result

    def _run_batch(self, pool: ThreadPoolExecutor, batch: Sequence[PriceItem]) -> _BatchOutcome:
        outcome = _BatchOutcome()
        pending = []
        for item in batch:
            key = item.key
            if not key:
                outcome.failed += 1
                log.warning("prices: product %s has no priceable variant", item.product_id)
                continue
            if key in self.cache:
                outcome.cached += 1
                continue
            pending.append((item, key, pool.submit(self.fetch_price, item)))

        for item, key, fut in pending:
            try:
                cents = fut.result()
            except Exception as e:
                outcome.failed += 1
                outcome.vendor_failures += 1
                log.warning("prices: lookup failed product=%s key=%s: %s", item.product_id, key, e)
                continue
            self.cache.set(key, cents)
            outcome.success += 1

        return outcome
