"""Fan a text query out to the local store and, when needed, the external geocoders."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .models import Place
from .providers import GeocodingProvider

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    local: List[Place]
    by_provider: Dict[str, List[Place]] = field(default_factory=dict)
    providers_skipped: bool = False

    def provider_lists(self) -> List[List[Place]]:
        # dicts keep insertion order, which is the configured provider order
        return list(self.by_provider.values())


def query_local(
    store,
    query: str,
    user_location: Optional[Tuple[float, float]],
    limit: int,
) -> List[Place]:
    if user_location is not None:
        lat, lon = user_location
        return store.search_with_proximity(
            query, lat, lon, radius_km=config.LOCAL_SEARCH_RADIUS_KM, limit=limit
        )
    return store.search(query, limit)


def fan_out(
    providers: Sequence[GeocodingProvider],
    query: str,
    limit: int,
    timeout: Optional[float],
) -> Dict[str, List[Place]]:
    """Run every provider's forward search concurrently.

    A branch that raises or has not returned when ``timeout`` elapses
    contributes an empty list; the call never waits longer than ``timeout``.
    """
    results: Dict[str, List[Place]] = {p.name: [] for p in providers}
    if not providers:
        return results

    executor = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="geocoder")
    futures: Dict[Future, str] = {}
    try:
        for provider in providers:
            futures[executor.submit(provider.forward_search, query, limit)] = provider.name
        done, pending = wait(list(futures), timeout=timeout)
        for future in pending:
            future.cancel()
            logger.warning("%s forward search timed out after %ss", futures[future], timeout)
        for future in done:
            name = futures[future]
            try:
                results[name] = list(future.result() or [])
            except Exception as exc:
                logger.warning("%s forward search failed: %s", name, exc)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return results


def aggregate(
    query: str,
    store,
    providers: Sequence[GeocodingProvider],
    user_location: Optional[Tuple[float, float]] = None,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    timeout: Optional[float] = None,
) -> AggregateResult:
    """Collect raw candidates; local store errors propagate to the caller."""
    local = query_local(store, query, user_location, limit)
    if len(local) >= config.LOCAL_COVERAGE_THRESHOLD:
        logger.info("Local store covered %r with %s results; skipping providers", query, len(local))
        return AggregateResult(local=local, providers_skipped=True)

    wait_for = config.AGGREGATE_TIMEOUT_SECONDS if timeout is None else timeout
    by_provider = fan_out(providers, query, limit, wait_for)
    logger.info(
        "Aggregated %r: local=%s %s",
        query,
        len(local),
        " ".join(f"{name}={len(items)}" for name, items in by_provider.items()),
    )
    return AggregateResult(local=local, by_provider=by_provider)
