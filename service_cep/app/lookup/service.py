"""
Cache-aside CEP lookup.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from shared.errors import CacheReadError, CepNotFoundError, CepServiceException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .models import CepStore, DirectoryProvider, PostalRecord
from .normalize import format_cep, normalize_cep


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LookupService:
    """Resolves CEPs from the cache table, falling back to the directory.

    ``cache_ttl`` governs staleness; a zero or negative TTL disables
    expiry so any cached row is served. ``clock`` supplies the current
    time for staleness checks and write-back timestamps.
    """

    def __init__(
        self,
        store: CepStore,
        provider: DirectoryProvider,
        cache_ttl: Union[timedelta, float, None] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.provider = provider
        if cache_ttl is None:
            cache_ttl = timedelta(0)
        elif not isinstance(cache_ttl, timedelta):
            cache_ttl = timedelta(seconds=cache_ttl)
        self.cache_ttl = cache_ttl
        self.clock = clock or utc_now
        self.metrics = metrics
        self.logger = get_logger("cep.lookup")

    async def get(self, raw_cep: str, timeout: Optional[float] = None) -> PostalRecord:
        """Resolve ``raw_cep`` into an address record.

        Raises InvalidCepError before any I/O when the input does not hold
        exactly 8 digits. With ``timeout`` set, the whole lookup runs under
        that deadline and ``asyncio.TimeoutError`` escapes from whichever
        step was in flight.
        """
        cep = normalize_cep(raw_cep)
        if timeout is None:
            return await self._resolve(cep)
        return await asyncio.wait_for(self._resolve(cep), timeout)

    async def ping(self, timeout: Optional[float] = None) -> None:
        """Check that the cache store answers. The directory is not probed."""
        if timeout is None:
            await self.store.ping()
            return
        await asyncio.wait_for(self.store.ping(), timeout)

    async def _resolve(self, cep: str) -> PostalRecord:
        cached = await self._load_from_cache(cep)
        if cached is not None:
            return cached

        fresh = await self._fetch_from_provider(cep)
        await self._save_to_cache(cep, fresh)
        return fresh

    async def _load_from_cache(self, cep: str) -> Optional[PostalRecord]:
        try:
            entry = await self.store.read(cep)
        except Exception as e:
            error = str(e) or type(e).__name__
            self.logger.error("Cache read failed", cep=cep, error=error)
            raise CacheReadError(details={"cep": cep, "error": error}) from e

        if entry is None:
            self._count("cep_cache_lookups_total", result="miss")
            return None

        if self._is_stale(entry.updated_at):
            self.logger.debug("Cached cep is stale", cep=cep, updated_at=entry.updated_at.isoformat())
            self._count("cep_cache_lookups_total", result="stale")
            return None

        try:
            record = PostalRecord.from_payload(entry.payload)
        except ValueError as e:
            self.logger.error("Cached payload is unreadable", cep=cep, error=str(e))
            raise CacheReadError("decode cached payload failed", details={"cep": cep, "error": str(e)}) from e

        self._count("cep_cache_lookups_total", result="hit")
        return record

    def _is_stale(self, updated_at: datetime) -> bool:
        if self.cache_ttl <= timedelta(0):
            return False
        return as_utc(self.clock()) - as_utc(updated_at) > self.cache_ttl

    async def _fetch_from_provider(self, cep: str) -> PostalRecord:
        try:
            if self.metrics is not None:
                with self.metrics.time_operation("cep_provider_request_duration_seconds"):
                    record = await self.provider.fetch(cep)
            else:
                record = await self.provider.fetch(cep)
        except CepNotFoundError:
            self._count("cep_provider_requests_total", outcome="not_found")
            raise
        except CepServiceException as e:
            self._count("cep_provider_requests_total", outcome="error")
            self.logger.warning("Directory lookup failed", cep=cep, code=e.code, error=e.message)
            raise

        # ViaCEP may answer 200 with {"erro": true} instead of a 404
        if record.not_found:
            self._count("cep_provider_requests_total", outcome="not_found")
            raise CepNotFoundError(details={"cep": cep})

        if not record.cep:
            record.cep = format_cep(cep)

        self._count("cep_provider_requests_total", outcome="ok")
        return record

    async def _save_to_cache(self, cep: str, record: PostalRecord) -> None:
        try:
            await self.store.upsert(cep, record.to_payload(), as_utc(self.clock()))
        except Exception as e:
            self.logger.warning("Failed to persist cep cache", cep=cep, error=str(e) or type(e).__name__)
            self._count("cep_cache_write_failures_total")

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)
