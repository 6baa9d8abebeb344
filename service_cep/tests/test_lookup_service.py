"""
Unit tests for the cache-aside LookupService.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from prometheus_client import CollectorRegistry

from service_cep.app.adapters.viacep_client import ViaCepClient
from service_cep.app.lookup.models import CacheEntry, PostalRecord
from service_cep.app.lookup.service import LookupService
from shared.errors import (
    CacheReadError,
    CepNotFoundError,
    InvalidCepError,
    ProviderTransportError,
    UpstreamError,
)
from shared.metrics import MetricsCollector

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


class InMemoryStore:
    """Cache store stub that records every call."""

    def __init__(self, entries=None, read_error=None, upsert_error=None, upsert_delay=None):
        self.entries = dict(entries or {})
        self.read_error = read_error
        self.upsert_error = upsert_error
        self.upsert_delay = upsert_delay
        self.reads = []
        self.upserts = []
        self.pings = 0

    async def read(self, key):
        self.reads.append(key)
        if self.read_error:
            raise self.read_error
        return self.entries.get(key)

    async def upsert(self, key, payload, updated_at):
        self.upserts.append((key, payload, updated_at))
        if self.upsert_delay:
            await asyncio.sleep(self.upsert_delay)
        if self.upsert_error:
            raise self.upsert_error
        self.entries[key] = CacheEntry(key=key, payload=payload, updated_at=updated_at)

    async def ping(self):
        self.pings += 1


class StubProvider:
    """Directory provider stub counting fetches."""

    def __init__(self, record=None, error=None, delay=None):
        self.record = record
        self.error = error
        self.delay = delay
        self.calls = []

    async def fetch(self, cep):
        self.calls.append(cep)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.record


def viacep_provider(status_code, body):
    """Real ViaCEP client backed by a mock transport; returns (client, calls)."""
    calls = []

    def handler(request):
        calls.append(request)
        content = body if isinstance(body, str) else json.dumps(body)
        return httpx.Response(status_code, content=content, headers={"Content-Type": "application/json"})

    client = ViaCepClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="https://viacep.test/ws"
    )
    return client, calls


def cached(key, record, updated_at):
    return {key: CacheEntry(key=key, payload=record.to_payload(), updated_at=updated_at)}


class TestLookupService:
    """Test cases for LookupService."""

    @pytest.fixture
    def cached_record(self):
        return PostalRecord(
            cep="12345-678",
            logradouro="Rua Teste",
            bairro="Centro",
            localidade="Cidade",
            uf="ST",
            ibge="0000000",
        )

    @pytest.fixture
    def fresh_record(self):
        return PostalRecord(
            cep="76543-210",
            logradouro="Rua Nova",
            bairro="Bairro",
            localidade="Cidade",
            uf="ST",
            ibge="1234567",
        )

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, cached_record):
        """A fresh cached row is returned without calling the directory."""
        store = InMemoryStore(cached("12345678", cached_record, NOW - timedelta(minutes=5)))
        provider = StubProvider()
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        result = await service.get("12345-678")

        assert result == cached_record
        assert store.reads == ["12345678"]
        assert provider.calls == []
        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_cache_miss_fetches_and_writes_back(self):
        """A miss fetches once from ViaCEP and upserts once."""
        store = InMemoryStore()
        provider, calls = viacep_provider(200, {
            "cep": "76543-210",
            "logradouro": "Rua Nova",
            "bairro": "Bairro",
            "localidade": "Cidade",
            "uf": "ST",
            "ibge": "1234567",
        })
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        result = await service.get("76543-210")

        assert result.cep == "76543-210"
        assert result.logradouro == "Rua Nova"
        assert len(calls) == 1
        assert len(store.upserts) == 1
        key, payload, updated_at = store.upserts[0]
        assert key == "76543210"
        assert updated_at == NOW
        assert PostalRecord.from_payload(payload) == result

    @pytest.mark.asyncio
    async def test_soft_not_found_via_erro_flag(self):
        """ViaCEP's 200 + {"erro": true} answer is a not-found."""
        store = InMemoryStore()
        provider, calls = viacep_provider(200, {"erro": True})
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        with pytest.raises(CepNotFoundError):
            await service.get("00000000")

        assert len(calls) == 1
        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_hard_not_found_status(self):
        store = InMemoryStore()
        provider, calls = viacep_provider(404, "")
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(CepNotFoundError):
            await service.get("99999-999")

        assert len(calls) == 1
        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self, cached_record, fresh_record):
        """Entries older than the TTL are ignored and refreshed."""
        store = InMemoryStore(cached("12345678", cached_record, NOW - timedelta(hours=2)))
        provider = StubProvider(record=fresh_record)
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        result = await service.get("12345678")

        assert result == fresh_record
        assert provider.calls == ["12345678"]
        assert [(key, ts) for key, _, ts in store.upserts] == [("12345678", NOW)]

    @pytest.mark.asyncio
    async def test_ttl_in_seconds_is_accepted(self, cached_record, fresh_record):
        store = InMemoryStore(cached("12345678", cached_record, NOW - timedelta(seconds=61)))
        provider = StubProvider(record=fresh_record)
        service = LookupService(store, provider, cache_ttl=60, clock=fixed_clock)

        await service.get("12345678")

        assert provider.calls == ["12345678"]

    @pytest.mark.asyncio
    async def test_disabled_ttl_serves_any_entry(self, cached_record):
        """A zero TTL turns expiry off."""
        store = InMemoryStore(cached("12345678", cached_record, NOW - timedelta(days=3650)))
        provider = StubProvider()
        service = LookupService(store, provider, cache_ttl=timedelta(0), clock=fixed_clock)

        result = await service.get("12345-678")

        assert result == cached_record
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_treated_as_utc(self, cached_record):
        naive = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
        store = InMemoryStore(cached("12345678", cached_record, naive))
        provider = StubProvider()
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        assert await service.get("12345678") == cached_record
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_record(self, fresh_record):
        """A failed write-back is logged, not surfaced."""
        store = InMemoryStore(upsert_error=RuntimeError("disk full"))
        provider = StubProvider(record=fresh_record)
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        result = await service.get("76543-210")

        assert result == fresh_record
        assert len(store.upserts) == 1

    @pytest.mark.asyncio
    async def test_read_failure_aborts_without_fetch(self):
        """A broken cache is surfaced instead of falling back to the directory."""
        store = InMemoryStore(read_error=ConnectionError("connection reset"))
        provider = StubProvider(record=PostalRecord(cep="12345-678"))
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(CacheReadError) as exc_info:
            await service.get("12345-678")

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_store_write_timeout_still_returns_record(self, fresh_record):
        """A write that times out inside the store is just another write failure."""
        store = InMemoryStore(upsert_error=asyncio.TimeoutError())
        provider = StubProvider(record=fresh_record)
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        result = await service.get("76543-210")

        assert result == fresh_record
        assert len(store.upserts) == 1

    @pytest.mark.asyncio
    async def test_store_read_timeout_is_a_read_error(self):
        """A read that times out inside the store is a cache failure, not a deadline."""
        store = InMemoryStore(read_error=asyncio.TimeoutError())
        provider = StubProvider(record=PostalRecord(cep="12345-678"))
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(CacheReadError) as exc_info:
            await service.get("12345-678")

        assert exc_info.value.details["error"] == "TimeoutError"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unreadable_payload_is_a_read_error(self):
        entry = CacheEntry(key="12345678", payload=b"{not json", updated_at=NOW)
        store = InMemoryStore({"12345678": entry})
        provider = StubProvider(record=PostalRecord(cep="12345-678"))
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock)

        with pytest.raises(CacheReadError):
            await service.get("12345678")

        assert provider.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["12-345", "", "123456789", "abcdefgh"])
    async def test_invalid_input_touches_nothing(self, raw):
        store = InMemoryStore()
        provider = StubProvider()
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(InvalidCepError):
            await service.get(raw)

        assert store.reads == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_empty_cep_is_filled_with_canonical_form(self):
        store = InMemoryStore()
        provider = StubProvider(record=PostalRecord(logradouro="Praça da Sé"))
        service = LookupService(store, provider, clock=fixed_clock)

        result = await service.get("01001000")

        assert result.cep == "01001-000"
        assert PostalRecord.from_payload(store.upserts[0][1]).cep == "01001-000"

    @pytest.mark.asyncio
    async def test_upstream_error_status_propagates(self):
        store = InMemoryStore()
        provider, _ = viacep_provider(503, "unavailable")
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(UpstreamError) as exc_info:
            await service.get("01001000")

        assert exc_info.value.details["status_code"] == 503
        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        store = InMemoryStore()
        provider = StubProvider(error=ProviderTransportError("connection refused"))
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(ProviderTransportError):
            await service.get("01001000")

        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_deadline_aborts_provider_fetch(self):
        store = InMemoryStore()
        provider = StubProvider(record=PostalRecord(cep="01001-000"), delay=5)
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(asyncio.TimeoutError):
            await service.get("01001000", timeout=0.05)

        assert store.upserts == []

    @pytest.mark.asyncio
    async def test_deadline_aborts_write_back(self):
        """A timeout during write-back is not swallowed like other write errors."""
        store = InMemoryStore(upsert_delay=5)
        provider = StubProvider(record=PostalRecord(cep="01001-000"))
        service = LookupService(store, provider, clock=fixed_clock)

        with pytest.raises(asyncio.TimeoutError):
            await service.get("01001000", timeout=0.05)

    @pytest.mark.asyncio
    async def test_ping_checks_store_only(self):
        store = InMemoryStore()
        provider = StubProvider()
        service = LookupService(store, provider)

        await service.ping(timeout=1)

        assert store.pings == 1
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_metrics_record_cache_results(self, cached_record, fresh_record):
        registry = CollectorRegistry()
        metrics = MetricsCollector("cep", registry)
        store = InMemoryStore(
            cached("12345678", cached_record, NOW),
            upsert_error=RuntimeError("read-only"),
        )
        provider = StubProvider(record=fresh_record)
        service = LookupService(store, provider, cache_ttl=timedelta(hours=1), clock=fixed_clock, metrics=metrics)

        await service.get("12345678")
        await service.get("76543210")

        assert registry.get_sample_value("cep_cache_lookups_total", {"result": "hit"}) == 1.0
        assert registry.get_sample_value("cep_cache_lookups_total", {"result": "miss"}) == 1.0
        assert registry.get_sample_value("cep_provider_requests_total", {"outcome": "ok"}) == 1.0
        assert registry.get_sample_value("cep_cache_write_failures_total") == 1.0
