"""
Unit tests for alert dedup stores.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from solmond.monitoring.dedup_store import LocalDedupStore, PrometheusDedupSignal, normalize_flag


def prometheus_transport(payload=None, status_code=200, error=None):
    """Mock transport answering every Prometheus query with ``payload``."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if error is not None:
            raise error
        return httpx.Response(status_code, json=payload)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


def vector(value):
    return {"status": "success", "data": {"resultType": "vector", "result": [
        {"metric": {"alert_count": "true"}, "value": [1700000000.0, value]},
    ]}}


class TestNormalizeFlag:
    """Test cases for string flag normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("TRUE ", True),
        ("false", False),
        ("", None),
        ("maybe", None),
        (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_flag(raw) is expected


class TestLocalDedupStore:
    """Test cases for LocalDedupStore."""

    @pytest.mark.asyncio
    async def test_unsent_window(self):
        assert await LocalDedupStore().already_sent("2024-03-15 10:00AM") is False

    @pytest.mark.asyncio
    async def test_mark_sent(self):
        store = LocalDedupStore()
        now = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)

        await store.mark_sent("2024-03-15 10:00AM", now)

        assert await store.already_sent("2024-03-15 10:00AM") is True
        assert await store.already_sent("2024-03-16 10:00AM") is False
        assert store.last_sent("2024-03-15 10:00AM") == now

    @pytest.mark.asyncio
    async def test_old_windows_are_pruned(self):
        store = LocalDedupStore(retention=timedelta(days=1))
        start = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)

        await store.mark_sent("2024-03-15 10:00AM", start)
        await store.mark_sent("2024-03-17 10:00AM", start + timedelta(days=2))

        assert store.last_sent("2024-03-15 10:00AM") is None
        assert await store.already_sent("2024-03-17 10:00AM") is True


class TestPrometheusDedupSignal:
    """Test cases for PrometheusDedupSignal."""

    def test_address_required(self):
        with pytest.raises(ValueError):
            PrometheusDedupSignal("")

    @pytest.mark.asyncio
    async def test_recent_alert_reads_true(self):
        transport = prometheus_transport(vector("3"))
        signal = PrometheusDedupSignal("http://prometheus:9090/", transport=transport)

        assert await signal.fetch_raw_signal() == "true"
        assert await signal.already_sent("w") is True

        request = transport.requests[0]
        assert request.url.path == "/api/v1/query"
        assert 'alert_count="true"' in request.url.params["query"]
        assert "[2m]" in request.url.params["query"]

    @pytest.mark.asyncio
    async def test_no_recent_alert_reads_false(self):
        signal = PrometheusDedupSignal("http://prometheus:9090",
                                       transport=prometheus_transport(vector("0")))

        assert await signal.already_sent("w") is False

    @pytest.mark.asyncio
    async def test_empty_result_reads_false(self):
        payload = {"status": "success", "data": {"resultType": "vector", "result": []}}
        signal = PrometheusDedupSignal("http://prometheus:9090", transport=prometheus_transport(payload))

        assert await signal.already_sent("w") is False

    @pytest.mark.asyncio
    async def test_unreachable_prometheus_is_unknown(self):
        transport = prometheus_transport(error=httpx.ConnectError("refused"))
        signal = PrometheusDedupSignal("http://prometheus:9090", transport=transport)

        assert await signal.already_sent("w") is None

    @pytest.mark.asyncio
    async def test_http_error_is_unknown(self):
        signal = PrometheusDedupSignal("http://prometheus:9090",
                                       transport=prometheus_transport({}, status_code=503))

        assert await signal.already_sent("w") is None

    @pytest.mark.asyncio
    async def test_query_error_is_unknown(self):
        payload = {"status": "error", "error": "parse error"}
        signal = PrometheusDedupSignal("http://prometheus:9090", transport=prometheus_transport(payload))

        assert await signal.already_sent("w") is None
