"""Unit tests for the latency prober."""

import asyncio
import logging
import time

import pytest

from smartconnect.errors import ProbeTimeoutError
from smartconnect.probe.prober import LatencyProber, ProbeProfile
from tests.helpers import FakeNetwork, make_candidate


class TestMeasure:
    @pytest.mark.asyncio
    async def test_success_sets_positive_latency(self):
        network = FakeNetwork()
        prober = LatencyProber(open_connection=network.open_connection)
        result = await prober.measure(make_candidate("vpn1", ip="10.0.0.1"), timeout=1.0)
        assert result.measured_latency_ms >= 1
        assert network.calls == ["10.0.0.1"]

    @pytest.mark.asyncio
    async def test_refused_connection_is_unreachable(self):
        network = FakeNetwork(down={"10.0.0.1"})
        prober = LatencyProber(open_connection=network.open_connection)
        result = await prober.measure(make_candidate("vpn1", ip="10.0.0.1"), timeout=1.0)
        assert result.measured_latency_ms == -1
        assert not result.is_reachable

    @pytest.mark.asyncio
    async def test_timeout_is_unreachable(self):
        network = FakeNetwork(hang={"10.0.0.1"})
        prober = LatencyProber(open_connection=network.open_connection)
        result = await prober.measure(make_candidate("vpn1", ip="10.0.0.1"), timeout=0.05)
        assert result.measured_latency_ms == -1

    @pytest.mark.asyncio
    async def test_timeout_is_logged_as_probe_timeout(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.DEBUG, logger="smartconnect.probe.prober")
        network = FakeNetwork(hang={"10.0.0.1"})
        prober = LatencyProber(open_connection=network.open_connection)

        await prober.measure(make_candidate("vpn1", ip="10.0.0.1"), timeout=0.05)

        reasons = [getattr(r, "error_reason", None) for r in caplog.records]
        assert ProbeTimeoutError.message in reasons

    @pytest.mark.asyncio
    async def test_refusal_is_logged_by_exception_type(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.DEBUG, logger="smartconnect.probe.prober")
        network = FakeNetwork(down={"10.0.0.1"})
        prober = LatencyProber(open_connection=network.open_connection)

        await prober.measure(make_candidate("vpn1", ip="10.0.0.1"), timeout=1.0)

        reasons = [getattr(r, "error_reason", None) for r in caplog.records]
        assert "ConnectionRefusedError" in reasons

    @pytest.mark.asyncio
    async def test_falls_back_to_hostname_without_ip(self):
        network = FakeNetwork()
        prober = LatencyProber(open_connection=network.open_connection)
        await prober.measure(make_candidate("vpn1.opengw.net", ip=""), timeout=1.0)
        assert network.calls == ["vpn1.opengw.net"]

    def test_profiles_have_distinct_timeouts(self):
        prober = LatencyProber(full_timeout_seconds=3.0, rapid_timeout_seconds=0.8)
        assert prober.timeout_for(ProbeProfile.FULL) == 3.0
        assert prober.timeout_for(ProbeProfile.RAPID) == 0.8


class TestProbe:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        network = FakeNetwork(down={"b"})
        prober = LatencyProber(open_connection=network.open_connection)
        candidates = [make_candidate("aaa", ip="a"), make_candidate("bbb", ip="b"), make_candidate("ccc", ip="c")]

        results = await prober.probe(candidates)

        assert [c.hostname for c in results] == ["aaa", "bbb", "ccc"]
        assert [c.is_reachable for c in results] == [True, False, True]

    @pytest.mark.asyncio
    async def test_concurrent_probes_take_about_one_timeout(self):
        hung = {f"10.0.0.{i}" for i in range(20)}
        network = FakeNetwork(hang=hung)
        prober = LatencyProber(open_connection=network.open_connection)
        candidates = [make_candidate(f"vpn{i}", ip=f"10.0.0.{i}") for i in range(20)]

        started = time.monotonic()
        results = await prober.probe(candidates, timeout=0.2)
        elapsed = time.monotonic() - started

        assert all(c.measured_latency_ms == -1 for c in results)
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_callbacks_fire_per_result_and_once_on_complete(self):
        network = FakeNetwork()
        prober = LatencyProber(open_connection=network.open_connection)
        candidates = [make_candidate(f"vpn{i}") for i in range(5)]
        seen, progress, completed = [], [], []

        await prober.probe(
            candidates,
            on_result=lambda i, c: seen.append(c.hostname),
            on_progress=lambda done, total: progress.append((done, total)),
            on_complete=completed.append,
        )

        assert sorted(seen) == sorted(c.hostname for c in candidates)
        assert progress[-1] == (5, 5)
        assert len(completed) == 1
        assert len(completed[0]) == 5

    @pytest.mark.asyncio
    async def test_batch_size_bounds_concurrency(self):
        in_flight = 0
        peak = 0

        async def open_connection(host, port):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            raise ConnectionRefusedError(host)

        prober = LatencyProber(batch_size=3, open_connection=open_connection)
        await prober.probe([make_candidate(f"vpn{i}") for i in range(10)])
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await LatencyProber().probe([]) == []
