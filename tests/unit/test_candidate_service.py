"""Unit tests for the candidate repository."""

import asyncio

import pytest

from smartconnect.models.session import EventKind
from smartconnect.services.candidate_service import CandidateRepository
from smartconnect.store.cache import CandidateStore
from tests.helpers import EventRecorder, FakeClock, FakeFeedClient, FakeNetwork, make_candidate, wait_for


FEED = (
    b"*vpn_servers\n"
    b"vpn100,10.0.0.1,1000000,Japan,JP,0\n"
    b"vpn200,10.0.0.2,5000000,Japan,JP,0\n"
    b"vpn300,10.0.0.3,9000000,Japan,JP,0\n"
)


class TestFetchCandidates:
    @pytest.mark.asyncio
    async def test_parses_and_caches_raw(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, store: CandidateStore
    ):
        feed_client.body = FEED
        candidates = await repository.fetch_candidates()
        assert [c.hostname for c in candidates] == ["vpn100.opengw.net", "vpn200.opengw.net", "vpn300.opengw.net"]
        assert store.load_raw() == candidates

    @pytest.mark.asyncio
    async def test_fetch_error_yields_empty(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, store: CandidateStore
    ):
        feed_client.body = None
        assert await repository.fetch_candidates() == []
        assert store.load_raw() is None

    @pytest.mark.asyncio
    async def test_unrecognized_layout_yields_empty(
        self, repository: CandidateRepository, feed_client: FakeFeedClient
    ):
        feed_client.body = b"a,b,c\n"
        assert await repository.fetch_candidates() == []


class TestProbeAndSave:
    @pytest.mark.asyncio
    async def test_ranks_and_persists_reachable(
        self,
        repository: CandidateRepository,
        network: FakeNetwork,
        store: CandidateStore,
        recorder: EventRecorder,
    ):
        network.down.add("10.0.0.3")
        candidates = [
            make_candidate("aaa", speed=1_000_000, ip="10.0.0.1"),
            make_candidate("bbb", speed=5_000_000, ip="10.0.0.2"),
            make_candidate("ccc", speed=9_000_000, ip="10.0.0.3"),
        ]

        ranked = await repository.probe_and_save(candidates)

        assert [c.hostname for c in ranked] == ["bbb", "aaa"]
        assert [c.hostname for c in store.load_scored()] == ["aaa", "bbb"]
        assert repository.current == ranked
        assert len(recorder.of_kind(EventKind.PROBE_RESULT)) == 3
        complete = recorder.of_kind(EventKind.PROBE_COMPLETE)
        assert len(complete) == 1
        assert [c.hostname for c in complete[0].candidates] == ["bbb", "aaa"]
        assert recorder.of_kind(EventKind.PROGRESS)[-1].progress == (3, 3)

    @pytest.mark.asyncio
    async def test_nothing_reachable_empties_scored_list(
        self, repository: CandidateRepository, network: FakeNetwork, store: CandidateStore
    ):
        await store.save_raw([make_candidate("aaa"), make_candidate("bbb")])
        await repository.probe_and_save(store.load_raw())
        assert [c.hostname for c in store.load_scored()] == ["aaa", "bbb"]

        network.down.update({"aaa", "bbb"})
        ranked = await repository.probe_and_save(store.load_raw())

        assert ranked == []
        assert store.load_scored() is None
        assert repository.current == []

    @pytest.mark.asyncio
    async def test_purge_during_rescore_is_not_undone(
        self, repository: CandidateRepository, network: FakeNetwork, store: CandidateStore
    ):
        await store.save_raw([make_candidate("aaa"), make_candidate("bbb")])
        network.gate = asyncio.Event()

        task = asyncio.create_task(repository.probe_and_save(store.load_raw()))
        await wait_for(lambda: len(network.calls) == 2)
        await store.purge("aaa")
        repository.forget("aaa")
        network.gate.set()
        ranked = await task

        assert [c.hostname for c in ranked] == ["bbb"]
        assert [c.hostname for c in store.load_scored()] == ["bbb"]
        assert [c.hostname for c in repository.current] == ["bbb"]

    @pytest.mark.asyncio
    async def test_purged_host_is_dropped_from_fetched_feed(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, store: CandidateStore
    ):
        await store.purge("vpn200.opengw.net")
        feed_client.body = FEED

        candidates = await repository.fetch_candidates()

        assert [c.hostname for c in candidates] == ["vpn100.opengw.net", "vpn300.opengw.net"]
        assert [c.hostname for c in store.load_raw()] == ["vpn100.opengw.net", "vpn300.opengw.net"]

    @pytest.mark.asyncio
    async def test_forget_drops_from_current(self, repository: CandidateRepository):
        await repository.probe_and_save([make_candidate("aaa"), make_candidate("bbb")])
        repository.forget("aaa")
        assert [c.hostname for c in repository.current] == ["bbb"]


class TestRefresh:
    @pytest.mark.asyncio
    async def test_fetches_when_cache_empty(
        self, repository: CandidateRepository, feed_client: FakeFeedClient
    ):
        feed_client.body = FEED
        ranked = await repository.refresh()
        assert feed_client.calls == 1
        assert ranked[0].hostname == "vpn300.opengw.net"

    @pytest.mark.asyncio
    async def test_uses_scored_cache_when_fresh(
        self,
        repository: CandidateRepository,
        feed_client: FakeFeedClient,
        network: FakeNetwork,
        store: CandidateStore,
    ):
        await store.save_raw([make_candidate("aaa"), make_candidate("bbb")])
        await store.save_scored([make_candidate("aaa", latency=5, speed=1), make_candidate("bbb", latency=5, speed=2)])

        ranked = await repository.refresh()

        assert feed_client.calls == 0
        assert network.calls == []
        assert [c.hostname for c in ranked] == ["bbb", "aaa"]

    @pytest.mark.asyncio
    async def test_probes_raw_cache_without_scored_list(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, network: FakeNetwork, store: CandidateStore
    ):
        await store.save_raw([make_candidate("aaa", ip="10.0.0.1")])
        ranked = await repository.refresh()
        assert feed_client.calls == 0
        assert network.calls == ["10.0.0.1"]
        assert [c.hostname for c in ranked] == ["aaa"]

    @pytest.mark.asyncio
    async def test_manual_refresh_refetches(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, store: CandidateStore
    ):
        await store.save_raw([make_candidate("aaa")])
        feed_client.body = FEED
        await repository.refresh(manual=True)
        assert feed_client.calls == 1

    @pytest.mark.asyncio
    async def test_stale_cache_refetches(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, store: CandidateStore, clock: FakeClock
    ):
        await store.save_raw([make_candidate("aaa")])
        clock.advance(5 * 60 * 60)
        feed_client.body = FEED
        await repository.refresh()
        assert feed_client.calls == 1

    @pytest.mark.asyncio
    async def test_feed_failure_reports_no_servers(
        self, repository: CandidateRepository, feed_client: FakeFeedClient, recorder: EventRecorder
    ):
        feed_client.body = None
        assert await repository.refresh() == []
        assert recorder.messages(EventKind.ERROR) == ["No servers available"]
        assert not repository.is_refreshing

    @pytest.mark.asyncio
    async def test_cached_ranked_uses_success_history(
        self, repository: CandidateRepository, store: CandidateStore
    ):
        await store.save_scored([make_candidate("aaa", latency=5, speed=9), make_candidate("bbb", latency=5, speed=1)])
        await store.record_success("bbb")
        assert [c.hostname for c in repository.cached_ranked()] == ["bbb", "aaa"]
