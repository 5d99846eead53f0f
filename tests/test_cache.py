"""Tests for the result cache and the caching wrappers."""

import pytest

from conftest import make_document, make_transaction
from docmatch.cache import CachedAttachmentService, CachedMatchingEngine, ResultCache
from docmatch.config import CacheConfig
from docmatch.matching import MatchingEngine
from docmatch.services import AttachmentService, AutoAssignService


class FakeClock:
    """Manually advanced time source."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(single_ttl=60, combination_ttl=30, batch_ttl=90, clock=clock)


class TestResultCache:
    """TTL store behaviour."""

    def test_miss_then_hit(self, cache):
        key = cache.single_key(1, False)

        assert cache.get(key) is None
        cache.put(key, ["match"], cache.single_ttl, {1})

        assert cache.get(key) == ["match"]
        assert cache.stats == {"hits": 1, "misses": 1, "invalidations": 0, "size": 1}

    def test_empty_result_is_a_hit(self, cache):
        key = cache.single_key(1, False)
        cache.put(key, [], cache.single_ttl, {1})
        assert cache.get(key) == []

    def test_keys_distinguish_pool_and_kind(self, cache):
        cache.put(cache.single_key(1, False), "all", 60, {1})
        cache.put(cache.single_key(1, True), "unconnected", 60, {1})
        cache.put(cache.combination_key(1, False), "combos", 60, {1})

        assert cache.get(cache.single_key(1, True)) == "unconnected"
        assert cache.get(cache.combination_key(1, False)) == "combos"
        assert cache.size == 3

    def test_expiry(self, cache, clock):
        key = cache.combination_key(1, False)
        cache.put(key, "combos", cache.combination_ttl, {1})

        clock.advance(29)
        assert cache.get(key) == "combos"

        clock.advance(1)
        assert cache.get(key) is None
        assert cache.size == 0

    def test_batch_key_ignores_order_and_duplicates(self):
        assert ResultCache.batch_key([3, 1, 2], [10, 11], False) == ResultCache.batch_key(
            [1, 2, 3, 3], [11, 10], False
        )
        assert ResultCache.batch_key([1], [10], False) != ResultCache.batch_key([1], [10, 11], False)
        assert ResultCache.batch_key([1], [10], False) != ResultCache.batch_key([1], [10], True)

    def test_invalidate_transaction_drops_batches_containing_it(self, cache):
        cache.put(cache.single_key(1, False), "one", 60, {1})
        cache.put(cache.single_key(2, False), "two", 60, {2})
        batch = cache.batch_key([1, 3], [10], False)
        cache.put(batch, {1: [], 3: []}, 90, [1, 3])

        removed = cache.invalidate_transaction(1)

        assert removed == 2
        assert cache.get(batch) is None
        assert cache.get(cache.single_key(2, False)) == "two"
        assert cache.stats["invalidations"] == 2
        assert cache.invalidate_transaction(3) == 0

    def test_invalidate_unconnected(self, cache):
        cache.put(cache.single_key(1, False), "all", 60, {1})
        cache.put(cache.single_key(1, True), "unconnected", 60, {1})
        cache.put(cache.combination_key(2, True), "unconnected", 60, {2})

        assert cache.invalidate_unconnected() == 2
        assert cache.get(cache.single_key(1, False)) == "all"
        assert cache.size == 1

    def test_clear_resets_stats(self, cache):
        cache.put(cache.single_key(1, False), "x", 60, {1})
        cache.get(cache.single_key(1, False))

        cache.clear()

        assert cache.stats == {"hits": 0, "misses": 0, "invalidations": 0, "size": 0}

    def test_disabled(self):
        cache = ResultCache(enabled=False)
        key = cache.single_key(1, False)

        cache.put(key, "x", 60, {1})

        assert cache.get(key) is None
        assert cache.stats == {"hits": 0, "misses": 0, "invalidations": 0, "size": 0}

    def test_from_config(self):
        cache = ResultCache.from_config(CacheConfig(single_ttl_seconds=5, enabled=False))
        assert cache.single_ttl == 5
        assert cache.combination_ttl == 20 * 60
        assert cache.enabled is False


class TestCachedWrappers:
    """Cached engine reads and invalidating writes."""

    @pytest.fixture
    def seeded(self, store):
        store.upsert_transaction(make_transaction(1, reference="RE-1"))
        store.upsert_transaction(make_transaction(2))
        store.upsert_document(make_document(10, invoice_number="RE-1"))
        store.upsert_document(make_document(11, total="47.60"))
        store.upsert_document(make_document(12, total="190.40"))
        return store

    @pytest.fixture
    def cached_engine(self, seeded, config, cache):
        engine = MatchingEngine(seeded, config.matching, max_workers=1)
        attachments = CachedAttachmentService(AttachmentService(seeded, config.matching), cache)
        assigner = AutoAssignService(seeded, config, attachments=attachments)
        return CachedMatchingEngine(engine, cache, auto_assigner=assigner)

    @pytest.fixture
    def attachments(self, seeded, config, cache):
        return CachedAttachmentService(AttachmentService(seeded, config.matching), cache)

    def test_rank_served_from_cache(self, cached_engine, cache):
        first = cached_engine.rank(1)
        second = cached_engine.rank(1)

        assert [m.document_id for m in second] == [m.document_id for m in first]
        assert cache.stats["hits"] == 1
        assert cache.stats["misses"] == 1

    def test_returned_list_is_a_copy(self, cached_engine):
        cached_engine.rank(1).clear()
        assert cached_engine.rank(1)

    def test_combinations_cached(self, cached_engine, cache):
        first = cached_engine.find_combinations(2)
        assert cached_engine.find_combinations(2) == first
        assert cache.stats["hits"] == 1

    def test_rank_batch_cached(self, cached_engine, cache):
        first = cached_engine.rank_batch([1, 2])
        second = cached_engine.rank_batch([2, 1])

        assert set(second) == set(first) == {1, 2}
        assert cache.stats["hits"] == 1

    def test_attach_invalidates(self, cached_engine, attachments, cache):
        cached_engine.rank(1)
        cached_engine.rank(2, unconnected_only=True)

        assert attachments.attach(1, 10).success

        assert cache.size == 0
        assert 10 not in [m.document_id for m in cached_engine.rank(2, unconnected_only=True)]

    def test_failed_attach_keeps_cache(self, cached_engine, attachments, cache):
        cached_engine.rank(1)

        assert not attachments.attach(1, 999).success

        assert cache.size == 1

    def test_detach_invalidates(self, cached_engine, attachments, cache):
        attachments.attach(1, 10)
        cached_engine.rank(2, unconnected_only=True)

        assert attachments.detach(1, 10).success

        assert cache.size == 0
        assert 10 in [m.document_id for m in cached_engine.rank(2, unconnected_only=True)]

    def test_auto_assign_invalidates(self, cached_engine, cache):
        cached_engine.rank(1)
        cached_engine.rank(2, unconnected_only=True)

        result = cached_engine.auto_assign(1)

        assert result.assigned_count == 1
        assert cache.size == 0

    def test_auto_assign_needs_assigner(self, seeded, config, cache):
        engine = CachedMatchingEngine(MatchingEngine(seeded, config.matching), cache)
        with pytest.raises(RuntimeError):
            engine.auto_assign(1)
