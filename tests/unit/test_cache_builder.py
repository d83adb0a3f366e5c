import asyncio
import unittest
from datetime import timedelta

from releasetracker.errors import CacheBuildError
from releasetracker.schemas import ReleaseType
from releasetracker.services.cache_builder import RecentReleasesCache, UpcomingReleasesCache
from fakes import NOW, TODAY, FakeCatalog, FakeStore, fact, fixed_clock, no_sleep, raw_movie


def recent_cache(catalog, store=None, **kwargs):
    kwargs.setdefault("enrichment_batch_delay", 0)
    return RecentReleasesCache(catalog, store or FakeStore(), clock=fixed_clock(), sleep=no_sleep, **kwargs)


def digital(movie_id, day):
    return [fact(movie_id, ReleaseType.DIGITAL, day)]


class TestRecentReleasesBuild(unittest.TestCase):
    def test_window_boundary_is_inclusive_at_cutoff(self):
        cutoff = TODAY - timedelta(days=90)
        catalog = FakeCatalog(
            pages=[[raw_movie(1), raw_movie(2), raw_movie(3), raw_movie(4)]],
            facts={
                1: digital(1, cutoff),
                2: digital(2, cutoff - timedelta(days=1)),
                3: digital(3, TODAY),
                4: digital(4, TODAY + timedelta(days=1)),
            },
        )
        result = asyncio.run(recent_cache(catalog).build())

        self.assertTrue(result.success)
        self.assertEqual([m["id"] for m in result.data.movies], [3, 1])

    def test_never_reenriches_across_pages(self):
        # Every page repeats movies 1-3 plus one new movie; none pass the filter
        pages = [[raw_movie(1), raw_movie(2), raw_movie(3), raw_movie(10 + i)] for i in range(6)]
        catalog = FakeCatalog(pages=pages)
        result = asyncio.run(recent_cache(catalog, max_pages=6).build())

        unique_ids = {m["id"] for page in pages for m in page}
        self.assertEqual(result.stats.enrichment_calls, len(unique_ids))
        self.assertEqual(len(catalog.fact_requests), len(unique_ids))
        self.assertEqual(result.stats.pages_fetched, 6)

    def test_terminates_at_max_pages_when_target_unreachable(self):
        # The catalog never runs dry and nothing matches
        class EndlessCatalog(FakeCatalog):
            async def discover_recent_digital(self, **kwargs):
                self.page_requests.append(kwargs)
                page = kwargs["page"]
                return {"results": [raw_movie(page * 100 + i) for i in range(3)]}

        catalog = EndlessCatalog()
        result = asyncio.run(recent_cache(catalog, max_pages=4, target_count=1000).build())

        self.assertTrue(result.success)
        self.assertEqual(len(catalog.page_requests), 4)
        self.assertEqual(result.stats.pages_fetched, 4)
        self.assertFalse(result.stats.reached_target)

    def test_stops_on_empty_page(self):
        catalog = FakeCatalog(pages=[[raw_movie(1)], []], facts={1: digital(1, TODAY)})
        result = asyncio.run(recent_cache(catalog).build())
        self.assertEqual(result.stats.pages_fetched, 2)
        self.assertEqual(result.stats.filtered_count, 1)

    def test_stops_once_target_reached(self):
        pages = [[raw_movie(1), raw_movie(2)], [raw_movie(3), raw_movie(4)], [raw_movie(5)]]
        facts = {i: digital(i, TODAY - timedelta(days=i)) for i in range(1, 6)}
        catalog = FakeCatalog(pages=pages, facts=facts)
        result = asyncio.run(recent_cache(catalog, target_count=3).build())

        self.assertTrue(result.stats.reached_target)
        self.assertEqual(result.stats.pages_fetched, 2)
        self.assertEqual([m["id"] for m in result.data.movies], [1, 2, 3, 4])
        self.assertEqual(result.stats.newest_date, (TODAY - timedelta(days=1)).isoformat())
        self.assertEqual(result.stats.oldest_date, (TODAY - timedelta(days=4)).isoformat())

    def test_adult_and_duplicate_entries_are_skipped(self):
        pages = [[raw_movie(1), raw_movie(2, adult=True), raw_movie(1)]]
        catalog = FakeCatalog(pages=pages, facts={1: digital(1, TODAY), 2: digital(2, TODAY)})
        result = asyncio.run(recent_cache(catalog).build())
        self.assertEqual([m["id"] for m in result.data.movies], [1])
        self.assertEqual(result.stats.total_fetched, 1)

    def test_queries_wider_window_than_filter(self):
        catalog = FakeCatalog(pages=[[]])
        asyncio.run(recent_cache(catalog, days_back=90).build())
        self.assertEqual(catalog.page_requests[0]["days_back"], 120)
        self.assertEqual(catalog.page_requests[0]["today"], TODAY)

    def test_catalog_failure_keeps_previous_entry(self):
        store = FakeStore()
        good = FakeCatalog(pages=[[raw_movie(1)]], facts={1: digital(1, TODAY)})
        asyncio.run(recent_cache(good, store).build())
        previous = store.data["recent_movies_digital"]

        failing = FakeCatalog(pages=[[raw_movie(2)], [raw_movie(3)]], facts={2: digital(2, TODAY)})
        failing.fail_pages = {2}
        result = asyncio.run(recent_cache(failing, store).rebuild())

        self.assertFalse(result.success)
        self.assertIn("500", result.error)
        self.assertIsNone(result.data)
        self.assertEqual(store.set_calls, 1)
        self.assertIs(store.data["recent_movies_digital"], previous)

    def test_entry_is_stored_with_ttl(self):
        store = FakeStore()
        catalog = FakeCatalog(pages=[[raw_movie(1)]], facts={1: digital(1, TODAY)})
        asyncio.run(recent_cache(catalog, store, ttl=3600).build())
        self.assertEqual(store.ttls["recent_movies_digital"], 3600)
        stored = store.data["recent_movies_digital"]
        self.assertEqual(stored["total_count"], 1)
        self.assertEqual(stored["filters"]["days_back"], 90)


class TestReadThrough(unittest.TestCase):
    def setUp(self):
        movies = [raw_movie(i) for i in range(1, 6)]
        facts = {i: digital(i, TODAY - timedelta(days=i)) for i in range(1, 6)}
        self.catalog = FakeCatalog(pages=[movies], facts=facts)
        self.store = FakeStore()
        self.cache = recent_cache(self.catalog, self.store)

    def test_miss_builds_then_hit_reads_store(self):
        async def scenario():
            first = await self.cache.get_page(page=1, limit=2)
            second = await self.cache.get_page(page=3, limit=2)
            return first, second

        first, second = asyncio.run(scenario())
        self.assertEqual([m["id"] for m in first.movies], [1, 2])
        self.assertEqual(first.pagination.total_pages, 3)
        self.assertTrue(first.pagination.has_next_page)
        self.assertFalse(first.pagination.has_previous_page)
        self.assertEqual([m["id"] for m in second.movies], [5])
        self.assertFalse(second.pagination.has_next_page)
        self.assertTrue(second.pagination.has_previous_page)
        self.assertEqual(self.store.set_calls, 1)
        self.assertEqual(len(self.catalog.page_requests), 2)

    def test_page_below_one_is_clamped(self):
        result = asyncio.run(self.cache.get_page(page=0, limit=10))
        self.assertEqual(result.pagination.page, 1)
        self.assertEqual(len(result.movies), 5)

    def test_limit_must_be_positive(self):
        with self.assertRaises(ValueError):
            asyncio.run(self.cache.get_page(limit=0))

    def test_failed_build_raises(self):
        self.catalog.fail_pages = {1}
        with self.assertRaises(CacheBuildError):
            asyncio.run(self.cache.get_page())
        self.assertEqual(self.store.data, {})

    def test_concurrent_misses_share_one_build(self):
        class SlowCatalog(FakeCatalog):
            async def discover_recent_digital(self, **kwargs):
                await asyncio.sleep(0.01)
                return await super().discover_recent_digital(**kwargs)

        catalog = SlowCatalog(pages=[[raw_movie(1)]], facts={1: digital(1, TODAY)})
        store = FakeStore()
        cache = recent_cache(catalog, store)

        async def scenario():
            return await asyncio.gather(*(cache.get_page() for _ in range(5)))

        pages = asyncio.run(scenario())
        self.assertTrue(all(p.pagination.total_results == 1 for p in pages))
        self.assertEqual(store.set_calls, 1)
        self.assertEqual(catalog.fact_requests, [1])

    def test_concurrent_misses_across_instances_share_one_build(self):
        class SlowCatalog(FakeCatalog):
            async def discover_recent_digital(self, **kwargs):
                await asyncio.sleep(0.01)
                return await super().discover_recent_digital(**kwargs)

        catalog = SlowCatalog(pages=[[raw_movie(1)]], facts={1: digital(1, TODAY)})
        store = FakeStore()
        first, second = recent_cache(catalog, store), recent_cache(catalog, store)

        async def scenario():
            return await asyncio.gather(first.get_page(1, 10), second.get_page(1, 10))

        pages = asyncio.run(scenario())
        self.assertEqual([p.pagination.total_results for p in pages], [1, 1])
        self.assertEqual(store.set_calls, 1)
        self.assertEqual(catalog.fact_requests, [1])

    def test_cache_info(self):
        self.assertEqual(asyncio.run(self.cache.cache_info()), {"is_cached": False})
        asyncio.run(self.cache.build())
        info = asyncio.run(self.cache.cache_info())
        self.assertTrue(info["is_cached"])
        self.assertEqual(info["total_count"], 5)
        self.assertEqual(info["age_in_hours"], 0)
        self.assertEqual(info["built_at"], NOW.isoformat())


def upcoming_cache(catalog, store=None, **kwargs):
    return UpcomingReleasesCache(
        catalog, store or FakeStore(), languages=["en"], page_delay=0, clock=fixed_clock(), sleep=no_sleep, **kwargs
    )


def test_upcoming_filters_window_and_rereleases():
    soon = (TODAY + timedelta(days=10)).isoformat()
    page = [
        raw_movie(1, release_date=soon, popularity=10.0),
        raw_movie(2, release_date=TODAY.isoformat(), popularity=50.0),
        raw_movie(3, release_date=(TODAY + timedelta(days=400)).isoformat(), popularity=40.0),
        raw_movie(4, release_date=soon, popularity=30.0, vote_count=5000),
        raw_movie(5, release_date=soon, popularity=20.0),
        raw_movie(6, release_date="", popularity=60.0),
    ]
    result = asyncio.run(upcoming_cache(FakeCatalog(pages=[page])).build())

    assert result.success
    assert [m["id"] for m in result.data.movies] == [5, 1]
    assert result.stats.enrichment_calls == 0


def test_upcoming_reorders_by_release_date_on_read():
    page = [
        raw_movie(1, release_date=(TODAY + timedelta(days=30)).isoformat(), popularity=90.0),
        raw_movie(2, release_date=(TODAY + timedelta(days=5)).isoformat(), popularity=10.0),
    ]
    cache = upcoming_cache(FakeCatalog(pages=[page]))

    async def scenario():
        by_popularity = await cache.get_page()
        by_date = await cache.get_page(sort_by="release_date")
        return by_popularity, by_date

    by_popularity, by_date = asyncio.run(scenario())
    assert [m["id"] for m in by_popularity.movies] == [1, 2]
    assert [m["id"] for m in by_date.movies] == [2, 1]


def test_upcoming_release_date_strategy_stops_past_cutoff():
    beyond = (TODAY + timedelta(days=200)).isoformat()
    catalog = FakeCatalog(pages=[[raw_movie(1, release_date=beyond)], [raw_movie(2)], [raw_movie(3)]])
    asyncio.run(upcoming_cache(catalog).build())

    strategies = [r["sort_by"] for r in catalog.page_requests]
    # popularity runs until the empty 4th page; release-date stops after page 1
    assert strategies.count(UpcomingReleasesCache.RELEASE_DATE) == 1
    assert strategies.count(UpcomingReleasesCache.POPULARITY) == 4


def test_upcoming_built_at_uses_clock():
    result = asyncio.run(upcoming_cache(FakeCatalog(pages=[[]])).build())
    assert result.data.built_at == NOW
    assert result.data.total_count == 0
