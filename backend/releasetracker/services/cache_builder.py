"""
cache_builder.py

Read-through caches of "interesting" movie sets built by paging the catalog
until a filtered result set converges.

Build loop (per source, pages starting at 1):
  1. fetch one page of candidates, drop adult entries, merge unseen IDs into
     the running candidate set;
  2. enrich the running set (memoized, so each movie is looked up once);
  3. re-apply the domain filter over the whole set;
  4. stop on target count, empty page, source boundary, or max pages.

The loop is bounded by max pages per source whatever the catalog returns. A
catalog failure aborts the build without writing, so the previous entry stays
readable until its TTL runs out. Concurrent misses for one key share a
single build through SingleFlight.
"""
import asyncio
import logging
import math
import time
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from releasetracker.core.singleflight import SingleFlight, default_flight
from releasetracker.errors import CacheBuildError
from releasetracker.schemas import BuildStats, CacheBuildResult, CacheEntry, CachePage, Pagination, UnifiedReleaseDates
from releasetracker.services.enrichment import ReleaseDateEnricher
from releasetracker.utils.timezone import (
    add_months,
    days_ago,
    ensure_utc,
    format_date,
    format_iso_utc,
    parse_date,
    today_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 24 * 60 * 60


class ConvergingCache:
    """Base class: subclasses supply pages, the filter and the sort order."""

    cache_key: str = ""
    label: str = "Cache"
    sort_descending: bool = True

    def __init__(
        self,
        catalog,
        store,
        *,
        ttl: int = DEFAULT_CACHE_TTL,
        max_pages: int = 15,
        target_count: Optional[int] = None,
        page_delay: float = 0.0,
        clock=utc_now,
        sleep=asyncio.sleep,
        single_flight: Optional[SingleFlight] = None,
    ):
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.catalog = catalog
        self.store = store
        self.ttl = ttl
        self.max_pages = max_pages
        self.target_count = target_count
        self.page_delay = page_delay
        self.clock = clock
        self._sleep = sleep
        self._flight = single_flight or default_flight

    # Hooks

    def sources(self) -> List[Any]:
        return [None]

    def max_pages_for(self, source) -> int:
        return self.max_pages

    async def fetch_page(self, source, page: int, today: date) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def make_enricher(self) -> Optional[ReleaseDateEnricher]:
        return None

    def source_exhausted(self, source, results: List[Dict[str, Any]], today: date) -> bool:
        return False

    def accept(self, movie: Dict[str, Any], today: date) -> bool:
        raise NotImplementedError

    def sort_value(self, movie: Dict[str, Any]):
        raise NotImplementedError

    def date_of(self, movie: Dict[str, Any]) -> Optional[str]:
        return None

    def filters(self) -> Dict[str, Any]:
        return {}

    def reorder(self, movies: List[Dict[str, Any]], sort_by: Optional[str]) -> List[Dict[str, Any]]:
        return movies

    # Build

    def _sorted(self, movies: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(movies, key=self.sort_value, reverse=self.sort_descending)

    async def _build(self) -> CacheBuildResult:
        start = time.perf_counter()
        today = today_utc(self.clock())
        enricher = self.make_enricher()
        candidates: Dict[int, Dict[str, Any]] = {}
        accepted: List[Dict[str, Any]] = []
        pages_fetched = 0
        reached_target = False

        try:
            for source in self.sources():
                page = 1
                while page <= self.max_pages_for(source):
                    results = await self.fetch_page(source, page, today)
                    pages_fetched += 1
                    if not results:
                        logger.debug(f"[{self.label}] No more results for {source or 'default'} at page {page}")
                        break

                    for movie in results:
                        movie_id = movie.get("id")
                        if movie_id is None or movie.get("adult") or movie_id in candidates:
                            continue
                        candidates[movie_id] = movie

                    pool = list(candidates.values())
                    if enricher is not None:
                        pool = await enricher.enrich(pool)
                    accepted = [m for m in pool if self.accept(m, today)]

                    if self.target_count is not None and len(accepted) >= self.target_count:
                        reached_target = True
                        break
                    if self.source_exhausted(source, results, today):
                        break
                    page += 1
                    if page <= self.max_pages_for(source) and self.page_delay:
                        await self._sleep(self.page_delay)
                if reached_target:
                    break
        except Exception as e:
            logger.error(f"[{self.label}] Error building cache {self.cache_key}: {e}")
            return CacheBuildResult(
                success=False,
                error=str(e),
                stats=BuildStats(
                    total_fetched=len(candidates),
                    pages_fetched=pages_fetched,
                    enrichment_calls=enricher.calls if enricher else 0,
                ),
            )

        movies = self._sorted(accepted)
        dates = [d for d in (self.date_of(m) for m in movies) if d]
        entry = CacheEntry(
            cache_key=self.cache_key,
            movies=movies,
            total_count=len(movies),
            built_at=self.clock(),
            filters=self.filters(),
        )
        stats = BuildStats(
            total_fetched=len(candidates),
            pages_fetched=pages_fetched,
            filtered_count=len(movies),
            enrichment_calls=enricher.calls if enricher else 0,
            oldest_date=min(dates) if dates else None,
            newest_date=max(dates) if dates else None,
            reached_target=reached_target,
        )

        await self.store.set(self.cache_key, entry.model_dump(mode="json"), self.ttl)
        logger.info(
            f"[{self.label}] Built {self.cache_key}: {stats.filtered_count} movies from "
            f"{stats.total_fetched} candidates over {stats.pages_fetched} pages "
            f"({time.perf_counter() - start:.2f}s)"
        )
        return CacheBuildResult(success=True, data=entry, stats=stats)

    async def build(self) -> CacheBuildResult:
        """Build and store the entry; concurrent callers share one build."""
        return await self._flight.do(self.cache_key, self._build)

    async def rebuild(self) -> CacheBuildResult:
        """Force a rebuild (scheduled refresh). The old entry is only replaced on success."""
        logger.info(f"[{self.label}] Force rebuilding {self.cache_key}...")
        return await self.build()

    # Read

    async def _load(self) -> Optional[CacheEntry]:
        cached = await self.store.get(self.cache_key)
        if not cached:
            return None
        try:
            return CacheEntry.model_validate(cached)
        except ValidationError as e:
            logger.warning(f"[{self.label}] Ignoring malformed cache entry {self.cache_key}: {e}")
            return None

    async def get_entry(self) -> CacheEntry:
        entry = await self._load()
        if entry is not None:
            logger.debug(f"[{self.label}] Cache HIT for {self.cache_key}")
            return entry

        logger.info(f"[{self.label}] Cache miss - building {self.cache_key}...")
        result = await self.build()
        if not result.success or result.data is None:
            raise CacheBuildError(self.cache_key, result.error or "unknown error")
        return result.data

    async def get_page(self, page: int = 1, limit: int = 30, sort_by: Optional[str] = None) -> CachePage:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        page = max(1, page)
        entry = await self.get_entry()

        movies = self.reorder(entry.movies, sort_by)
        total_results = entry.total_count
        total_pages = math.ceil(total_results / limit)
        start_index = (page - 1) * limit

        return CachePage(
            movies=movies[start_index:start_index + limit],
            pagination=Pagination(
                page=page,
                limit=limit,
                total_pages=total_pages,
                total_results=total_results,
                has_next_page=page < total_pages,
                has_previous_page=page > 1,
            ),
            filters=entry.filters,
            built_at=entry.built_at,
        )

    async def cache_info(self) -> Dict[str, Any]:
        entry = await self._load()
        if entry is None:
            return {"is_cached": False}
        age = ensure_utc(self.clock()) - ensure_utc(entry.built_at)
        return {
            "is_cached": True,
            "total_count": entry.total_count,
            "built_at": format_iso_utc(entry.built_at),
            "age_in_hours": age.total_seconds() / 3600,
            "filters": entry.filters,
        }


class RecentReleasesCache(ConvergingCache):
    """Movies whose digital (or first streaming-class) date falls in the trailing window."""

    cache_key = "recent_movies_digital"
    label = "RecentCache"

    def __init__(
        self,
        catalog,
        store,
        *,
        days_back: int = 90,
        vote_count_min: int = 10,
        vote_average_min: float = 6.0,
        target_count: int = 100,
        max_pages: int = 15,
        country: str = "US",
        enrichment_concurrency: int = 5,
        enrichment_batch_delay: float = 0.25,
        **kwargs,
    ):
        super().__init__(catalog, store, max_pages=max_pages, target_count=target_count, **kwargs)
        self.days_back = days_back
        self.vote_count_min = vote_count_min
        self.vote_average_min = vote_average_min
        self.country = country
        self.enrichment_concurrency = enrichment_concurrency
        self.enrichment_batch_delay = enrichment_batch_delay

    def make_enricher(self) -> ReleaseDateEnricher:
        return ReleaseDateEnricher(
            self.catalog,
            country=self.country,
            concurrency=self.enrichment_concurrency,
            batch_delay=self.enrichment_batch_delay,
            sleep=self._sleep,
        )

    async def fetch_page(self, source, page: int, today: date) -> List[Dict[str, Any]]:
        # Query a wider window than the filter; catalog release_date is not the digital date
        payload = await self.catalog.discover_recent_digital(
            days_back=self.days_back + 30,
            vote_count_min=self.vote_count_min,
            vote_average_min=self.vote_average_min,
            page=page,
            today=today,
        )
        return (payload or {}).get("results") or []

    def date_of(self, movie: Dict[str, Any]) -> Optional[str]:
        dates = UnifiedReleaseDates.model_validate(movie.get("unified_dates") or {})
        return format_date(dates.home_release)

    def accept(self, movie: Dict[str, Any], today: date) -> bool:
        home_release = parse_date(self.date_of(movie))
        if home_release is None:
            return False
        cutoff = days_ago(self.days_back, today)
        return cutoff <= home_release <= today

    def sort_value(self, movie: Dict[str, Any]):
        return self.date_of(movie) or ""

    def filters(self) -> Dict[str, Any]:
        return {
            "days_back": self.days_back,
            "vote_count_min": self.vote_count_min,
            "vote_average_min": self.vote_average_min,
        }


class UpcomingReleasesCache(ConvergingCache):
    """Movies with a primary release after today and within the next N months.

    Candidates come from every supported language, twice: popularity-sorted for
    quality and release-date-sorted for completeness.
    """

    cache_key = "upcoming_movies"
    label = "UpcomingCache"
    sort_descending = True

    POPULARITY = "popularity.desc"
    RELEASE_DATE = "primary_release_date.asc"
    MAX_POPULARITY_PAGES = 5
    MAX_RELEASE_DATE_PAGES = 15
    RERELEASE_VOTE_COUNT = 1500

    def __init__(
        self,
        catalog,
        store,
        *,
        months_ahead: int = 6,
        languages: Optional[List[str]] = None,
        page_delay: float = 0.25,
        **kwargs,
    ):
        kwargs.setdefault("max_pages", self.MAX_RELEASE_DATE_PAGES)
        super().__init__(catalog, store, page_delay=page_delay, **kwargs)
        self.months_ahead = months_ahead
        self.languages = languages or ["en", "ko", "ja", "fr", "de", "es", "it", "pt"]

    def _cutoff(self, today: date) -> date:
        return add_months(today, self.months_ahead)

    def sources(self) -> List[Any]:
        return [(language, strategy) for language in self.languages for strategy in (self.POPULARITY, self.RELEASE_DATE)]

    def max_pages_for(self, source) -> int:
        limit = self.MAX_POPULARITY_PAGES if source[1] == self.POPULARITY else self.MAX_RELEASE_DATE_PAGES
        return min(limit, self.max_pages)

    async def fetch_page(self, source, page: int, today: date) -> List[Dict[str, Any]]:
        language, strategy = source
        payload = await self.catalog.discover_by_date_range(
            start_date=today,
            end_date=self._cutoff(today),
            sort_by=strategy,
            language=language,
            page=page,
        )
        return (payload or {}).get("results") or []

    def source_exhausted(self, source, results: List[Dict[str, Any]], today: date) -> bool:
        if source[1] != self.RELEASE_DATE:
            return False
        cutoff = self._cutoff(today)
        for movie in results:
            released = parse_date(movie.get("release_date"))
            if released is not None and released > cutoff:
                return True
        return False

    def accept(self, movie: Dict[str, Any], today: date) -> bool:
        released = parse_date(movie.get("release_date"))
        if released is None or not movie.get("title"):
            return False
        if released <= today or released > self._cutoff(today):
            return False
        # Obvious re-releases: heavily voted titles with a "future" release
        if (movie.get("vote_count") or 0) > self.RERELEASE_VOTE_COUNT and released.year <= today.year + 1:
            return False
        if released.year < today.year - 1:
            return False
        return True

    def sort_value(self, movie: Dict[str, Any]):
        return movie.get("popularity") or 0.0

    def date_of(self, movie: Dict[str, Any]) -> Optional[str]:
        return movie.get("release_date")

    def filters(self) -> Dict[str, Any]:
        return {"months_ahead": self.months_ahead, "languages": self.languages}

    def reorder(self, movies: List[Dict[str, Any]], sort_by: Optional[str]) -> List[Dict[str, Any]]:
        if sort_by in (None, "popularity"):
            return movies
        if sort_by == "release_date":
            return sorted(movies, key=lambda m: m.get("release_date") or "")
        raise ValueError(f"Unsupported sort: {sort_by}")
