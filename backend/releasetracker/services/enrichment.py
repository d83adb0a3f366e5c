"""
enrichment.py

Attach unified release dates to catalog movies. One enricher instance lives
for one cache build and memoizes every movie it has looked up, so a movie seen
on several pages costs a single catalog call.
"""
import asyncio
import logging
from typing import Any, Dict, List

from releasetracker.schemas import UnifiedReleaseDates
from releasetracker.services.unifier import unify

logger = logging.getLogger(__name__)


class ReleaseDateEnricher:
    def __init__(self, catalog, country: str = "US", concurrency: int = 5, batch_delay: float = 0.25, sleep=asyncio.sleep):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.catalog = catalog
        self.country = country
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._dates: Dict[int, UnifiedReleaseDates] = {}
        self.calls = 0

    async def _lookup(self, movie_id: int) -> UnifiedReleaseDates:
        self.calls += 1
        try:
            facts = await self.catalog.get_release_date_facts(movie_id, country=self.country)
        except Exception as e:
            # Unknown dates: the movie simply fails the date filter
            logger.warning(f"Failed to get release dates for movie {movie_id}: {e}")
            return UnifiedReleaseDates()
        return unify(facts, country=self.country)

    async def _enrich_missing(self, movie_ids: List[int]) -> None:
        for start in range(0, len(movie_ids), self.concurrency):
            batch = movie_ids[start:start + self.concurrency]
            results = await asyncio.gather(*(self._lookup(movie_id) for movie_id in batch))
            for movie_id, dates in zip(batch, results):
                self._dates[movie_id] = dates
            if start + self.concurrency < len(movie_ids) and self.batch_delay:
                await self._sleep(self.batch_delay)

    async def enrich(self, movies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Return copies of `movies` with a `unified_dates` entry.

        Only IDs not yet enriched by this instance hit the catalog.
        """
        missing = []
        seen = set()
        for movie in movies:
            movie_id = movie.get("id")
            if movie_id is None or movie_id in self._dates or movie_id in seen:
                continue
            seen.add(movie_id)
            missing.append(movie_id)

        if missing:
            logger.debug(f"Enriching {len(missing)} new movies ({len(self._dates)} already enriched)")
            await self._enrich_missing(missing)

        enriched = []
        for movie in movies:
            dates = self._dates.get(movie.get("id"), UnifiedReleaseDates())
            enriched.append({**movie, "unified_dates": dates.model_dump(mode="json")})
        return enriched
