"""
TMDB client for the release tracker.
- Async httpx client; the API key is passed in from validated settings.
- Handles 429 with exponential backoff and Retry-After.
- No in-module caching; results cached by caller.
- Every failure is raised as TMDBError so callers decide what a failure means.
"""
import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import httpx

from releasetracker.errors import TMDBError
from releasetracker.schemas import ReleaseDateFact, ReleaseType
from releasetracker.services.rate_limit import RateLimitExceeded, with_backoff
from releasetracker.utils.timezone import parse_date, today_utc

TMDB_BASE = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p"
logger = logging.getLogger(__name__)

# Digital (4), Physical (5), TV (6)
HOME_RELEASE_TYPES = "4|5|6"
RECENT_LANGUAGES = "en|es|fr|de|ja|ko|it|pt"


def parse_release_date_facts(movie_id: int, payload: Optional[Dict], country: Optional[str] = None) -> List[ReleaseDateFact]:
    """Turn a raw `release_dates` payload into facts.

    The payload is untrusted: entries without a country, with an unknown type,
    or with an unparsable date are skipped rather than raising. When `country`
    is given, other territories are ignored.
    """
    facts: List[ReleaseDateFact] = []
    if not isinstance(payload, dict):
        return facts

    for territory in payload.get("results") or []:
        if not isinstance(territory, dict):
            continue
        iso = territory.get("iso_3166_1")
        if not iso or (country and iso != country):
            continue
        for entry in territory.get("release_dates") or []:
            if not isinstance(entry, dict):
                continue
            try:
                release_type = ReleaseType(int(entry.get("type")))
            except (TypeError, ValueError):
                continue
            release_date = parse_date(entry.get("release_date"))
            if release_date is None:
                continue
            facts.append(ReleaseDateFact(
                movie_id=movie_id,
                country=iso,
                release_type=release_type,
                release_date=release_date,
                certification=entry.get("certification") or None,
            ))
    return facts


def poster_url(poster_path: Optional[str], size: str = "w342") -> Optional[str]:
    if not poster_path:
        return None
    return f"{TMDB_IMAGE_BASE}/{size}{poster_path}"


class TMDBClient:
    """Thin async wrapper over the TMDB v3 endpoints the tracker needs."""

    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10, max_retries: int = 4, sleep=asyncio.sleep):
        self.api_key = api_key
        self._sleep = sleep
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = http_client

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict:
        url = f"{TMDB_BASE}{path}"
        query = {"api_key": self.api_key, **(params or {})}

        async def make_request():
            if self._client is not None:
                resp = await self._client.get(url, params=query)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url, params=query)
            resp.raise_for_status()
            return resp.json()

        try:
            return await with_backoff(make_request, max_retries=self.max_retries, service="tmdb_api", sleep=self._sleep)
        except httpx.HTTPStatusError as e:
            raise TMDBError(
                f"TMDB API error: {e.response.status_code} {e.response.reason_phrase}",
                status_code=e.response.status_code,
                url=path,
            ) from e
        except RateLimitExceeded as e:
            raise TMDBError(str(e), status_code=429, url=path) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TMDBError(f"TMDB request failed for {path}: {e}", url=path) from e

    async def discover_recent_digital(
        self,
        days_back: int = 60,
        vote_count_min: int = 50,
        vote_average_min: float = 6.5,
        page: int = 1,
        today: Optional[date] = None,
    ) -> Dict:
        """Movies with a digital/physical/TV release in the trailing window, newest first."""
        end_date = today or today_utc()
        start_date = end_date - timedelta(days=days_back)
        params = {
            "release_date.gte": start_date.isoformat(),
            "release_date.lte": end_date.isoformat(),
            "with_release_type": HOME_RELEASE_TYPES,
            "with_original_language": RECENT_LANGUAGES,
            "vote_count.gte": vote_count_min,
            "vote_average.gte": vote_average_min,
            "sort_by": "release_date.desc",
            "page": page,
            "include_adult": "false",
        }
        return await self._get("/discover/movie", params)

    async def discover_by_date_range(
        self,
        start_date: date,
        end_date: date,
        sort_by: str = "popularity.desc",
        language: str = "en",
        page: int = 1,
    ) -> Dict:
        """Movies whose primary release falls in [start_date, end_date]."""
        params = {
            "primary_release_date.gte": start_date.isoformat(),
            "primary_release_date.lte": end_date.isoformat(),
            "with_original_language": language,
            "sort_by": sort_by,
            "page": page,
            "include_adult": "false",
        }
        return await self._get("/discover/movie", params)

    async def get_movie_details(self, movie_id: int) -> Dict:
        return await self._get(f"/movie/{movie_id}", {"append_to_response": "release_dates"})

    async def get_release_date_facts(self, movie_id: int, country: Optional[str] = None) -> List[ReleaseDateFact]:
        details = await self.get_movie_details(movie_id)
        return parse_release_date_facts(movie_id, details.get("release_dates"), country=country)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
