"""In-memory stand-ins for the store, catalog, cache and mailer collaborators."""
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from releasetracker.errors import MailerError, TMDBError
from releasetracker.schemas import (
    FollowType,
    FollowWithDates,
    MovieSummary,
    NotificationRecord,
    ReleaseDateFact,
    ReleaseType,
    UserContact,
)

NOW = datetime(2025, 10, 5, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def fixed_clock(now: datetime = NOW):
    return lambda: now


async def no_sleep(seconds):
    return None


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def fact(movie_id: int, release_type: ReleaseType, day: date, country: str = "US", validated: Optional[datetime] = None) -> ReleaseDateFact:
    return ReleaseDateFact(
        movie_id=movie_id,
        country=country,
        release_type=release_type,
        release_date=day,
        last_validated_at=validated,
    )


def raw_movie(movie_id: int, **fields) -> Dict:
    movie = {"id": movie_id, "title": f"Movie {movie_id}", "adult": False}
    movie.update(fields)
    return movie


class FakeRepository:
    def __init__(self):
        self.users: Dict[str, UserContact] = {}
        self.movies: Dict[int, MovieSummary] = {}
        self.follow_rows: List[dict] = []
        self.facts: Dict[tuple, ReleaseDateFact] = {}
        self.checked_at: Dict[int, datetime] = {}
        self.notifications: List[NotificationRecord] = []
        self.find_calls = 0
        self.upsert_calls = 0
        self.upsert_batches: List[List[tuple]] = []
        self.fail_list_follows = False
        self.fail_upsert_for = set()

    # Fixture helpers

    def add_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> UserContact:
        user = UserContact(id=user_id, email=email or f"{user_id}@example.com", name=name)
        self.users[user_id] = user
        return user

    def add_movie(self, movie_id: int, title: Optional[str] = None, checked_at: Optional[datetime] = None) -> MovieSummary:
        movie = MovieSummary(id=movie_id, title=title or f"Movie {movie_id}")
        self.movies[movie_id] = movie
        if checked_at is not None:
            self.checked_at[movie_id] = checked_at
        return movie

    def add_fact(self, item: ReleaseDateFact) -> None:
        self.facts[item.key] = item

    def follow_row(self, user_id: str, movie_id: int, follow_type: FollowType) -> None:
        if user_id not in self.users:
            self.add_user(user_id)
        if movie_id not in self.movies:
            self.add_movie(movie_id)
        self.follow_rows.append({
            "id": len(self.follow_rows) + 1,
            "user_id": user_id,
            "movie_id": movie_id,
            "follow_type": FollowType(follow_type),
        })

    def stored(self, movie_id: int, release_type: ReleaseType, country: str = "US") -> Optional[ReleaseDateFact]:
        return self.facts.get((movie_id, country, int(release_type)))

    # Repository interface

    async def list_follows(self, user_id: Optional[str] = None) -> List[FollowWithDates]:
        if self.fail_list_follows:
            raise RuntimeError("database unavailable")
        follows = []
        for row in self.follow_rows:
            if user_id is not None and row["user_id"] != user_id:
                continue
            follows.append(FollowWithDates(
                id=row["id"],
                user=self.users[row["user_id"]],
                movie=self.movies[row["movie_id"]],
                follow_type=row["follow_type"],
                release_dates=[f for f in self.facts.values() if f.movie_id == row["movie_id"]],
                movie_checked_at=self.checked_at.get(row["movie_id"]),
            ))
        return follows

    async def upsert_release_dates(self, facts) -> int:
        self.upsert_calls += 1
        facts = list(facts)
        self.upsert_batches.append([item.key for item in facts])
        for item in facts:
            if item.movie_id in self.fail_upsert_for:
                raise RuntimeError(f"write failed for movie {item.movie_id}")
        for item in facts:
            self.facts[item.key] = item
        return len(facts)

    async def mark_movies_checked(self, movie_ids, checked_at: datetime) -> None:
        for movie_id in movie_ids:
            self.checked_at[movie_id] = checked_at

    async def find_notifications(self, user_ids, movie_ids, notification_types) -> List[NotificationRecord]:
        self.find_calls += 1
        users, movies, types = set(user_ids), set(movie_ids), set(notification_types)
        return [
            n for n in self.notifications
            if n.user_id in users and n.movie_id in movies and n.notification_type in types
        ]

    async def insert_notifications(self, records) -> int:
        records = list(records)
        self.notifications.extend(records)
        return len(records)

    async def add_follow(self, user_id: str, movie_id: int, follow_type: FollowType) -> int:
        self.follow_row(user_id, movie_id, follow_type)
        return self.follow_rows[-1]["id"]

    async def delete_follows(self, user_id: str, movie_id: int, follow_type: Optional[FollowType] = None) -> int:
        keep, removed = [], 0
        for row in self.follow_rows:
            matches = row["user_id"] == user_id and row["movie_id"] == movie_id
            if matches and (follow_type is None or row["follow_type"] == follow_type):
                removed += 1
            else:
                keep.append(row)
        self.follow_rows = keep
        return removed

    async def follow_types(self, user_id: str, movie_id: Optional[int] = None) -> List[FollowType]:
        return [
            row["follow_type"] for row in self.follow_rows
            if row["user_id"] == user_id and (movie_id is None or row["movie_id"] == movie_id)
        ]


class FakeCatalog:
    """Pages are lists of raw movies; facts are per movie ID."""

    def __init__(self, pages: Optional[List[List[Dict]]] = None, facts: Optional[Dict[int, List[ReleaseDateFact]]] = None):
        self.pages = pages or []
        self.facts = facts or {}
        self.fail_pages = set()
        self.fail_facts_for = set()
        self.page_requests: List[dict] = []
        self.fact_requests: List[int] = []

    def _page(self, page: int) -> Dict:
        if page in self.fail_pages:
            raise TMDBError("TMDB API error: 500 Internal Server Error", status_code=500)
        results = self.pages[page - 1] if page <= len(self.pages) else []
        return {"page": page, "results": results}

    async def discover_recent_digital(self, days_back=60, vote_count_min=50, vote_average_min=6.5, page=1, today=None):
        self.page_requests.append({"days_back": days_back, "page": page, "today": today})
        return self._page(page)

    async def discover_by_date_range(self, start_date, end_date, sort_by="popularity.desc", language="en", page=1):
        self.page_requests.append({"language": language, "sort_by": sort_by, "page": page})
        return self._page(page)

    async def get_release_date_facts(self, movie_id: int, country: Optional[str] = None) -> List[ReleaseDateFact]:
        self.fact_requests.append(movie_id)
        if movie_id in self.fail_facts_for:
            raise TMDBError(f"TMDB request failed for /movie/{movie_id}")
        return [f for f in self.facts.get(movie_id, []) if country is None or f.country == country]


class FakeStore:
    def __init__(self):
        self.data: Dict[str, object] = {}
        self.ttls: Dict[str, int] = {}
        self.set_calls = 0

    async def get(self, key: str):
        return self.data.get(key)

    async def set(self, key: str, value, ttl: int = 1800) -> bool:
        self.set_calls += 1
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FakeMailer:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent: List[tuple] = []

    def _check(self, user: UserContact):
        if user.email in self.fail_for:
            raise MailerError("Brevo API error: 400", recipient=user.email, status_code=400)

    async def send_date_discovered(self, user, update):
        self._check(user)
        self.sent.append(("single", user.email, [update]))

    async def send_batch_date_discovered(self, user, updates):
        self._check(user)
        self.sent.append(("batch", user.email, list(updates)))

    async def send_release(self, user, movie, theatrical):
        self._check(user)
        self.sent.append(("release", user.email, [("theatrical" if theatrical else "streaming", movie.id)]))

    async def send_batch_release(self, user, theatrical, streaming):
        self._check(user)
        items = [("theatrical", m.id) for m in theatrical] + [("streaming", m.id) for m in streaming]
        self.sent.append(("batch_release", user.email, items))
