"""
schemas.py

Pydantic schemas for release-date facts, unified summaries, follows,
notification records, cache entries and job results.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from enum import Enum, IntEnum
import datetime


class ReleaseType(IntEnum):
    """Catalog release-type codes."""
    PREMIERE = 1
    THEATRICAL_LIMITED = 2
    THEATRICAL = 3
    DIGITAL = 4
    PHYSICAL = 5
    TV = 6


class FollowType(str, Enum):
    THEATRICAL = "THEATRICAL"
    STREAMING = "STREAMING"
    BOTH = "BOTH"

    @property
    def wants_theatrical(self) -> bool:
        return self in (FollowType.THEATRICAL, FollowType.BOTH)

    @property
    def wants_streaming(self) -> bool:
        return self in (FollowType.STREAMING, FollowType.BOTH)


class NotificationType(str, Enum):
    THEATRICAL_RELEASE = "THEATRICAL_RELEASE"
    STREAMING_RELEASE = "STREAMING_RELEASE"
    DATE_DISCOVERED = "DATE_DISCOVERED"


class EmailStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"
    PENDING = "PENDING"


class DateChange(str, Enum):
    """Outcome of comparing a refreshed catalog date with the stored fact."""
    DISCOVERED = "discovered"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


class ReleaseDateFact(BaseModel):
    """(movie, country, kind) -> date. Serialized with the persisted record field names."""
    model_config = ConfigDict(populate_by_name=True)

    movie_id: int = Field(alias="movieId")
    country: str
    release_type: ReleaseType = Field(alias="releaseType")
    release_date: datetime.date = Field(alias="releaseDate")
    certification: Optional[str] = None
    last_validated_at: Optional[datetime.datetime] = Field(default=None, alias="lastValidatedAt")

    @property
    def key(self):
        return (self.movie_id, self.country, int(self.release_type))

    def to_record(self) -> Dict[str, Any]:
        """Row values for the release_dates table."""
        return {
            "movie_id": self.movie_id,
            "country": self.country,
            "release_type": int(self.release_type),
            "release_date": self.release_date.isoformat(),
            "certification": self.certification,
            "last_validated_at": self.last_validated_at,
        }


class UnifiedReleaseDates(BaseModel):
    theatrical: Optional[datetime.date] = None
    streaming: Optional[datetime.date] = None
    primary: Optional[datetime.date] = None
    limited: Optional[datetime.date] = None
    digital: Optional[datetime.date] = None

    @property
    def home_release(self) -> Optional[datetime.date]:
        """Digital date, falling back to the first streaming-class date."""
        return self.digital or self.streaming


class UserContact(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class MovieSummary(BaseModel):
    id: int
    title: str
    poster_path: Optional[str] = None
    overview: Optional[str] = None
    vote_average: Optional[float] = None


class FollowWithDates(BaseModel):
    """A follow row joined with its user, movie and the movie's stored facts."""
    id: int
    user: UserContact
    movie: MovieSummary
    follow_type: FollowType
    release_dates: List[ReleaseDateFact] = []
    movie_checked_at: Optional[datetime.datetime] = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def movie_id(self) -> int:
        return self.movie.id

    def fact_for(self, release_type: ReleaseType, country: str = "US") -> Optional[ReleaseDateFact]:
        for fact in self.release_dates:
            if fact.country == country and fact.release_type == release_type:
                return fact
        return None


class NotificationRecord(BaseModel):
    user_id: str
    movie_id: int
    notification_type: NotificationType
    email_status: EmailStatus = EmailStatus.SENT
    metadata: Dict[str, Any] = {}
    sent_at: Optional[datetime.datetime] = None


class MovieDateUpdate(BaseModel):
    """Eligible discovered/changed dates for one movie, as handed to the mailer."""
    movie: MovieSummary
    theatrical_date: Optional[datetime.date] = None
    streaming_date: Optional[datetime.date] = None
    theatrical_change: Optional[DateChange] = None
    streaming_change: Optional[DateChange] = None
    previous_theatrical_date: Optional[datetime.date] = None
    previous_streaming_date: Optional[datetime.date] = None

    def notification_metadata(self) -> Dict[str, Any]:
        def _fmt(value):
            return value.isoformat() if value else None

        return {
            "theatrical_date": _fmt(self.theatrical_date),
            "streaming_date": _fmt(self.streaming_date),
            "theatrical_change": self.theatrical_change.value if self.theatrical_change else None,
            "streaming_change": self.streaming_change.value if self.streaming_change else None,
            "previous_theatrical_date": _fmt(self.previous_theatrical_date),
            "previous_streaming_date": _fmt(self.previous_streaming_date),
        }


# Cache payloads

class CacheEntry(BaseModel):
    cache_key: str
    movies: List[Dict[str, Any]]
    total_count: int = Field(ge=0)
    built_at: datetime.datetime
    filters: Dict[str, Any] = {}


class BuildStats(BaseModel):
    total_fetched: int = Field(0, ge=0)
    pages_fetched: int = Field(0, ge=0)
    filtered_count: int = Field(0, ge=0)
    enrichment_calls: int = Field(0, ge=0)
    oldest_date: Optional[str] = None
    newest_date: Optional[str] = None
    reached_target: bool = False


class CacheBuildResult(BaseModel):
    success: bool
    data: Optional[CacheEntry] = None
    error: Optional[str] = None
    stats: BuildStats = BuildStats()


class Pagination(BaseModel):
    page: int
    limit: int
    total_pages: int
    total_results: int
    has_next_page: bool
    has_previous_page: bool


class CachePage(BaseModel):
    movies: List[Dict[str, Any]]
    pagination: Pagination
    filters: Dict[str, Any] = {}
    built_at: Optional[datetime.datetime] = None


# Job results

class RunError(BaseModel):
    movie_id: Optional[int] = None
    email: Optional[str] = None
    error: str


class DiscoveryRunResult(BaseModel):
    success: bool = True
    movies_selected: int = 0
    movies_deferred: int = 0
    movies_processed: int = 0
    dates_discovered: int = 0
    dates_changed: int = 0
    dates_validated: int = 0
    notifications_eligible: int = 0
    emails_sent: int = 0
    errors: List[RunError] = []


class HealthcheckPing(BaseModel):
    attempted: bool
    success: bool
    url: Optional[str] = None
    status: Optional[int] = None
    error: Optional[str] = None


class DailyReleasesResult(BaseModel):
    success: bool = True
    releases_today: int = 0
    emails_sent: int = 0
    errors: List[RunError] = []
    healthcheck: Optional[HealthcheckPing] = None
