"""
discovery.py

Daily date discovery and validation for followed movies.

A followed movie is refreshed when a release kind its followers care about
has no stored fact yet, or when a stored future date inside the horizon has
not been re-validated recently. Every refreshed fact is upserted with a new
validation stamp; only newly discovered future dates and dates that moved
earlier (but are still in the future) are mailed out, once per user and movie.
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from releasetracker.schemas import (
    DateChange,
    DiscoveryRunResult,
    FollowType,
    FollowWithDates,
    MovieDateUpdate,
    NotificationType,
    ReleaseDateFact,
    ReleaseType,
    RunError,
)
from releasetracker.services.mailer import group_by_recipient
from releasetracker.services.notification_log import NotificationLog
from releasetracker.utils.timezone import ensure_utc, today_utc, utc_now

logger = logging.getLogger(__name__)

# Release kinds tracked per follow kind
KINDS_BY_FOLLOW = {
    FollowType.THEATRICAL: (ReleaseType.THEATRICAL,),
    FollowType.STREAMING: (ReleaseType.DIGITAL,),
    FollowType.BOTH: (ReleaseType.THEATRICAL, ReleaseType.DIGITAL),
}


def classify(stored: Optional[ReleaseDateFact], fresh: Optional[ReleaseDateFact]) -> Optional[DateChange]:
    """Compare a refreshed catalog fact against the stored one (None when the catalog has none)."""
    if fresh is None:
        return None
    if stored is None:
        return DateChange.DISCOVERED
    if stored.release_date != fresh.release_date:
        return DateChange.CHANGED
    return DateChange.UNCHANGED


def is_eligible(change: Optional[DateChange], new_date: Optional[date], old_date: Optional[date], today: date) -> bool:
    if change == DateChange.DISCOVERED:
        return new_date > today
    if change == DateChange.CHANGED:
        return new_date < old_date and new_date > today
    return False


def needs_refresh(
    follow: FollowWithDates,
    today: date,
    now: datetime,
    horizon_days: int = 90,
    validation_hours: int = 24,
    country: str = "US",
) -> bool:
    """True when a kind this follow tracks is missing or due for re-validation."""
    horizon = today + timedelta(days=horizon_days)
    validated_after = now - timedelta(hours=validation_hours)
    for release_type in KINDS_BY_FOLLOW[follow.follow_type]:
        fact = follow.fact_for(release_type, country)
        if fact is None:
            return True
        if today < fact.release_date <= horizon:
            validated = ensure_utc(fact.last_validated_at)
            if validated is None or validated < validated_after:
                return True
    return False


def select_movies(follows: Iterable[FollowWithDates], today: date, now: datetime, **kwargs) -> List[int]:
    """Distinct movie IDs needing a refresh, least recently checked first."""
    candidates: Dict[int, Optional[datetime]] = OrderedDict()
    for follow in follows:
        if follow.movie_id in candidates:
            continue
        if needs_refresh(follow, today, now, **kwargs):
            candidates[follow.movie_id] = ensure_utc(follow.movie_checked_at)
    # Never-checked movies first, then oldest check; ties keep listing order
    return sorted(candidates, key=lambda movie_id: (candidates[movie_id] is not None, candidates[movie_id] or now))


def first_per_kind(facts: Iterable[ReleaseDateFact], country: str) -> Dict[ReleaseType, ReleaseDateFact]:
    """One fact per release type for `country`; the first one the catalog lists wins.

    The catalog may list a type more than once (several premieres, an IMAX
    entry next to the wide release). Classification and the upsert both use
    this single fact per stored key.
    """
    kept: Dict[ReleaseType, ReleaseDateFact] = OrderedDict()
    for fact in facts:
        if fact.country == country and fact.release_type not in kept:
            kept[fact.release_type] = fact
    return kept


class DateDiscoveryJob:
    def __init__(self, repository, catalog, notification_log: NotificationLog, mailer, settings, clock=utc_now, sleep=asyncio.sleep):
        self.repository = repository
        self.catalog = catalog
        self.notification_log = notification_log
        self.mailer = mailer
        self.settings = settings
        self.clock = clock
        self._sleep = sleep

    @property
    def country(self) -> str:
        return self.settings.release_country

    async def run(self) -> DiscoveryRunResult:
        now = ensure_utc(self.clock())
        today = today_utc(now)
        result = DiscoveryRunResult()
        logger.info(f"[DiscoverDates] Starting run for {today.isoformat()}")

        # Fatal on failure: nothing has been written yet
        follows = await self.repository.list_follows()
        follows_by_movie: Dict[int, List[FollowWithDates]] = OrderedDict()
        for follow in follows:
            follows_by_movie.setdefault(follow.movie_id, []).append(follow)

        candidates = select_movies(
            follows,
            today,
            now,
            horizon_days=self.settings.discovery_horizon_days,
            validation_hours=self.settings.discovery_validation_hours,
            country=self.country,
        )
        selected = candidates[:self.settings.discovery_batch_size]
        result.movies_selected = len(selected)
        result.movies_deferred = len(candidates) - len(selected)
        logger.info(
            f"[DiscoverDates] {len(follows)} follows, {len(candidates)} movies need a refresh; "
            f"processing {len(selected)}, deferring {result.movies_deferred}"
        )

        updates: List[MovieDateUpdate] = []
        for index, movie_id in enumerate(selected):
            update = await self._refresh_movie(movie_id, follows_by_movie[movie_id], now, today, result)
            if update is not None:
                updates.append(update)
            if index < len(selected) - 1 and self.settings.discovery_request_delay:
                await self._sleep(self.settings.discovery_request_delay)

        try:
            await self.repository.mark_movies_checked(selected, now)
        except Exception as e:
            logger.error(f"[DiscoverDates] Failed to stamp checked movies: {e}")
            result.errors.append(RunError(error=f"mark checked failed: {e}"))

        pending = await self._pending_notifications(updates, follows_by_movie)
        result.notifications_eligible = len(pending)
        if pending:
            await self._dispatch(pending, result)

        logger.info(
            f"[DiscoverDates] Done: {result.movies_processed} processed, {result.dates_discovered} discovered, "
            f"{result.dates_changed} changed, {result.dates_validated} validated, "
            f"{result.emails_sent} emails, {len(result.errors)} errors"
        )
        return result

    async def _refresh_movie(
        self,
        movie_id: int,
        movie_follows: List[FollowWithDates],
        now: datetime,
        today: date,
        result: DiscoveryRunResult,
    ) -> Optional[MovieDateUpdate]:
        """Fetch, classify and persist one movie's facts; returns its eligible dates, if any."""
        stored_source = movie_follows[0]
        try:
            fetched = await self.catalog.get_release_date_facts(movie_id, country=self.country)
        except Exception as e:
            logger.error(f"[DiscoverDates] Failed to fetch release dates for movie {movie_id}: {e}")
            result.errors.append(RunError(movie_id=movie_id, error=str(e)))
            return None

        facts = first_per_kind(fetched, self.country)
        update = MovieDateUpdate(movie=stored_source.movie)
        eligible = False
        for release_type in (ReleaseType.THEATRICAL, ReleaseType.DIGITAL):
            stored = stored_source.fact_for(release_type, self.country)
            fresh = facts.get(release_type)
            change = classify(stored, fresh)
            if change is None:
                continue
            if change == DateChange.DISCOVERED:
                result.dates_discovered += 1
            elif change == DateChange.CHANGED:
                result.dates_changed += 1
            else:
                result.dates_validated += 1

            old_date = stored.release_date if stored else None
            if not is_eligible(change, fresh.release_date, old_date, today):
                continue
            eligible = True
            if release_type == ReleaseType.THEATRICAL:
                update.theatrical_date = fresh.release_date
                update.theatrical_change = change
                update.previous_theatrical_date = old_date
            else:
                update.streaming_date = fresh.release_date
                update.streaming_change = change
                update.previous_streaming_date = old_date

        stamped = [fact.model_copy(update={"last_validated_at": now}) for fact in facts.values()]
        try:
            await self.repository.upsert_release_dates(stamped)
        except Exception as e:
            logger.error(f"[DiscoverDates] Failed to save release dates for movie {movie_id}: {e}")
            result.errors.append(RunError(movie_id=movie_id, error=str(e)))
            return None

        result.movies_processed += 1
        return update if eligible else None

    async def _pending_notifications(
        self,
        updates: List[MovieDateUpdate],
        follows_by_movie: Dict[int, List[FollowWithDates]],
    ) -> List[Tuple[FollowWithDates, MovieDateUpdate]]:
        """Fan eligible dates out to matching follows, one entry per (user, movie), minus logged pairs."""
        per_pair: Dict[Tuple[str, int], Tuple[FollowWithDates, MovieDateUpdate]] = OrderedDict()
        for update in updates:
            for follow in follows_by_movie.get(update.movie.id, []):
                wants_theatrical = follow.follow_type.wants_theatrical and update.theatrical_date is not None
                wants_streaming = follow.follow_type.wants_streaming and update.streaming_date is not None
                if not (wants_theatrical or wants_streaming):
                    continue
                key = (follow.user_id, follow.movie_id)
                _, merged = per_pair.get(key, (follow, MovieDateUpdate(movie=update.movie)))
                if wants_theatrical:
                    merged.theatrical_date = update.theatrical_date
                    merged.theatrical_change = update.theatrical_change
                    merged.previous_theatrical_date = update.previous_theatrical_date
                if wants_streaming:
                    merged.streaming_date = update.streaming_date
                    merged.streaming_change = update.streaming_change
                    merged.previous_streaming_date = update.previous_streaming_date
                per_pair[key] = (follow, merged)

        if not per_pair:
            return []
        # Logged per movie: a pair already told about one kind is not mailed about another
        notified = await self.notification_log.already_notified(per_pair.keys(), NotificationType.DATE_DISCOVERED)
        if notified:
            logger.info(f"[DiscoverDates] Skipping {len(notified)} already-notified user/movie pairs")
        return [entry for key, entry in per_pair.items() if key not in notified]

    async def _dispatch(self, pending: List[Tuple[FollowWithDates, MovieDateUpdate]], result: DiscoveryRunResult) -> None:
        grouped = group_by_recipient((follow.user, update) for follow, update in pending)
        for email, (user, user_updates) in grouped.items():
            try:
                if len(user_updates) == 1:
                    await self.mailer.send_date_discovered(user, user_updates[0])
                else:
                    await self.mailer.send_batch_date_discovered(user, user_updates)
            except Exception as e:
                logger.error(f"[DiscoverDates] Failed to email {email}: {e}")
                result.errors.append(RunError(email=email, error=str(e)))
                continue
            result.emails_sent += 1

            records = [
                NotificationLog.sent(user.id, update.movie.id, NotificationType.DATE_DISCOVERED, update.notification_metadata())
                for update in user_updates
            ]
            try:
                await self.notification_log.record_many(records)
            except Exception as e:
                logger.error(f"[DiscoverDates] Sent to {email} but failed to log notifications: {e}")
                result.errors.append(RunError(email=email, error=f"notification log write failed: {e}"))
