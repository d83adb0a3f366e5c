"""
daily_releases.py

Release-day notifications: tell followers when a movie opens in theaters or
becomes available for streaming today, then ping the job's healthcheck.
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

import httpx

from releasetracker.schemas import (
    DailyReleasesResult,
    FollowWithDates,
    HealthcheckPing,
    MovieSummary,
    NotificationType,
    ReleaseType,
    RunError,
    UserContact,
)
from releasetracker.services.mailer import group_by_recipient
from releasetracker.services.notification_log import NotificationLog
from releasetracker.utils.timezone import today_utc, utc_now

logger = logging.getLogger(__name__)

RELEASE_KINDS = {
    NotificationType.THEATRICAL_RELEASE: ReleaseType.THEATRICAL,
    NotificationType.STREAMING_RELEASE: ReleaseType.DIGITAL,
}

Triple = Tuple[str, int, NotificationType]


def releases_today(follows: List[FollowWithDates], today, country: str = "US") -> Dict[Triple, FollowWithDates]:
    """(user, movie, kind) triples for follows whose tracked kind releases today.

    A movie opening in theaters and on streaming the same day yields two triples.
    """
    found: Dict[Triple, FollowWithDates] = OrderedDict()
    for follow in follows:
        for kind, release_type in RELEASE_KINDS.items():
            if kind == NotificationType.THEATRICAL_RELEASE and not follow.follow_type.wants_theatrical:
                continue
            if kind == NotificationType.STREAMING_RELEASE and not follow.follow_type.wants_streaming:
                continue
            fact = follow.fact_for(release_type, country)
            if fact is not None and fact.release_date == today:
                found.setdefault((follow.user_id, follow.movie_id, kind), follow)
    return found


class DailyReleasesJob:
    def __init__(
        self,
        repository,
        notification_log: NotificationLog,
        mailer,
        country: str = "US",
        healthcheck_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10,
        clock=utc_now,
    ):
        self.repository = repository
        self.notification_log = notification_log
        self.mailer = mailer
        self.country = country
        self.healthcheck_url = healthcheck_url
        self.timeout = timeout
        self.clock = clock
        self._client = http_client

    async def run(self) -> DailyReleasesResult:
        today = today_utc(self.clock())
        try:
            result = await self._run(today)
        except Exception as e:
            logger.error(f"[DailyReleases] Fatal error: {e}")
            await self.ping_healthcheck(success=False)
            raise
        result.healthcheck = await self.ping_healthcheck(success=True)
        return result

    async def _run(self, today) -> DailyReleasesResult:
        day = today.isoformat()
        logger.info(f"[DailyReleases] Checking releases for {day}")
        follows = await self.repository.list_follows()
        triples = releases_today(follows, today, self.country)
        result = DailyReleasesResult(releases_today=len(triples))
        logger.info(f"[DailyReleases] {len(triples)} releases today match {len(follows)} follows")
        if not triples:
            return result

        logged = await self.notification_log.find(
            {(user_id, movie_id) for user_id, movie_id, _ in triples},
            kinds=list(RELEASE_KINDS),
        )
        sent_today = {
            (r.user_id, r.movie_id, r.notification_type)
            for r in logged
            if (r.metadata or {}).get("release_date") == day
        }
        pending = [(triple, follow) for triple, follow in triples.items() if triple not in sent_today]
        logger.info(f"[DailyReleases] {len(pending)} new releases to notify ({len(triples) - len(pending)} already notified)")

        grouped = group_by_recipient((follow.user, (triple[2], follow.movie)) for triple, follow in pending)
        for email, (user, items) in grouped.items():
            theatrical = [movie for kind, movie in items if kind == NotificationType.THEATRICAL_RELEASE]
            streaming = [movie for kind, movie in items if kind == NotificationType.STREAMING_RELEASE]
            try:
                await self._send(user, theatrical, streaming)
            except Exception as e:
                logger.error(f"[DailyReleases] Failed to email {email}: {e}")
                result.errors.append(RunError(email=email, error=str(e)))
                continue
            result.emails_sent += 1

            records = [
                NotificationLog.sent(
                    user.id,
                    movie.id,
                    kind,
                    {"release_date": day, "release_type": "theatrical" if kind == NotificationType.THEATRICAL_RELEASE else "streaming"},
                )
                for kind, movie in items
            ]
            try:
                await self.notification_log.record_many(records)
            except Exception as e:
                logger.error(f"[DailyReleases] Sent to {email} but failed to log notifications: {e}")
                result.errors.append(RunError(email=email, error=f"notification log write failed: {e}"))

        logger.info(f"[DailyReleases] Complete: {result.emails_sent} emails for {len(pending)} releases")
        return result

    async def _send(self, user: UserContact, theatrical: List[MovieSummary], streaming: List[MovieSummary]) -> None:
        if len(theatrical) + len(streaming) == 1:
            if theatrical:
                await self.mailer.send_release(user, theatrical[0], theatrical=True)
            else:
                await self.mailer.send_release(user, streaming[0], theatrical=False)
        else:
            await self.mailer.send_batch_release(user, theatrical, streaming)

    async def ping_healthcheck(self, success: bool) -> HealthcheckPing:
        """Report the run to the healthcheck URL; never raises."""
        if not self.healthcheck_url:
            return HealthcheckPing(attempted=False, success=False, error="HEALTHCHECK_DAILY_RELEASES_URL not configured")
        url = self.healthcheck_url if success else f"{self.healthcheck_url.rstrip('/')}/fail"
        try:
            if self._client is not None:
                resp = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.error(f"[DailyReleases] Healthcheck ping failed: {e}")
            return HealthcheckPing(attempted=True, success=False, url=url, error=str(e))
        logger.info(f"[DailyReleases] Healthcheck ping sent ({'success' if success else 'failure'}): {resp.status_code}")
        return HealthcheckPing(attempted=True, success=resp.is_success, url=url, status=resp.status_code)
