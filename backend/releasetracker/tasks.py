"""
tasks.py

Celery tasks for the scheduled jobs. Each task builds its collaborators from
validated settings, runs one coroutine with asyncio.run and releases the
clients afterwards. The build_* helpers are the only place concrete clients
are constructed.
"""
import asyncio
import logging
from typing import Any, Dict

import httpx
from celery import shared_task

from releasetracker.core.config import Settings, get_settings
from releasetracker.core.database import create_engine_from_url, create_session_factory
from releasetracker.core.redis_client import close_redis, get_redis
from releasetracker.services.cache_builder import RecentReleasesCache, UpcomingReleasesCache
from releasetracker.services.cache_store import CacheStore
from releasetracker.services.daily_releases import DailyReleasesJob
from releasetracker.services.discovery import DateDiscoveryJob
from releasetracker.services.mailer import BrevoMailer
from releasetracker.services.notification_log import NotificationLog
from releasetracker.services.repository import ReleaseRepository
from releasetracker.services.tmdb_client import TMDBClient

logger = logging.getLogger(__name__)


def build_catalog(settings: Settings) -> TMDBClient:
    return TMDBClient(
        settings.tmdb_api_key,
        http_client=httpx.AsyncClient(timeout=settings.http_timeout_seconds),
        timeout=settings.http_timeout_seconds,
    )


def build_mailer(settings: Settings) -> BrevoMailer:
    return BrevoMailer(
        settings.brevo_api_key,
        sender_email=settings.mail_sender_email,
        sender_name=settings.mail_sender_name,
        app_url=settings.app_url,
        http_client=httpx.AsyncClient(timeout=settings.http_timeout_seconds),
    )


def build_recent_cache(settings: Settings, catalog, store) -> RecentReleasesCache:
    return RecentReleasesCache(
        catalog,
        store,
        days_back=settings.recent_cache_days_back,
        vote_count_min=settings.recent_cache_vote_count_min,
        vote_average_min=settings.recent_cache_vote_average_min,
        target_count=settings.recent_cache_target_count,
        max_pages=settings.recent_cache_max_pages,
        country=settings.release_country,
        enrichment_concurrency=settings.enrichment_concurrency,
        enrichment_batch_delay=settings.enrichment_batch_delay,
        ttl=settings.cache_ttl_seconds,
    )


def build_upcoming_cache(settings: Settings, catalog, store) -> UpcomingReleasesCache:
    return UpcomingReleasesCache(
        catalog,
        store,
        months_ahead=settings.upcoming_cache_months_ahead,
        languages=settings.upcoming_cache_languages,
        page_delay=settings.upcoming_cache_page_delay,
        ttl=settings.cache_ttl_seconds,
    )


async def _discover(settings: Settings) -> Dict[str, Any]:
    engine = create_engine_from_url(settings.database_url)
    catalog = build_catalog(settings)
    mailer = build_mailer(settings)
    try:
        repository = ReleaseRepository(create_session_factory(engine))
        job = DateDiscoveryJob(repository, catalog, NotificationLog(repository), mailer, settings)
        result = await job.run()
        return result.model_dump(mode="json")
    finally:
        await catalog.aclose()
        await mailer.aclose()
        await engine.dispose()


async def _daily_releases(settings: Settings) -> Dict[str, Any]:
    engine = create_engine_from_url(settings.database_url)
    mailer = build_mailer(settings)
    try:
        repository = ReleaseRepository(create_session_factory(engine))
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
            job = DailyReleasesJob(
                repository,
                NotificationLog(repository),
                mailer,
                country=settings.release_country,
                healthcheck_url=settings.healthcheck_daily_releases_url,
                http_client=http_client,
            )
            result = await job.run()
        return result.model_dump(mode="json")
    finally:
        await mailer.aclose()
        await engine.dispose()


async def _refresh_cache(settings: Settings, build_cache) -> Dict[str, Any]:
    catalog = build_catalog(settings)
    try:
        store = CacheStore(get_redis(settings.redis_url))
        result = await build_cache(settings, catalog, store).rebuild()
        return {"success": result.success, "error": result.error, "stats": result.stats.model_dump()}
    finally:
        await catalog.aclose()
        await close_redis(settings.redis_url)


@shared_task(name="releasetracker.tasks.discover_release_dates")
def discover_release_dates() -> dict:
    """Daily date discovery and validation for followed movies."""
    return asyncio.run(_discover(get_settings()))


@shared_task(name="releasetracker.tasks.notify_daily_releases")
def notify_daily_releases() -> dict:
    """Release-day e-mails for today's theatrical and streaming releases."""
    return asyncio.run(_daily_releases(get_settings()))


@shared_task(name="releasetracker.tasks.refresh_recent_cache")
def refresh_recent_cache() -> dict:
    result = asyncio.run(_refresh_cache(get_settings(), build_recent_cache))
    if not result["success"]:
        logger.error(f"refresh_recent_cache failed: {result['error']}")
    return result


@shared_task(name="releasetracker.tasks.refresh_upcoming_cache")
def refresh_upcoming_cache() -> dict:
    result = asyncio.run(_refresh_cache(get_settings(), build_upcoming_cache))
    if not result["success"]:
        logger.error(f"refresh_upcoming_cache failed: {result['error']}")
    return result


@shared_task(name="releasetracker.tasks.send_test_email")
def send_test_email(to_email: str) -> dict:
    """Check mail delivery configuration end to end."""
    async def _run():
        mailer = build_mailer(get_settings())
        try:
            await mailer.send_test(to_email)
        finally:
            await mailer.aclose()
    asyncio.run(_run())
    return {"success": True, "to": to_email}
