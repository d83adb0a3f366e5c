"""
repository.py

Relational store access for the release pipeline: follows joined with their
movie's facts, idempotent fact upserts, and the insert-only notification log.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import selectinload

from releasetracker import models
from releasetracker.schemas import (
    FollowType,
    FollowWithDates,
    MovieSummary,
    NotificationRecord,
    NotificationType,
    ReleaseDateFact,
    ReleaseType,
    UserContact,
)
from releasetracker.utils.timezone import parse_date

logger = logging.getLogger(__name__)


def _fact_from_row(row: models.ReleaseDate) -> Optional[ReleaseDateFact]:
    release_date = parse_date(row.release_date)
    try:
        release_type = ReleaseType(row.release_type)
    except ValueError:
        release_type = None
    if release_date is None or release_type is None:
        logger.warning(f"Skipping malformed release_dates row {row.id} for movie {row.movie_id}")
        return None
    return ReleaseDateFact(
        movie_id=row.movie_id,
        country=row.country,
        release_type=release_type,
        release_date=release_date,
        certification=row.certification,
        last_validated_at=row.last_validated_at,
    )


def _follow_from_row(row: models.Follow) -> FollowWithDates:
    facts = [f for f in (_fact_from_row(rd) for rd in row.movie.release_dates or []) if f is not None]
    return FollowWithDates(
        id=row.id,
        user=UserContact(id=row.user.id, email=row.user.email, name=row.user.name),
        movie=MovieSummary(
            id=row.movie.id,
            title=row.movie.title,
            poster_path=row.movie.poster_path,
            overview=row.movie.overview,
            vote_average=row.movie.vote_average,
        ),
        follow_type=FollowType(row.follow_type),
        release_dates=facts,
        movie_checked_at=row.movie.release_dates_checked_at,
    )


class ReleaseRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def list_follows(self, user_id: Optional[str] = None) -> List[FollowWithDates]:
        """All follows (optionally one user's) with user, movie and stored facts."""
        async with self.session_factory() as session:
            stmt = (
                select(models.Follow)
                .options(
                    selectinload(models.Follow.user),
                    selectinload(models.Follow.movie).selectinload(models.Movie.release_dates),
                )
                .order_by(models.Follow.created_at.desc())
            )
            if user_id is not None:
                stmt = stmt.where(models.Follow.user_id == user_id)
            rows = (await session.execute(stmt)).scalars().all()
            return [_follow_from_row(row) for row in rows]

    async def upsert_release_dates(self, facts: Iterable[ReleaseDateFact]) -> int:
        """Insert or overwrite facts keyed by (movie_id, country, release_type).

        PostgreSQL rejects one statement touching a key twice, so repeated keys
        in `facts` keep their first occurrence.
        """
        unique = {}
        for fact in facts:
            if fact.key in unique:
                logger.debug(f"Dropping repeated release date fact {fact.key}")
                continue
            unique[fact.key] = fact
        rows = [fact.to_record() for fact in unique.values()]
        if not rows:
            return 0
        async with self.session_factory() as session:
            try:
                stmt = pg_insert(models.ReleaseDate.__table__).values(rows)
                stmt = stmt.on_conflict_do_update(
                    constraint="uq_release_dates_movie_country_type",
                    set_={
                        "release_date": stmt.excluded.release_date,
                        "certification": func.coalesce(stmt.excluded.certification, models.ReleaseDate.__table__.c.certification),
                        "last_validated_at": stmt.excluded.last_validated_at,
                    },
                )
                await session.execute(stmt)
                await session.commit()
                return len(rows)
            except Exception:
                await session.rollback()
                raise

    async def mark_movies_checked(self, movie_ids: Iterable[int], checked_at: datetime) -> None:
        ids = list(movie_ids)
        if not ids:
            return
        async with self.session_factory() as session:
            try:
                await session.execute(
                    update(models.Movie)
                    .where(models.Movie.id.in_(ids))
                    .values(release_dates_checked_at=checked_at)
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def find_notifications(
        self,
        user_ids: Iterable[str],
        movie_ids: Iterable[int],
        notification_types: Iterable[NotificationType],
    ) -> List[NotificationRecord]:
        """One query over the whole candidate set."""
        users, movies, types = list(user_ids), list(movie_ids), [t.value for t in notification_types]
        if not users or not movies or not types:
            return []
        async with self.session_factory() as session:
            stmt = select(models.Notification).where(
                models.Notification.user_id.in_(users),
                models.Notification.movie_id.in_(movies),
                models.Notification.notification_type.in_(types),
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [
                NotificationRecord(
                    user_id=row.user_id,
                    movie_id=row.movie_id,
                    notification_type=NotificationType(row.notification_type),
                    email_status=row.email_status,
                    metadata=row.metadata_json or {},
                    sent_at=row.sent_at,
                )
                for row in rows
            ]

    async def insert_notifications(self, records: Iterable[NotificationRecord]) -> int:
        """Append rows to the notification log; existing rows are never touched."""
        rows = [
            models.Notification(
                user_id=r.user_id,
                movie_id=r.movie_id,
                notification_type=r.notification_type.value,
                email_status=r.email_status.value,
                metadata_json=r.metadata,
                **({"sent_at": r.sent_at} if r.sent_at else {}),
            )
            for r in records
        ]
        if not rows:
            return 0
        async with self.session_factory() as session:
            try:
                session.add_all(rows)
                await session.commit()
                return len(rows)
            except Exception:
                await session.rollback()
                raise

    # Follow management

    async def add_follow(self, user_id: str, movie_id: int, follow_type: FollowType) -> int:
        async with self.session_factory() as session:
            try:
                row = models.Follow(user_id=user_id, movie_id=movie_id, follow_type=follow_type.value)
                session.add(row)
                await session.commit()
                return row.id
            except Exception:
                await session.rollback()
                raise

    async def delete_follows(self, user_id: str, movie_id: int, follow_type: Optional[FollowType] = None) -> int:
        async with self.session_factory() as session:
            try:
                stmt = delete(models.Follow).where(
                    models.Follow.user_id == user_id,
                    models.Follow.movie_id == movie_id,
                )
                if follow_type is not None:
                    stmt = stmt.where(models.Follow.follow_type == follow_type.value)
                result = await session.execute(stmt)
                await session.commit()
                return int(result.rowcount or 0)
            except Exception:
                await session.rollback()
                raise

    async def follow_types(self, user_id: str, movie_id: Optional[int] = None) -> List[FollowType]:
        async with self.session_factory() as session:
            stmt = select(models.Follow.follow_type).where(models.Follow.user_id == user_id)
            if movie_id is not None:
                stmt = stmt.where(models.Follow.movie_id == movie_id)
            rows = (await session.execute(stmt)).scalars().all()
            return [FollowType(value) for value in rows]
