"""
notification_log.py

At-most-once delivery guard backed by the permanent notification log.
Lookups are batched: one store query covers every candidate pair.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from releasetracker.schemas import EmailStatus, NotificationRecord, NotificationType

logger = logging.getLogger(__name__)

Pair = Tuple[str, int]


class NotificationLog:
    def __init__(self, repository):
        self.repository = repository

    async def find(
        self,
        pairs: Iterable[Pair],
        kinds: Iterable[NotificationType] = (NotificationType.DATE_DISCOVERED,),
    ) -> List[NotificationRecord]:
        """Logged records for the candidate pairs, restricted to `kinds`.

        The store is queried once by the distinct user and movie IDs; the
        cross-product it may return is narrowed back to the exact pairs here.
        """
        wanted = set(pairs)
        if not wanted:
            return []
        user_ids = sorted({user_id for user_id, _ in wanted})
        movie_ids = sorted({movie_id for _, movie_id in wanted})
        records = await self.repository.find_notifications(user_ids, movie_ids, list(kinds))
        return [r for r in records if (r.user_id, r.movie_id) in wanted]

    async def already_notified(
        self,
        pairs: Iterable[Pair],
        kind: NotificationType = NotificationType.DATE_DISCOVERED,
    ) -> Set[Pair]:
        """Subset of `pairs` that already has a `kind` notification."""
        records = await self.find(pairs, kinds=(kind,))
        return {(r.user_id, r.movie_id) for r in records}

    async def already_notified_one(
        self,
        user_id: str,
        movie_id: int,
        kind: NotificationType = NotificationType.DATE_DISCOVERED,
    ) -> bool:
        return (user_id, movie_id) in await self.already_notified([(user_id, movie_id)], kind)

    async def record(
        self,
        user_id: str,
        movie_id: int,
        kind: NotificationType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.record_many([
            NotificationRecord(user_id=user_id, movie_id=movie_id, notification_type=kind, metadata=metadata or {})
        ])

    async def record_many(self, records: List[NotificationRecord]) -> int:
        """Append records; nothing is ever updated or deleted."""
        if not records:
            return 0
        inserted = await self.repository.insert_notifications(records)
        logger.info(f"Recorded {inserted} notifications")
        return inserted

    @staticmethod
    def sent(user_id: str, movie_id: int, kind: NotificationType, metadata: Dict[str, Any]) -> NotificationRecord:
        return NotificationRecord(
            user_id=user_id,
            movie_id=movie_id,
            notification_type=kind,
            email_status=EmailStatus.SENT,
            metadata=metadata,
        )
