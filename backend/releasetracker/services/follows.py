"""
follows.py

User follow management. A user holds independent rows per follow kind for
the same movie; "Both" counts toward theatrical and streaming alike.
"""
import logging
from typing import Dict, List, Optional

from releasetracker.schemas import FollowType, FollowWithDates

logger = logging.getLogger(__name__)


class FollowService:
    def __init__(self, repository):
        self.repository = repository

    async def follow(self, user_id: str, movie_id: int, follow_type: FollowType) -> int:
        follow_id = await self.repository.add_follow(user_id, movie_id, FollowType(follow_type))
        logger.info(f"User {user_id} followed movie {movie_id} ({FollowType(follow_type).value})")
        return follow_id

    async def unfollow(self, user_id: str, movie_id: int, follow_type: Optional[FollowType] = None) -> bool:
        """Remove one kind, or every kind when follow_type is None."""
        kind = FollowType(follow_type) if follow_type is not None else None
        removed = await self.repository.delete_follows(user_id, movie_id, kind)
        logger.info(f"User {user_id} unfollowed movie {movie_id} ({kind.value if kind else 'all'}): {removed} rows")
        return removed > 0

    async def list_for_user(self, user_id: str) -> List[FollowWithDates]:
        return await self.repository.list_follows(user_id=user_id)

    async def follow_kinds(self, user_id: str, movie_id: int) -> List[FollowType]:
        return await self.repository.follow_types(user_id, movie_id)

    async def stats(self, user_id: str) -> Dict[str, int]:
        kinds = await self.repository.follow_types(user_id)
        return {
            "total": len(kinds),
            "theatrical": sum(1 for k in kinds if k.wants_theatrical),
            "streaming": sum(1 for k in kinds if k.wants_streaming),
        }
