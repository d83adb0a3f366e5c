import asyncio

from releasetracker.schemas import FollowType
from releasetracker.services.follows import FollowService
from fakes import FakeRepository


def test_follow_kinds_are_independent_rows():
    repo = FakeRepository()
    service = FollowService(repo)

    async def scenario():
        await service.follow("u1", 1, FollowType.THEATRICAL)
        await service.follow("u1", 1, FollowType.STREAMING)
        return await service.follow_kinds("u1", 1)

    assert asyncio.run(scenario()) == [FollowType.THEATRICAL, FollowType.STREAMING]


def test_unfollow_one_kind_or_all():
    repo = FakeRepository()
    service = FollowService(repo)

    async def scenario():
        await service.follow("u1", 1, FollowType.THEATRICAL)
        await service.follow("u1", 1, FollowType.STREAMING)
        await service.follow("u1", 2, FollowType.BOTH)
        removed_one = await service.unfollow("u1", 1, FollowType.STREAMING)
        kinds_after_one = await service.follow_kinds("u1", 1)
        removed_all = await service.unfollow("u1", 1)
        removed_missing = await service.unfollow("u1", 1)
        return removed_one, kinds_after_one, removed_all, removed_missing, await service.follow_kinds("u1", 2)

    removed_one, kinds_after_one, removed_all, removed_missing, other = asyncio.run(scenario())
    assert removed_one is True
    assert kinds_after_one == [FollowType.THEATRICAL]
    assert removed_all is True
    assert removed_missing is False
    assert other == [FollowType.BOTH]


def test_stats_count_both_toward_each_kind():
    repo = FakeRepository()
    service = FollowService(repo)

    async def scenario():
        await service.follow("u1", 1, FollowType.THEATRICAL)
        await service.follow("u1", 2, FollowType.STREAMING)
        await service.follow("u1", 3, FollowType.BOTH)
        await service.follow("u2", 4, FollowType.BOTH)
        return await service.stats("u1")

    assert asyncio.run(scenario()) == {"total": 3, "theatrical": 2, "streaming": 2}


def test_list_for_user():
    repo = FakeRepository()
    repo.follow_row("u1", 1, FollowType.BOTH)
    repo.follow_row("u2", 2, FollowType.BOTH)

    follows = asyncio.run(FollowService(repo).list_for_user("u1"))
    assert [f.movie_id for f in follows] == [1]
