import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.errors import (
    AlreadyInLobbyError,
    AlreadyMemberError,
    AlreadyStartedError,
    ConflictError,
    ForbiddenError,
    LobbyFullError,
    LobbyNotFoundError,
    NameTakenError,
    NotInLobbyError,
    ValidationError,
)
from src.core.lobby import Lobby, LobbyFilter, LobbyRegistry, LobbyState, Visibility


def make_friends(mapping: dict[str, set[str]] | None = None):
    """Friend source backed by a dict of user -> friend IDs."""
    mapping = mapping or {}
    friends = MagicMock()
    friends.friends_of = AsyncMock(side_effect=lambda uid: set(mapping.get(uid, set())))
    return friends


@pytest.fixture
def registry():
    return LobbyRegistry(make_friends({"creator": {"friend"}, "friend": {"creator"}}))


# ============================================================================
# Lobby entity
# ============================================================================


def test_lobby_adds_creator_as_first_member():
    lobby = Lobby(name="Trivia", visibility=Visibility.PUBLIC, capacity=4, creator_id="c")
    assert lobby.members == ["c"]
    assert lobby.state == LobbyState.OPEN
    assert lobby.id.startswith("lobby_")


def test_lobby_to_dict_shape():
    lobby = Lobby(name="Trivia", visibility=Visibility.FRIENDS, capacity=3, creator_id="c")
    data = lobby.to_dict()
    assert data == {
        "id": lobby.id,
        "name": "Trivia",
        "users": ["c"],
        "user_count": 1,
        "state": False,
        "filter": "friends",
        "max_players": 3,
        "creator_id": "c",
    }


def test_lobby_ids_are_unique():
    a = Lobby(name="A", visibility=Visibility.PUBLIC, capacity=2, creator_id="x")
    b = Lobby(name="B", visibility=Visibility.PUBLIC, capacity=2, creator_id="y")
    assert a.id != b.id


# ============================================================================
# create_lobby
# ============================================================================


async def test_create_lobby_registers_it(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")

    assert len(registry) == 1
    assert registry.get_lobby(lobby.id) is lobby
    assert registry.get_lobby_for("creator") is lobby


async def test_create_lobby_rejects_creator_already_in_lobby(registry):
    await registry.create_lobby("First", Visibility.PUBLIC, 4, "creator")

    with pytest.raises(AlreadyInLobbyError):
        await registry.create_lobby("Second", Visibility.PUBLIC, 4, "creator")
    assert len(registry) == 1


async def test_create_lobby_name_is_case_insensitive_unique(registry):
    await registry.create_lobby("Trivia Night", Visibility.PUBLIC, 4, "creator")

    with pytest.raises(NameTakenError):
        await registry.create_lobby("trivia NIGHT", Visibility.PUBLIC, 4, "someone")


async def test_create_lobby_rejects_tiny_capacity(registry):
    with pytest.raises(ValidationError):
        await registry.create_lobby("Solo", Visibility.PUBLIC, 1, "creator")


async def test_create_friends_lobby_captures_friend_snapshot(registry):
    lobby = await registry.create_lobby("Pals", Visibility.FRIENDS, 4, "creator")
    assert lobby.friend_ids == frozenset({"friend"})


async def test_create_public_lobby_skips_friend_lookup():
    friends = make_friends()
    registry = LobbyRegistry(friends)

    lobby = await registry.create_lobby("Open", Visibility.PUBLIC, 4, "creator")

    assert lobby.friend_ids is None
    friends.friends_of.assert_not_awaited()


# ============================================================================
# join_lobby
# ============================================================================


async def test_join_appends_in_arrival_order(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")

    await registry.join_lobby(lobby.id, "b")
    await registry.join_lobby(lobby.id, "a")

    assert lobby.members == ["creator", "b", "a"]


async def test_join_unknown_lobby(registry):
    with pytest.raises(LobbyNotFoundError):
        await registry.join_lobby("lobby_missing", "someone")


async def test_join_twice_is_rejected(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")
    await registry.join_lobby(lobby.id, "b")

    with pytest.raises(AlreadyMemberError):
        await registry.join_lobby(lobby.id, "b")


async def test_join_full_lobby(registry):
    lobby = await registry.create_lobby("Duo", Visibility.PUBLIC, 2, "creator")
    await registry.join_lobby(lobby.id, "b")

    with pytest.raises(LobbyFullError):
        await registry.join_lobby(lobby.id, "c")
    assert lobby.user_count == 2


async def test_concurrent_joins_never_exceed_capacity(registry):
    lobby = await registry.create_lobby("Rush", Visibility.PUBLIC, 3, "creator")

    results = await asyncio.gather(
        *(registry.join_lobby(lobby.id, f"user{i}") for i in range(10)),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, LobbyFullError)]
    assert len(joined) == 2
    assert len(rejected) == 8
    assert len(lobby.members) == 3


async def test_user_cannot_be_in_two_lobbies(registry):
    first = await registry.create_lobby("First", Visibility.PUBLIC, 4, "creator")
    second = await registry.create_lobby("Second", Visibility.PUBLIC, 4, "other")
    await registry.join_lobby(first.id, "a")

    with pytest.raises(ConflictError):
        await registry.join_lobby(second.id, "a")
    assert "a" not in second.members


async def test_friends_only_lobby_admits_friend_and_rejects_stranger(registry):
    lobby = await registry.create_lobby("Pals", Visibility.FRIENDS, 4, "creator")

    await registry.join_lobby(lobby.id, "friend")
    with pytest.raises(ForbiddenError):
        await registry.join_lobby(lobby.id, "stranger")

    assert lobby.members == ["creator", "friend"]


async def test_friends_only_snapshot_is_computed_lazily_once():
    friends = make_friends({"creator": {"f1", "f2"}})
    registry = LobbyRegistry(friends)
    lobby = await registry.create_lobby("Pals", Visibility.FRIENDS, 4, "creator")
    lobby.friend_ids = None
    friends.friends_of.reset_mock()

    await registry.join_lobby(lobby.id, "f1")
    await registry.join_lobby(lobby.id, "f2")

    assert lobby.friend_ids == frozenset({"f1", "f2"})
    friends.friends_of.assert_awaited_once_with("creator")


async def test_friends_only_snapshot_ignores_later_friendships():
    mapping = {"creator": {"f1"}}
    registry = LobbyRegistry(make_friends(mapping))
    lobby = await registry.create_lobby("Pals", Visibility.FRIENDS, 4, "creator")

    mapping["creator"] = {"f1", "late"}

    with pytest.raises(ForbiddenError):
        await registry.join_lobby(lobby.id, "late")


# ============================================================================
# leave_lobby
# ============================================================================


async def test_leave_keeps_lobby_with_remaining_members(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")
    await registry.join_lobby(lobby.id, "a")
    await registry.join_lobby(lobby.id, "b")

    updated, removed = await registry.leave_lobby("a")

    assert removed is False
    assert updated is lobby
    assert lobby.members == ["creator", "b"]
    assert registry.get_lobby_for("a") is None


async def test_leave_last_member_removes_lobby(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")

    updated, removed = await registry.leave_lobby("creator")

    assert updated is None
    assert removed is True
    assert len(registry) == 0
    with pytest.raises(LobbyNotFoundError):
        registry.get_lobby(lobby.id)


async def test_leave_without_lobby(registry):
    with pytest.raises(NotInLobbyError):
        await registry.leave_lobby("nobody")


async def test_removal_listener_is_notified(registry):
    removed_ids = []
    registry.add_removal_listener(removed_ids.append)
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")

    await registry.leave_lobby("creator")

    assert removed_ids == [lobby.id]


async def test_user_can_create_after_leaving(registry):
    await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")
    await registry.leave_lobby("creator")

    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")
    assert registry.get_lobby_for("creator") is lobby


# ============================================================================
# start_voting
# ============================================================================


async def test_start_voting_requires_creator(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")
    await registry.join_lobby(lobby.id, "a")

    with pytest.raises(ForbiddenError):
        await registry.start_voting(lobby.id, "a")
    assert lobby.state == LobbyState.OPEN


async def test_start_voting_is_one_way(registry):
    lobby = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "creator")

    await registry.start_voting(lobby.id, "creator")
    assert lobby.state == LobbyState.VOTING

    await registry.join_lobby(lobby.id, "a")
    await registry.leave_lobby("a")

    with pytest.raises(AlreadyStartedError):
        await registry.start_voting(lobby.id, "creator")
    assert lobby.state == LobbyState.VOTING


# ============================================================================
# list_lobbies
# ============================================================================


async def test_list_sorts_by_member_count_without_search(registry):
    small = await registry.create_lobby("Small", Visibility.PUBLIC, 4, "c1")
    big = await registry.create_lobby("Big", Visibility.PUBLIC, 4, "c2")
    await registry.join_lobby(big.id, "x")
    await registry.join_lobby(big.id, "y")

    result = await registry.list_lobbies("viewer")

    assert [lobby.id for lobby in result] == [big.id, small.id]


async def test_list_hides_voting_lobbies(registry):
    open_lobby = await registry.create_lobby("Open", Visibility.PUBLIC, 4, "c1")
    started = await registry.create_lobby("Started", Visibility.PUBLIC, 4, "c2")
    await registry.start_voting(started.id, "c2")

    result = await registry.list_lobbies("viewer")

    assert result == [open_lobby]


async def test_list_search_is_case_insensitive_substring(registry):
    await registry.create_lobby("Board Game Night", Visibility.PUBLIC, 4, "c1")
    trivia = await registry.create_lobby("Trivia", Visibility.PUBLIC, 4, "c2")
    trivia_two = await registry.create_lobby("More TRIVIA", Visibility.PUBLIC, 4, "c3")

    result = await registry.list_lobbies("viewer", search_term="triv")

    assert result == [trivia, trivia_two]


async def test_list_friends_filter_uses_creator_friendship():
    registry = LobbyRegistry(make_friends({"viewer": {"c2"}}))
    await registry.create_lobby("Strangers", Visibility.PUBLIC, 4, "c1")
    friendly = await registry.create_lobby("Friendly", Visibility.PUBLIC, 4, "c2")

    everything = await registry.list_lobbies("viewer", lobby_filter=LobbyFilter.ALL)
    friends_only = await registry.list_lobbies("viewer", lobby_filter=LobbyFilter.FRIENDS)

    assert len(everything) == 2
    assert friends_only == [friendly]


# ============================================================================
# sweep_stale_lobbies
# ============================================================================


async def test_sweep_removes_only_old_empty_lobbies(registry):
    now = datetime.now(timezone.utc)
    old = await registry.create_lobby("Old", Visibility.PUBLIC, 4, "c1")
    recent = await registry.create_lobby("Recent", Visibility.PUBLIC, 4, "c2")
    busy = await registry.create_lobby("Busy", Visibility.PUBLIC, 4, "c3")

    old.members.clear()
    old.created_at = now - timedelta(minutes=31)
    recent.members.clear()
    recent.created_at = now - timedelta(minutes=10)
    busy.created_at = now - timedelta(hours=5)

    removed = await registry.sweep_stale_lobbies(now=now)

    assert removed == 1
    with pytest.raises(LobbyNotFoundError):
        registry.get_lobby(old.id)
    assert registry.get_lobby(recent.id) is recent
    assert registry.get_lobby(busy.id) is busy


async def test_sweep_honours_custom_staleness(registry):
    now = datetime.now(timezone.utc)
    lobby = await registry.create_lobby("Old", Visibility.PUBLIC, 4, "c1")
    lobby.members.clear()
    lobby.created_at = now - timedelta(minutes=10)

    assert await registry.sweep_stale_lobbies(now=now, staleness=timedelta(minutes=5)) == 1
