"""
In-memory lobby registry.

Lobbies are ephemeral: they live only in this process and are never written to
the database. Every mutation runs under a single asyncio lock, and nothing
inside the lock awaits I/O; friend lookups for friends-only lobbies happen
before the lock is taken.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol
from uuid import uuid4

from src.core import config
from src.core.errors import (
    AlreadyInLobbyError,
    AlreadyMemberError,
    AlreadyStartedError,
    ForbiddenError,
    LobbyFullError,
    LobbyNotFoundError,
    NameTakenError,
    NotInLobbyError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Visibility(str, Enum):
    PUBLIC = "public"
    FRIENDS = "friends"


class LobbyState(str, Enum):
    OPEN = "open"
    VOTING = "voting"


class LobbyFilter(str, Enum):
    """Listing filter: every open lobby, or only those created by a friend."""

    ALL = "all"
    FRIENDS = "friends"


class FriendSource(Protocol):
    async def friends_of(self, user_id: str) -> set[str]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Lobby:
    name: str
    visibility: Visibility
    capacity: int
    creator_id: str
    id: str = field(default_factory=lambda: f"lobby_{uuid4().hex}")
    members: list[str] = field(default_factory=list)
    state: LobbyState = LobbyState.OPEN
    # Creator's friends, captured once; None until first needed
    friend_ids: frozenset[str] | None = None
    created_at: datetime = field(default_factory=_now)
    # Set once the registry drops the lobby
    removed: bool = False

    def __post_init__(self):
        if self.creator_id not in self.members:
            self.members.insert(0, self.creator_id)

    @property
    def user_count(self) -> int:
        return len(self.members)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    @property
    def is_voting(self) -> bool:
        return self.state == LobbyState.VOTING

    def has_member(self, user_id: str) -> bool:
        return user_id in self.members

    def admits(self, user_id: str) -> bool:
        """Whether the visibility policy lets `user_id` in (capacity aside)."""
        if self.visibility == Visibility.PUBLIC or user_id == self.creator_id:
            return True
        return self.friend_ids is not None and user_id in self.friend_ids

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "users": list(self.members),
            "user_count": len(self.members),
            "state": self.state == LobbyState.VOTING,
            "filter": self.visibility.value,
            "max_players": self.capacity,
            "creator_id": self.creator_id,
        }


class LobbyRegistry:
    """Process-wide table of active lobbies keyed by lobby ID."""

    def __init__(self, friends: FriendSource):
        self.friends = friends
        self._lobbies: dict[str, Lobby] = {}
        self._lock = asyncio.Lock()
        self._removal_listeners: list[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._lobbies)

    def add_removal_listener(self, callback: Callable[[str], None]) -> None:
        """Register a callback invoked with the lobby ID whenever a lobby is removed."""
        self._removal_listeners.append(callback)

    def _find_lobby_for_locked(self, user_id: str) -> Lobby | None:
        for lobby in self._lobbies.values():
            if user_id in lobby.members:
                return lobby
        return None

    def _remove_locked(self, lobby_id: str) -> None:
        lobby = self._lobbies.pop(lobby_id, None)
        if lobby is not None:
            lobby.removed = True
        for callback in self._removal_listeners:
            try:
                callback(lobby_id)
            except Exception:
                logger.exception(f"Removal listener failed for lobby {lobby_id}")

    async def _snapshot_friends(self, user_id: str) -> frozenset[str]:
        return frozenset(await self.friends.friends_of(user_id))

    # ------------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------------ #

    async def create_lobby(
        self, name: str, visibility: Visibility, capacity: int, creator_id: str
    ) -> Lobby:
        name = name.strip()
        if not name:
            raise ValidationError("Lobby name is required")
        if capacity < config.MIN_LOBBY_PLAYERS:
            raise ValidationError(
                f"A lobby needs room for at least {config.MIN_LOBBY_PLAYERS} players"
            )

        friend_ids = None
        if visibility == Visibility.FRIENDS:
            friend_ids = await self._snapshot_friends(creator_id)

        async with self._lock:
            if self._find_lobby_for_locked(creator_id):
                raise AlreadyInLobbyError()

            lowered = name.lower()
            if any(lobby.name.lower() == lowered for lobby in self._lobbies.values()):
                raise NameTakenError()

            lobby = Lobby(
                name=name,
                visibility=visibility,
                capacity=capacity,
                creator_id=creator_id,
                friend_ids=friend_ids,
            )
            self._lobbies[lobby.id] = lobby

        logger.info(f"Created lobby {lobby.id} ({lobby.name!r}) for {creator_id}")
        return lobby

    async def join_lobby(self, lobby_id: str, user_id: str) -> Lobby:
        lobby = self._lobbies.get(lobby_id)
        if lobby is None:
            raise LobbyNotFoundError()

        # Friend snapshot is fetched outside the lock and installed only once
        snapshot = None
        if (
            lobby.visibility == Visibility.FRIENDS
            and lobby.friend_ids is None
            and user_id != lobby.creator_id
        ):
            snapshot = await self._snapshot_friends(lobby.creator_id)

        async with self._lock:
            lobby = self._lobbies.get(lobby_id)
            if lobby is None:
                raise LobbyNotFoundError()
            if lobby.has_member(user_id):
                raise AlreadyMemberError()
            if lobby.is_full:
                raise LobbyFullError()
            if snapshot is not None and lobby.friend_ids is None:
                lobby.friend_ids = snapshot
            if not lobby.admits(user_id):
                raise ForbiddenError(
                    "Failed to join lobby. You may not have permission to join this lobby."
                )
            if self._find_lobby_for_locked(user_id):
                raise AlreadyInLobbyError("You are already in another lobby", status_code=400)

            lobby.members.append(user_id)

        logger.info(f"User {user_id} joined lobby {lobby_id} ({lobby.user_count}/{lobby.capacity})")
        return lobby

    async def leave_lobby(self, user_id: str) -> tuple[Lobby | None, bool]:
        """
        Remove `user_id` from whichever lobby they are in.

        Returns:
            (lobby, removed): the updated lobby and False, or (None, True) if the
            lobby became empty and was deleted
        """
        async with self._lock:
            lobby = self._find_lobby_for_locked(user_id)
            if lobby is None:
                raise NotInLobbyError()

            lobby.members.remove(user_id)

            if not lobby.members:
                self._remove_locked(lobby.id)
                logger.info(f"Lobby {lobby.id} removed after last member left")
                return None, True

        logger.info(f"User {user_id} left lobby {lobby.id}")
        return lobby, False

    async def start_voting(self, lobby_id: str, requester_id: str) -> Lobby:
        async with self._lock:
            lobby = self._lobbies.get(lobby_id)
            if lobby is None:
                raise LobbyNotFoundError()
            if lobby.creator_id != requester_id:
                raise ForbiddenError("You are not the creator of this lobby")
            if lobby.is_voting:
                raise AlreadyStartedError()

            lobby.state = LobbyState.VOTING

        logger.info(f"Voting started in lobby {lobby_id}")
        return lobby

    async def sweep_stale_lobbies(
        self, now: datetime | None = None, staleness: timedelta | None = None
    ) -> int:
        """
        Remove empty lobbies older than `staleness`.

        Lobbies with members are kept regardless of age.

        Returns:
            Number of lobbies removed
        """
        now = now or _now()
        staleness = staleness or timedelta(minutes=config.STALE_LOBBY_MINUTES)
        cutoff = now - staleness

        async with self._lock:
            stale = [
                lobby.id
                for lobby in self._lobbies.values()
                if not lobby.members and lobby.created_at < cutoff
            ]
            for lobby_id in stale:
                self._remove_locked(lobby_id)

        if stale:
            logger.info(f"Swept {len(stale)} stale lobbies")
        return len(stale)

    # ------------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------------ #

    def get_lobby(self, lobby_id: str) -> Lobby:
        lobby = self._lobbies.get(lobby_id)
        if lobby is None:
            raise LobbyNotFoundError()
        return lobby

    def get_lobby_for(self, user_id: str) -> Lobby | None:
        return self._find_lobby_for_locked(user_id)

    async def list_lobbies(
        self,
        requester_id: str,
        search_term: str = "",
        lobby_filter: LobbyFilter = LobbyFilter.ALL,
    ) -> list[Lobby]:
        """
        Open lobbies visible to `requester_id`.

        Without a search term the result is ordered by member count, largest
        first. With one, matches keep registry order.
        """
        friend_ids: set[str] = set()
        if lobby_filter == LobbyFilter.FRIENDS:
            friend_ids = await self.friends.friends_of(requester_id)

        search_term = (search_term or "").strip().lower()
        lobbies = [lobby for lobby in list(self._lobbies.values()) if not lobby.is_voting]

        if search_term:
            lobbies = [lobby for lobby in lobbies if search_term in lobby.name.lower()]
        if lobby_filter == LobbyFilter.FRIENDS:
            lobbies = [lobby for lobby in lobbies if lobby.creator_id in friend_ids]

        if not search_term:
            lobbies.sort(key=lambda lobby: lobby.user_count, reverse=True)
        return lobbies
