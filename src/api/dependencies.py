from dataclasses import dataclass

from fastapi import Depends, Request

from src.core.catalog import GameCatalogClient
from src.core.directory import FavoritesStore, UserDirectory
from src.core.errors import AuthError
from src.core.friends import FriendGraph
from src.core.lobby import LobbyRegistry
from src.core.models import User
from src.core.voting import VoteRegistry


@dataclass
class Services:
    """Process-wide collaborators shared by every request."""

    catalog: GameCatalogClient
    users: UserDirectory
    friends: FriendGraph
    favorites: FavoritesStore
    lobbies: LobbyRegistry
    votes: VoteRegistry

    @classmethod
    def build(cls, catalog: GameCatalogClient | None = None) -> "Services":
        catalog = catalog or GameCatalogClient()
        friends = FriendGraph()
        lobbies = LobbyRegistry(friends)
        votes = VoteRegistry()
        # A removed lobby takes its vote session with it
        lobbies.add_removal_listener(votes.discard)
        return cls(
            catalog=catalog,
            users=UserDirectory(),
            friends=friends,
            favorites=FavoritesStore(catalog),
            lobbies=lobbies,
            votes=votes,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_user(request: Request, services: Services = Depends(get_services)) -> User:
    """Resolve the caller from an `Authorization: Bearer <token>` header."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError()

    user = await services.users.get_by_token(token.strip())
    if user is None:
        raise AuthError()
    return user
