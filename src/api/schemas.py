"""
Pydantic request bodies for the HTTP API.
"""

from typing import Literal

from pydantic import BaseModel, Field

from src.core import config
from src.core.lobby import LobbyFilter, Visibility


class CreateLobbyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=config.MAX_LOBBY_NAME_LENGTH)
    filter: Visibility
    max_players: int = Field(ge=config.MIN_LOBBY_PLAYERS, le=config.MAX_LOBBY_PLAYERS)


class JoinLobbyRequest(BaseModel):
    lobby_id: str = Field(min_length=1)


class GetLobbiesRequest(BaseModel):
    search: str | None = Field(default=None, max_length=255)
    filter: LobbyFilter = LobbyFilter.ALL


class PostVoteRequest(BaseModel):
    game_id: int
    vote: Literal[1, -1]


class SearchRequest(BaseModel):
    search: str = Field(min_length=1)
    page: int = Field(default=1, ge=1)


class FavoriteRequest(BaseModel):
    game_id: int


class UserFavouritesRequest(BaseModel):
    user_id: str | None = None
    search: str | None = Field(default=None, max_length=255)


class AddFriendRequest(BaseModel):
    friend_id: str


class FriendEdgeRequest(BaseModel):
    friend_id: int  # ID of the friend request edge
