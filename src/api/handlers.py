import asyncio
import logging

from fastapi import APIRouter, Depends, status

from src.api.dependencies import Services, current_user, get_services
from src.api.schemas import (
    AddFriendRequest,
    CreateLobbyRequest,
    FavoriteRequest,
    FriendEdgeRequest,
    GetLobbiesRequest,
    JoinLobbyRequest,
    PostVoteRequest,
    SearchRequest,
    UserFavouritesRequest,
)
from src.core import config
from src.core.errors import ConflictError, NotInLobbyError
from src.core.lobby import Lobby, LobbyFilter
from src.core.logic import calculate_winners, sort_by_votes
from src.core.models import User
from src.core.voting import VoteSession

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_lobby(services: Services, user: User, status_code: int = 404) -> Lobby:
    lobby = services.lobbies.get_lobby_for(user.id)
    if lobby is None:
        raise NotInLobbyError("You are not in any lobby", status_code=status_code)
    return lobby


async def _require_session(services: Services, lobby: Lobby) -> VoteSession:
    session = await services.votes.get_or_create_session(
        lobby, services.favorites.collect_candidates
    )
    if session is None:
        raise ConflictError("Voting has not started yet", status_code=400)
    return session


@router.get("/status")
async def status_check():
    return {"success": "success"}


# ---------------------------------------------------------------------------- #
# Lobbies
# ---------------------------------------------------------------------------- #


@router.post("/createLobby", status_code=status.HTTP_201_CREATED)
async def create_lobby(
    body: CreateLobbyRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = await services.lobbies.create_lobby(body.name, body.filter, body.max_players, user.id)
    return {"success": True, "message": "Lobby created successfully", "lobby": lobby.to_dict()}


@router.post("/joinLobby")
async def join_lobby(
    body: JoinLobbyRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = await services.lobbies.join_lobby(body.lobby_id, user.id)
    return {"success": True, "message": "Successfully joined lobby", "lobby": lobby.to_dict()}


@router.get("/leaveLobby")
async def leave_lobby(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby, removed = await services.lobbies.leave_lobby(user.id)
    if removed:
        return {
            "success": True,
            "message": "Left lobby and it was removed as it became empty",
            "lobby_removed": True,
        }
    return {"success": True, "lobby": lobby.to_dict(), "lobby_removed": False}


@router.post("/getLobbies")
async def get_lobbies(
    body: GetLobbiesRequest | None = None,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    body = body or GetLobbiesRequest()
    lobbies = await services.lobbies.list_lobbies(
        user.id, search_term=body.search or "", lobby_filter=body.filter
    )
    return {"success": True, "lobbies": [lobby.to_dict() for lobby in lobbies]}


@router.get("/getLobbyInfo")
async def get_lobby_info(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = _require_lobby(services, user)
    data = lobby.to_dict()
    data["in_lobby"] = lobby.has_member(user.id)
    data["users"] = await services.users.names_for(data["users"])
    return {"success": True, "lobby": data}


# ---------------------------------------------------------------------------- #
# Voting
# ---------------------------------------------------------------------------- #


@router.post("/startVoting")
async def start_voting(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = _require_lobby(services, user, status_code=400)
    await services.lobbies.start_voting(lobby.id, user.id)
    await _require_session(services, lobby)
    return {"success": True, "message": "Voting started successfully"}


@router.post("/postVote")
async def post_vote(
    body: PostVoteRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = _require_lobby(services, user, status_code=400)
    session = await _require_session(services, lobby)

    candidate = await services.votes.cast_vote(
        session, body.game_id, user.id, body.vote, allow_revote=config.ALLOW_REVOTE
    )
    return {
        "success": True,
        "message": "Vote recorded successfully",
        "game_id": body.game_id,
        "game_name": candidate.name,
        "user_vote": body.vote,
        "new_total_votes": candidate.votes,
        "new_upvotes": candidate.upvotes,
        "new_downvotes": candidate.downvotes,
    }


@router.get("/voteResult")
async def vote_result(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = _require_lobby(services, user, status_code=400)
    session = await services.votes.get_or_create_session(
        lobby, services.favorites.collect_candidates
    )
    if session is None:
        raise ConflictError("No voting session found", status_code=400)

    results = session.results()
    games = sort_by_votes(results["games"])
    return {
        "success": True,
        "lobby_id": lobby.id,
        "games": games,
        "players_favorite_games": session.voted_games(lobby.members),
        "total_votes_cast": results["total_votes"],
        "total_players": lobby.user_count,
        "player_votes": results["player_votes"],
        "winners": calculate_winners(games),
    }


@router.get("/getVoteGames")
async def get_vote_games(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    lobby = _require_lobby(services, user, status_code=400)
    session = await _require_session(services, lobby)
    return {"success": True, "games": session.candidate_list()}


# ---------------------------------------------------------------------------- #
# Games & Favourites
# ---------------------------------------------------------------------------- #


@router.post("/search")
async def search_games(
    body: SearchRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    results = await services.catalog.search_games(body.search, page=body.page)
    favorites = set(await services.favorites.favorites_of(user.id))
    for game in results:
        game["favorited"] = game["id"] in favorites
    return {"success": True, "results": results}


@router.post("/addToFavourites")
async def add_to_favourites(
    body: FavoriteRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    favorited = await services.favorites.toggle_favorite(user.id, body.game_id)
    message = "Game added to favourites" if favorited else "Game removed from favourites"
    return {"success": True, "message": message, "favorited": favorited}


@router.post("/getUserFavourites")
async def get_user_favourites(
    body: UserFavouritesRequest | None = None,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    body = body or UserFavouritesRequest()
    game_ids = await services.favorites.favorites_of(body.user_id or user.id)
    infos = await asyncio.gather(*(services.catalog.get_game(gid) for gid in game_ids))

    games = [
        {
            "id": info.id,
            "name": info.name,
            "background_image": info.background_image,
            "favorited": True,
        }
        for info in infos
        if info is not None
    ]
    if body.search:
        term = body.search.lower()
        games = [g for g in games if term in g["name"].lower()]
    return {"success": True, "games": games}


# ---------------------------------------------------------------------------- #
# Friends
# ---------------------------------------------------------------------------- #


@router.post("/addFriend")
async def add_friend(
    body: AddFriendRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    await services.friends.send_request(user.id, body.friend_id)
    return {"success": True, "message": "Friend request sent"}


@router.post("/acceptFriend")
async def accept_friend(
    body: FriendEdgeRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    await services.friends.accept_request(body.friend_id, user.id)
    return {"success": True, "message": "Friend request accepted"}


@router.post("/getFriends")
async def get_friends(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"success": True, "friends": await services.friends.friend_list(user.id)}


@router.get("/getPending")
async def get_pending(
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"success": True, "pending": await services.friends.pending_for(user.id)}


@router.post("/removeFriend")
async def remove_friend(
    body: FriendEdgeRequest,
    user: User = Depends(current_user),
    services: Services = Depends(get_services),
):
    await services.friends.remove(body.friend_id, user.id)
    return {"success": True, "message": "Friend removed"}
