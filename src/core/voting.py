"""
Per-lobby vote sessions.

A session is built once, when voting starts, from the members' favorite games.
Candidates and ballot rows are fixed from then on; only ballot cells change.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from src.core.catalog import GameInfo
from src.core.errors import AlreadyVotedError, NotAMemberError, UnknownGameError, ValidationError
from src.core.lobby import Lobby

logger = logging.getLogger(__name__)

UPVOTE = 1
DOWNVOTE = -1
NO_VOTE = 0

# Given member IDs, returns their favorite games with catalog metadata
CandidateSupplier = Callable[[list[str]], Awaitable[list[GameInfo]]]


@dataclass
class Candidate:
    name: str
    upvotes: int = 0
    downvotes: int = 0
    votes: int = 0  # Net: upvotes - downvotes
    background_image: str | None = None

    def to_dict(self, game_id: int) -> dict:
        return {
            "id": game_id,
            "name": self.name,
            "votes": self.votes,
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "background_image": self.background_image,
        }


@dataclass
class VoteSession:
    lobby_id: str
    candidates: dict[int, Candidate]
    ballots: dict[str, dict[int, int]]
    id: str = field(default_factory=lambda: f"vote_{uuid4().hex}")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls, lobby_id: str, member_ids: list[str], candidates: dict[int, Candidate]
    ) -> "VoteSession":
        """Build a session with a zeroed ballot cell for every (member, candidate) pair."""
        ballots = {member_id: dict.fromkeys(candidates, NO_VOTE) for member_id in member_ids}
        return cls(lobby_id=lobby_id, candidates=candidates, ballots=ballots)

    def ballot(self, user_id: str, game_id: int) -> int:
        return self.ballots.get(user_id, {}).get(game_id, NO_VOTE)

    def cast_vote(self, game_id: int, user_id: str, vote: int) -> Candidate:
        """
        Record `vote` for `user_id` on `game_id`, replacing any earlier vote.

        The previous vote's contribution is removed before the new one is
        applied, so recasting never double counts.

        Returns:
            The candidate with its updated tally
        """
        if vote not in (UPVOTE, DOWNVOTE):
            raise ValidationError("Vote must be 1 (upvote) or -1 (downvote)")

        candidate = self.candidates.get(game_id)
        if candidate is None:
            raise UnknownGameError()

        row = self.ballots.get(user_id)
        if row is None:
            raise NotAMemberError()

        previous = row.get(game_id, NO_VOTE)
        if previous == UPVOTE:
            candidate.upvotes -= 1
        elif previous == DOWNVOTE:
            candidate.downvotes -= 1

        if vote == UPVOTE:
            candidate.upvotes += 1
        else:
            candidate.downvotes += 1

        candidate.votes += vote - previous
        row[game_id] = vote
        return candidate

    def results(self) -> dict:
        """Unsorted tallies; `total_votes` is the sum of net votes."""
        games = [c.to_dict(game_id) for game_id, c in self.candidates.items()]
        return {
            "games": games,
            "player_votes": {uid: dict(row) for uid, row in self.ballots.items()},
            "total_votes": sum(c.votes for c in self.candidates.values()),
        }

    def voted_games(self, member_ids: list[str]) -> dict[str, list[int]]:
        """Upvoted game IDs per member, in the given membership order."""
        voted = {}
        for member_id in member_ids:
            row = self.ballots.get(member_id, {})
            voted[member_id] = [game_id for game_id, vote in row.items() if vote == UPVOTE]
        return voted

    def candidate_list(self) -> list[dict]:
        return [
            {"id": game_id, "name": c.name, "background_image": c.background_image}
            for game_id, c in self.candidates.items()
        ]


class VoteRegistry:
    """Maps lobby IDs to their vote sessions."""

    def __init__(self):
        self._sessions: dict[str, VoteSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get_session(self, lobby_id: str) -> VoteSession | None:
        return self._sessions.get(lobby_id)

    def discard(self, lobby_id: str) -> None:
        """Drop the session of a removed lobby."""
        if self._sessions.pop(lobby_id, None) is not None:
            logger.info(f"Discarded vote session for lobby {lobby_id}")

    async def get_or_create_session(
        self, lobby: Lobby, candidate_supplier: CandidateSupplier
    ) -> VoteSession | None:
        """
        Return the lobby's vote session, creating it on first use.

        Returns None while the lobby is still open, or if it was removed while
        candidates were being collected. Collection (including the catalog
        lookups) runs outside the registry lock; if two requests race, the
        first session installed wins.
        """
        if not lobby.is_voting or lobby.removed:
            return None

        existing = self._sessions.get(lobby.id)
        if existing is not None:
            return existing

        member_ids = list(lobby.members)
        games = await candidate_supplier(member_ids)

        candidates: dict[int, Candidate] = {}
        for game in games:
            if game.id not in candidates:
                candidates[game.id] = Candidate(
                    name=game.name, background_image=game.background_image
                )

        async with self._lock:
            if lobby.removed:
                logger.info(f"Lobby {lobby.id} was removed before its vote session was ready")
                return None

            existing = self._sessions.get(lobby.id)
            if existing is not None:
                return existing

            session = VoteSession.create(lobby.id, member_ids, candidates)
            self._sessions[lobby.id] = session

        logger.info(
            f"Created vote session {session.id} for lobby {lobby.id} "
            f"with {len(candidates)} games and {len(member_ids)} players"
        )
        return session

    async def cast_vote(
        self,
        session: VoteSession,
        game_id: int,
        user_id: str,
        vote: int,
        allow_revote: bool = False,
    ) -> Candidate:
        """
        Cast a vote under the registry lock.

        Unless `allow_revote` is set, a second vote on a game the user already
        voted on is rejected; the session itself would replace it.
        """
        async with self._lock:
            if not allow_revote and session.ballot(user_id, game_id) != NO_VOTE:
                raise AlreadyVotedError()
            return session.cast_vote(game_id, user_id, vote)
