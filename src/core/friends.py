import logging

from sqlalchemy import and_, or_, select

from src.core import db
from src.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from src.core.models import Friend, User

logger = logging.getLogger(__name__)


def _other_side(edge: Friend, user_id: str) -> str:
    """Return the user on the opposite end of an edge."""
    return edge.receiver_id if edge.sender_id == user_id else edge.sender_id


class FriendGraph:
    """Friend request bookkeeping backed by the `friends` table.

    Edges are directed (sender -> receiver) but friendship is symmetric:
    an accepted edge in either direction makes two users friends.
    """

    async def friends_of(self, user_id: str) -> set[str]:
        async with db.AsyncSessionLocal() as session:
            stmt = select(Friend).where(
                Friend.accepted.is_(True),
                or_(Friend.sender_id == user_id, Friend.receiver_id == user_id),
            )
            edges = (await session.execute(stmt)).scalars().all()

        return {_other_side(edge, user_id) for edge in edges}

    async def are_friends(self, a: str, b: str) -> bool:
        if a == b:
            return False
        async with db.AsyncSessionLocal() as session:
            stmt = select(Friend.id).where(
                Friend.accepted.is_(True),
                or_(
                    and_(Friend.sender_id == a, Friend.receiver_id == b),
                    and_(Friend.sender_id == b, Friend.receiver_id == a),
                ),
            )
            return (await session.execute(stmt)).first() is not None

    async def friend_list(self, user_id: str) -> list[dict]:
        """Accepted friends with display names: [{edge_id, id, name}, ...]."""
        async with db.AsyncSessionLocal() as session:
            stmt = (
                select(Friend)
                .where(
                    Friend.accepted.is_(True),
                    or_(Friend.sender_id == user_id, Friend.receiver_id == user_id),
                )
                .order_by(Friend.id)
            )
            edges = (await session.execute(stmt)).unique().scalars().all()

            result = []
            for edge in edges:
                other = edge.receiver if edge.sender_id == user_id else edge.sender
                result.append({"edge_id": edge.id, "id": other.id, "name": other.name})
        return result

    async def pending_for(self, user_id: str) -> list[dict]:
        """Received requests that are not accepted yet."""
        async with db.AsyncSessionLocal() as session:
            stmt = (
                select(Friend)
                .where(Friend.receiver_id == user_id, Friend.accepted.is_(False))
                .order_by(Friend.id)
            )
            edges = (await session.execute(stmt)).unique().scalars().all()
            return [
                {"edge_id": e.id, "sender_id": e.sender_id, "name": e.sender.name} for e in edges
            ]

    async def send_request(self, sender_id: str, receiver_id: str) -> Friend:
        if sender_id == receiver_id:
            raise ValidationError("You can't be your own friend", status_code=400)

        async with db.AsyncSessionLocal() as session:
            if await session.get(User, receiver_id) is None:
                raise NotFoundError("User not found")

            stmt = select(Friend).where(
                Friend.sender_id == sender_id, Friend.receiver_id == receiver_id
            )
            if (await session.execute(stmt)).scalar_one_or_none():
                raise ConflictError("Friend request already sent")

            edge = Friend(sender_id=sender_id, receiver_id=receiver_id, accepted=False)
            session.add(edge)
            await session.commit()

        logger.info(f"Friend request {sender_id} -> {receiver_id}")
        return edge

    async def accept_request(self, edge_id: int, user_id: str) -> None:
        async with db.AsyncSessionLocal() as session:
            edge = await session.get(Friend, edge_id)
            if edge is None:
                raise NotFoundError("Friend request not found")
            if edge.accepted:
                raise ConflictError("You already accepted this friend request", status_code=400)
            if edge.receiver_id != user_id:
                raise ForbiddenError("You can't accept this friend request")

            edge.accepted = True
            await session.commit()

        logger.info(f"Friend request {edge_id} accepted by {user_id}")

    async def remove(self, edge_id: int, user_id: str) -> None:
        async with db.AsyncSessionLocal() as session:
            edge = await session.get(Friend, edge_id)
            if edge is None or user_id not in (edge.sender_id, edge.receiver_id):
                raise NotFoundError("Friend not found")

            await session.delete(edge)
            await session.commit()
