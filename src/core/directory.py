import asyncio
import logging

from sqlalchemy import delete, select

from src.core import db
from src.core.catalog import GameCatalogClient, GameInfo
from src.core.models import FavoriteGame, User

logger = logging.getLogger(__name__)

UNKNOWN_GAME = "Unknown Game"


class UserDirectory:
    """Read access to the `users` table."""

    async def get(self, user_id: str) -> User | None:
        async with db.AsyncSessionLocal() as session:
            return await session.get(User, user_id)

    async def get_by_token(self, token: str) -> User | None:
        if not token:
            return None
        async with db.AsyncSessionLocal() as session:
            stmt = select(User).where(User.api_token == token)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def names_for(self, user_ids: list[str]) -> list[dict]:
        """Return [{id, name}, ...] in the order of `user_ids`, skipping unknown IDs."""
        if not user_ids:
            return []
        async with db.AsyncSessionLocal() as session:
            stmt = select(User.id, User.name).where(User.id.in_(user_ids))
            names = {row.id: row.name for row in await session.execute(stmt)}
        return [{"id": uid, "name": names[uid]} for uid in user_ids if uid in names]


class FavoritesStore:
    """Users' favorited games, plus the vote candidate supplier built on them."""

    def __init__(self, catalog: GameCatalogClient):
        self.catalog = catalog

    async def favorites_of(self, user_id: str) -> list[int]:
        async with db.AsyncSessionLocal() as session:
            stmt = (
                select(FavoriteGame.game_id)
                .where(FavoriteGame.user_id == user_id)
                .order_by(FavoriteGame.id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def toggle_favorite(self, user_id: str, game_id: int) -> bool:
        """
        Favorite a game, or unfavorite it if it already is.

        Returns:
            True if the game is now a favorite, False if it was removed
        """
        async with db.AsyncSessionLocal() as session:
            stmt = select(FavoriteGame).where(
                FavoriteGame.user_id == user_id, FavoriteGame.game_id == game_id
            )
            existing = (await session.execute(stmt)).scalar_one_or_none()

            if existing:
                await session.execute(
                    delete(FavoriteGame).where(
                        FavoriteGame.user_id == user_id, FavoriteGame.game_id == game_id
                    )
                )
                await session.commit()
                return False

            session.add(FavoriteGame(user_id=user_id, game_id=game_id))
            await session.commit()
            return True

    async def collect_candidates(self, member_ids: list[str]) -> list[GameInfo]:
        """
        Union of all members' favorites, in membership order.

        Duplicates are dropped by game ID (first occurrence wins). Each game is
        looked up in the catalog exactly once; a failed lookup yields "Unknown
        Game" with no artwork rather than an error.

        Args:
            member_ids: Lobby members in join order

        Returns:
            One GameInfo per distinct game
        """
        game_ids: list[int] = []
        seen: set[int] = set()
        for member_id in member_ids:
            for game_id in await self.favorites_of(member_id):
                if game_id not in seen:
                    seen.add(game_id)
                    game_ids.append(game_id)

        infos = await asyncio.gather(*(self.catalog.get_game(gid) for gid in game_ids))
        games = []
        for game_id, info in zip(game_ids, infos):
            if info is None:
                logger.warning(f"No catalog data for game {game_id}; continuing without it")
                info = GameInfo(id=game_id, name=UNKNOWN_GAME)
            games.append(info)
        return games
