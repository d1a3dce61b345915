import logging
import time
from dataclasses import dataclass

import httpx

from src.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameInfo:
    id: int
    name: str
    background_image: str | None = None


class GameCatalogClient:
    """Client for the RAWG video game database.

    Every call is bounded by a timeout and never raises on transport or HTTP
    errors: lookups return None and searches return an empty list, so callers
    can degrade instead of failing.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.RAWG_API_KEY
        self.base_url = (base_url or config.RAWG_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.CATALOG_TIMEOUT
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.CATALOG_CACHE_TTL
        self._transport = transport
        # game_id -> (expires_at, info)
        self._cache: dict[int, tuple[float, GameInfo]] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _params(self, **extra) -> dict:
        params = {k: v for k, v in extra.items() if v is not None}
        if self.api_key:
            params["key"] = self.api_key
        return params

    def _cached(self, game_id: int) -> GameInfo | None:
        entry = self._cache.get(game_id)
        if entry is None:
            return None
        expires_at, info = entry
        if expires_at < time.monotonic():
            del self._cache[game_id]
            return None
        return info

    def _remember(self, game_id: int, info: GameInfo) -> None:
        now = time.monotonic()
        # Expired entries go on every write, read or not
        for expired in [gid for gid, (expires_at, _) in self._cache.items() if expires_at < now]:
            del self._cache[expired]
        self._cache[game_id] = (now + self.cache_ttl, info)

    async def get_game(self, game_id: int) -> GameInfo | None:
        """
        Fetch name and artwork for a single game.

        Args:
            game_id: RAWG game ID

        Returns:
            GameInfo, or None if the lookup fails or times out
        """
        cached = self._cached(game_id)
        if cached is not None:
            return cached

        async with self._client() as client:
            try:
                response = await client.get(
                    f"{self.base_url}/games/{game_id}", params=self._params()
                )
                response.raise_for_status()
                info = self._parse_game_json(response.json(), game_id)
            except httpx.HTTPError as e:
                logger.error(f"Failed to get game {game_id} from RAWG API: {e}")
                return None
            except ValueError as e:
                logger.error(f"Invalid RAWG response for game {game_id}: {e}")
                return None

        if info is not None and self.cache_ttl > 0:
            self._remember(game_id, info)
        return info

    def _parse_game_json(self, data: dict, game_id: int) -> GameInfo | None:
        if not isinstance(data, dict) or "name" not in data:
            return None
        return GameInfo(
            id=int(data.get("id", game_id)),
            name=data.get("name") or "Unknown Game",
            background_image=data.get("background_image"),
        )

    async def search_games(self, query: str, page: int = 1, page_size: int = 12) -> list[dict]:
        """
        Search the catalog by name.

        Args:
            query: Search string
            page: 1-based page number
            page_size: Results per page (default 12)

        Returns:
            List of dicts: [{id, name, background_image, released, rating}, ...]
        """
        params = self._params(search=query, page=page, page_size=page_size)

        async with self._client() as client:
            try:
                response = await client.get(f"{self.base_url}/games", params=params)
                response.raise_for_status()
                return self._parse_search_json(response.json())
            except httpx.HTTPError as e:
                logger.error(f"Error searching RAWG for '{query}': {e}")
                return []
            except ValueError as e:
                logger.error(f"Invalid RAWG search response for '{query}': {e}")
                return []

    def _parse_search_json(self, data: dict) -> list[dict]:
        """Parse a RAWG /games listing."""
        results: list[dict] = []

        for item in data.get("results") or []:
            try:
                results.append(
                    {
                        "id": int(item["id"]),
                        "name": item.get("name") or "Unknown Game",
                        "background_image": item.get("background_image"),
                        "released": item.get("released"),
                        "rating": item.get("rating"),
                    }
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to parse search item: {e}")
                continue

        return results
