import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///game_night.db")

# RAWG game catalog
RAWG_API_KEY = os.getenv("RAWG_API_KEY")
RAWG_BASE_URL = os.getenv("RAWG_BASE_URL", "https://api.rawg.io/api")
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "10"))  # seconds
CATALOG_CACHE_TTL = float(os.getenv("CATALOG_CACHE_TTL", "300"))  # seconds

# Lobbies
STALE_LOBBY_MINUTES = int(os.getenv("STALE_LOBBY_MINUTES", "30"))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
MIN_LOBBY_PLAYERS = 2
MAX_LOBBY_PLAYERS = 24
MAX_LOBBY_NAME_LENGTH = 50

# Voting: a cast vote is final unless this is enabled
ALLOW_REVOTE = os.getenv("ALLOW_REVOTE", "false").lower() in ("1", "true", "yes")

# HTTP server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
