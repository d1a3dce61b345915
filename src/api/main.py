import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.dependencies import Services
from src.api.handlers import router
from src.core import config
from src.core.db import init_db
from src.core.errors import GameNightError
from src.core.lobby import LobbyRegistry

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
logger = logging.getLogger(__name__)


async def sweep_periodically(registry: LobbyRegistry, interval: float) -> None:
    """Remove stale empty lobbies every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await registry.sweep_stale_lobbies()
        except Exception:
            logger.exception("Stale lobby sweep failed")


def _validation_messages(exc: RequestValidationError) -> dict[str, list[str]]:
    messages: dict[str, list[str]] = {}
    for error in exc.errors():
        # loc is ("body", "field", ...); the first element names the source
        loc = [str(part) for part in error.get("loc", ())[1:]] or ["body"]
        messages.setdefault(".".join(loc), []).append(error.get("msg", "Invalid value"))
    return messages


def create_app(services: Services | None = None) -> FastAPI:
    services = services or Services.build()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        sweeper = asyncio.create_task(
            sweep_periodically(services.lobbies, config.SWEEP_INTERVAL_SECONDS)
        )
        logger.info("Game night API is up")
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="Game Night Lobbies",
        description="Lobbies and group voting for picking a game to play together.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(GameNightError)
    async def game_night_error_handler(request: Request, exc: GameNightError):
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "error": exc.message}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Validation error",
                "errorMessages": _validation_messages(exc),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Something went wrong. Please try again."},
        )

    app.include_router(router, prefix="/api")
    return app


def main():
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
