"""
errors.py — Error Taxonomy
==========================
Game errors carry the wire code sent to clients (`{"type": "error", "code", "message"}`)
and the HTTP status used by the REST endpoints. Store errors are internal and
get mapped to game errors at the engine boundary.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════
# GAME ERRORS (sent to the offending client)
# ═══════════════════════════════════════════════════

class GameError(Exception):
    code = "internal"
    status = 400

    def __init__(self, message: str = "", code: str | None = None, status: int | None = None):
        if code:
            self.code = code
        if status:
            self.status = status
        self.message = message or self.code.replace("_", " ")
        super().__init__(self.message)


class LobbyNotFound(GameError):
    code = "lobby_not_found"
    status = 404


class LobbyFull(GameError):
    code = "lobby_full"
    status = 409


class NameTaken(GameError):
    code = "name_taken"
    status = 409


class NotYourTurn(GameError):
    code = "not_your_turn"
    status = 403


class WrongPhase(GameError):
    code = "wrong_phase"
    status = 409


class InvalidSubmission(GameError):
    code = "invalid_submission"
    status = 422


class GenerationFailed(GameError):
    code = "generation_failed"
    status = 502


class InternalError(GameError):
    code = "internal"
    status = 500


class InvalidIntent(GameError):
    code = "invalid_intent"
    status = 422


class NotHost(GameError):
    code = "not_host"
    status = 403


class NotEnoughPlayers(GameError):
    code = "not_enough_players"
    status = 409


class NotInLobby(GameError):
    code = "not_in_lobby"
    status = 403


class Forbidden(GameError):
    code = "forbidden"
    status = 403


# ═══════════════════════════════════════════════════
# STORE ERRORS (internal only)
# ═══════════════════════════════════════════════════

class StoreError(Exception):
    pass


class CodeTaken(StoreError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Lobby code already in use: {code}")


class NotFound(StoreError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Lobby not found: {code}")


class Conflict(StoreError):
    def __init__(self, code: str, expected: int, actual: int | None):
        self.code = code
        self.expected = expected
        self.actual = actual
        super().__init__(f"Version conflict on {code}: expected {expected}, stored {actual}")


class StorageUnavailable(StoreError):
    pass


# ═══════════════════════════════════════════════════
# FASTAPI HANDLERS
# ═══════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        return JSONResponse(
            status_code=exc.status,
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        if isinstance(exc, NotFound):
            err: GameError = LobbyNotFound(str(exc))
        else:
            logger.error(f"Store error on {request.url.path}: {exc}")
            err = InternalError(str(exc) if app.debug else "Internal server error")
        return JSONResponse(
            status_code=err.status,
            content={"error": {"code": err.code, "message": err.message}},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "internal",
                    "message": str(exc) if app.debug else "Internal server error",
                }
            },
        )
