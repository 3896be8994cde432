from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ═══════════════════════════════════════════════════
    # FastAPI Application Settings
    # ═══════════════════════════════════════════════════
    APP_NAME: str = "Re:cast"
    VERSION: str = "0.1.0"
    ENV: str = "development"  # "development" | "production" | "test"
    DEBUG: bool = True

    # ═══════════════════════════════════════════════════
    # Server Configuration
    # ═══════════════════════════════════════════════════
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ═══════════════════════════════════════════════════
    # Persistence (LobbyStore backend)
    # ═══════════════════════════════════════════════════
    USE_IN_MEMORY_DB: bool = True
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_KEY_PREFIX: str = "recast:lobby:"

    # ═══════════════════════════════════════════════════
    # Option Generator (external text generation)
    # ═══════════════════════════════════════════════════
    OPTION_GENERATOR_URL: str = "http://localhost:8000/api/options/generate"
    OPTION_GENERATOR_API_KEY: str = ""
    GENERATION_TIMEOUT_SEC: float = 30.0

    # Upstream chat-completions endpoint for the bundled generator
    LLM_API_URL: str = "https://api.openai.com/v1/chat/completions"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o-mini"

    # ═══════════════════════════════════════════════════
    # Game Rules & Limits
    # ═══════════════════════════════════════════════════
    MAX_PLAYERS_PER_LOBBY: int = 8
    MIN_PLAYERS: int = 2
    MATCHING_SECONDS_PER_PLAYER: float = 20.0
    ALLOWED_REACTIONS: list[str] = ["💯", "😆", "💩", "🌶️"]

    # ═══════════════════════════════════════════════════
    # Engine / Lifecycle
    # ═══════════════════════════════════════════════════
    CAS_MAX_RETRIES: int = 5
    LOBBY_IDLE_TTL_SEC: float = 1800.0  # 30 minutes
    JANITOR_INTERVAL_SEC: float = 60.0
    DISCONNECT_GRACE_SEC: float = 30.0

    # ═══════════════════════════════════════════════════
    # WebSocket Configuration
    # ═══════════════════════════════════════════════════
    SUBSCRIBER_QUEUE_SIZE: int = 16
    WS_MESSAGE_MAX_SIZE: int = 10000  # bytes

    # ═══════════════════════════════════════════════════
    # CORS Configuration
    # ═══════════════════════════════════════════════════
    CORS_ORIGINS: list[str] = ["*"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: list[str] = ["*"]
    CORS_HEADERS: list[str] = ["*"]

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("GENERATION_TIMEOUT_SEC")
    @classmethod
    def _cap_generation_timeout(cls, v: float) -> float:
        # hard ceiling on the generator call
        return min(v, 30.0)

    @model_validator(mode="after")
    def _check_idle_ttl(self) -> "Settings":
        if self.ENV != "test" and self.LOBBY_IDLE_TTL_SEC < 1800:
            raise ValueError("LOBBY_IDLE_TTL_SEC must be at least 1800 outside tests")
        return self


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Singleton Settings instance.

    Also usable as a FastAPI dependency:

    @app.get("/info")
    def info(settings: Settings = Depends(get_settings)):
        return {"env": settings.ENV}
    """
    global _settings
    if not _settings:
        _settings = Settings()
    return _settings


def override_settings(**overrides) -> Settings:
    """Replace the singleton (CLI flags, tests)."""
    global _settings
    _settings = Settings(**{**get_settings().model_dump(), **overrides})
    return _settings
