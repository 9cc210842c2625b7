"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() and pass
the resolved Settings into constructors (TokenCodec, PasswordHasher, stores).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Most field names map to env var
      names (e.g. debug -> DEBUG); the two signing secrets keep the names the
      deployment already uses (JWT_SECRET, JWT_REFRESH_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing signing secret
       is a hard startup failure raised as ConfigError.

  [M8] Access and refresh secrets must differ. A shared secret would make the
       two token contexts interchangeable at the signature level.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")


class ConfigError(RuntimeError):
    """Fatal startup misconfiguration. No request can be served safely.

    Not a ValueError: pydantic wraps ValueError raised inside validators into
    ValidationError, any other exception propagates unchanged.
    """


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///sessiongate_auth.db"

    # ------------------------------------------------------------------
    # Token signing -- two independent contexts
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    access_token_secret: str = Field(
        default="",
        validation_alias=AliasChoices("JWT_SECRET", "ACCESS_TOKEN_SECRET", "access_token_secret"),
    )
    refresh_token_secret: str = Field(
        default="",
        validation_alias=AliasChoices("JWT_REFRESH_SECRET", "REFRESH_TOKEN_SECRET", "refresh_token_secret"),
    )
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # bcrypt cost factor; applies to passwords and refresh-token hashes alike.
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_cookie_name: str = "owt_access_token"
    refresh_cookie_name: str = "owt_refresh_token"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # Comma-separated. The first entry is the fallback post-login target.
    allowed_redirect_origins: str = "http://localhost:5173"
    cors_origins: str = "http://localhost:5173"
    # Signs the Starlette session cookie used by authlib for OAuth state.
    session_secret: str = ""

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    naver_client_id: str = ""
    naver_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def redirect_origins(self) -> list[str]:
        return _split_csv(self.allowed_redirect_origins)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either signing secret is missing.
        """
        for field in ("access_token_secret", "refresh_token_secret", "session_secret"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field)
            elif field == "session_secret":
                # OAuth state only lives for one redirect round trip.
                setattr(self, field, secrets.token_hex(32))
            else:
                raise ConfigError(
                    f"{field.upper()} is required in production mode. "
                    "Set JWT_SECRET and JWT_REFRESH_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.access_token_secret) < 32 or len(self.refresh_token_secret) < 32:
            raise ConfigError("Token signing secrets must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ConfigError("Access and refresh token secrets must differ.")
        if not self.redirect_origins:
            raise ConfigError("ALLOWED_REDIRECT_ORIGINS must list at least one origin.")
        return self


def _split_csv(raw: str) -> list[str]:
    return [part.strip().rstrip("/") for part in raw.split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
