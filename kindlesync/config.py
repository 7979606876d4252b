"""Application configuration."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = "development"  # development, staging, production

    # Development mode (allows running without GitHub credentials) - MUST be False in production
    dev_mode: bool = False

    # Database (SQLite default is safe for dev; production must set a real connection string)
    database_url: str = "sqlite+aiosqlite:///./kindlesync.db"

    # GitHub OAuth
    github_client_id: str = ""
    github_client_secret: str = ""
    github_redirect_uri: str = ""  # Defaults to {backend_url}/auth/callback
    github_scope: str = "read:user user:email"
    github_authorize_url: str = "https://github.com/login/oauth/authorize"
    github_token_url: str = "https://github.com/login/oauth/access_token"
    github_user_url: str = "https://api.github.com/user"

    # Seconds before an outbound call to GitHub is abandoned
    provider_timeout: float = 30.0

    # Authorization sessions (seconds until a pending sign-in is abandoned)
    session_expires_in: int = 300

    # Bearer tokens handed to devices
    user_token_lifetime: int = 7200  # seconds
    user_token_prefix: str = "ur_"
    user_token_bytes: int = 32

    # URLs
    backend_url: str = "http://localhost:8000"

    # Rate limiting (slowapi limit strings)
    rate_limit_enabled: bool = True
    rate_limit_auth_request: str = "10/minute"
    rate_limit_auth_status: str = "120/minute"  # devices poll every few seconds
    rate_limit_token: str = "30/minute"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @model_validator(mode="after")
    def _check_provider_credentials(self) -> "Settings":
        """Require GitHub credentials unless running in dev mode."""
        if self.dev_mode and self.is_production:
            raise ValueError("DEV_MODE must not be enabled in production")
        if not self.dev_mode:
            missing = []
            if not self.github_client_id:
                missing.append("GITHUB_CLIENT_ID")
            if not self.github_client_secret:
                missing.append("GITHUB_CLIENT_SECRET")
            if missing:
                raise ValueError(f"Missing required settings (set DEV_MODE=true for development): {', '.join(missing)}")
        if self.session_expires_in <= 0 or self.user_token_lifetime <= 0:
            raise ValueError("SESSION_EXPIRES_IN and USER_TOKEN_LIFETIME must be positive")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def redirect_uri(self) -> str:
        """OAuth callback URL registered with GitHub."""
        return self.github_redirect_uri or f"{self.backend_url}/auth/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
