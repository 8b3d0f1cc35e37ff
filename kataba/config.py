from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Completion provider (OpenAI-compatible)
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"
    openai_api_prefix: str = "/v1"
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 1200
    openai_top_p: float = 0.9
    openai_frequency_penalty: float = 0.3
    openai_presence_penalty: float = 0.5

    # Language detection (extra completion call per message)
    kataba_language_detection: bool = False

    # Database
    kataba_db_url: str = "sqlite+aiosqlite:///data/kataba.db"

    # Identity provider (JWT)
    kataba_identity_secret: str = "dev-identity-secret-change-in-production"
    kataba_identity_algorithm: str = "HS256"
    kataba_identity_audience: str | None = None
    kataba_identity_issuer: str | None = None
    kataba_token_expiry_seconds: int = 3600

    # Guest quota
    kataba_guest_max_messages: int = 5

    # Timeouts (seconds)
    kataba_completion_timeout: float = 60.0
    kataba_http_connect_timeout: float = 5.0

    # Logging
    kataba_log_level: str = "info"

    # CORS
    kataba_cors_origins: str = "http://localhost:3000"

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
