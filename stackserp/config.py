"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # stackserp/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider: openai | anthropic
    stackserp_llm_provider: str = "openai"

    # OpenAI
    openai_api_key: str | None = None
    stackserp_openai_model: str = "gpt-4o"
    stackserp_image_model: str = "dall-e-3"

    # Anthropic
    anthropic_api_key: str | None = None
    stackserp_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Research (Perplexity). Without a key the research stage uses built-in fallback research.
    perplexity_api_key: str | None = None
    stackserp_research_model: str = "sonar-pro"

    # Data directory for the file-based stores
    stackserp_data_dir: str = "./data"

    # Postgres URL. When set, all stores use Postgres instead of JSON files.
    stackserp_database_url: str | None = None

    # Worker
    stackserp_poll_interval: float = 5.0
    stackserp_stuck_after_seconds: int = 10 * 60
    stackserp_embedded_worker: bool = False

    # Per-stage timeouts in seconds
    stackserp_timeout_research: float = 90.0
    stackserp_timeout_outline: float = 60.0
    stackserp_timeout_draft: float = 180.0
    stackserp_timeout_tone: float = 180.0
    stackserp_timeout_seo: float = 180.0
    stackserp_timeout_metadata: float = 60.0
    stackserp_timeout_image: float = 120.0

    # Publish webhook defaults (per-website settings take precedence)
    stackserp_publish_webhook_url: str | None = None
    stackserp_publish_webhook_secret: str | None = None

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_origin_regex: str | None = None

    # Server port
    port: int = 8000

    @property
    def data_dir(self) -> Path:
        """Get data directory as Path.

        Relative paths are resolved against the project root (not CWD),
        so the worker and the API agree on where jobs live.
        """
        p = Path(self.stackserp_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def stage_timeout(self, stage: str) -> float:
        """Timeout in seconds for one stage invocation."""
        return float(getattr(self, f"stackserp_timeout_{stage}", 120.0))

    def ensure_dirs(self) -> None:
        """Ensure the data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
