from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./competitive.db",
        description="Database connection URL",
    )

    # OpenStreetMap services (the User-Agent is required by their usage policy)
    osm_user_agent: str = Field(
        default="kaartkompas/unknown-contact",
        description="User-Agent sent with every outbound request",
    )
    nominatim_url: str = Field(
        default="https://nominatim.openstreetmap.org/search",
        description="Geocoding endpoint",
    )
    overpass_url: str = Field(
        default="https://overpass-api.de/api/interpreter",
        description="Overpass API interpreter endpoint",
    )
    overpass_timeout: int = Field(
        default=60, ge=1, description="Overpass server-side query timeout (s)"
    )

    # Outbound HTTP
    http_timeout_ms: int = Field(
        default=15_000,
        ge=100,
        validation_alias=AliasChoices("http_timeout_ms", "http_default_timeout_ms"),
        description="Per-request timeout in milliseconds",
    )
    competitive_max_concurrency: int = Field(
        default=5, ge=1, le=10, description="Worker pool size per run"
    )
    per_host_max_concurrent: int = Field(
        default=2, ge=1, description="Simultaneous requests allowed per hostname"
    )
    place_delay_ms: int = Field(
        default=100, ge=0, description="Pause a worker takes between places"
    )

    # Search fallbacks
    fallback_search_rate_rps: float = Field(
        default=0.2, gt=0.0, description="DuckDuckGo requests per second"
    )
    fallback_search_jitter_ms: int = Field(default=250, ge=0)
    fallback_search_block_backoff_s: float = Field(
        default=10.0, ge=0.0, description="Sleep after a search block page"
    )
    fallback_search_max_candidates: int = Field(default=5, ge=1)
    search_candidate_delay_ms: int = Field(
        default=200, ge=0, description="Pause between search result validations"
    )
    fallback_verify_min_score: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Minimum identity score for guessed/searched websites",
    )
    fallback_tlds: str = Field(
        default=".nl,.com,.eu,.be",
        description="Comma-separated TLDs used for domain guessing",
    )
    domain_guess_max_candidates: int = Field(default=48, ge=1)
    fallback_enable_guess: bool = Field(default=True)
    fallback_enable_ddg: bool = Field(default=True)
    fallback_enable_google: bool = Field(default=True)
    fallback_enable_reuse: bool = Field(default=True)
    reuse_across_runs: bool = Field(
        default=False,
        description="Reuse websites validated in earlier runs, not only this one",
    )

    # Google Custom Search / SerpAPI
    google_search_budget: int = Field(
        default=25, ge=0, description="Paid search calls allowed per run"
    )
    google_api_key: str = Field(default="", description="Google API key")
    google_cse_id: str = Field(default="", description="Custom Search engine id")
    serpapi_key: str = Field(default="", description="SerpAPI key")

    # Application
    app_env: str = Field(
        default="development", description="Environment (development, production)"
    )
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def fallback_tld_list(self) -> list[str]:
        """Parse the TLD list, ensuring every entry starts with a dot."""
        tlds = [t.strip() for t in self.fallback_tlds.split(",") if t.strip()]
        return [t if t.startswith(".") else f".{t}" for t in tlds]

    @property
    def http_timeout(self) -> float:
        return self.http_timeout_ms / 1000


# Global settings instance
settings = Settings()
