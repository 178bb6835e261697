from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_OPML_URL = (
    "https://gist.githubusercontent.com/emschwartz/e6d2bf860ccc367fe37ff953ba6de66b"
    "/raw/hn-popular-blogs-2025.opml"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    # Completion endpoint
    COMPLETION_PROVIDER: str = Field(default="zhipu")
    COMPLETION_MODEL: str | None = Field(default=None, description="Overrides the provider default model")
    ZHIPU_API_KEY: str | None = None
    ZHIPU_BASE_URL: str = Field(default="https://open.bigmodel.cn/api/paas/v4")
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1")
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    COMPLETION_TEMPERATURE: float = Field(default=0.7)
    COMPLETION_MAX_TOKENS: int = Field(default=4096)
    COMPLETION_TIMEOUT_SECONDS: float = Field(default=60.0, description="Transport timeout per completion call")

    # Source hosting (GitHub)
    GITHUB_TOKEN: str | None = Field(default=None, description="Enables branch/commit/PR/deploy stages")
    GITHUB_API_URL: str = Field(default="https://api.github.com")
    GITHUB_BASE_BRANCH: str | None = Field(default=None, description="None = repository default branch")
    GITHUB_MERGE_METHOD: str = Field(default="squash", description="merge, squash or rebase")
    GITHUB_TIMEOUT_SECONDS: float = Field(default=30.0)
    AUTO_MERGE: bool = Field(default=True)

    # Deployment monitor
    DEPLOY_WORKFLOW_NAME: str | None = Field(default=None, description="Only watch CI runs whose name contains this")
    DEPLOY_POLL_INTERVAL_SECONDS: float = Field(default=5.0)
    DEPLOY_TIMEOUT_SECONDS: float = Field(default=600.0)
    DEPLOY_DISPATCH_WORKFLOW: str | None = Field(default=None, description="Workflow file to dispatch on the new branch, for pipelines not triggered by push")

    # News sources
    NEWS_RSS_ENABLED: bool = Field(default=False)
    NEWS_OPML_URL: str = Field(default=DEFAULT_OPML_URL)
    NEWS_FEED_SAMPLE: int = Field(default=3, description="Feeds sampled per refresh")
    NEWS_HEADLINE_COUNT: int = Field(default=5)
    NEWS_CACHE_SECONDS: int = Field(default=1800)

    # CORS / Console integration
    CORS_ALLOW_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Runtime
    APP_ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    def validate_production_config(self) -> None:
        """Validate configuration for production environments.

        Call this at startup so a misconfigured deployment fails fast.

        Raises:
            RuntimeError: If configuration is invalid
        """
        if self.APP_ENV != "production":
            return

        # CORS cannot be wildcard in production
        if "*" in self.CORS_ALLOW_ORIGINS:
            raise RuntimeError(
                "CRITICAL: CORS_ALLOW_ORIGINS cannot be '*' in production. "
                "Specify exact origins."
            )

        if self.GITHUB_MERGE_METHOD not in ("merge", "squash", "rebase"):
            raise RuntimeError(
                f"CRITICAL: GITHUB_MERGE_METHOD must be merge, squash or rebase (got {self.GITHUB_MERGE_METHOD!r})"
            )

        if "http://localhost:3000" in self.CORS_ALLOW_ORIGINS:
            import logging
            logging.getLogger(__name__).warning(
                "WARNING: CORS_ALLOW_ORIGINS contains localhost - update for production"
            )


settings = Settings()
