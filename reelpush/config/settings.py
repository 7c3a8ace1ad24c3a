"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

The upload driver never reads the environment itself. Settings are turned
into explicit StorageConfig / GraphConfig / UploadConfig objects and
injected (see api/dependencies.py).

Mock modes enable local development without external services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.upload.models import DEFAULT_CHUNK_CEILING, UploadConfig
from ..infrastructure.facebook.client import GraphConfig
from ..infrastructure.facebook.oauth import OAuthConfig
from ..infrastructure.storage.client import StorageConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "ReelPush API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # R2/S3 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="reelpush-videos",
        description="R2 bucket holding the source videos"
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_read_timeout_seconds: float = Field(
        default=300.0,
        description="Read timeout for one range read. Must cover a full chunk on a slow link."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Facebook Configuration
    fb_app_id: str = Field(
        default="",
        description="Facebook app ID (login flow only)"
    )
    fb_app_secret: str = Field(
        default="",
        description="Facebook app secret (login flow only)"
    )
    fb_redirect_uri: str = Field(
        default="http://localhost:8000/auth/facebook/callback",
        description="OAuth redirect URI registered with the Facebook app"
    )
    fb_graph_api_version: str = Field(
        default="v19.0",
        description="Graph API version used for all calls"
    )
    fb_graph_video_url: str = Field(
        default="https://graph-video.facebook.com",
        description="Base URL for resumable video uploads"
    )
    fb_request_timeout_seconds: float = Field(
        default=300.0,
        description="Timeout for one Graph request. A transfer call carries a whole chunk."
    )
    fb_mock_mode: bool = Field(
        default=False,
        description="Use in-memory Graph endpoint. Enables local dev without a Facebook app."
    )

    # Upload Behavior
    upload_chunk_ceiling_bytes: int = Field(
        default=DEFAULT_CHUNK_CEILING,
        description="Max chunk size used while the endpoint has not named its own window."
    )
    upload_max_attempts: int = Field(
        default=3,
        description="Attempts per chunk for retryable transfer failures (1 disables retry)."
    )
    upload_backoff_base_seconds: float = Field(
        default=1.0,
        description="First retry delay; doubles per attempt."
    )
    upload_backoff_max_seconds: float = Field(
        default=30.0,
        description="Upper bound on a single retry delay."
    )
    upload_max_stalled_transfers: int = Field(
        default=3,
        description="Consecutive transfers without progress before giving up."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        This is S3-compatible but uses Cloudflare's network.
        """
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    def storage_config(self) -> StorageConfig:
        return StorageConfig(
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            endpoint_url=self.r2_endpoint,
            read_timeout_seconds=self.r2_read_timeout_seconds,
        )

    def graph_config(self) -> GraphConfig:
        return GraphConfig(
            base_url=self.fb_graph_video_url,
            api_version=self.fb_graph_api_version,
            timeout_seconds=self.fb_request_timeout_seconds,
        )

    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            app_id=self.fb_app_id,
            app_secret=self.fb_app_secret,
            redirect_uri=self.fb_redirect_uri,
            api_version=self.fb_graph_api_version,
        )

    def upload_config(self) -> UploadConfig:
        return UploadConfig(
            chunk_ceiling=self.upload_chunk_ceiling_bytes,
            max_attempts=self.upload_max_attempts,
            backoff_base_seconds=self.upload_backoff_base_seconds,
            backoff_max_seconds=self.upload_backoff_max_seconds,
            max_stalled_transfers=self.upload_max_stalled_transfers,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # R2 only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id and not self.r2_endpoint_url:
                missing.append("R2_ACCOUNT_ID or R2_ENDPOINT_URL")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")

        # App credentials are only needed for the login flow
        if not self.fb_mock_mode:
            if not self.fb_app_id:
                missing.append("FB_APP_ID")
            if not self.fb_app_secret:
                missing.append("FB_APP_SECRET")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
