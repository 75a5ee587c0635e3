"""
Core configuration module for livechat.

This module defines the process-level settings used as defaults by every chat
adapter. Values are loaded from environment variables (prefixed with
``LIVECHAT_``) or a ``.env`` file, with sensible defaults for every field.
Per-session values (channels, tokens) live in each adapter's own config and
never in these settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or a .env file.
    The settings are validated using Pydantic's type system.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIVECHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging Settings
    debug: bool = Field(default=False, description="Debug mode flag")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level for livechat loggers"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="logging format string",
    )

    # HTTP Settings
    http_timeout_seconds: float = Field(
        default=30.0, description="Total timeout for a single REST request"
    )
    http_max_tries: int = Field(
        default=3,
        ge=1,
        description="Attempts for a REST request failing at the connection level",
    )

    # Reconnect Backoff Settings
    reconnect_default_interval_ms: int = Field(
        default=1000, ge=1, description="First reconnect delay in milliseconds"
    )
    reconnect_multiplier: float = Field(
        default=1.8, ge=1.0, description="Growth factor between reconnect attempts"
    )
    reconnect_max_interval_ms: int = Field(
        default=60000, ge=1, description="Upper bound for the reconnect delay"
    )

    # Dedup Settings
    dedup_capacity: int = Field(
        default=2000, ge=1, description="Recently seen message ids kept per adapter"
    )
    echo_capacity: int = Field(
        default=5, ge=1, description="Recently sent message ids kept for echo suppression"
    )

    # Twitch Settings
    twitch_api_base_url: str = Field(
        default="https://api.twitch.tv/helix", description="Twitch API base URL"
    )
    twitch_irc_websocket_url: str = Field(
        default="wss://irc-ws.chat.twitch.tv:443",
        description="Twitch chat IRC-over-WebSocket URL",
    )
    twitch_join_timeout_seconds: float = Field(
        default=10.0, description="Time allowed for the channel JOIN to be confirmed"
    )
    twitch_emote_url_template: str = Field(
        default="https://static-cdn.jtvnw.net/emoticons/v1/{id}/3.0",
        description="Image URL template for Twitch emotes",
    )

    # Mixer Settings
    mixer_api_base_url: str = Field(
        default="https://mixer.com/api/v1", description="Mixer REST API base URL"
    )
    mixer_emoticon_url_template: str = Field(
        default="https://mixer.com/_latest/assets/emoticons/{pack}.png",
        description="Sprite sheet URL template for Mixer emoticon packs",
    )
    mixer_reply_timeout_seconds: float = Field(
        default=10.0, description="Time to wait for a reply to a socket method call"
    )

    # YouTube Settings
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL",
    )
    youtube_poll_interval_ms: int = Field(
        default=5000, ge=0, description="Minimum delay between YouTube chat polls"
    )

    # Facebook Settings
    facebook_graph_base_url: str = Field(
        default="https://graph.facebook.com", description="Facebook Graph API base URL"
    )
    facebook_graph_version: str = Field(
        default="v3.0", description="Facebook Graph API version"
    )
    facebook_poll_interval_ms: int = Field(
        default=3000, ge=0, description="Minimum delay between Facebook comment polls"
    )

    @model_validator(mode="after")
    def validate_backoff_bounds(self):
        """Ensure the reconnect interval bounds are ordered."""
        if self.reconnect_max_interval_ms < self.reconnect_default_interval_ms:
            raise ValueError(
                "reconnect_max_interval_ms must be >= reconnect_default_interval_ms"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function returns a cached instance of the Settings class,
    ensuring that environment variables are only read once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
