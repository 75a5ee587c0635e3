"""Chat adapter registry for creating platform-specific adapters.

This module provides the ChatAdapterRegistry class and a convenience
function for creating a fresh chat adapter from a platform key.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Type

from livechat.core.config import get_settings
from livechat.core.logging import LOG_DEBUG, LOG_ERROR, LogSink, LoggingSink

from .base import ChatAdapter
from .facebook import FacebookAdapter
from .mixer import MixerAdapter
from .twitch import TwitchAdapter
from .youtube import YouTubeAdapter


logger = logging.getLogger(__name__)


class ChatAdapterRegistry:
    """Registry of chat adapter classes keyed by platform.

    Every ``create()`` call returns a new adapter; instances are never shared.
    """

    _ADAPTER_CLASSES: Dict[str, Type[ChatAdapter]] = {
        TwitchAdapter.key: TwitchAdapter,
        MixerAdapter.key: MixerAdapter,
        YouTubeAdapter.key: YouTubeAdapter,
        FacebookAdapter.key: FacebookAdapter,
    }

    def __init__(self, sink: Optional[LogSink] = None, debug: Optional[bool] = None):
        """Initialize the registry.

        Args:
            sink: Where lookup failures and debug traces are reported
            debug: Report every adapter creation (defaults to ``Settings.debug``)
        """
        self.sink = sink or LoggingSink(logger)
        self.debug = get_settings().debug if debug is None else debug
        self._classes = dict(self._ADAPTER_CLASSES)

    def register(self, key: str, adapter_class: Type[ChatAdapter]) -> None:
        self._classes[key.lower()] = adapter_class

    def create(self, platform: str, config: Optional[Mapping[str, Any]] = None, **kwargs) -> ChatAdapter:
        """Create an adapter for ``platform``.

        Args:
            platform: Platform key ("twitch", "mixer", "youtube", "facebook")
            config: Initial adapter config
            **kwargs: Collaborators passed to the adapter constructor

        Returns:
            ChatAdapter: A new, disconnected adapter

        Raises:
            ValueError: If the platform is not supported
        """
        key = (platform or "").lower()
        adapter_class = self._classes.get(key)
        if adapter_class is None:
            self.sink.log(f"Unsupported chat platform: {platform}", LOG_ERROR)
            raise ValueError(f"Unsupported chat platform: {platform}")

        if self.debug:
            self.sink.log(f"Creating {adapter_class.__name__}", LOG_DEBUG)

        return adapter_class(config, **kwargs)

    def get_supported_platforms(self) -> Dict[str, str]:
        """Mapping of platform keys to display names."""
        return {key: adapter_class.name for key, adapter_class in self._classes.items()}

    def is_platform_supported(self, platform: str) -> bool:
        return (platform or "").lower() in self._classes


def create_chat_adapter(platform: str, config: Optional[Mapping[str, Any]] = None, **kwargs) -> ChatAdapter:
    """Create a chat adapter with a default registry.

    Raises:
        ValueError: If the platform is not supported
    """
    return ChatAdapterRegistry().create(platform, config, **kwargs)
