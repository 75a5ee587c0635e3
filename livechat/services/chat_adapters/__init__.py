"""Chat adapters for live streaming platforms.

Each adapter turns one platform's chat feed into ``ChatMessage`` events
delivered through the same ``on()``/``emit()`` interface.
"""

from .base import (
    ChatAdapter,
    ChatEventType,
    ChatMessage,
    ConnectionState,
    PollingChatAdapter,
)
from .exceptions import (
    ApiError,
    ChatAdapterError,
    ChatAuthenticationError,
    ChatConnectionError,
    ConfigError,
    CredentialsExpiredError,
    NotConnectedError,
    ProtocolError,
    TransportError,
    WritePermissionDenied,
)
from .facebook import FacebookAdapter
from .mixer import MixerAdapter
from .registry import ChatAdapterRegistry, create_chat_adapter
from .twitch import TwitchAdapter
from .youtube import YouTubeAdapter

__all__ = [
    "ApiError",
    "ChatAdapter",
    "ChatAdapterError",
    "ChatAdapterRegistry",
    "ChatAuthenticationError",
    "ChatConnectionError",
    "ChatEventType",
    "ChatMessage",
    "ConfigError",
    "ConnectionState",
    "CredentialsExpiredError",
    "FacebookAdapter",
    "MixerAdapter",
    "NotConnectedError",
    "PollingChatAdapter",
    "ProtocolError",
    "TransportError",
    "TwitchAdapter",
    "WritePermissionDenied",
    "YouTubeAdapter",
    "create_chat_adapter",
]
