"""Base chat adapter interface and common functionality.

This module defines the contract every platform adapter implements:
connection lifecycle and state, event subscription, per-instance
configuration, capability flags and the shared helpers (reconnect backoff,
dedup window) each adapter composes.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from livechat.core.config import Settings, get_settings
from livechat.utils.metrics import MetricsContext, counter, gauge

from .config_store import AdapterConfig
from .dedup import DedupWindow
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
from .reconnect import ReconnectBackoff
from .scheduling import ScheduledTask
from .text_pipeline import TextPipeline, TokenEmotes


logger = logging.getLogger(__name__)


class ChatEventType(str, Enum):
    """Events an adapter can emit."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECT = "reconnect"
    ERROR = "error"
    CREDENTIALS_EXPIRED = "credentials-expired"
    MESSAGE = "message"
    WHISPER = "whisper"
    SUPER_CHAT = "super-chat"
    DELETE_MESSAGE = "delete-message"
    PURGE_MESSAGE = "purge-message"
    CLEAR_MESSAGES = "clear-messages"
    USER_JOIN = "user-join"
    USER_LEAVE = "user-leave"
    USER_TIMEOUT = "user-timeout"
    USER_UPDATE = "user-update"
    USER_BANNED = "user-banned"
    CHAT_ENDED = "chat-ended"


class ConnectionState(str, Enum):
    """Connection lifecycle of an adapter."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class ChatMessage:
    """A chat message in the unified format.

    ``body`` is the transformed text, ``raw`` the source text as the platform
    delivered it. ``extra`` holds platform-specific attributes; its keys
    differ per adapter.
    """

    id: Optional[str]
    username: str
    body: str
    raw: Any
    timestamp: int
    extra: Dict[str, Any] = field(default_factory=dict)


def now_ms() -> int:
    return int(time.time() * 1000)


EventCallback = Callable[[Any], Any]
EventName = Union[ChatEventType, str]


class ChatAdapter(ABC):
    """Base class for all chat adapters.

    Subclasses implement the platform handshake (``_open``), transport
    teardown (``_close``) and sending (``_send``). State transitions are made
    here and by the subclass itself only; callers observe them through
    ``state`` and the emitted events.
    """

    name: ClassVar[str] = "Undefined"
    key: ClassVar[str] = "undefined"
    required_config: ClassVar[Tuple[str, ...]] = ()
    default_config: ClassVar[Mapping[str, Any]] = {}

    supports_emoticons: ClassVar[bool] = False
    supports_writing: ClassVar[bool] = False
    live: ClassVar[bool] = False

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        backoff: Optional[ReconnectBackoff] = None,
        dedup: Optional[DedupWindow] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the chat adapter.

        Args:
            config: Initial config values, merged over the class defaults
            backoff: Reconnect interval calculator (defaults from settings)
            dedup: Recent message id window (capacity from settings)
            settings: Settings override, mainly for tests
        """
        self.settings = settings or get_settings()
        self.config = AdapterConfig(self.required_config, self.defaults())
        if config:
            self.config.set(config)

        self.backoff = backoff or ReconnectBackoff.from_settings(self.settings)
        self.dedup = dedup or DedupWindow(self.settings.dedup_capacity)

        self._state = ConnectionState.DISCONNECTED
        self._listeners: Dict[ChatEventType, List[EventCallback]] = {}

        self._init_metrics()

        logger.debug(f"Initialized {self.__class__.__name__}")

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"{self.name}: {self._state.value} -> {state.value}")
        self._state = state
        self._connection_status.set(1 if state is ConnectionState.CONNECTED else 0)

    # Lifecycle

    async def connect(self) -> None:
        """Connect to the platform.

        Calling this while connecting, connected or reconnecting does nothing.

        Raises:
            ConfigError: A required config key is missing or empty
            ChatConnectionError: The handshake failed
            ChatAuthenticationError: The platform rejected the credentials
        """
        if self._state is not ConnectionState.DISCONNECTED:
            return

        self.validate_config()

        logger.info(f"Connecting {self.name} chat adapter")
        self._set_state(ConnectionState.CONNECTING)
        self._connection_attempts.increment()

        try:
            async with MetricsContext("chat_adapter_connect", {"platform": self.key}):
                await self._open()
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            aborted = self._state is ConnectionState.DISCONNECTED
            self._set_state(ConnectionState.DISCONNECTED)
            self._connection_failures.increment()
            await self._close()
            if aborted:
                logger.info(f"{self.name} connect aborted by disconnect()")
                return
            logger.error(f"Failed to connect {self.name} chat adapter: {e}")
            error = e if isinstance(e, ChatAdapterError) else ChatConnectionError(f"Failed to connect: {e}")
            await self.emit(ChatEventType.ERROR, error)
            if error is e:
                raise
            raise error from e

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the handshake was in flight
            return

        await self._mark_connected()
        await self._after_connect()

    async def disconnect(self) -> None:
        """Tear the connection down and cancel every pending timer."""
        if self._state is ConnectionState.DISCONNECTED:
            return

        logger.info(f"Disconnecting {self.name} chat adapter")
        self._set_state(ConnectionState.DISCONNECTED)
        self._cancel_timers()
        self.dedup.clear()

        await self._close()
        await self.emit(ChatEventType.DISCONNECTED)

        logger.info(f"Disconnected {self.name} chat adapter")

    async def send(self, message: str) -> Any:
        """Send a message to the chat.

        Returns:
            The server acknowledgement, when the platform provides one

        Raises:
            NotConnectedError: The adapter is not connected
            WritePermissionDenied: Credentials allowing writes are missing
        """
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"Unable to send message, {self.name} is not connected")

        result = await self._send(message)
        self._messages_sent.increment()
        return result

    async def _mark_connected(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self.backoff.reset()
        self._connection_successes.increment()
        logger.info(f"Connected {self.name} chat adapter")
        await self.emit(ChatEventType.CONNECTED)

    @abstractmethod
    async def _open(self) -> None:
        """Perform the platform handshake."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the transport. Must tolerate being called when nothing is open."""

    async def _send(self, message: str) -> Any:
        raise WritePermissionDenied(f"{self.name} does not support sending messages")

    async def _after_connect(self) -> None:
        """Hook run once the adapter is connected."""

    def _cancel_timers(self) -> None:
        """Cancel every scheduled task owned by the adapter."""

    # Events

    def on(self, event: Union[EventName, Iterable[EventName]], callback: EventCallback) -> "ChatAdapter":
        """Register a callback for one event or a list of events.

        Several callbacks may listen to the same event; they run in
        registration order.
        """
        if isinstance(event, (list, tuple, set)):
            for e in event:
                self.on(e, callback)
            return self

        event_type = ChatEventType(event)
        self._listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Registered callback for event type: {event_type.value}")
        return self

    def off(self, event: EventName, callback: Optional[EventCallback] = None) -> "ChatAdapter":
        """Remove one callback, or every callback of ``event``."""
        event_type = ChatEventType(event)
        if callback is None:
            self._listeners.pop(event_type, None)
        elif callback in self._listeners.get(event_type, []):
            self._listeners[event_type].remove(callback)
        return self

    def listeners(self, event: EventName) -> List[EventCallback]:
        return list(self._listeners.get(ChatEventType(event), []))

    async def emit(self, event: EventName, data: Any = None) -> None:
        """Deliver ``data`` to every callback registered for ``event``."""
        event_type = ChatEventType(event)
        self._events_emitted.increment(labels={"event_type": event_type.value})

        for callback in list(self._listeners.get(event_type, [])):
            try:
                result = callback(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event_type.value} callback: {e}")
                self._callback_errors.increment()

    def _accept(self, item_id: Any) -> bool:
        """Record ``item_id`` in the dedup window; False if it was seen before."""
        if item_id is not None and not self.dedup.add(item_id):
            self._duplicates_dropped.increment()
            return False
        return True

    async def _emit_message(self, event: EventName, message: ChatMessage, dedup: bool = True) -> bool:
        """Emit a message unless its id was already delivered."""
        if dedup and not self._accept(message.id):
            return False
        self._messages_received.increment()
        await self.emit(event, message)
        return True

    async def _report_error(self, error: Exception) -> None:
        """Classify a background failure and emit it."""
        self._errors.increment(labels={"error_type": type(error).__name__})
        if self.is_auth_error(error):
            logger.warning(f"{self.name} credentials rejected: {error}")
            if not isinstance(error, CredentialsExpiredError):
                expired = CredentialsExpiredError(str(error))
                expired.__cause__ = error
                error = expired
            await self.emit(ChatEventType.CREDENTIALS_EXPIRED, error)
        else:
            logger.error(f"{self.name} error: {error}")
            await self.emit(ChatEventType.ERROR, error)

    def is_auth_error(self, error: Exception) -> bool:
        if isinstance(error, (CredentialsExpiredError, ChatAuthenticationError)):
            return True
        return isinstance(error, ApiError) and 401 in (error.status, error.code)

    # Config

    def defaults(self) -> Dict[str, Any]:
        """Config applied at construction, before the caller's values."""
        return dict(self.default_config)

    def get_config(self, key: Optional[str] = None, default: Any = None) -> Any:
        """Return one config value, or the whole config when ``key`` is None."""
        if key is None:
            return self.config.as_dict()
        return self.config.get(key, default)

    def set_config(self, key, value: Any = None) -> "ChatAdapter":
        """Set one config value, or every entry of a mapping."""
        self.config.set(key, value)
        return self

    def validate_config(self) -> None:
        self.config.validate()

    def should_parse_emoticons(self) -> bool:
        return bool(self.config.get("parseEmoticon", True))

    def should_parse_urls(self) -> bool:
        return bool(self.config.get("parseUrl", True))

    def should_format_messages(self) -> bool:
        return bool(self.config.get("formatMessages", True))

    def build_pipeline(self, emotes: Optional[TokenEmotes] = None) -> TextPipeline:
        """Text pipeline honouring the formatMessages, parseUrl and parseEmoticon flags.

        Without explicit ``emotes`` the optional ``emoticons`` config mapping
        (code -> image url) is used.
        """
        if emotes is None and self.config.get("emoticons"):
            emotes = TokenEmotes(self.config.get("emoticons"))
        return TextPipeline(
            escape=True,
            linkify=self.should_format_messages() and self.should_parse_urls(),
            emotes=emotes if self.should_parse_emoticons() else None,
        )

    # Capabilities

    def get_name(self) -> str:
        return self.name

    def get_key(self) -> str:
        return self.key

    def has_emoticons(self) -> bool:
        return self.supports_emoticons

    def has_writing(self) -> bool:
        return self.supports_writing

    def is_live(self) -> bool:
        """True for push (socket) platforms, False for polled ones."""
        return self.live

    # Metrics

    def _init_metrics(self) -> None:
        """Initialize metrics for this adapter."""
        labels = {"platform": self.key}

        self._connection_attempts = counter(
            "chat_adapter_connection_attempts_total", "Total connection attempts", labels
        )
        self._connection_successes = counter(
            "chat_adapter_connection_successes_total", "Total successful connections", labels
        )
        self._connection_failures = counter(
            "chat_adapter_connection_failures_total", "Total connection failures", labels
        )
        self._events_emitted = counter(
            "chat_adapter_events_emitted_total", "Total events emitted", labels
        )
        self._messages_received = counter(
            "chat_adapter_messages_received_total", "Total chat messages received", labels
        )
        self._messages_sent = counter(
            "chat_adapter_messages_sent_total", "Total messages sent", labels
        )
        self._duplicates_dropped = counter(
            "chat_adapter_duplicates_dropped_total", "Total duplicate messages dropped", labels
        )
        self._errors = counter("chat_adapter_errors_total", "Total errors encountered", labels)
        self._callback_errors = counter(
            "chat_adapter_callback_errors_total", "Total callback errors", labels
        )
        self._connection_status = gauge(
            "chat_adapter_connection_status",
            "Current connection status (1=connected, 0=not connected)",
            labels,
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get a summary of adapter state."""
        return {
            "platform": self.key,
            "state": self._state.value,
            "reconnect_attempt": self.backoff.attempt,
            "reconnect_interval_ms": self.backoff.current_interval_ms,
            "cached_message_ids": len(self.dedup),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(state={self._state.value})"

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


class PollingChatAdapter(ChatAdapter):
    """Chat adapter fed by periodic REST fetches.

    A single self-rescheduling timer drives the loop: the next cycle is only
    scheduled once the current one has settled, so at most one fetch is in
    flight. The delay is the larger of the configured ``interval`` and the
    interval suggested by the server, if any.

    A failing cycle stops the loop; call ``resume()`` once the cause (for
    example expired credentials) has been dealt with.
    """

    live = False

    def __init__(self, config: Optional[Mapping[str, Any]] = None, **kwargs):
        super().__init__(config, **kwargs)
        self._poll_timer = ScheduledTask(f"{self.key}-poll")
        self._stalled = False

    @property
    def stalled(self) -> bool:
        return self._stalled

    def poll_delay_ms(self, suggested_ms: Optional[int] = None) -> int:
        configured = int(self.get_config("interval", 0))
        if suggested_ms:
            return max(int(suggested_ms), configured)
        return configured

    async def _after_connect(self) -> None:
        self._stalled = False
        await self._poll_cycle()

    def _cancel_timers(self) -> None:
        self._poll_timer.cancel()

    async def _poll_cycle(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return

        try:
            suggested = await self._poll_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.state is not ConnectionState.CONNECTED:
                return
            self._stalled = True
            logger.warning(f"{self.name} polling stopped: {e}")
            await self._report_error(e)
            return

        if self.state is not ConnectionState.CONNECTED:
            return

        delay = self.poll_delay_ms(suggested)
        logger.debug(f"Next {self.name} poll in {delay}ms")
        self._poll_timer.schedule(delay / 1000, self._poll_cycle)

    async def resume(self) -> None:
        """Restart a loop stopped by an error."""
        if self.state is not ConnectionState.CONNECTED or not self._stalled:
            return
        logger.info(f"Resuming {self.name} polling")
        self._stalled = False
        await self._poll_cycle()

    @abstractmethod
    async def _poll_once(self) -> Optional[int]:
        """Fetch and emit one page; return the server-suggested interval in ms.

        Implementations must check ``state`` after every await and return
        without emitting once the adapter is no longer connected.
        """


__all__ = [
    "ApiError",
    "ChatAdapter",
    "ChatAdapterError",
    "ChatAuthenticationError",
    "ChatConnectionError",
    "ChatEventType",
    "ChatMessage",
    "ConfigError",
    "ConnectionState",
    "CredentialsExpiredError",
    "NotConnectedError",
    "PollingChatAdapter",
    "ProtocolError",
    "TransportError",
    "WritePermissionDenied",
    "now_ms",
]
