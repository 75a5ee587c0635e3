"""Twitch chat adapter.

Chat is received over a persistent IRC-on-WebSocket connection
(``TwitchIRCClient``); the Helix REST API is only used to look up the
authenticated user.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .base import ChatAdapter, ChatEventType, ChatMessage, ConnectionState, now_ms
from .exceptions import ChatAuthenticationError, ConfigError, ProtocolError, WritePermissionDenied
from .scheduling import ScheduledTask
from .text_pipeline import EmoteSpan, parse_emote_ranges
from .transport import HttpClient, HttpResponse
from .twitch_irc import TwitchIRCClient, split_action


logger = logging.getLogger(__name__)

ClientFactory = Callable[["TwitchAdapter"], TwitchIRCClient]


def default_client_factory(adapter: "TwitchAdapter") -> TwitchIRCClient:
    return TwitchIRCClient(
        adapter.get_config("channel"),
        adapter.get_config("username"),
        adapter.get_config("accessToken"),
    )


class TwitchAdapter(ChatAdapter):
    """Push-socket adapter for Twitch chat.

    Config:
        clientId: Twitch application client id (required)
        channel: Channel login to join (required)
        username, accessToken: Chat identity; without both the adapter is read-only
        userId: Numeric id of ``username``, filled by ``load_user()``
        reconnect: Reconnect with backoff when the socket drops (default True)
    """

    name = "Twitch"
    key = "twitch"
    required_config = ("clientId", "channel")
    default_config = {
        "reconnect": True,
        "parseEmoticon": True,
        "parseUrl": True,
        "formatMessages": True,
    }

    supports_emoticons = True
    supports_writing = True
    live = True

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        http: Optional[HttpClient] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.client_factory = client_factory or default_client_factory
        self.client: Optional[TwitchIRCClient] = None
        self._http = http
        self._reconnect_timer = ScheduledTask("twitch-reconnect")

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient(self.settings.twitch_api_base_url, headers=self._api_headers)
        return self._http

    def _api_headers(self) -> Dict[str, str]:
        token = self.get_config("accessToken")
        return {
            "Client-ID": self.get_config("clientId"),
            "Authorization": f"Bearer {token}" if token else None,
        }

    def has_identity(self) -> bool:
        return bool(self.get_config("username") and self.get_config("accessToken"))

    def get_client(self) -> Optional[TwitchIRCClient]:
        return self.client

    # Lifecycle

    async def _open(self) -> None:
        await self._open_client()

    async def _open_client(self) -> None:
        client = self.client_factory(self)
        client.on_chat = self._on_chat
        client.on_transport_error = self._on_transport_error
        self.client = client
        await client.connect()

    async def _close_client(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.disconnect()

    async def _close(self) -> None:
        await self._close_client()
        if self._http is not None:
            await self._http.close()

    def _cancel_timers(self) -> None:
        self._reconnect_timer.cancel()

    async def _on_transport_error(self, error: Exception) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return

        logger.warning(f"Twitch connection lost: {error}")
        if isinstance(error, ChatAuthenticationError) or not self.get_config("reconnect"):
            await self._report_error(error)
            await self.disconnect()
            return

        self._set_state(ConnectionState.RECONNECTING)
        await self._close_client()
        await self._schedule_reconnect()

    async def _schedule_reconnect(self) -> None:
        self.backoff.increase()
        logger.info(
            f"Reconnecting to Twitch in {self.backoff.current_interval_ms:.0f}ms "
            f"(attempt {self.backoff.attempt})"
        )
        await self.emit(ChatEventType.RECONNECT, self.backoff.attempt)
        self._reconnect_timer.schedule(self.backoff.delay_seconds, self._reconnect)

    async def _reconnect(self) -> None:
        if self.state is not ConnectionState.RECONNECTING:
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._open_client()
        except asyncio.CancelledError:
            raise
        except ChatAuthenticationError as e:
            if self.state is ConnectionState.CONNECTING:
                await self._report_error(e)
                await self.disconnect()
            return
        except Exception as e:
            if self.state is not ConnectionState.CONNECTING:
                return
            logger.warning(f"Twitch reconnect attempt {self.backoff.attempt} failed: {e}")
            await self._close_client()
            self._set_state(ConnectionState.RECONNECTING)
            await self._schedule_reconnect()
            return

        if self.state is not ConnectionState.CONNECTING:
            await self._close_client()
            return

        await self._mark_connected()

    # Messages

    async def _on_chat(self, channel: str, user: Dict[str, Any], text: str, is_self: bool) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        try:
            message = self.parse_message(user, text, is_self)
        except (TypeError, ValueError) as e:
            await self._report_error(ProtocolError(f"Malformed Twitch message: {e}"))
            return
        await self._emit_message(ChatEventType.MESSAGE, message)

    def parse_message(self, user: Dict[str, Any], text: str, is_self: bool = False) -> ChatMessage:
        raw, action = split_action(text)

        emotes = user.get("emotes") or None
        badges = user.get("badges") or {}
        broadcaster = badges.get("broadcaster") == "1"

        spans = parse_emote_ranges(emotes) if self.should_parse_emoticons() else []
        body = self.build_pipeline().render(raw, spans, self.emote_markup)

        sent_ts = user.get("tmi-sent-ts")
        timestamp = int(sent_ts) if sent_ts else now_ms()

        return ChatMessage(
            id=user.get("id"),
            username=user.get("display-name") or user.get("username") or "",
            body=body,
            raw=raw,
            timestamp=timestamp,
            extra={
                "colour": user.get("color"),
                "badges": badges,
                "subscriber": bool(user.get("subscriber")),
                "mod": bool(user.get("mod")),
                "turbo": bool(user.get("turbo")),
                "broadcaster": broadcaster,
                "emotes": emotes,
                "action": action,
                "self": is_self,
            },
        )

    def emote_markup(self, span: EmoteSpan) -> str:
        url = self.settings.twitch_emote_url_template.format(id=span.id)
        return f'<img class="emoticon" src="{url}" />'

    async def _send(self, message: str) -> None:
        if not self.has_identity():
            raise WritePermissionDenied("Sending on Twitch requires username and accessToken")
        await self.client.say(self.get_config("channel"), message)

    # REST

    async def api(self, method: str, url: str, data: Optional[Mapping[str, Any]] = None) -> HttpResponse:
        """Call the Helix API."""
        if not self.get_config("clientId"):
            raise ConfigError("Client ID not set.")
        return await self.http.request(method, url, data)

    async def load_user(self) -> Dict[str, Any]:
        """Fill ``channel``, ``username`` and ``userId`` from the token's user.

        Values already configured are kept.
        """
        if not self.get_config("accessToken"):
            raise ConfigError("Access token not set.")

        response = await self.api("get", "users")
        users = (response.data or {}).get("data") or []
        if not users:
            raise ChatAuthenticationError("No user is associated with the access token")

        user = users[0]
        login = user.get("login") or ""
        self.set_config({
            "channel": self.get_config("channel", login),
            "username": self.get_config("username", login),
            "userId": self.get_config("userId", int(user["id"]) if user.get("id") else None),
        })
        return user

    async def load_badges(self) -> Dict[str, Any]:
        """Chat badge sets of the configured user's channel."""
        user_id = self.get_config("userId")
        if not user_id:
            raise ConfigError("User ID is not set.")
        response = await self.api("get", "chat/badges", {"broadcaster_id": user_id})
        return response.data
