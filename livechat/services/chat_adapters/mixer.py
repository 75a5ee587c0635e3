"""Mixer chat adapter.

Connecting is a two-step bootstrap over REST (channel lookup, chat server
list and auth key) followed by a JSON WebSocket to one of the chat servers.
Servers are used round-robin, both for the first connection and for every
reconnect attempt.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp
from pydantic import ValidationError

from .base import ChatAdapter, ChatEventType, ChatMessage, ConnectionState, now_ms
from .exceptions import (
    ChatAuthenticationError,
    ChatConnectionError,
    ConfigError,
    ProtocolError,
    WritePermissionDenied,
)
from .models import MixerChannel, MixerChatMessage, MixerChats, MixerFrame, MixerMessagePart
from .reconnect import next_index
from .scheduling import ScheduledTask
from .text_pipeline import escape_html, link_markup
from .transport import HttpClient, WebSocketFactory


logger = logging.getLogger(__name__)


class MixerAdapter(ChatAdapter):
    """Hybrid bootstrap + socket adapter for Mixer chat.

    Config:
        channelId: Numeric channel id; resolved from ``username`` when unset
        username: Channel owner name, used to resolve ``channelId``/``userId``
        accessToken: OAuth token, needed to obtain a writable auth key
        userId: Numeric id of the authenticated user
        reconnect: Reconnect with backoff on socket errors (default True)
    """

    name = "Mixer"
    key = "mixer"
    default_config = {
        "parseEmoticon": True,
        "parseUrl": True,
        "reconnect": True,
        "formatMessages": True,
    }

    supports_emoticons = True
    supports_writing = True
    live = True

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        ws_factory: Optional[WebSocketFactory] = None,
        http: Optional[HttpClient] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.ws_factory = ws_factory
        self._http = http
        self._session: Optional[aiohttp.ClientSession] = None

        self.endpoints: List[str] = []
        self.endpoint_index: Optional[int] = None
        self.auth_key: Optional[str] = None
        self.can_send = False

        self.ws = None
        self._receive_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._last_frame_id = 0
        self._reconnect_timer = ScheduledTask("mixer-reconnect")

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient(self.settings.mixer_api_base_url, headers=self._api_headers)
        return self._http

    def _api_headers(self) -> Dict[str, str]:
        token = self.get_config("accessToken")
        return {"Authorization": f"Bearer {token}" if token else None}

    def validate_config(self) -> None:
        super().validate_config()
        if not self.get_config("channelId") and not self.get_config("username"):
            raise ConfigError("Missing required config: channelId or username")

    # Bootstrap

    async def load_user(self) -> MixerChannel:
        """Resolve ``channelId`` and ``userId`` from ``username``."""
        username = self.get_config("username")
        if not username:
            raise ConfigError("Username not set.")

        response = await self.http.get(f"channels/{username}", {"fields": "id,userId"})
        channel = MixerChannel.model_validate(response.data)
        self.set_config({
            "channelId": self.get_config("channelId", channel.id),
            "userId": self.get_config("userId", channel.userId),
        })
        return channel

    async def _open(self) -> None:
        if not self.get_config("channelId"):
            await self.load_user()

        channel_id = self.get_config("channelId")
        response = await self.http.get(f"chats/{channel_id}")
        chats = MixerChats.model_validate(response.data)

        self.auth_key = chats.authkey
        self.endpoints = list(chats.endpoints)
        if not self.endpoints:
            raise ChatConnectionError("No chat servers available.")

        await self._open_socket(self.next_endpoint())

    def next_endpoint(self) -> str:
        self.endpoint_index = next_index(self.endpoint_index, len(self.endpoints))
        return self.endpoints[self.endpoint_index]

    def auth_arguments(self) -> List[Any]:
        arguments = [self.get_config("channelId")]
        user_id = self.get_config("userId")
        if user_id and self.auth_key:
            arguments += [user_id, self.auth_key]
        return arguments

    async def _open_socket(self, url: str) -> None:
        logger.info(f"Connecting to Mixer chat server {url}")
        try:
            self.ws = await self._connect_ws(url)
        except aiohttp.ClientError as e:
            raise ChatConnectionError(f"Failed to open Mixer chat socket: {e}") from e

        self._receive_task = asyncio.create_task(self._receive_loop(self.ws), name=f"mixer-chat:{url}")

        arguments = self.auth_arguments()
        reply = await self.call("auth", arguments)

        authenticated = isinstance(reply, dict) and reply.get("authenticated", False)
        self.can_send = len(arguments) == 3 and bool(authenticated)
        logger.debug(f"Mixer auth reply: {reply}")

    async def _connect_ws(self, url: str):
        if self.ws_factory is not None:
            return await self.ws_factory(url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url)

    # Socket

    def _next_frame_id(self) -> int:
        self._last_frame_id = max(now_ms(), self._last_frame_id + 1)
        return self._last_frame_id

    async def call(self, method: str, arguments: List[Any]) -> Any:
        """Send a method frame and wait for its reply.

        Returns:
            The reply's ``data``

        Raises:
            ProtocolError: The server replied with an error
            ChatConnectionError: The socket closed or the reply timed out
        """
        if self.ws is None or self.ws.closed:
            raise ChatConnectionError("Mixer chat socket is not open")

        frame_id = self._next_frame_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[frame_id] = future

        try:
            await self.ws.send_str(json.dumps({
                "id": frame_id,
                "type": "method",
                "method": method,
                "arguments": arguments,
            }))
            return await asyncio.wait_for(future, timeout=self.settings.mixer_reply_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ChatConnectionError(f"No reply to Mixer {method} call") from e
        finally:
            self._pending.pop(frame_id, None)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _receive_loop(self, ws) -> None:
        error: Optional[Exception] = None
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ChatConnectionError(f"Mixer socket error: {ws.exception()}")
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = ChatConnectionError(f"Mixer socket failed: {e}")

        if ws is not self.ws:
            return

        self.can_send = False
        if error is not None:
            await self._on_socket_error(error)
        else:
            await self._on_socket_close()

    async def _on_socket_error(self, error: Exception) -> None:
        self._fail_pending(error)
        if self.state is not ConnectionState.CONNECTED:
            return

        logger.warning(f"Mixer socket error: {error}")
        if not self.get_config("reconnect"):
            await self._report_error(error)
            await self.disconnect()
            return

        self._set_state(ConnectionState.RECONNECTING)
        await self._close_socket()
        await self._schedule_reconnect()

    async def _on_socket_close(self) -> None:
        self._fail_pending(ChatConnectionError("Mixer chat socket closed"))
        if self.state is ConnectionState.CONNECTED:
            logger.info("Mixer chat socket closed by server")
            await self.disconnect()

    async def _schedule_reconnect(self) -> None:
        self.backoff.increase()
        await self.emit(ChatEventType.RECONNECT, self.backoff.attempt)
        url = self.next_endpoint()
        logger.info(
            f"Reconnecting to Mixer ({url}) in {self.backoff.current_interval_ms:.0f}ms "
            f"(attempt {self.backoff.attempt})"
        )
        self._reconnect_timer.schedule(self.backoff.delay_seconds, lambda: self._reconnect(url))

    async def _reconnect(self, url: str) -> None:
        if self.state is not ConnectionState.RECONNECTING:
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._open_socket(url)
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
            logger.warning(f"Mixer reconnect attempt {self.backoff.attempt} failed: {e}")
            await self._close_socket()
            self._set_state(ConnectionState.RECONNECTING)
            await self._schedule_reconnect()
            return

        if self.state is not ConnectionState.CONNECTING:
            await self._close_socket()
            return

        await self._mark_connected()

    async def _close_socket(self) -> None:
        self.can_send = False
        self._fail_pending(ChatConnectionError("Mixer chat socket closed"))

        task, self._receive_task = self._receive_task, None
        ws, self.ws = self.ws, None

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if ws is not None and not ws.closed:
            await ws.close()

    async def _close(self) -> None:
        await self._close_socket()
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._http is not None:
            await self._http.close()

    def _cancel_timers(self) -> None:
        self._reconnect_timer.cancel()

    # Frames

    async def _handle_frame(self, raw: str) -> None:
        try:
            frame = MixerFrame.model_validate_json(raw)
        except ValidationError as e:
            await self._report_error(ProtocolError(f"Malformed Mixer frame: {e}"))
            return

        if frame.type == "reply":
            self._resolve_reply(frame)
            return

        if self.state is not ConnectionState.CONNECTED:
            logger.debug(f"Dropping Mixer {frame.event} frame received while {self.state.value}")
            return

        presence = self._presence(frame)
        if presence is not None:
            event = ChatEventType.USER_JOIN if presence.get("roles") else ChatEventType.USER_LEAVE
            payload = {"id": presence.get("id"), "username": presence.get("username")}
            if event is ChatEventType.USER_JOIN:
                payload["roles"] = presence.get("roles")
            await self.emit(event, payload)
            return

        data = frame.data if isinstance(frame.data, dict) else {}

        if frame.event == "ChatMessage":
            await self._handle_chat_message(data)
        elif frame.event == "DeleteMessage":
            await self.emit(ChatEventType.DELETE_MESSAGE, data.get("id"))
        elif frame.event == "PurgeMessage":
            await self.emit(ChatEventType.PURGE_MESSAGE, data.get("user_id"))
        elif frame.event == "ClearMessages":
            await self.emit(ChatEventType.CLEAR_MESSAGES)
        elif frame.event == "UserTimeout":
            user = data.get("user") or {}
            await self.emit(ChatEventType.USER_TIMEOUT, {
                "user": {"id": user.get("user_id"), "username": user.get("user_name")},
                "duration": data.get("duration"),
            })
        elif frame.event == "UserUpdate":
            await self.emit(ChatEventType.USER_UPDATE, data)
        else:
            logger.debug(f"Ignoring Mixer frame: type={frame.type} event={frame.event}")

    @staticmethod
    def _presence(frame: MixerFrame) -> Optional[Dict[str, Any]]:
        if frame.originatingChannel is not None and frame.username:
            return frame.model_dump()
        data = frame.data
        if isinstance(data, dict) and data.get("originatingChannel") is not None and data.get("username"):
            return data
        return None

    def _resolve_reply(self, frame: MixerFrame) -> None:
        future = self._pending.get(frame.id)
        if future is None or future.done():
            logger.debug(f"Unmatched Mixer reply id={frame.id}")
            return
        if frame.error:
            error_cls = ChatAuthenticationError if self.state is ConnectionState.CONNECTING else ProtocolError
            future.set_exception(error_cls(f"Mixer replied with an error: {frame.error}"))
        else:
            future.set_result(frame.data)

    async def _handle_chat_message(self, data: Dict[str, Any]) -> None:
        try:
            chat = MixerChatMessage.model_validate(data)
        except ValidationError as e:
            await self._report_error(ProtocolError(f"Malformed Mixer chat message: {e}"))
            return

        meta = chat.message.meta
        if meta.censored:
            return

        event = ChatEventType.WHISPER if meta.whisper else ChatEventType.MESSAGE
        await self._emit_message(event, self.parse_message(chat))

    def parse_message(self, chat: MixerChatMessage) -> ChatMessage:
        parts = chat.message.message
        if self.should_format_messages():
            body = "".join(self.render_part(part) for part in parts)
        else:
            body = escape_html("".join(part.text for part in parts))

        return ChatMessage(
            id=chat.id,
            username=chat.user_name,
            body=body,
            raw=[part.model_dump(exclude_none=True) for part in parts],
            timestamp=now_ms(),
            extra={
                "user_roles": chat.user_roles,
                "user_level": chat.user_level,
                "user_id": chat.user_id,
                "user_avatar": chat.user_avatar,
                "whisper": chat.message.meta.whisper,
                "target": chat.target,
            },
        )

    def render_part(self, part: MixerMessagePart) -> str:
        if part.type == "emoticon" and self.should_parse_emoticons() and part.coords is not None:
            return self.emoticon_markup(part)
        if part.type == "link" and self.should_parse_urls() and part.url:
            return link_markup(escape_html(part.url), escape_html(part.text), css_class=part.type)
        return escape_html(part.text)

    def emoticon_markup(self, part: MixerMessagePart) -> str:
        if part.source == "external":
            url = part.pack
        else:
            url = self.settings.mixer_emoticon_url_template.format(pack=part.pack)
        coords = part.coords
        style = (
            f"background-image: url('{escape_html(url or '')}'); "
            "background-repeat: no-repeat; "
            f"height: {coords.height}px; "
            f"width: {coords.width}px; "
            f"background-position-x: {coords.x * -1}px; "
            f"background-position-y: {coords.y * -1}px;"
        )
        return f'<span class="{part.type}" style="{style}" title="{escape_html(part.text)}"></span>'

    async def _send(self, message: str) -> Any:
        if not self.can_send:
            raise WritePermissionDenied("Unable to send message. User ID or auth key is not set.")
        return await self.call("msg", [message])
