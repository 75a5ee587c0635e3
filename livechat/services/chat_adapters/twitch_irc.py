"""Twitch chat over IRC-on-WebSocket.

Minimal persistent chat client used by the Twitch adapter: it logs in,
joins a single channel, answers keepalive PINGs and hands every PRIVMSG to
``on_chat``. It never reconnects by itself; when the socket dies it calls
``on_transport_error`` and the owner decides what to do.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from livechat.core.config import get_settings

from .exceptions import ChatAuthenticationError, ChatConnectionError, ProtocolError
from .transport import WebSocketFactory


logger = logging.getLogger(__name__)

ChatCallback = Callable[[str, Dict[str, Any], str, bool], Any]
ErrorCallback = Callable[[Exception], Any]

_TAG_ESCAPES = {"\\s": " ", "\\:": ";", "\\\\": "\\", "\\r": "\r", "\\n": "\n"}
_AUTH_FAILURES = ("Login authentication failed", "Improperly formatted auth")
_ACTION_PREFIX = "\x01ACTION "


@dataclass
class IRCMessage:
    """One parsed IRC line."""

    command: str
    params: Tuple[str, ...] = ()
    prefix: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    raw: str = ""

    @property
    def nick(self) -> str:
        # Prefix example: nickname!nickname@nickname.tmi.twitch.tv
        if "!" in self.prefix:
            return self.prefix.split("!", 1)[0]
        return self.prefix

    @property
    def channel(self) -> str:
        return self.params[0].lstrip("#") if self.params else ""

    @property
    def trailing(self) -> str:
        return self.params[-1] if self.params else ""


def unescape_tag_value(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        pair = value[i:i + 2]
        if pair in _TAG_ESCAPES:
            out.append(_TAG_ESCAPES[pair])
            i += 2
        elif value[i] == "\\":
            i += 1
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def split_tags(raw: str) -> Tuple[Dict[str, str], str]:
    if not raw.startswith("@"):
        return {}, raw

    tags_part, _, remainder = raw.partition(" ")
    tags = {}
    for pair in tags_part[1:].split(";"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        tags[key] = unescape_tag_value(value)
    return tags, remainder


def split_prefix_and_command(raw: str) -> Tuple[str, str, Tuple[str, ...]]:
    prefix = ""
    rest = raw
    if raw.startswith(":"):
        prefix, _, rest = raw[1:].partition(" ")

    if rest.startswith(":"):
        return prefix, "", ()

    if " :" in rest:
        middle, trailing = rest.split(" :", 1)
        parts = middle.split() + [trailing]
    else:
        parts = rest.split()

    if not parts:
        return prefix, "", ()
    return prefix, parts[0], tuple(parts[1:])


def parse_line(raw: str) -> IRCMessage:
    """Parse a single IRC line (without the trailing CRLF)."""
    tags, remainder = split_tags(raw)
    prefix, command, params = split_prefix_and_command(remainder)
    if not command:
        raise ProtocolError(f"Malformed IRC line: {raw!r}")
    return IRCMessage(command=command.upper(), params=params, prefix=prefix, tags=tags, raw=raw)


def parse_badges(value: Optional[str]) -> Dict[str, str]:
    """``"broadcaster/1,subscriber/12"`` -> ``{"broadcaster": "1", "subscriber": "12"}``."""
    badges = {}
    for badge in (value or "").split(","):
        if not badge:
            continue
        name, _, version = badge.partition("/")
        badges[name] = version
    return badges


def parse_emotes(value: Optional[str]) -> Dict[str, List[str]]:
    """``"25:0-4,12-16/1902:6-10"`` -> ``{"25": ["0-4", "12-16"], "1902": ["6-10"]}``."""
    emotes = {}
    for entry in (value or "").split("/"):
        if not entry:
            continue
        emote_id, _, positions = entry.partition(":")
        emotes[emote_id] = [p for p in positions.split(",") if p]
    return emotes


def _flag(value: Optional[str]) -> bool:
    return value == "1"


def user_tags(tags: Dict[str, str], nick: str = "") -> Dict[str, Any]:
    """Decode the IRCv3 tags of a PRIVMSG into typed user attributes."""
    return {
        "id": tags.get("id"),
        "username": nick or tags.get("login", ""),
        "display-name": tags.get("display-name") or nick,
        "user-id": tags.get("user-id"),
        "color": tags.get("color") or None,
        "badges": parse_badges(tags.get("badges")),
        "emotes": parse_emotes(tags.get("emotes")) or None,
        "subscriber": _flag(tags.get("subscriber")),
        "mod": _flag(tags.get("mod")),
        "turbo": _flag(tags.get("turbo")),
        "tmi-sent-ts": tags.get("tmi-sent-ts"),
        "message-type": "chat",
    }


def split_action(text: str) -> Tuple[str, bool]:
    """Strip the CTCP ACTION wrapper of a ``/me`` message."""
    if text.startswith(_ACTION_PREFIX) and text.endswith("\x01"):
        return text[len(_ACTION_PREFIX):-1], True
    return text, False


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class TwitchIRCClient:
    """IRC client for a single Twitch channel over ``wss://irc-ws.chat.twitch.tv``.

    Without a username/token pair the client logs in anonymously and can
    only read.
    """

    def __init__(
        self,
        channel: str,
        username: Optional[str] = None,
        access_token: Optional[str] = None,
        *,
        url: Optional[str] = None,
        join_timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        ws_factory: Optional[WebSocketFactory] = None,
    ):
        settings = get_settings()
        self.channel = self.normalize_channel(channel)
        self.url = url or settings.twitch_irc_websocket_url
        self.join_timeout = join_timeout if join_timeout is not None else settings.twitch_join_timeout_seconds

        self.anonymous = not (username and access_token)
        if self.anonymous:
            self.nickname = f"justinfan{random.randint(10000, 99999)}"
            self.token = None
        else:
            self.nickname = username.lower()
            self.token = self.normalize_token(access_token)

        self.on_chat: Optional[ChatCallback] = None
        self.on_transport_error: Optional[ErrorCallback] = None

        self.userstate: Dict[str, str] = {}

        self._session = session
        self._session_owned = False
        self._ws_factory = ws_factory
        self._ws = None
        self._receive_task: Optional[asyncio.Task] = None
        self._joined: Optional[asyncio.Future] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the socket, log in and wait until the channel is joined.

        Raises:
            ChatAuthenticationError: Twitch rejected the token
            ChatConnectionError: The socket failed or the join timed out
        """
        self._closing = False
        logger.info(f"Connecting to Twitch IRC ({self.url}) as {self.nickname} channel=#{self.channel}")

        try:
            self._ws = await self._open_socket()
        except aiohttp.ClientError as e:
            raise ChatConnectionError(f"Failed to open Twitch IRC socket: {e}") from e

        self._joined = asyncio.get_running_loop().create_future()
        self._receive_task = asyncio.create_task(self._receive_loop(), name=f"twitch-irc:{self.channel}")

        await self._send_raw("CAP REQ :twitch.tv/tags twitch.tv/commands")
        if self.token:
            await self._send_raw(f"PASS {self.token}")
        await self._send_raw(f"NICK {self.nickname}")
        await self._send_raw(f"JOIN #{self.channel}")

        try:
            await asyncio.wait_for(self._joined, timeout=self.join_timeout)
        except asyncio.TimeoutError as e:
            await self.disconnect()
            raise ChatConnectionError(f"Timed out joining #{self.channel}") from e
        except ChatConnectionError:
            await self.disconnect()
            raise

        logger.info(f"Joined Twitch channel #{self.channel}")

    async def disconnect(self) -> None:
        self._closing = True

        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

        if self._session_owned and self._session is not None:
            await self._session.close()
            self._session = None
            self._session_owned = False

        joined = self._joined
        if joined is not None and not joined.done():
            joined.set_exception(ChatConnectionError("Disconnected before joining"))
            # marks the error retrieved when connect() is not waiting
            joined.exception()

    async def say(self, channel: str, text: str) -> None:
        """Send a message; ``/me`` is sent as an ACTION.

        Twitch does not echo our own messages, so the sent message is
        delivered to ``on_chat`` locally with ``is_self`` set.
        """
        if self.anonymous:
            raise ChatAuthenticationError("Anonymous connections cannot send messages")

        channel = self.normalize_channel(channel)
        payload = text
        if text.startswith("/me "):
            payload = f"{_ACTION_PREFIX}{text[4:]}\x01"

        await self._send_raw(f"PRIVMSG #{channel} :{payload}")
        logger.debug(f"[#{channel}] Sent chat message ({len(text)} chars)")

        tags = user_tags(self.userstate, self.nickname)
        await _invoke(self.on_chat, channel, tags, payload, True)

    async def _open_socket(self):
        if self._ws_factory is not None:
            return await self._ws_factory(self.url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._session_owned = True
        return await self._session.ws_connect(self.url, heartbeat=None)

    async def _send_raw(self, data: str) -> None:
        if self._ws is None or self._ws.closed:
            raise ChatConnectionError("Twitch IRC socket is not open")
        await self._ws.send_str(data + "\r\n")

    async def _receive_loop(self) -> None:
        error: Optional[Exception] = None
        try:
            while True:
                msg = await self._ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    for line in msg.data.split("\r\n"):
                        if line:
                            await self._handle_line(line)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ChatConnectionError(f"Twitch IRC socket error: {self._ws.exception()}")
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if self._closing:
            return

        error = error or ChatConnectionError("Twitch IRC connection closed by remote")
        logger.warning(f"Twitch IRC receive loop ended: {error}")

        if self._joined is not None and not self._joined.done():
            self._joined.set_exception(error if isinstance(error, ChatConnectionError) else ChatConnectionError(str(error)))
            return

        await _invoke(self.on_transport_error, error)

    async def _handle_line(self, line: str) -> None:
        try:
            message = parse_line(line)
        except ProtocolError as e:
            logger.debug(str(e))
            return

        if message.command == "PING":
            await self._send_raw(f"PONG :{message.trailing or 'tmi.twitch.tv'}")
            logger.debug("Responded to Twitch PING")

        elif message.command == "JOIN":
            if message.nick == self.nickname and message.channel == self.channel:
                if self._joined is not None and not self._joined.done():
                    self._joined.set_result(True)

        elif message.command in ("USERSTATE", "GLOBALUSERSTATE"):
            self.userstate.update(message.tags)

        elif message.command == "NOTICE":
            if any(failure in message.trailing for failure in _AUTH_FAILURES):
                error = ChatAuthenticationError(message.trailing)
                if self._joined is not None and not self._joined.done():
                    self._joined.set_exception(error)
                else:
                    await _invoke(self.on_transport_error, error)
            else:
                logger.info(f"Twitch notice: {message.trailing}")

        elif message.command == "RECONNECT":
            # server is about to restart; drop the socket so the owner reconnects
            logger.info("Twitch requested a reconnect")
            if self._ws is not None:
                await self._ws.close()

        elif message.command == "PRIVMSG":
            if len(message.params) < 2:
                return
            tags = user_tags(message.tags, message.nick)
            await _invoke(self.on_chat, message.channel, tags, message.trailing, message.nick == self.nickname)

    @staticmethod
    def normalize_token(token: str) -> str:
        token = token.strip()
        if not token.startswith("oauth:"):
            return f"oauth:{token}"
        return token

    @staticmethod
    def normalize_channel(channel: str) -> str:
        return channel.lstrip("#").strip().lower()
