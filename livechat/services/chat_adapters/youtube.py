"""YouTube live chat adapter.

Polls ``liveChat/messages`` of the YouTube Data API v3, threading the
``nextPageToken`` cursor through successive requests and honouring the
server's ``pollingIntervalMillis``.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from .base import ChatEventType, ChatMessage, ConnectionState, PollingChatAdapter, now_ms
from .exceptions import ApiError, ChatConnectionError, ConfigError, WritePermissionDenied
from .models import YouTubeBroadcastList, YouTubeChatItem, YouTubeChatPage
from .transport import HttpClient, HttpResponse


logger = logging.getLogger(__name__)


class YouTubeAdapter(PollingChatAdapter):
    """Paged-list polling adapter for YouTube live chat.

    Config:
        liveChatId: Chat to read (required); see ``load_chat_id()``
        accessToken: OAuth bearer token (required)
        maxResults: Page size (default 200)
        interval: Minimum delay between polls in ms (default 5000)
        profileImageSize: Author avatar size in px (default 64)
    """

    name = "YouTube"
    key = "youtube"
    required_config = ("liveChatId", "accessToken")
    default_config = {
        "maxResults": 200,
        "profileImageSize": 64,
        "parseUrl": True,
        "formatMessages": True,
        "parseEmoticon": True,
    }

    supports_emoticons = True
    supports_writing = True

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        http: Optional[HttpClient] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self._http = http
        self.next_page_token: Optional[str] = None

    def defaults(self) -> Dict[str, Any]:
        return {**super().defaults(), "interval": self.settings.youtube_poll_interval_ms}

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient(self.settings.youtube_api_base_url, headers=self._api_headers)
        return self._http

    def _api_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.get_config('accessToken')}"}

    async def api(
        self,
        method: str,
        url: str,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> HttpResponse:
        """Query the YouTube API."""
        if not self.get_config("accessToken"):
            raise ConfigError("accessToken not set.")
        return await self.http.request(method, url, data, params)

    async def load_chat_id(self) -> str:
        """Set ``liveChatId`` from the user's active broadcast.

        An already configured ``liveChatId`` is kept.
        """
        response = await self.api("get", "liveBroadcasts", {
            "part": "snippet",
            "broadcastStatus": "active",
            "broadcastType": "all",
            "maxResults": 1,
        })
        broadcasts = YouTubeBroadcastList.model_validate(response.data)
        if not broadcasts.items:
            raise ChatConnectionError("No live broadcasts available.")

        live_chat_id = self.get_config("liveChatId", broadcasts.items[0].snippet.liveChatId)
        self.set_config("liveChatId", live_chat_id)
        return live_chat_id

    async def _open(self) -> None:
        logger.info(f"Polling YouTube live chat {self.get_config('liveChatId')}")

    async def _close(self) -> None:
        if self._http is not None:
            await self._http.close()

    async def _poll_once(self) -> Optional[int]:
        response = await self.api("get", "liveChat/messages", {
            "part": "snippet,authorDetails",
            "profileImageSize": self.get_config("profileImageSize"),
            "liveChatId": self.get_config("liveChatId"),
            "maxResults": self.get_config("maxResults"),
            "pageToken": self.next_page_token,
        })
        if self.state is not ConnectionState.CONNECTED:
            return None

        page = YouTubeChatPage.model_validate(response.data)
        if page.nextPageToken:
            self.next_page_token = page.nextPageToken

        await self.handle_items(page.items)
        return page.pollingIntervalMillis

    async def handle_items(self, items: Iterable[YouTubeChatItem]) -> None:
        for item in items:
            if self.state is not ConnectionState.CONNECTED:
                return
            await self.handle_item(item)

    async def handle_item(self, item: YouTubeChatItem) -> None:
        if not self._accept(item.id):
            return

        snippet = item.snippet
        if snippet.type == "superChatEvent":
            await self._emit_message(ChatEventType.SUPER_CHAT, self.parse_message(item), dedup=False)
        elif snippet.type == "messageDeletedEvent":
            deleted = snippet.messageDeletedDetails
            await self.emit(ChatEventType.DELETE_MESSAGE, deleted.deletedMessageId if deleted else None)
        elif snippet.type == "userBannedEvent":
            banned = snippet.userBannedDetails
            await self.emit(ChatEventType.USER_BANNED, banned.model_dump() if banned else {})
        elif snippet.type == "chatEndedEvent":
            logger.info(f"YouTube live chat {self.get_config('liveChatId')} ended")
            await self.emit(ChatEventType.CHAT_ENDED)
            await self.disconnect()
        else:
            await self._emit_message(ChatEventType.MESSAGE, self.parse_message(item), dedup=False)

    def parse_message(self, item: YouTubeChatItem) -> ChatMessage:
        snippet = item.snippet
        author = item.authorDetails

        raw = snippet.displayMessage or ""
        extra = {
            "type": snippet.type,
            "authorChannelId": author.channelId,
            "image": author.profileImageUrl or "",
            "moderator": author.isChatModerator,
            "owner": author.isChatOwner,
            "sponsor": author.isChatSponsor,
            "verified": author.isVerified,
        }

        details = snippet.superChatDetails
        if details is not None:
            raw = details.userComment or ""
            extra.update({
                "amount": details.amountDisplayString,
                "amountMicros": details.amountMicros,
                "currency": details.currency,
                "tier": details.tier,
            })

        published = snippet.publishedAt
        timestamp = int(published.timestamp() * 1000) if published else now_ms()

        return ChatMessage(
            id=item.id,
            username=author.displayName,
            body=self.build_pipeline().render(raw),
            raw=raw,
            timestamp=timestamp,
            extra=extra,
        )

    async def _send(self, message: str) -> YouTubeChatItem:
        if not message:
            raise ValueError("A message cannot be empty!")

        try:
            response = await self.api(
                "post",
                "liveChat/messages",
                {
                    "snippet": {
                        "liveChatId": self.get_config("liveChatId"),
                        "type": "textMessageEvent",
                        "textMessageDetails": {"messageText": message},
                    }
                },
                params={"part": "snippet,authorDetails"},
            )
        except ApiError as e:
            if e.status == 403:
                raise WritePermissionDenied(f"YouTube refused the message: {e.error_message or e}") from e
            raise

        item = YouTubeChatItem.model_validate(response.data)
        await self.handle_item(item)
        return item
