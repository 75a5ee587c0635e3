"""Facebook Live comments adapter.

Polls the Graph API ``{live-video-id}/comments`` edge in chronological
order, using the newest ``created_time`` seen as the ``since`` cursor.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .base import ChatEventType, ChatMessage, ConnectionState, PollingChatAdapter, now_ms
from .dedup import EchoFilter
from .exceptions import ApiError, ConfigError, WritePermissionDenied
from .models import GraphComment, GraphCommentPage, GraphLiveVideo, GraphMe, GraphUser
from .transport import HttpClient, HttpResponse


logger = logging.getLogger(__name__)

COMMENT_FIELDS = ("id", "attachment", "created_time", "from", "message", "message_tags", "object")
ENDED_STATUSES = ("LIVE_STOPPED", "VOD")
GRAPH_TOKEN_EXPIRED = 190


def parse_created_time(value: Optional[str]) -> Optional[datetime]:
    """Parse Graph timestamps such as ``2018-05-01T12:00:00+0000``."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        logger.debug(f"Unparseable created_time: {value}")
        return None


class FacebookAdapter(PollingChatAdapter):
    """REST polling adapter for comments on a Facebook live video.

    Config:
        liveVideoId: Live video whose comments are read (required)
        accessToken: User or page token (required); only page tokens can write
        version: Graph API version (default v3.0)
        interval: Delay between polls in ms (default 3000)
        checkLive: Stop when the video is no longer live (default True)
    """

    name = "Facebook"
    key = "facebook"
    required_config = ("liveVideoId", "accessToken")
    default_config = {
        "parseUrl": True,
        "checkLive": True,
    }

    supports_emoticons = True
    supports_writing = True

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        http: Optional[HttpClient] = None,
        echo: Optional[EchoFilter] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self._http = http
        self.echo = echo or EchoFilter(self.settings.echo_capacity)
        self.can_send = False
        self.since: Optional[int] = None

    def defaults(self) -> Dict[str, Any]:
        return {
            **super().defaults(),
            "version": self.settings.facebook_graph_version,
            "interval": self.settings.facebook_poll_interval_ms,
        }

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient(self.settings.facebook_graph_base_url)
        return self._http

    def graph_url(self, path: str) -> str:
        return f"{self.get_config('version', self.settings.facebook_graph_version)}/{path.lstrip('/')}"

    async def api(self, method: str, url: str, data: Optional[Mapping[str, Any]] = None) -> HttpResponse:
        """Call a versioned Graph API endpoint with the configured token."""
        access_token = self.get_config("accessToken")
        if not access_token:
            raise ConfigError("accessToken not set.")
        return await self.http.request(method, self.graph_url(url), data, {"access_token": access_token})

    def is_auth_error(self, error: Exception) -> bool:
        if isinstance(error, ApiError) and error.code == GRAPH_TOKEN_EXPIRED:
            return True
        return super().is_auth_error(error)

    async def load_user(self) -> GraphMe:
        """Identify the token's owner; page tokens enable ``send()``."""
        response = await self.api("get", "me", {"fields": "id,name,metadata{type}", "metadata": 1})
        me = GraphMe.model_validate(response.data)

        self.can_send = me.metadata.type == "page"
        self.set_config({"userId": me.id, "username": me.name})
        return me

    async def _open(self) -> None:
        logger.info(f"Polling Facebook comments of live video {self.get_config('liveVideoId')}")

    async def _close(self) -> None:
        self.echo.clear()
        if self._http is not None:
            await self._http.close()

    async def check_live(self) -> bool:
        """Whether the live video is still broadcasting."""
        response = await self.api("get", self.get_config("liveVideoId"), {"fields": "status"})
        video = GraphLiveVideo.model_validate(response.data)
        return video.status not in ENDED_STATUSES

    async def _poll_once(self) -> Optional[int]:
        if self.get_config("checkLive"):
            live = await self.check_live()
            if self.state is not ConnectionState.CONNECTED:
                return None
            if not live:
                logger.info(f"Facebook live video {self.get_config('liveVideoId')} has ended")
                await self.emit(ChatEventType.CHAT_ENDED)
                await self.disconnect()
                return None

        response = await self.api("get", f"{self.get_config('liveVideoId')}/comments", {
            "order": "chronological",
            "fields": ",".join(COMMENT_FIELDS),
            "since": self.since,
        })
        if self.state is not ConnectionState.CONNECTED:
            return None

        page = GraphCommentPage.model_validate(response.data)
        for comment in page.data:
            if self.state is not ConnectionState.CONNECTED:
                break
            await self.handle_comment(comment)
        return None

    async def handle_comment(self, comment: GraphComment) -> None:
        created = parse_created_time(comment.created_time)
        if created is not None:
            created_s = int(created.timestamp())
            self.since = created_s if self.since is None else max(self.since, created_s)

        if self.echo.consume(comment.id):
            logger.debug(f"Dropping echo of sent comment {comment.id}")
            return
        if not self._accept(comment.id):
            return

        await self._emit_message(ChatEventType.MESSAGE, self.parse_comment(comment), dedup=False)

    def user_info(self, user: Optional[GraphUser]) -> Dict[str, Any]:
        user = user or GraphUser()
        info = {"user_id": user.id or "0", "username": user.name or "Anonymous", "image": ""}
        if user.id:
            info["image"] = self.http.url(self.graph_url(f"{user.id}/picture"))
        return info

    def parse_comment(self, comment: GraphComment) -> ChatMessage:
        info = self.user_info(comment.from_)
        created = parse_created_time(comment.created_time)

        broadcaster_id = self.get_config("userId")
        return ChatMessage(
            id=comment.id,
            username=info["username"],
            body=self.build_pipeline().render(comment.message),
            raw=comment.message,
            timestamp=int(created.timestamp() * 1000) if created else now_ms(),
            extra={
                "user_id": info["user_id"],
                "image": info["image"],
                "broadcaster": broadcaster_id is not None and str(info["user_id"]) == str(broadcaster_id),
            },
        )

    async def _send(self, message: str) -> Dict[str, Any]:
        if not self.can_send:
            raise WritePermissionDenied(
                "Unable to send message. Sending is only available for page access tokens"
            )

        response = await self.api("post", f"{self.get_config('liveVideoId')}/comments", {"message": message})
        data = response.data if isinstance(response.data, dict) else {}
        comment_id = data.get("id")

        if comment_id:
            if comment_id in self.dedup:
                logger.debug(f"Sent comment {comment_id} was already delivered by a poll")
                return data
            self._accept(comment_id)
            self.echo.remember(comment_id)

        comment = GraphComment.model_validate({
            "id": comment_id or "",
            "message": message,
            "from": {"id": self.get_config("userId"), "name": self.get_config("username")},
        })
        await self._emit_message(ChatEventType.MESSAGE, self.parse_comment(comment), dedup=False)
        return data
