"""Wire models for the platform REST responses and socket frames.

Only the fields the adapters read are declared; everything else the
platforms send is kept (``extra="allow"``) so it can be forwarded as-is.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for payloads owned by a third party."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# YouTube Data API (liveChatMessages, liveBroadcasts)

class YouTubeAuthorDetails(WireModel):
    channelId: Optional[str] = None
    displayName: str = ""
    profileImageUrl: Optional[str] = None
    isChatModerator: bool = False
    isChatOwner: bool = False
    isChatSponsor: bool = False
    isVerified: bool = False


class YouTubeSuperChatDetails(WireModel):
    amountMicros: Optional[str] = None
    currency: Optional[str] = None
    amountDisplayString: Optional[str] = None
    userComment: str = ""
    tier: Optional[int] = None


class YouTubeMessageDeletedDetails(WireModel):
    deletedMessageId: str


class YouTubeUserBannedDetails(WireModel):
    bannedUserDetails: Dict[str, Any] = Field(default_factory=dict)
    banType: Optional[str] = None
    banDurationSeconds: Optional[str] = None


class YouTubeMessageSnippet(WireModel):
    type: str = "textMessageEvent"
    liveChatId: Optional[str] = None
    authorChannelId: Optional[str] = None
    publishedAt: Optional[datetime] = None
    hasDisplayContent: bool = True
    displayMessage: Optional[str] = None
    textMessageDetails: Optional[Dict[str, Any]] = None
    superChatDetails: Optional[YouTubeSuperChatDetails] = None
    messageDeletedDetails: Optional[YouTubeMessageDeletedDetails] = None
    userBannedDetails: Optional[YouTubeUserBannedDetails] = None


class YouTubeChatItem(WireModel):
    """A ``liveChatMessage`` resource."""
    id: str
    snippet: YouTubeMessageSnippet = Field(default_factory=YouTubeMessageSnippet)
    authorDetails: YouTubeAuthorDetails = Field(default_factory=YouTubeAuthorDetails)


class YouTubeChatPage(WireModel):
    """Response of ``GET liveChat/messages``."""
    items: List[YouTubeChatItem] = Field(default_factory=list)
    nextPageToken: Optional[str] = None
    pollingIntervalMillis: Optional[int] = None
    offlineAt: Optional[datetime] = None


class YouTubeBroadcastSnippet(WireModel):
    liveChatId: Optional[str] = None
    title: Optional[str] = None


class YouTubeBroadcast(WireModel):
    id: str
    snippet: YouTubeBroadcastSnippet = Field(default_factory=YouTubeBroadcastSnippet)


class YouTubeBroadcastList(WireModel):
    items: List[YouTubeBroadcast] = Field(default_factory=list)


# Facebook Graph API

class GraphUser(WireModel):
    id: Optional[str] = None
    name: Optional[str] = None


class GraphComment(WireModel):
    id: str
    message: str = ""
    created_time: Optional[str] = None
    from_: Optional[GraphUser] = Field(default=None, alias="from")


class GraphCommentPage(WireModel):
    data: List[GraphComment] = Field(default_factory=list)
    paging: Optional[Dict[str, Any]] = None


class GraphLiveVideo(WireModel):
    id: Optional[str] = None
    status: Optional[str] = None


class GraphMetadata(WireModel):
    type: Optional[str] = None


class GraphMe(WireModel):
    id: str
    name: Optional[str] = None
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)


# Mixer

class MixerChannel(WireModel):
    """Response of ``GET channels/{username}?fields=id,userId``."""
    id: int
    userId: Optional[int] = None


class MixerChats(WireModel):
    """Response of ``GET chats/{channelId}``."""
    authkey: Optional[str] = None
    endpoints: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)


class MixerCoords(WireModel):
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


class MixerMessagePart(WireModel):
    type: str = "text"
    text: str = ""
    pack: Optional[str] = None
    source: Optional[str] = None
    coords: Optional[MixerCoords] = None
    url: Optional[str] = None


class MixerMessageMeta(WireModel):
    censored: bool = False
    whisper: bool = False
    me: bool = False


class MixerMessageBody(WireModel):
    message: List[MixerMessagePart] = Field(default_factory=list)
    meta: MixerMessageMeta = Field(default_factory=MixerMessageMeta)


class MixerChatMessage(WireModel):
    """``data`` of a ``ChatMessage`` event."""
    id: Optional[str] = None
    channel: Optional[int] = None
    user_id: Optional[int] = None
    user_name: str = ""
    user_roles: List[str] = Field(default_factory=list)
    user_level: Optional[int] = None
    user_avatar: Optional[str] = None
    target: Optional[str] = None
    message: MixerMessageBody = Field(default_factory=MixerMessageBody)


class MixerFrame(WireModel):
    """Any frame received on the chat socket."""
    type: Optional[str] = None
    event: Optional[str] = None
    id: Optional[Any] = None
    data: Optional[Any] = None
    error: Optional[Any] = None

    # presence frames
    originatingChannel: Optional[int] = None
    username: Optional[str] = None
    roles: Optional[List[str]] = None
