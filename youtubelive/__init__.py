#!/usr/bin/env python3
''' attach to YouTube live chats '''

from youtubelive.chat import LiveChatSession
from youtubelive.config import ConfigFile
from youtubelive.events import (
    AuthorDetails,
    BotCommand,
    ChatEndedEvent,
    ChatMessageEvent,
    DeleteChatMessage,
    ErrorEvent,
    LiveEvent,
    LiveEventKind,
    MemberMilestoneEvent,
    MembershipGiftEvent,
    MembershipGiftReceivedEvent,
    SendChatMessage,
    StreamEndEvent,
    SuperChatEvent,
    SuperStickerEvent,
    UserBannedEvent,
)
from youtubelive.exceptions import (
    APIError,
    AuthenticationError,
    BroadcastNotFoundError,
    CallbackTimeoutError,
    ChannelNotFoundError,
    ChatDisabledError,
    ConfigurationError,
    InvalidChannelHandleError,
    LivenessError,
    MissingCodeError,
    NotLiveError,
    NotLoggedInError,
    ParseError,
    StateMismatchError,
    TransportError,
    UnsupportedMessageTypeError,
    YouTubeLiveError,
)
from youtubelive.oauth2 import Token
from youtubelive.youtubelive import YouTubeLive, normalize_handle

__version__ = '0.1.0'
