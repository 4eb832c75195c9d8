#!/usr/bin/env python3
"""Event types flowing in and out of an attached live chat.

``LiveEvent`` subclasses are what the poller hands to the caller; each one
is tagged with a ``LiveEventKind`` so consumers can dispatch on ``event.kind``
without guessing.  ``BotCommand`` subclasses are what the caller hands back.
Both sets are closed: nothing outside this module should subclass them.
"""

import datetime
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def _nanoseconds(timestamp: datetime.datetime) -> int:
    return (timestamp - EPOCH) // datetime.timedelta(microseconds=1) * 1000


def _seconds(timestamp: datetime.datetime) -> int:
    return (timestamp - EPOCH) // datetime.timedelta(seconds=1)


def utcnow() -> datetime.datetime:
    ''' timezone aware now '''
    return datetime.datetime.now(datetime.timezone.utc)


class LiveEventKind(enum.Enum):
    ''' tag for every LiveEvent variant '''
    CHAT_MESSAGE = 'chat'
    SUPER_CHAT = 'superchat'
    SUPER_STICKER = 'sticker'
    MEMBER_MILESTONE = 'join'
    MEMBERSHIP_GIFT = 'gift'
    MEMBERSHIP_GIFT_RECEIVED = 'giftreceived'
    USER_BANNED = 'ban'
    CHAT_ENDED = 'end'
    STREAM_END = 'stream-end'
    ERROR = 'error'


@dataclass(frozen=True)
class AuthorDetails:
    ''' flattened author metadata '''
    channel_id: str = ''
    channel_url: str = ''
    display_name: str = ''
    is_chat_moderator: bool = False
    is_chat_owner: bool = False
    is_chat_sponsor: bool = False
    is_verified: bool = False
    profile_image_url: str = ''

    _JSON_NAMES: ClassVar[dict[str, str]] = {
        'channel_id': 'channelId',
        'channel_url': 'channelUrl',
        'display_name': 'displayName',
        'is_chat_moderator': 'isChatModerator',
        'is_chat_owner': 'isChatOwner',
        'is_chat_sponsor': 'isChatSponsor',
        'is_verified': 'isVerified',
        'profile_image_url': 'profileImageUrl',
    }

    @classmethod
    def from_api(cls, details: dict[str, Any] | None) -> 'AuthorDetails':
        ''' build from a liveChatMessage authorDetails resource '''
        if not details:
            return cls()
        return cls(**{
            attr: details.get(jsonname, cls.__dataclass_fields__[attr].default)
            for attr, jsonname in cls._JSON_NAMES.items()
        })

    def to_dict(self) -> dict[str, Any]:
        ''' API-style dict, empty fields left out '''
        return {
            jsonname: getattr(self, attr)
            for attr, jsonname in self._JSON_NAMES.items() if getattr(self, attr)
        }


@dataclass(frozen=True)
class LiveEvent:
    ''' base of everything the poller emits '''
    kind: ClassVar[LiveEventKind]

    @property
    def id(self) -> str:  # pylint: disable=invalid-name
        ''' deterministic identity, for de-duplication and logging only '''
        raise NotImplementedError


@dataclass(frozen=True)
class ChatMessageEvent(LiveEvent):
    ''' plain text chat '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.CHAT_MESSAGE
    message: str
    display_name: str
    author_details: AuthorDetails
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'chat-{self.display_name}-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class SuperChatEvent(LiveEvent):
    ''' paid message '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.SUPER_CHAT
    message: str
    amount: Decimal
    currency: str
    display_name: str
    author_details: AuthorDetails
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'superchat-{self.display_name}-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class SuperStickerEvent(LiveEvent):
    ''' paid sticker '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.SUPER_STICKER
    sticker_id: str
    amount: Decimal
    currency: str
    display_name: str
    author_details: AuthorDetails
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'sticker-{self.display_name}-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class MemberMilestoneEvent(LiveEvent):
    """Membership milestone.

    ``months`` of 0 means a brand new member, anything else a returning one;
    how to present that is up to the consumer.
    """
    kind: ClassVar[LiveEventKind] = LiveEventKind.MEMBER_MILESTONE
    display_name: str
    author_details: AuthorDetails
    level: str
    months: int
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'join-{self.display_name}-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class MembershipGiftEvent(LiveEvent):
    ''' someone gifted memberships '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.MEMBERSHIP_GIFT
    display_name: str
    author_details: AuthorDetails
    total: int
    tier: str
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'gift-{self.display_name}-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class MembershipGiftReceivedEvent(LiveEvent):
    ''' someone received a gifted membership '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.MEMBERSHIP_GIFT_RECEIVED
    display_text: str
    level: str
    gifter_id: str
    timestamp: datetime.datetime

    @property
    def id(self) -> str:
        return f'giftreceived-{self.gifter_id}-{_seconds(self.timestamp)}'


@dataclass(frozen=True)
class UserBannedEvent(LiveEvent):
    ''' moderator banned somebody '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.USER_BANNED
    banned_user_id: str
    banned_user_display_name: str
    ban_type: str  # permanent, temporary or unknown
    duration: datetime.timedelta
    moderator_id: str
    moderator_display_name: str
    timestamp: datetime.datetime
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'ban-{self.moderator_id}-{self.banned_user_id}-{_seconds(self.timestamp)}'


@dataclass(frozen=True)
class ChatEndedEvent(LiveEvent):
    ''' the chat is over; always the last event of a session '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.CHAT_ENDED
    timestamp: datetime.datetime = field(default_factory=utcnow)
    next_page_token: str = ''

    @property
    def id(self) -> str:
        return f'end-{_nanoseconds(self.timestamp)}'


@dataclass(frozen=True)
class StreamEndEvent(LiveEvent):
    ''' stream went away '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.STREAM_END

    @property
    def id(self) -> str:
        return 'stream-end'


@dataclass(frozen=True)
class ErrorEvent(LiveEvent):
    ''' a runtime failure reported through the event stream '''
    kind: ClassVar[LiveEventKind] = LiveEventKind.ERROR
    error: BaseException
    timestamp: datetime.datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return f'error-{_seconds(self.timestamp)}'


class BotCommand:  # pylint: disable=too-few-public-methods
    ''' base of everything the caller can ask the command handler to do '''


@dataclass(frozen=True)
class SendChatMessage(BotCommand):
    ''' post a message to the chat '''
    message: str


@dataclass(frozen=True)
class DeleteChatMessage(BotCommand):
    ''' remove a message by id '''
    message_id: str
