#!/usr/bin/env python3
''' turn liveChatMessage resources into LiveEvents '''

import datetime
import logging
import re
from collections.abc import Callable, Iterable, Iterator
from decimal import Decimal
from typing import Any

from youtubelive.events import (
    AuthorDetails,
    ChatEndedEvent,
    ChatMessageEvent,
    LiveEvent,
    MemberMilestoneEvent,
    MembershipGiftEvent,
    MembershipGiftReceivedEvent,
    SuperChatEvent,
    SuperStickerEvent,
    UserBannedEvent,
)
from youtubelive.exceptions import ParseError, UnsupportedMessageTypeError

MICROS = Decimal(1_000_000)

_FRACTION_RE = re.compile(r'\.(\d+)')

Item = dict[str, Any]


def parse_timestamp(value: str | None) -> datetime.datetime:
    ''' RFC3339 into an aware datetime '''
    if not value:
        raise ParseError('invalid timestamp: missing publishedAt')
    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = f'{text[:-1]}+00:00'
    # fraction normalized to exactly microseconds
    text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    try:
        timestamp = datetime.datetime.fromisoformat(text)
    except ValueError as error:
        raise ParseError(f'invalid timestamp: {value}') from error
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    return timestamp


def micros_to_amount(micros: Any) -> Decimal:
    ''' micro-units (the API sends these as strings) into a decimal amount '''
    try:
        return Decimal(int(micros or 0)) / MICROS
    except (TypeError, ValueError) as error:
        raise ParseError(f'invalid amountMicros: {micros!r}') from error


def _details(snippet: Item, key: str) -> Item:
    details = snippet.get(key)
    if not isinstance(details, dict):
        raise ParseError(f'{snippet.get("type")} without {key}')
    return details


class _Base:  # pylint: disable=too-few-public-methods
    ''' fields every author-carrying event shares '''

    def __init__(self, item: Item, next_page_token: str) -> None:
        self.item = item
        self.snippet: Item = item.get('snippet') or {}
        self.author: Item = item.get('authorDetails') or {}
        self.next_page_token = next_page_token
        self.timestamp = parse_timestamp(self.snippet.get('publishedAt'))
        self.display_name: str = self.author.get('displayName', '')
        self.author_details = AuthorDetails.from_api(self.author)


def _text_message(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'textMessageDetails')
    return ChatMessageEvent(message=details.get('messageText', ''),
                            display_name=base.display_name,
                            author_details=base.author_details,
                            timestamp=base.timestamp,
                            next_page_token=base.next_page_token)


def _super_chat(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'superChatDetails')
    return SuperChatEvent(message=details.get('userComment', ''),
                          amount=micros_to_amount(details.get('amountMicros')),
                          currency=details.get('currency', ''),
                          display_name=base.display_name,
                          author_details=base.author_details,
                          timestamp=base.timestamp,
                          next_page_token=base.next_page_token)


def _super_sticker(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'superStickerDetails')
    metadata = details.get('superStickerMetadata') or {}
    return SuperStickerEvent(sticker_id=metadata.get('stickerId', ''),
                             amount=micros_to_amount(details.get('amountMicros')),
                             currency=details.get('currency', ''),
                             display_name=base.display_name,
                             author_details=base.author_details,
                             timestamp=base.timestamp,
                             next_page_token=base.next_page_token)


def _member_milestone(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'memberMilestoneChatDetails')
    return MemberMilestoneEvent(display_name=base.display_name,
                                author_details=base.author_details,
                                level=(details.get('memberLevelName') or '').lower(),
                                months=int(details.get('memberMonth') or 0),
                                timestamp=base.timestamp,
                                next_page_token=base.next_page_token)


def _membership_gifting(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'membershipGiftingDetails')
    return MembershipGiftEvent(display_name=base.display_name,
                               author_details=base.author_details,
                               total=int(details.get('giftMembershipsCount') or 0),
                               tier=details.get('giftMembershipsLevelName', ''),
                               timestamp=base.timestamp,
                               next_page_token=base.next_page_token)


def _gift_received(base: _Base) -> LiveEvent:
    details = _details(base.snippet, 'giftMembershipReceivedDetails')
    return MembershipGiftReceivedEvent(display_text=base.snippet.get('displayMessage', ''),
                                       level=details.get('memberLevelName', ''),
                                       gifter_id=details.get('gifterChannelId', ''),
                                       timestamp=base.timestamp)


def _user_banned(base: _Base) -> LiveEvent:
    try:
        details = _details(base.snippet, 'userBannedDetails')
    except ParseError as error:
        raise ParseError('moderation event without details') from error

    ban_type = 'unknown'
    duration = datetime.timedelta()
    if details.get('banType') == 'PERMANENT':
        ban_type = 'permanent'
    elif details.get('banType') == 'TEMPORARY':
        ban_type = 'temporary'
        duration = datetime.timedelta(seconds=int(details.get('banDurationSeconds') or 0))

    banned = details.get('bannedUserDetails') or {}
    return UserBannedEvent(banned_user_id=banned.get('channelId', ''),
                           banned_user_display_name=banned.get('displayName', ''),
                           ban_type=ban_type,
                           duration=duration,
                           moderator_id=base.snippet.get('authorChannelId', ''),
                           moderator_display_name=base.display_name,
                           timestamp=base.timestamp,
                           next_page_token=base.next_page_token)


def _chat_ended(base: _Base) -> LiveEvent:
    return ChatEndedEvent(timestamp=base.timestamp, next_page_token=base.next_page_token)


HANDLERS: dict[str, Callable[[_Base], LiveEvent]] = {
    'textMessageEvent': _text_message,
    'superChatEvent': _super_chat,
    'superStickerEvent': _super_sticker,
    'memberMilestoneChatEvent': _member_milestone,
    'membershipGiftingEvent': _membership_gifting,
    'giftMembershipReceivedEvent': _gift_received,
    'userBannedEvent': _user_banned,
    'chatEndedEvent': _chat_ended,
}


def parse_chat_message(item: Item, next_page_token: str = '') -> LiveEvent:
    ''' translate one liveChatMessage; raises ParseError on anything odd '''
    snippet = item.get('snippet') or {}
    kind = snippet.get('type')
    handler = HANDLERS.get(kind)
    if handler is None:
        logging.warning('unsupported message type: type=%s message_id=%s display=%s', kind,
                        item.get('id'), snippet.get('displayMessage'))
        raise UnsupportedMessageTypeError(kind)
    try:
        return handler(_Base(item, next_page_token))
    except ParseError:
        raise
    except (TypeError, ValueError, AttributeError) as error:
        raise ParseError(f'malformed {kind} message {item.get("id")}: {error}') from error


def parse_page(items: Iterable[Item], next_page_token: str = '') -> Iterator[LiveEvent]:
    ''' translate a page in order, logging and skipping what will not parse '''
    for item in items:
        try:
            yield parse_chat_message(item, next_page_token)
        except ParseError as error:
            logging.warning('failed to parse chat message: %s', error)
