#!/usr/bin/env python3
''' test the command line and logging setup '''

import datetime
import logging
import logging.handlers
from decimal import Decimal

import pytest

import youtubelive.__main__  # pylint: disable=import-error
import youtubelive.bootstrap
from youtubelive.events import (
    AuthorDetails,
    ChatEndedEvent,
    ChatMessageEvent,
    MemberMilestoneEvent,
    StreamEndEvent,
    SuperChatEvent,
    UserBannedEvent,
)

WHEN = datetime.datetime(2024, 5, 4, 18, 30, 15, tzinfo=datetime.timezone.utc)
AUTHOR = AuthorDetails(display_name='Fan')


def test_describe():
    ''' one readable line per event '''
    describe = youtubelive.__main__.describe
    assert describe(
        ChatMessageEvent(message='hi', display_name='Viewer', author_details=AUTHOR,
                         timestamp=WHEN)).endswith('Viewer: hi')
    assert describe(
        SuperChatEvent(message='thanks',
                       amount=Decimal('2.5'),
                       currency='USD',
                       display_name='Fan',
                       author_details=AUTHOR,
                       timestamp=WHEN)).endswith('Super Chat from Fan: thanks (2.50 USD)')
    assert describe(
        MemberMilestoneEvent(display_name='Fan',
                             author_details=AUTHOR,
                             level='gold',
                             months=0,
                             timestamp=WHEN)).endswith('New Gold member: Fan')
    assert describe(
        UserBannedEvent(banned_user_id='UCtroll',
                        banned_user_display_name='Troll',
                        ban_type='temporary',
                        duration=datetime.timedelta(minutes=10),
                        moderator_id='UCmod',
                        moderator_display_name='Mod',
                        timestamp=WHEN)).endswith('Moderator Mod banned Troll (temporary) for 0:10:00')
    assert describe(ChatEndedEvent(timestamp=WHEN)).endswith('Live chat has ended')
    assert describe(StreamEndEvent()) == 'Stream has ended'


def test_parser():
    ''' subcommands and their options '''
    parser = youtubelive.__main__.build_parser()
    args = parser.parse_args(['--debug', 'stream', '--channel', '@someone', '--say', 'hello'])
    assert args.command == 'stream'
    assert args.channel == '@someone'
    assert args.say == 'hello'
    assert args.debug

    args = parser.parse_args(['broadcast', '@someone', '--search-only'])
    assert args.search_only

    with pytest.raises(SystemExit):
        parser.parse_args(['stream', '--channel', '@a', '--broadcast', 'v1'])
    with pytest.raises(SystemExit):
        parser.parse_args([])


@pytest.fixture
def rootlogger():
    ''' put the root logger back the way it was '''
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.handlers.RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_setuplogging_file(tmp_path, rootlogger):  # pylint: disable=redefined-outer-name,unused-argument
    ''' log to a file, rotating the old one away '''
    logfile = youtubelive.bootstrap.setuplogging(logdir=tmp_path)
    assert logfile == tmp_path / 'debug.log'
    logging.info('first run')
    for handler in logging.getLogger().handlers:
        handler.flush()

    logfile = youtubelive.bootstrap.setuplogging(logdir=tmp_path, rotate=True)
    logging.info('second run')
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert 'first run' in (tmp_path / 'debug.log.1').read_text(encoding='utf-8')
    assert 'second run' in logfile.read_text(encoding='utf-8')


def test_setuplogging_stderr(rootlogger):  # pylint: disable=redefined-outer-name
    ''' no directory means stderr '''
    assert youtubelive.bootstrap.setuplogging(level=logging.INFO) is None
    assert rootlogger.level == logging.INFO
