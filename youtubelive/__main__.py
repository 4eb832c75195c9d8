#!/usr/bin/env python3
''' command line access to a YouTube live chat '''

import argparse
import asyncio
import logging
import pathlib
import signal
import sys

import youtubelive.bootstrap
import youtubelive.config
from youtubelive.events import (
    ChatEndedEvent,
    ChatMessageEvent,
    ErrorEvent,
    LiveEvent,
    MemberMilestoneEvent,
    MembershipGiftEvent,
    MembershipGiftReceivedEvent,
    SendChatMessage,
    StreamEndEvent,
    SuperChatEvent,
    SuperStickerEvent,
    UserBannedEvent,
)
from youtubelive.exceptions import YouTubeLiveError
from youtubelive.youtubelive import YouTubeLive

STAMP = '%b %d %H:%M:%S'


def describe(event: LiveEvent) -> str:  # pylint: disable=too-many-return-statements
    ''' one line of text per event '''
    when = ''
    if timestamp := getattr(event, 'timestamp', None):
        when = f'[{timestamp.astimezone().strftime(STAMP)}]'

    if isinstance(event, ChatMessageEvent):
        return f'{when} {event.display_name}: {event.message}'
    if isinstance(event, SuperChatEvent):
        return (f'{when} Super Chat from {event.display_name}: {event.message} '
                f'({event.amount:.2f} {event.currency})')
    if isinstance(event, SuperStickerEvent):
        return (f'{when} Super Sticker from {event.display_name}: ID {event.sticker_id} '
                f'({event.amount:.2f} {event.currency})')
    if isinstance(event, MemberMilestoneEvent):
        greeting = 'New' if event.months == 0 else 'Welcome back'
        return f'{when} {greeting} {event.level.title()} member: {event.display_name}'
    if isinstance(event, MembershipGiftEvent):
        return f'{when} {event.display_name} gifted {event.total} {event.tier} memberships'
    if isinstance(event, MembershipGiftReceivedEvent):
        return f'{when} {event.display_text}'
    if isinstance(event, UserBannedEvent):
        text = (f'{when} Moderator {event.moderator_display_name} banned '
                f'{event.banned_user_display_name} ({event.ban_type})')
        if event.ban_type == 'temporary':
            text += f' for {event.duration}'
        return text
    if isinstance(event, ChatEndedEvent):
        return f'{when} Live chat has ended'
    if isinstance(event, StreamEndEvent):
        return 'Stream has ended'
    if isinstance(event, ErrorEvent):
        return f'{when} {event.error}'
    return f'Unhandled event type: {type(event).__name__}'


async def islive(ytlive: YouTubeLive, args: argparse.Namespace) -> int:
    ''' print whether a channel is live '''
    channel_id = args.channel
    if channel_id.startswith('@'):
        channel_id = await ytlive.channel_id_from_handle(channel_id)
    live = await ytlive.is_live(channel_id)
    print(f'{args.channel} is {"live" if live else "not live"}')
    return 0 if live else 1


async def broadcast(ytlive: YouTubeLive, args: argparse.Namespace) -> int:
    ''' print the current broadcast id of a channel '''
    if args.search_only:
        channel_id = args.channel
        if channel_id.startswith('@'):
            channel_id = await ytlive.channel_id_from_handle(channel_id)
        print(await ytlive.current_broadcast_id_search_only(channel_id))
    else:
        print(await ytlive.current_broadcast_id_from_channel_handle(args.channel))
    return 0


async def stream(ytlive: YouTubeLive, args: argparse.Namespace) -> int:
    ''' print chat events until the chat ends or we are interrupted '''
    broadcast_id = args.broadcast
    if not broadcast_id:
        broadcast_id = await ytlive.current_broadcast_id_from_channel_handle(args.channel)

    stopevent = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stopevent.set)
    except NotImplementedError:
        logging.debug('signal handlers not supported on this platform')

    session = await ytlive.attach(broadcast_id, stopevent=stopevent)
    async with session:
        if args.say:
            await session.send(SendChatMessage(message=args.say))
        async for event in session:
            print(describe(event), flush=True)
            if isinstance(event, ChatEndedEvent):
                break
    return 0


async def login(ytlive: YouTubeLive, args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    ''' run the browser flow and print the refresh token '''
    token = await ytlive.login()
    print(f'Refresh Token: {token.refresh_token}')
    return 0


COMMANDS = {
    'islive': islive,
    'broadcast': broadcast,
    'stream': stream,
    'login': login,
}


def build_parser() -> argparse.ArgumentParser:
    ''' the command line '''
    parser = argparse.ArgumentParser(prog='youtubelive',
                                     description='Attach to YouTube live chats')
    parser.add_argument('--env',
                        type=pathlib.Path,
                        default=pathlib.Path('.env'),
                        help='file with CLIENT_ID, CLIENT_SECRET, REFRESH_TOKEN')
    parser.add_argument('--logdir', type=pathlib.Path, help='write debug.log here instead of stderr')
    parser.add_argument('--debug', action='store_true', help='more logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    islive_parser = subparsers.add_parser('islive', help='is a channel live')
    islive_parser.add_argument('channel', help='channel id or @handle')

    broadcast_parser = subparsers.add_parser('broadcast', help='current broadcast id')
    broadcast_parser.add_argument('channel', help='@handle')
    broadcast_parser.add_argument('--search-only',
                                  action='store_true',
                                  help='only use search to find the broadcast')

    stream_parser = subparsers.add_parser('stream', help='print chat events')
    target = stream_parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--broadcast', help='broadcast (video) id')
    target.add_argument('--channel', help='@handle of a live channel')
    stream_parser.add_argument('--say', help='send this message once attached')

    subparsers.add_parser('login', help='log in and print the refresh token')
    return parser


async def run(args: argparse.Namespace) -> int:
    ''' dispatch to the subcommand '''
    config = youtubelive.config.ConfigFile.from_dotfile(args.env)
    async with YouTubeLive.from_config(config) as ytlive:
        return await COMMANDS[args.command](ytlive, args)


def main(argv: list[str] | None = None) -> int:
    ''' entry point '''
    args = build_parser().parse_args(argv)
    youtubelive.bootstrap.setuplogging(logdir=args.logdir,
                                       level=logging.DEBUG if args.debug else logging.INFO)
    try:
        return asyncio.run(run(args))
    except (YouTubeLiveError, OSError) as error:
        logging.error('%s failed: %s', args.command, error)
        print(f'error: {error}', file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
