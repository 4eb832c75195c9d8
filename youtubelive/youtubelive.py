#!/usr/bin/env python3
"""The public face of the library.

``YouTubeLive`` owns the callback listener, the token source and the API
service, and hands out ``LiveChatSession`` objects attached to a broadcast.
Nothing touches the network until the first call that needs a token.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

import youtubelive.callback
import youtubelive.config
import youtubelive.hostmeta
from youtubelive.chat import LiveChatSession
from youtubelive.constants import (
    DEFAULT_LISTEN_ADDR,
    DEFAULT_POLL_INTERVAL,
    GOOGLE_SERVICE_CONFIG,
    REQUIRED_SCOPES,
    UPLOADS_LOOKBACK,
)
from youtubelive.exceptions import (
    BroadcastNotFoundError,
    ChannelNotFoundError,
    ChatDisabledError,
    InvalidChannelHandleError,
    NotLiveError,
    YouTubeLiveError,
    wrap_oauth_errors,
)
from youtubelive.oauth2 import OAuth2Client, PKCETokenSource, ServiceConfig, Token, TokenSaver
from youtubelive.service import YouTubeService


def normalize_handle(handle: str | None) -> str:
    ''' make sure a channel handle starts with exactly one @ '''
    if not handle:
        raise InvalidChannelHandleError()
    if not handle.startswith('@'):
        handle = f'@{handle}'
    return handle


class YouTubeLive:  # pylint: disable=too-many-instance-attributes
    ''' find live broadcasts and attach to their chat '''

    def __init__(  # pylint: disable=too-many-arguments
            self,
            client_id: str,
            client_secret: str,
            refresh_token: str = '',
            listen_addr: str = DEFAULT_LISTEN_ADDR,
            additional_scopes: list[str] | None = None,
            session: aiohttp.ClientSession | None = None,
            token_saver: TokenSaver | None = None,
            open_browser: Callable[[str], Any] | None = None,
            service_config: ServiceConfig | None = None) -> None:
        self.resolver = youtubelive.hostmeta.ListenResolver(listen_addr)
        # caller scopes first, required ones after
        scopes = [*(additional_scopes or []), *REQUIRED_SCOPES]
        self.client = OAuth2Client(client_id,
                                   client_secret,
                                   service_config=service_config or GOOGLE_SERVICE_CONFIG,
                                   scopes=scopes,
                                   session=session)
        self.refresh_token = refresh_token
        self.token_saver = token_saver
        self.open_browser = open_browser
        self.token_source: PKCETokenSource | None = None
        self.service = YouTubeService(self, session=session)
        self.sessions: set[LiveChatSession] = set()

    @classmethod
    def from_config(cls, config: youtubelive.config.ConfigFile, **options: Any) -> 'YouTubeLive':
        ''' build from CLIENT_ID, CLIENT_SECRET, REFRESH_TOKEN and ADDITIONAL_SCOPES '''
        client_id, client_secret, refresh_token, scopes = config.oauth_credentials()
        options.setdefault('refresh_token', refresh_token)
        options.setdefault('additional_scopes', scopes)
        if listen_addr := config.value('listen_addr'):
            options.setdefault('listen_addr', listen_addr)
        return cls(client_id, client_secret, **options)

    def _ensure_token_source(self) -> PKCETokenSource:
        if self.token_source:
            return self.token_source
        self.resolver.setup_listener()
        self.client.redirect_uri = self.resolver.redirect_uri
        self.client.validate()
        self.token_source = PKCETokenSource(self.client,
                                            self._authorize,
                                            refresh_token=self.refresh_token,
                                            token_saver=self.token_saver)
        return self.token_source

    async def _authorize(self, auth_url: str, state: str) -> tuple[str, str]:
        return await youtubelive.callback.run_authorization(self.resolver,
                                                            auth_url,
                                                            expected_state=state,
                                                            opener=self.open_browser)

    async def token(self) -> Token:
        ''' a valid access token, logging in through the browser if need be '''
        token_source = self._ensure_token_source()
        try:
            return await token_source.token()
        except YouTubeLiveError as error:
            wrapped = wrap_oauth_errors(error)
            if wrapped is error:
                raise
            raise wrapped from error

    def set_refresh_token(self, refresh_token: str) -> None:
        ''' swap in a refresh token obtained some other way '''
        self.refresh_token = refresh_token
        if self.token_source:
            self.token_source.refresh_token = refresh_token
            self.token_source.cached = None

    async def login(self) -> Token:
        ''' force a token now, e.g. to capture the refresh token '''
        token = await self.token()
        logging.info('logged in to YouTube (refresh token %s)',
                     'present' if token.refresh_token else 'missing')
        return token

    async def channel_id_from_handle(self, handle: str) -> str:
        ''' @handle to channel id '''
        handle = normalize_handle(handle)
        response = await self.service.list_channels(part='id', for_handle=handle)
        items = response.get('items') or []
        if not items:
            raise ChannelNotFoundError(f'user does not exist: {handle}')
        return items[0]['id']

    async def current_broadcast_id_from_channel_handle(self, handle: str) -> str:
        ''' live broadcast id for a handle; resolve the channel id once yourself to save quota '''
        return await self.current_broadcast_id_from_channel_id(
            await self.channel_id_from_handle(handle))

    async def current_broadcast_id_from_channel_id(self, channel_id: str) -> str:
        """Live broadcast id for a channel.

        Checks the channel's most recent uploads first since that is much
        cheaper than a search, then falls back to searching for a live event.
        Raises NotLiveError if neither finds anything.
        """
        response = await self.service.list_channels(part='contentDetails', channel_id=channel_id)
        items = response.get('items') or []
        if not items:
            raise ChannelNotFoundError(f'failed to get channel details: {channel_id}')
        uploads = (items[0].get('contentDetails', {}).get('relatedPlaylists', {}).get('uploads'))

        if uploads:
            if broadcast_id := await self._live_upload(uploads):
                return broadcast_id
        else:
            logging.debug('channel %s has no uploads playlist', channel_id)

        # search sometimes misses subscriber-only chats, but it is all that is left
        return await self.current_broadcast_id_search_only(channel_id)

    async def _live_upload(self, playlist_id: str) -> str | None:
        playlist = await self.service.list_playlist_items(playlist_id,
                                                          part='contentDetails',
                                                          max_results=UPLOADS_LOOKBACK)
        video_ids = [
            item['contentDetails']['videoId'] for item in playlist.get('items') or []
            if item.get('contentDetails', {}).get('videoId')
        ]
        if not video_ids:
            return None

        videos = await self.service.list_videos(video_ids, part='liveStreamingDetails')
        for video in videos.get('items') or []:
            details = video.get('liveStreamingDetails') or {}
            if details.get('actualStartTime') and not details.get('actualEndTime'):
                return video['id']
        return None

    async def current_broadcast_id_search_only(self, channel_id: str) -> str:
        ''' live broadcast id using only search '''
        response = await self.service.search(channel_id, event_type='live', kind='video')
        items = response.get('items') or []
        if not items:
            raise NotLiveError()
        return items[0]['id']['videoId']

    async def is_live(self, channel_id: str) -> bool:
        ''' True if the channel is live right now '''
        try:
            await self.current_broadcast_id_from_channel_id(channel_id)
        except NotLiveError:
            return False
        return True

    async def get_live_chat_id(self, broadcast_id: str) -> str:
        ''' active chat id of a broadcast '''
        response = await self.service.list_videos([broadcast_id], part='liveStreamingDetails')
        items = response.get('items') or []
        if not items:
            raise BroadcastNotFoundError()
        live_chat_id = (items[0].get('liveStreamingDetails') or {}).get('activeLiveChatId')
        if not live_chat_id:
            raise ChatDisabledError()
        return live_chat_id

    async def attach(self,
                     broadcast_id: str,
                     stopevent: asyncio.Event | None = None,
                     poll_interval: float = DEFAULT_POLL_INTERVAL) -> LiveChatSession:
        """Attach to a live broadcast's chat.

        Iterate the returned session for events; it stops when the broadcast
        ends or on an error that needs another attach.  ``close_commands()``
        only stops sending; ``stop()`` (or setting ``stopevent``) tears the
        whole thing down.
        """
        live_chat_id = await self.get_live_chat_id(broadcast_id)
        session = LiveChatSession(self.service,
                                  live_chat_id,
                                  stopevent=stopevent,
                                  poll_interval=poll_interval)
        self.sessions.add(session)
        session.start()
        # finished sessions are dropped right away
        session.supervisor.add_done_callback(lambda _: self.sessions.discard(session))
        return session

    async def close(self) -> None:
        ''' stop every attached session and release the callback socket '''
        sessions, self.sessions = self.sessions, set()
        await asyncio.gather(*(session.stop() for session in sessions), return_exceptions=True)
        self.resolver.close()

    async def __aenter__(self) -> 'YouTubeLive':
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.close()
