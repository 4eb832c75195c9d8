#!/usr/bin/env python3
''' thin async client for the YouTube Data API v3 '''

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import aiohttp

from youtubelive.constants import API_BASE, API_TIMEOUT
from youtubelive.exceptions import APIError, TransportError
from youtubelive.oauth2 import Token


class TokenProvider(Protocol):  # pylint: disable=too-few-public-methods
    ''' anything that can hand out a bearer token '''

    async def token(self) -> Token:
        ''' a currently valid token '''


class YouTubeService:
    ''' only the handful of endpoints live chat needs '''

    def __init__(self,
                 token_source: TokenProvider,
                 session: aiohttp.ClientSession | None = None,
                 api_base: str = API_BASE,
                 timeout: float = API_TIMEOUT) -> None:
        self.token_source = token_source
        self.session = session
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout

    @contextlib.asynccontextmanager
    async def _client_session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _request(self,
                       method: str,
                       resource: str,
                       params: dict[str, Any] | None = None,
                       body: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await self.token_source.token()
        headers = {
            'Authorization': f'{token.token_type or "Bearer"} {token.access_token}',
            'Accept': 'application/json',
        }
        # aiohttp refuses None and bool query values
        query = {
            key: str(value).lower() if isinstance(value, bool) else str(value)
            for key, value in (params or {}).items() if value is not None and value != ''
        }
        url = f'{self.api_base}/{resource}'
        try:
            async with self._client_session() as session:
                async with session.request(method,
                                           url,
                                           params=query,
                                           json=body,
                                           headers=headers,
                                           timeout=aiohttp.ClientTimeout(
                                               total=self.timeout)) as response:
                    if response.status == 204:
                        return {}
                    text = await response.text()
                    if response.status >= 400:
                        try:
                            decoded = json.loads(text)
                        except json.JSONDecodeError:
                            decoded = text
                        error = APIError.from_response(response.status, decoded)
                        logging.error('YouTube API %s %s failed: %s', method, resource, error)
                        raise error
                    return json.loads(text) if text else {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise TransportError(f'{method} {resource}: {error}') from error
        except json.JSONDecodeError as error:
            raise TransportError(f'{method} {resource}: invalid JSON response') from error

    async def list_channels(self,
                            part: str = 'id,contentDetails',
                            channel_id: str | None = None,
                            for_handle: str | None = None) -> dict[str, Any]:
        ''' channels.list by id or by handle '''
        return await self._request('GET',
                                   'channels',
                                   params={
                                       'part': part,
                                       'id': channel_id,
                                       'forHandle': for_handle
                                   })

    async def list_playlist_items(self,
                                  playlist_id: str,
                                  part: str = 'contentDetails',
                                  max_results: int = 50) -> dict[str, Any]:
        ''' playlistItems.list, most recent first '''
        return await self._request('GET',
                                   'playlistItems',
                                   params={
                                       'part': part,
                                       'playlistId': playlist_id,
                                       'maxResults': max_results
                                   })

    async def list_videos(self,
                          video_ids: list[str],
                          part: str = 'snippet,liveStreamingDetails') -> dict[str, Any]:
        ''' videos.list for up to 50 ids '''
        return await self._request('GET',
                                   'videos',
                                   params={
                                       'part': part,
                                       'id': ','.join(video_ids)
                                   })

    async def search(self,
                     channel_id: str,
                     event_type: str = 'live',
                     kind: str = 'video',
                     part: str = 'id') -> dict[str, Any]:
        ''' search.list restricted to one channel; expensive on quota '''
        return await self._request('GET',
                                   'search',
                                   params={
                                       'part': part,
                                       'channelId': channel_id,
                                       'eventType': event_type,
                                       'type': kind
                                   })

    async def list_live_chat_messages(self,
                                      live_chat_id: str,
                                      page_token: str = '',
                                      part: str = 'snippet,authorDetails') -> dict[str, Any]:
        ''' liveChatMessages.list from page_token onward '''
        return await self._request('GET',
                                   'liveChat/messages',
                                   params={
                                       'part': part,
                                       'liveChatId': live_chat_id,
                                       'pageToken': page_token
                                   })

    async def insert_live_chat_message(self, live_chat_id: str, message: str) -> dict[str, Any]:
        ''' liveChatMessages.insert a plain text message '''
        body = {
            'snippet': {
                'liveChatId': live_chat_id,
                'type': 'textMessageEvent',
                'textMessageDetails': {
                    'messageText': message
                },
            }
        }
        return await self._request('POST', 'liveChat/messages', params={'part': 'snippet'}, body=body)

    async def delete_live_chat_message(self, message_id: str) -> dict[str, Any]:
        ''' liveChatMessages.delete '''
        return await self._request('DELETE', 'liveChat/messages', params={'id': message_id})
