#!/usr/bin/env python3
''' attach to a YouTube live chat '''

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

import youtubelive.service
from youtubelive.constants import DEFAULT_POLL_INTERVAL, STREAM_CAPACITY
from youtubelive.events import (
    BotCommand,
    ChatEndedEvent,
    DeleteChatMessage,
    ErrorEvent,
    LiveEvent,
    SendChatMessage,
)
from youtubelive.exceptions import APIError, YouTubeLiveError
from youtubelive.parser import parse_page

STOPPED = object()


class StreamClosed(Exception):
    ''' the stream was closed and has nothing left '''


async def _first(main: Awaitable[Any], *events: asyncio.Event | None) -> tuple[bool, Any]:
    ''' run main until it finishes or any of events fire; (finished, result) '''
    maintask = asyncio.ensure_future(main)
    waiters = [asyncio.ensure_future(event.wait()) for event in events if event is not None]
    try:
        await asyncio.wait([maintask, *waiters], return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in [maintask, *waiters]:
            if not task.done():
                task.cancel()
    if maintask.done() and not maintask.cancelled():
        return True, maintask.result()
    return False, None


class Stream:
    """Bounded queue that can be closed.

    Anything already queued when the stream closes can still be read; after
    that ``get`` raises ``StreamClosed``.  Both ``put`` and ``get`` give up
    when the supplied stop event fires.
    """

    def __init__(self, capacity: int = STREAM_CAPACITY) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        ''' has close() been called '''
        return self._closed.is_set()

    def close(self) -> None:
        ''' no more puts; readers drain then stop '''
        self._closed.set()

    def qsize(self) -> int:
        ''' items waiting '''
        return self._queue.qsize()

    async def put(self, item: Any, stopevent: asyncio.Event | None = None) -> bool:
        ''' False if stopevent fired before there was room '''
        if self.closed:
            raise StreamClosed()
        if stopevent is not None and stopevent.is_set():
            return False
        finished, _ = await _first(self._queue.put(item), stopevent)
        return finished

    async def get(self, stopevent: asyncio.Event | None = None) -> Any:
        ''' next item, STOPPED if stopevent fired first '''
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                raise StreamClosed()
            if stopevent is not None and stopevent.is_set():
                return STOPPED
            finished, item = await _first(self._queue.get(), stopevent, self._closed)
            if finished:
                return item

    def __aiter__(self) -> 'Stream':
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.get()
        except StreamClosed as error:
            raise StopAsyncIteration from error


class LiveChatSession:  # pylint: disable=too-many-instance-attributes
    """One attachment to one live chat.

    A poller turns chat pages into ``LiveEvent`` objects on ``events``; a
    command handler drains ``BotCommand`` objects from ``commands`` and
    performs them.  Both stop when ``stopevent`` is set (or the parent stop
    event handed in), and the supervisor waits for both before closing the
    event stream.  The event stream also closes once the poller sees the chat
    end.
    """

    def __init__(self,
                 service: youtubelive.service.YouTubeService,
                 live_chat_id: str,
                 stopevent: asyncio.Event | None = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 capacity: int = STREAM_CAPACITY) -> None:
        self.service = service
        self.live_chat_id = live_chat_id
        self.parent_stopevent = stopevent
        self.stopevent = asyncio.Event()
        self.poll_interval = poll_interval
        self.next_page_token = ''
        self.events = Stream(capacity)
        self.commands = Stream(capacity)
        self.tasks: set[asyncio.Task[Any]] = set()
        self.poller: asyncio.Task[Any] | None = None
        self.handler: asyncio.Task[Any] | None = None
        self.supervisor: asyncio.Task[Any] | None = None

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def start(self) -> 'LiveChatSession':
        ''' launch the poller, the command handler and the supervisor '''
        if self.supervisor:
            return self
        logging.info('attaching to live chat %s', self.live_chat_id)
        self.poller = self._spawn(self.poll_live_chat(), 'youtubelive-poller')
        self.handler = self._spawn(self.handle_commands(), 'youtubelive-commands')
        self.supervisor = self._spawn(self._supervise(), 'youtubelive-supervisor')
        return self

    async def stop(self) -> None:
        ''' full teardown; returns once nothing can write to events anymore '''
        self.stopevent.set()
        if self.supervisor:
            await asyncio.gather(self.supervisor, return_exceptions=True)
        else:
            self.events.close()
            self.commands.close()

    async def __aenter__(self) -> 'LiveChatSession':
        return self.start()

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.stop()

    def __aiter__(self) -> Stream:
        return self.events

    async def send(self, command: BotCommand) -> bool:
        ''' queue a command for the handler; False if the session stopped first '''
        return await self.commands.put(command, self.stopevent)

    def close_commands(self) -> None:
        ''' stop taking commands; the poller keeps going until stop() '''
        self.commands.close()

    async def _supervise(self) -> None:
        await _first(self.stopevent.wait(), self.parent_stopevent)
        self.stopevent.set()
        workers = [task for task in (self.poller, self.handler) if task]
        for task in workers:
            task.cancel()
        results = await asyncio.gather(*workers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logging.error('live chat worker failed: %s', result)
        self.events.close()
        self.commands.close()
        logging.info('detached from live chat %s', self.live_chat_id)

    async def _deliver(self, event: LiveEvent) -> bool:
        ''' put an event on the outbound stream unless stopping '''
        if self.events.closed:
            logging.debug('dropping %s, event stream already closed', event.id)
            return False
        if not await self.events.put(event, self.stopevent):
            logging.debug('dropping %s, session stopping', event.id)
            return False
        return True

    async def _sleep(self, interval: float) -> bool:
        ''' wait interval seconds; False if told to stop meanwhile '''
        try:
            await asyncio.wait_for(self.stopevent.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return True
        return False

    def _update_interval(self, response: dict[str, Any]) -> None:
        try:
            millis = int(response.get('pollingIntervalMillis') or 0)
        except (TypeError, ValueError):
            millis = 0
        if millis > 0:
            self.poll_interval = millis / 1000

    async def poll_live_chat(self) -> None:
        ''' fetch pages until the chat ends or we are stopped '''
        try:
            while not self.stopevent.is_set():
                try:
                    response = await self.service.list_live_chat_messages(
                        self.live_chat_id, self.next_page_token)
                except APIError as error:
                    logging.error('live chat %s polling failed: %s', self.live_chat_id, error)
                    await self._deliver(ErrorEvent(error=error))
                    await self._deliver(ChatEndedEvent())
                    return
                except YouTubeLiveError as error:
                    logging.warning('live chat %s poll error, will retry: %s', self.live_chat_id,
                                    error)
                    if not await self._deliver(ErrorEvent(error=error)):
                        return
                else:
                    # keep the old cursor if the API leaves it out
                    self.next_page_token = response.get('nextPageToken') or self.next_page_token
                    self._update_interval(response)
                    for event in parse_page(response.get('items') or [], self.next_page_token):
                        if not await self._deliver(event):
                            return
                        if isinstance(event, ChatEndedEvent):
                            logging.info('live chat %s has ended', self.live_chat_id)
                            return

                if not await self._sleep(self.poll_interval):
                    return
        finally:
            self.events.close()

    async def handle_commands(self) -> None:
        ''' carry out BotCommands until the command stream closes or we are stopped '''
        while True:
            try:
                command = await self.commands.get(self.stopevent)
            except StreamClosed:
                logging.debug('command stream closed for live chat %s', self.live_chat_id)
                return
            if command is STOPPED:
                return

            try:
                if isinstance(command, SendChatMessage):
                    await self.service.insert_live_chat_message(self.live_chat_id, command.message)
                elif isinstance(command, DeleteChatMessage):
                    await self.service.delete_live_chat_message(command.message_id)
                else:
                    logging.warning('unknown bot command %r', command)
            except YouTubeLiveError as error:
                logging.error('%s failed: %s', type(command).__name__, error)
                await self._deliver(ErrorEvent(error=error))
