#!/usr/bin/env python3
''' local web server that catches the OAuth2 redirect '''

import asyncio
import logging
import pathlib
import socket
from collections.abc import Callable
from typing import Any

import jinja2
from aiohttp import web

import youtubelive.hostmeta
from youtubelive.constants import CALLBACK_PATH, CALLBACK_SHUTDOWN_GRACE, CALLBACK_TIMEOUT
from youtubelive.exceptions import CallbackTimeoutError, MissingCodeError
from youtubelive.oauth2 import OAuth2Client

TEMPLATE_DIR = pathlib.Path(__file__).resolve().parent / 'templates'


def setup_jinja2(directory: pathlib.Path) -> jinja2.Environment:
    ''' set up the environment '''
    return jinja2.Environment(loader=jinja2.FileSystemLoader(str(directory)),
                              autoescape=jinja2.select_autoescape(['htm', 'html', 'xml']),
                              trim_blocks=True)


class OAuthCallbackServer:
    """Serve ``/callback`` on an already-bound socket until one redirect arrives.

    The result is whatever ``code`` and ``state`` the browser brought back;
    comparing the state is left to the token source.  The listening socket
    is duplicated so that shutting the web server down leaves the caller's
    socket open for a later attempt.
    """

    def __init__(self,
                 sock: socket.socket,
                 expected_state: str = '',
                 templatedir: pathlib.Path | None = None) -> None:
        self.sock = sock
        self.expected_state = expected_state
        self.jinja2 = setup_jinja2(templatedir or TEMPLATE_DIR)
        self.runner: web.AppRunner | None = None
        self.result: asyncio.Future[tuple[str, str]] | None = None

    def load_template(self, template_name: str, **kwargs: Any) -> str:
        ''' render one of the oauth pages '''
        try:
            return self.jinja2.get_template(f'oauth/{template_name}').render(**kwargs)
        except jinja2.TemplateError as error:
            logging.error('Template error for %s: %s', template_name, error)
            return '<html><body><h1>Template Error</h1></body></html>'

    def _resolve(self, code: str = '', state: str = '', error: Exception | None = None) -> None:
        if self.result is None or self.result.done():
            logging.debug('ignoring extra OAuth callback')
            return
        if error:
            self.result.set_exception(error)
        else:
            self.result.set_result((code, state))

    async def handle_callback(self, request: web.Request) -> web.Response:
        ''' the browser lands here '''
        params = dict(request.query)
        # never log the code
        logging.info('OAuth redirect received with parameters: %s',
                     {key: value for key, value in params.items() if key != 'code'})

        if 'error' in params:
            error_code = params.get('error', 'unknown_error')
            error_description = params.get('error_description', 'No description provided')
            logging.error('OAuth authorization failed: %s', error_code)
            self._resolve(error=MissingCodeError(f'no code received: {error_code}'))
            return web.Response(content_type='text/html',
                                status=400,
                                text=self.load_template('error.htm',
                                                        error_code=error_code,
                                                        error_description=error_description))

        code = params.get('code', '')
        state = params.get('state', '')
        if not code:
            self._resolve(error=MissingCodeError())
            return web.Response(content_type='text/html',
                                status=400,
                                text=self.load_template('no_code.htm'))

        logging.debug('got auth callback')
        self._resolve(code, state)
        if self.expected_state and state != self.expected_state:
            return web.Response(content_type='text/html',
                                status=400,
                                text=self.load_template('csrf_error.htm'))
        return web.Response(content_type='text/html', text=self.load_template('success.htm'))

    async def start(self) -> None:
        ''' start serving '''
        self.result = asyncio.get_running_loop().create_future()
        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self.handle_callback)
        self.runner = web.AppRunner(app)
        await self.runner.setup()
        site = web.SockSite(self.runner, self.sock.dup())
        await site.start()
        logging.info('starting local server on %s', site.name)

    async def wait_for_callback(self, timeout: float = CALLBACK_TIMEOUT) -> tuple[str, str]:
        ''' (code, state) from the redirect '''
        if self.result is None:
            raise RuntimeError('callback server not started')
        try:
            return await asyncio.wait_for(asyncio.shield(self.result), timeout=timeout)
        except asyncio.TimeoutError as error:
            raise CallbackTimeoutError(
                f'no OAuth callback received within {timeout} seconds') from error

    async def stop(self, grace: float = CALLBACK_SHUTDOWN_GRACE) -> None:
        ''' shut the web server down, giving in-flight responses a moment '''
        if not self.runner:
            return
        runner, self.runner = self.runner, None
        try:
            await asyncio.wait_for(runner.cleanup(), timeout=grace)
        except asyncio.TimeoutError:
            logging.warning('OAuth callback server did not shut down within %s seconds', grace)
        if self.result and not self.result.done():
            self.result.cancel()


async def run_authorization(resolver: youtubelive.hostmeta.ListenResolver,
                            auth_url: str,
                            expected_state: str = '',
                            opener: Callable[[str], Any] | None = None,
                            timeout: float = CALLBACK_TIMEOUT,
                            grace: float = CALLBACK_SHUTDOWN_GRACE) -> tuple[str, str]:
    ''' open the browser on auth_url and wait for the redirect back to us '''
    sock = resolver.setup_listener()
    server = OAuthCallbackServer(sock, expected_state=expected_state)
    await server.start()
    try:
        logging.info('opening browser for authorization...')
        # console browsers block until they exit; the loop must keep serving /callback
        if not await asyncio.to_thread(OAuth2Client.open_browser_for_auth, auth_url, opener):
            logging.info('visit the following url manually: %s', auth_url)
        return await server.wait_for_callback(timeout=timeout)
    finally:
        await server.stop(grace=grace)
