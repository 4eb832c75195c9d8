#!/usr/bin/env python3
''' OAuth2 authentication handler with PKCE for YouTube '''

import asyncio
import base64
import contextlib
import datetime
import enum
import hashlib
import logging
import secrets
import urllib.parse
import webbrowser
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, TypedDict, NotRequired  # pylint: disable=no-name-in-module

import aiohttp

from youtubelive.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotLoggedInError,
    StateMismatchError,
)

# tokens are considered expired this long before they really are
EXPIRY_DELTA = datetime.timedelta(seconds=10)


class ServiceConfig(TypedDict):
    """Configuration for OAuth2 service-specific settings."""
    oauth_host: str  # OAuth server URL (e.g., 'https://accounts.google.com')
    token_host: NotRequired[str]  # token server URL if it is not oauth_host
    authorize_endpoint: str  # e.g., '/o/oauth2/auth'
    token_endpoint: str  # e.g., '/token'
    additional_auth_params: NotRequired[dict[str, str]]  # extra authorization URL params


@dataclass(frozen=True)
class PKCEChallenge:
    ''' verifier stays here until the exchange; challenge goes out with the auth URL '''
    verifier: str
    challenge: str
    method: str = 'S256'

    @classmethod
    def generate(cls) -> 'PKCEChallenge':
        ''' 32 random bytes, base64url without padding, S256 challenge '''
        verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode('utf-8').rstrip('=')
        challenge_bytes = hashlib.sha256(verifier.encode('utf-8')).digest()
        challenge = base64.urlsafe_b64encode(challenge_bytes).decode('utf-8').rstrip('=')
        return cls(verifier=verifier, challenge=challenge)


@dataclass(frozen=True)
class Token:
    ''' an access token and what came with it '''
    access_token: str
    token_type: str = 'Bearer'
    refresh_token: str = ''
    expiry: datetime.datetime | None = None
    scope: str = ''

    @classmethod
    def from_response(cls,
                      token_response: dict[str, Any],
                      refresh_token: str = '') -> 'Token':
        ''' build from a token endpoint response; keep the old refresh token if none sent '''
        expiry = None
        if expires_in := token_response.get('expires_in'):
            expiry = (datetime.datetime.now(datetime.timezone.utc) +
                      datetime.timedelta(seconds=int(expires_in)))
        return cls(access_token=token_response.get('access_token', ''),
                   token_type=token_response.get('token_type') or 'Bearer',
                   refresh_token=token_response.get('refresh_token') or refresh_token,
                   expiry=expiry,
                   scope=token_response.get('scope', ''))

    @property
    def valid(self) -> bool:
        ''' present and not about to expire '''
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        return self.expiry - EXPIRY_DELTA > datetime.datetime.now(datetime.timezone.utc)


class OAuth2Client:  # pylint: disable=too-many-instance-attributes
    ''' OAuth 2.1 authorization code flow with PKCE '''

    def __init__(self,
                 client_id: str,
                 client_secret: str,
                 service_config: ServiceConfig | None = None,
                 scopes: list[str] | None = None,
                 session: aiohttp.ClientSession | None = None) -> None:
        """Initialize OAuth2 client with service-specific configuration.

        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            service_config: Service-specific configuration (see ServiceConfig TypedDict)
            scopes: scopes to request, in order
            session: optional shared aiohttp session; one per request otherwise
        """
        if not service_config:
            raise ValueError("service_config is required")

        self.oauth_host = service_config['oauth_host']
        self.token_host = service_config.get('token_host') or self.oauth_host
        self.authorize_endpoint = service_config['authorize_endpoint']
        self.token_endpoint = service_config['token_endpoint']
        self.additional_auth_params = dict(service_config.get('additional_auth_params') or {})

        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes: list[str] = list(scopes or [])
        # Redirect URI is set once the callback listener knows where it lives
        self.redirect_uri: str | None = None
        self.session = session

    @property
    def token_url(self) -> str:
        ''' full token endpoint '''
        return f'{self.token_host}{self.token_endpoint}'

    def validate(self) -> None:
        ''' complain about missing configuration '''
        problems = []
        if not self.client_id:
            problems.append('YouTube Client ID is empty')
        if not self.redirect_uri:
            problems.append('YouTube Redirect URI is empty')
        if not self.scopes:
            problems.append('YouTube Scopes is empty')
        if problems:
            raise ConfigurationError('; '.join(problems))

    @contextlib.asynccontextmanager
    async def _client_session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    def get_authorization_url(self, state: str, pkce: PKCEChallenge | None = None) -> str:
        ''' Generate the authorization URL for user consent '''
        if not self.client_id:
            raise ConfigurationError("Client ID is required")
        if not self.redirect_uri:
            raise ConfigurationError("Redirect URI is required")

        params = {
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': self.redirect_uri,
            'state': state,
            'scope': ' '.join(self.scopes),
        }
        if pkce:
            params |= {'code_challenge': pkce.challenge, 'code_challenge_method': pkce.method}

        # Add service-specific parameters
        params |= self.additional_auth_params

        query_string = urllib.parse.urlencode(params)
        logging.info('Generated OAuth2 authorization URL')
        return f"{self.oauth_host}{self.authorize_endpoint}?{query_string}"

    @staticmethod
    def open_browser_for_auth(auth_url: str,
                              opener: Callable[[str], Any] | None = None) -> bool:
        ''' Open browser to initiate OAuth2 flow '''
        try:
            result = (opener or webbrowser.open)(auth_url)
        except OSError as error:
            logging.error('error opening browser for authorization: %s', error)
            return False
        if result is False:
            logging.error('error opening browser for authorization: no usable browser')
            return False
        logging.info('Opened browser for OAuth2 authentication')
        return True

    async def _post_token_endpoint(self, token_data: dict[str, str]) -> dict[str, Any]:
        headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Accept': 'application/json'
        }
        try:
            async with self._client_session() as session:
                async with session.post(self.token_url,
                                        data=token_data,
                                        headers=headers,
                                        timeout=aiohttp.ClientTimeout(total=30)) as response:
                    if response.status == 200:
                        try:
                            token_response = await response.json(content_type=None)
                        except ValueError as error:
                            raise AuthenticationError(
                                f'oauth2: cannot parse token response: {error}') from error
                        if not isinstance(token_response,
                                          dict) or not token_response.get('access_token'):
                            raise AuthenticationError(
                                'oauth2: server response missing access_token')
                        return token_response
                    error_text = await response.text()
                    logging.error('Token endpoint returned %s - %s', response.status, error_text)
                    raise AuthenticationError(
                        f'oauth2: cannot fetch token: {response.status} - {error_text}')
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise AuthenticationError(f'oauth2: cannot fetch token: {error}') from error

    async def exchange_code_for_token(self,
                                      authorization_code: str,
                                      pkce: PKCEChallenge | None = None) -> Token:
        ''' Exchange authorization code for access token '''
        token_data = {
            'grant_type': 'authorization_code',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'code': authorization_code,
            'redirect_uri': self.redirect_uri or '',
        }
        if pkce:
            token_data['code_verifier'] = pkce.verifier

        logging.debug('token exchange using redirect_uri: %s', self.redirect_uri)
        token_response = await self._post_token_endpoint(token_data)
        token = Token.from_response(token_response)
        logging.debug('Extracted tokens from response: access_token=%s, refresh_token=%s',
                      'present' if token.access_token else 'missing',
                      'present' if token.refresh_token else 'missing')
        logging.info('Successfully obtained OAuth2 tokens')
        return token

    async def refresh_access_token_async(self, refresh_token: str) -> Token:
        ''' Refresh the access token using refresh token '''
        if not refresh_token:
            raise AuthenticationError('oauth2: token expired and refresh token is not set')

        token_data = {
            'grant_type': 'refresh_token',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'refresh_token': refresh_token
        }
        token_response = await self._post_token_endpoint(token_data)
        logging.info('Successfully refreshed OAuth2 tokens')
        return Token.from_response(token_response, refresh_token=refresh_token)


class FlowState(enum.Enum):
    ''' has this token source already sent somebody to the browser? '''
    NOT_ATTEMPTED = 'not_attempted'
    ATTEMPTED = 'attempted'


# given the authorization URL and the state sent with it, return (code, state)
AuthorizationHandler = Callable[[str, str], Awaitable[tuple[str, str]]]
TokenSaver = Callable[[Token], None]


class PKCETokenSource:
    """Hands out access tokens, going through the browser only when it has to.

    1. a cached, unexpired token is returned as is
    2. otherwise the refresh token is tried
    3. otherwise, once per token source, the three-legged PKCE flow is run

    Callers arriving while a refresh is in flight wait on the lock and then
    get the token that refresh produced.
    """

    def __init__(self,
                 client: OAuth2Client,
                 authorize: AuthorizationHandler,
                 refresh_token: str = '',
                 token_saver: TokenSaver | None = None) -> None:
        self.client = client
        self.authorize = authorize
        self.refresh_token = refresh_token
        self.token_saver = token_saver
        self.flow_state = FlowState.NOT_ATTEMPTED
        self.cached: Token | None = None
        self._lock = asyncio.Lock()

    async def token(self) -> Token:
        ''' a valid token, or an exception saying why not '''
        async with self._lock:
            if self.cached and self.cached.valid:
                return self.cached
            return await self._refresh()

    async def _refresh(self) -> Token:
        refresh_token = (self.cached.refresh_token if self.cached else '') or self.refresh_token
        refresh_error: Exception | None = None
        if refresh_token:
            try:
                return self._store(await self.client.refresh_access_token_async(refresh_token))
            except AuthenticationError as error:
                logging.warning('Failed to refresh token: %s', error)
                refresh_error = error

        if self.flow_state is FlowState.ATTEMPTED:
            logging.error('Authorization flow already used for this session; not starting another')
            raise NotLoggedInError() from refresh_error

        return self._store(await self._run_flow())

    async def _run_flow(self) -> Token:
        pkce = PKCEChallenge.generate()
        state = secrets.token_urlsafe(32)
        auth_url = self.client.get_authorization_url(state, pkce)

        self.flow_state = FlowState.ATTEMPTED
        code, received_state = await self.authorize(auth_url, state)
        if received_state != state:
            logging.error('OAuth2 state mismatch, possible CSRF attack')
            raise StateMismatchError()

        return await self.client.exchange_code_for_token(code, pkce)

    def _store(self, token: Token) -> Token:
        if not token.refresh_token and self.refresh_token:
            token = replace(token, refresh_token=self.refresh_token)
        self.cached = token
        if token.refresh_token:
            self.refresh_token = token.refresh_token
        if self.token_saver:
            self.token_saver(token)
        return token
