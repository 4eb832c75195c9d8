#!/usr/bin/env python3
"""Unit tests for the OAuth2 PKCE client and token source."""

import asyncio
import base64
import datetime
import hashlib
import urllib.parse
import unittest.mock

import pytest

import youtubelive.exceptions  # pylint: disable=import-error
import youtubelive.oauth2
from youtubelive.constants import GOOGLE_SERVICE_CONFIG, REQUIRED_SCOPES
from youtubelive.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotLoggedInError,
    StateMismatchError,
)

# pylint: disable=redefined-outer-name, protected-access

TOKEN_URL = 'https://oauth2.googleapis.com/token'


@pytest.fixture
def client():
    """OAuth2 client with a redirect URI already set."""
    oauth = youtubelive.oauth2.OAuth2Client('test_client_id',
                                            'test_secret',
                                            service_config=GOOGLE_SERVICE_CONFIG,
                                            scopes=['extra', *REQUIRED_SCOPES])
    oauth.redirect_uri = 'http://127.0.0.1:8080/callback'
    return oauth


def fresh_token(access_token='cached', refresh_token='refresh'):
    """a token that is good for an hour"""
    return youtubelive.oauth2.Token(
        access_token=access_token,
        refresh_token=refresh_token,
        expiry=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1))


class BrowserFlow:  # pylint: disable=too-few-public-methods
    """stands in for the browser round trip"""

    def __init__(self, code='auth_code', state=None):
        self.code = code
        self.state = state
        self.urls = []

    async def __call__(self, auth_url, state):
        self.urls.append(auth_url)
        return self.code, self.state if self.state is not None else state


def test_pkce_generation():
    """Test PKCE parameter generation."""
    pkce = youtubelive.oauth2.PKCEChallenge.generate()
    assert len(pkce.verifier) == 43
    assert '=' not in pkce.verifier
    expected = base64.urlsafe_b64encode(hashlib.sha256(
        pkce.verifier.encode('utf-8')).digest()).decode('utf-8').rstrip('=')
    assert pkce.challenge == expected
    assert pkce.method == 'S256'
    assert youtubelive.oauth2.PKCEChallenge.generate().verifier != pkce.verifier


def test_authorization_url(client):
    """auth URL carries the challenge, state, scopes and Google's extras"""
    pkce = youtubelive.oauth2.PKCEChallenge.generate()
    url = client.get_authorization_url('the_state', pkce)
    assert url.startswith('https://accounts.google.com/o/oauth2/auth?')
    params = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    assert params['client_id'] == ['test_client_id']
    assert params['response_type'] == ['code']
    assert params['redirect_uri'] == ['http://127.0.0.1:8080/callback']
    assert params['state'] == ['the_state']
    assert params['scope'] == ['extra https://www.googleapis.com/auth/youtube']
    assert params['code_challenge'] == [pkce.challenge]
    assert params['code_challenge_method'] == ['S256']
    assert params['access_type'] == ['offline']
    assert params['prompt'] == ['consent']
    assert params['service'] == ['lso']
    assert params['flowName'] == ['GeneralOAuthFlow']
    assert 'code_verifier' not in params


@pytest.mark.parametrize('client_id,redirect_uri,expected_error', [
    ('', 'http://localhost:8080/callback', 'Client ID is required'),
    ('test_client', None, 'Redirect URI is required'),
])
def test_authorization_url_missing_config(client_id, redirect_uri, expected_error):
    """missing pieces are configuration errors"""
    oauth = youtubelive.oauth2.OAuth2Client(client_id,
                                            'secret',
                                            service_config=GOOGLE_SERVICE_CONFIG,
                                            scopes=REQUIRED_SCOPES)
    oauth.redirect_uri = redirect_uri
    with pytest.raises(ConfigurationError, match=expected_error):
        oauth.get_authorization_url('state')


def test_service_config_required():
    """no endpoints, no client"""
    with pytest.raises(ValueError):
        youtubelive.oauth2.OAuth2Client('id', 'secret')


def test_validate():
    """every missing item is reported"""
    oauth = youtubelive.oauth2.OAuth2Client('', 'secret', service_config=GOOGLE_SERVICE_CONFIG)
    with pytest.raises(ConfigurationError) as excinfo:
        oauth.validate()
    message = str(excinfo.value)
    assert 'Client ID is empty' in message
    assert 'Redirect URI is empty' in message
    assert 'Scopes is empty' in message


def test_open_browser_for_auth():
    """browser launch is best effort"""
    opener = unittest.mock.MagicMock(return_value=True)
    assert youtubelive.oauth2.OAuth2Client.open_browser_for_auth('http://x', opener=opener)
    opener.assert_called_once_with('http://x')

    assert not youtubelive.oauth2.OAuth2Client.open_browser_for_auth(
        'http://x', opener=unittest.mock.MagicMock(return_value=False))
    assert not youtubelive.oauth2.OAuth2Client.open_browser_for_auth(
        'http://x', opener=unittest.mock.MagicMock(side_effect=OSError('no xdg-open')))


@pytest.mark.asyncio
async def test_exchange_code_for_token(client, mock_responses):
    """code exchange sends the verifier and builds a Token"""
    mock_responses.post(TOKEN_URL,
                        payload={
                            'access_token': 'new_access',
                            'refresh_token': 'new_refresh',
                            'expires_in': 3600,
                            'token_type': 'Bearer',
                            'scope': 'https://www.googleapis.com/auth/youtube'
                        })
    pkce = youtubelive.oauth2.PKCEChallenge.generate()
    token = await client.exchange_code_for_token('auth_code', pkce)
    assert token.access_token == 'new_access'
    assert token.refresh_token == 'new_refresh'
    assert token.valid

    (_, _), calls = next(iter(mock_responses.requests.items()))
    sent = calls[0].kwargs['data']
    assert sent['grant_type'] == 'authorization_code'
    assert sent['code'] == 'auth_code'
    assert sent['code_verifier'] == pkce.verifier
    assert sent['redirect_uri'] == 'http://127.0.0.1:8080/callback'


@pytest.mark.asyncio
async def test_exchange_code_failure(client, mock_responses):
    """token endpoint errors carry the oauth2 marker"""
    mock_responses.post(TOKEN_URL, status=400, body='{"error": "invalid_grant"}')
    with pytest.raises(AuthenticationError, match='oauth2: cannot fetch token: 400'):
        await client.exchange_code_for_token('bad_code')


@pytest.mark.asyncio
async def test_token_response_without_access_token(client, mock_responses):
    """a 200 with no access token is a login failure, not an empty token"""
    mock_responses.post(TOKEN_URL, payload={'token_type': 'Bearer', 'expires_in': 3600})
    with pytest.raises(AuthenticationError, match='missing access_token') as excinfo:
        await client.refresh_access_token_async('old_refresh')
    assert isinstance(youtubelive.exceptions.wrap_oauth_errors(excinfo.value), NotLoggedInError)


@pytest.mark.asyncio
async def test_token_response_not_json(client, mock_responses):
    """a 200 with junk is still an oauth2 failure"""
    mock_responses.post(TOKEN_URL, status=200, body='<html>oops</html>')
    with pytest.raises(AuthenticationError, match='oauth2: cannot parse token response'):
        await client.exchange_code_for_token('auth_code')


@pytest.mark.asyncio
async def test_refresh_keeps_old_refresh_token(client, mock_responses):
    """Google usually leaves the refresh token out of refresh responses"""
    mock_responses.post(TOKEN_URL, payload={'access_token': 'refreshed', 'expires_in': 3600})
    token = await client.refresh_access_token_async('old_refresh')
    assert token.access_token == 'refreshed'
    assert token.refresh_token == 'old_refresh'


@pytest.mark.asyncio
async def test_refresh_without_token(client):
    """nothing to refresh with"""
    with pytest.raises(AuthenticationError, match='oauth2:'):
        await client.refresh_access_token_async('')


def test_token_validity():
    """expiry is honored with a little slack"""
    now = datetime.datetime.now(datetime.timezone.utc)
    assert youtubelive.oauth2.Token('a').valid
    assert not youtubelive.oauth2.Token('').valid
    assert not youtubelive.oauth2.Token('a', expiry=now + datetime.timedelta(seconds=5)).valid
    assert youtubelive.oauth2.Token('a', expiry=now + datetime.timedelta(minutes=5)).valid


@pytest.mark.asyncio
async def test_token_source_uses_refresh_token(client):
    """a working refresh token never opens the browser"""
    flow = BrowserFlow()
    source = youtubelive.oauth2.PKCETokenSource(client, flow, refresh_token='refresh')
    with unittest.mock.patch.object(client,
                                    'refresh_access_token_async',
                                    new=unittest.mock.AsyncMock(return_value=fresh_token())):
        token = await source.token()
    assert token.access_token == 'cached'
    assert not flow.urls
    assert source.flow_state is youtubelive.oauth2.FlowState.NOT_ATTEMPTED


@pytest.mark.asyncio
async def test_token_source_idempotent(client):
    """two calls, one authorization"""
    flow = BrowserFlow()
    saver = unittest.mock.MagicMock()
    source = youtubelive.oauth2.PKCETokenSource(client, flow, token_saver=saver)
    exchange = unittest.mock.AsyncMock(return_value=fresh_token('from_flow', 'new_refresh'))
    with unittest.mock.patch.object(client, 'exchange_code_for_token', new=exchange):
        first = await source.token()
        second = await source.token()
    assert first is second
    assert len(flow.urls) == 1
    exchange.assert_awaited_once()
    assert exchange.await_args.args[0] == 'auth_code'
    saver.assert_called_once_with(first)
    assert source.refresh_token == 'new_refresh'


@pytest.mark.asyncio
async def test_token_source_concurrent_callers_share_one_flow(client):
    """callers waiting on an in-flight login get its token"""
    release = asyncio.Event()
    urls = []

    async def slow_flow(auth_url, state):
        urls.append(auth_url)
        await release.wait()
        return 'auth_code', state

    source = youtubelive.oauth2.PKCETokenSource(client, slow_flow)
    exchange = unittest.mock.AsyncMock(return_value=fresh_token('shared'))
    with unittest.mock.patch.object(client, 'exchange_code_for_token', new=exchange):
        tasks = [asyncio.create_task(source.token()) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        tokens = await asyncio.gather(*tasks)
    assert len(urls) == 1
    assert {token.access_token for token in tokens} == {'shared'}


@pytest.mark.asyncio
async def test_token_source_flow_used_means_not_logged_in(client):
    """after one browser flow, a failed refresh does not open another"""
    flow = BrowserFlow()
    source = youtubelive.oauth2.PKCETokenSource(client, flow)
    expired = youtubelive.oauth2.Token(
        access_token='old',
        refresh_token='refresh',
        expiry=datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=1))
    with unittest.mock.patch.object(client,
                                    'exchange_code_for_token',
                                    new=unittest.mock.AsyncMock(return_value=expired)):
        await source.token()
    assert source.flow_state is youtubelive.oauth2.FlowState.ATTEMPTED

    failing = unittest.mock.AsyncMock(side_effect=AuthenticationError('oauth2: invalid_grant'))
    with unittest.mock.patch.object(client, 'refresh_access_token_async', new=failing):
        with pytest.raises(NotLoggedInError):
            await source.token()
    failing.assert_awaited_once_with('refresh')
    assert len(flow.urls) == 1


@pytest.mark.asyncio
async def test_token_source_failed_flow_is_not_retried(client):
    """a flow that blew up still counts as used"""

    async def broken_flow(auth_url, state):  # pylint: disable=unused-argument
        raise AuthenticationError('no code received')

    source = youtubelive.oauth2.PKCETokenSource(client, broken_flow)
    with pytest.raises(AuthenticationError, match='no code received'):
        await source.token()
    with pytest.raises(NotLoggedInError):
        await source.token()


@pytest.mark.asyncio
async def test_token_source_state_mismatch(client):
    """a different state coming back is fatal"""
    flow = BrowserFlow(state='somebody_else')
    source = youtubelive.oauth2.PKCETokenSource(client, flow)
    exchange = unittest.mock.AsyncMock()
    with unittest.mock.patch.object(client, 'exchange_code_for_token', new=exchange):
        with pytest.raises(StateMismatchError):
            await source.token()
    exchange.assert_not_awaited()
    assert source.cached is None


@pytest.mark.asyncio
async def test_token_source_sends_fresh_state_and_challenge(client):
    """the state handed to the browser flow is the one in the URL"""
    seen = {}

    async def flow(auth_url, state):
        seen['params'] = urllib.parse.parse_qs(urllib.parse.urlparse(auth_url).query)
        seen['state'] = state
        return 'auth_code', state

    source = youtubelive.oauth2.PKCETokenSource(client, flow)
    exchange = unittest.mock.AsyncMock(return_value=fresh_token())
    with unittest.mock.patch.object(client, 'exchange_code_for_token', new=exchange):
        await source.token()
    assert seen['params']['state'] == [seen['state']]
    assert seen['state']
    pkce = exchange.await_args.args[1]
    assert seen['params']['code_challenge'] == [pkce.challenge]
