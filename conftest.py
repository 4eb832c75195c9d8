#!/usr/bin/env python3
"""pytest fixtures"""

import datetime
import logging

import pytest
from aioresponses import aioresponses

import youtubelive.config
import youtubelive.oauth2
import youtubelive.service

TEST_ENV = """
# test credentials
CLIENT_ID=test_client_id
Client_Secret=test_secret
REFRESH_TOKEN=test_refresh
ADDITIONAL_SCOPES=https://www.googleapis.com/auth/youtube.readonly, https://example.com/scope
LISTEN_ADDR=127.0.0.1:0
"""


class FakeTokenSource:  # pylint: disable=too-few-public-methods
    """hands out a fixed token and counts calls"""

    def __init__(self, access_token: str = 'test_access_token') -> None:
        self.calls = 0
        self.access_token = access_token

    async def token(self) -> youtubelive.oauth2.Token:
        """the token"""
        self.calls += 1
        return youtubelive.oauth2.Token(
            access_token=self.access_token,
            expiry=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1))


@pytest.fixture
def getroot(pytestconfig):
    """get the base of the source tree"""
    return pytestconfig.rootpath


@pytest.fixture
def config():
    """configuration as it would come out of a .env file"""
    return youtubelive.config.ConfigFile.from_text(TEST_ENV)


@pytest.fixture
def mock_responses():
    """Fixture that provides aioresponses for mocking HTTP calls."""
    with aioresponses() as mock:
        yield mock


@pytest.fixture
def token_source():
    """token source that never goes near the network"""
    return FakeTokenSource()


@pytest.fixture
def service(token_source):  # pylint: disable=redefined-outer-name
    """API service with a fake token source"""
    return youtubelive.service.YouTubeService(token_source)


@pytest.fixture(autouse=True)
def debuglogging():
    """everything at debug so caplog sees it"""
    logging.getLogger().setLevel(logging.DEBUG)
