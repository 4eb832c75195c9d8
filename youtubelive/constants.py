#!/usr/bin/env python3
''' YouTube-related constants '''

import youtubelive.oauth2

# OAuth and API endpoints
OAUTH_HOST = 'https://accounts.google.com'
TOKEN_HOST = 'https://oauth2.googleapis.com'
API_BASE = 'https://www.googleapis.com/youtube/v3'

# Required scopes always go after whatever the caller asked for
REQUIRED_SCOPES = ['https://www.googleapis.com/auth/youtube']

# OAuth2 service configuration
GOOGLE_SERVICE_CONFIG: youtubelive.oauth2.ServiceConfig = {
    'oauth_host': OAUTH_HOST,
    'token_host': TOKEN_HOST,
    'authorize_endpoint': '/o/oauth2/auth',
    'token_endpoint': '/token',
    'additional_auth_params': {
        'service': 'lso',
        'o2v': '2',
        'ddm': '1',
        'flowName': 'GeneralOAuthFlow',
        'force_verify': 'true',
        'access_type': 'offline',
        'prompt': 'consent',
    },
}

# Callback listener
DEFAULT_LISTEN_ADDR = '127.0.0.1:0'
CALLBACK_PATH = '/callback'
CALLBACK_TIMEOUT = 300  # seconds the browser round trip may take
CALLBACK_SHUTDOWN_GRACE = 30  # seconds for the callback server to drain

# Chat constants
DEFAULT_POLL_INTERVAL = 3.0  # seconds, until the API suggests otherwise
STREAM_CAPACITY = 100
UPLOADS_LOOKBACK = 50
API_TIMEOUT = 60  # HTTP timeout for API calls in seconds
