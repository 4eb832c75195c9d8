#!/usr/bin/env python3
''' youtubelive exceptions '''

from typing import Any


class YouTubeLiveError(Exception):
    ''' base for everything raised by youtubelive '''


class ConfigurationError(YouTubeLiveError):
    ''' client id, redirect uri or scopes missing '''


class AuthenticationError(YouTubeLiveError):
    ''' something went wrong getting a token '''


class NotLoggedInError(AuthenticationError):
    ''' user not logged in '''

    def __init__(self, message: str = 'user not logged in') -> None:
        super().__init__(message)


class StateMismatchError(AuthenticationError):
    ''' state mismatch in 3-legged-OAuth flow '''

    def __init__(self, message: str = 'state mismatch in 3-legged-OAuth flow') -> None:
        super().__init__(message)


class CallbackTimeoutError(AuthenticationError):
    ''' nobody came back to the callback route in time '''


class MissingCodeError(AuthenticationError):
    ''' callback arrived without an authorization code '''

    def __init__(self, message: str = 'no code received') -> None:
        super().__init__(message)


class LivenessError(YouTubeLiveError):
    ''' problems finding a channel or its broadcast '''


class NotLiveError(LivenessError):
    ''' user not live '''

    def __init__(self, message: str = 'user not live') -> None:
        super().__init__(message)


class ChannelNotFoundError(LivenessError):
    ''' user does not exist '''


class InvalidChannelHandleError(LivenessError):
    ''' youtube channel name is invalid, cannot be blank '''

    def __init__(self,
                 message: str = 'youtube channel name is invalid, cannot be blank') -> None:
        super().__init__(message)


class BroadcastNotFoundError(LivenessError):
    ''' broadcast not found '''

    def __init__(self, message: str = 'broadcast not found') -> None:
        super().__init__(message)


class ChatDisabledError(LivenessError):
    ''' live chat disabled '''

    def __init__(self, message: str = 'live chat disabled') -> None:
        super().__init__(message)


class TransportError(YouTubeLiveError):
    ''' the request never produced a usable provider answer '''


class APIError(TransportError):
    """Structured error returned by the YouTube Data API.

    Carries the HTTP status along with the ``error`` object Google puts in
    the response body so callers can tell quota problems from permission
    problems.
    """

    def __init__(self,
                 status: int,
                 message: str,
                 reason: str | None = None,
                 errors: list[dict[str, Any]] | None = None) -> None:
        self.status = status
        self.message = message
        self.reason = reason
        self.errors = errors or []
        super().__init__(f'googleapi: Error {status}: {message}'
                         + (f', {reason}' if reason else ''))

    @classmethod
    def from_response(cls, status: int, body: Any) -> 'APIError':
        ''' build from a decoded error body, if it looks like one '''
        if isinstance(body, dict) and isinstance(body.get('error'), dict):
            error = body['error']
            errors = error.get('errors') or []
            reason = errors[0].get('reason') if errors and isinstance(errors[0], dict) else None
            return cls(status=error.get('code', status),
                       message=error.get('message', ''),
                       reason=reason,
                       errors=errors)
        return cls(status=status, message=str(body or '').strip())


class ParseError(YouTubeLiveError):
    ''' a chat item could not be turned into an event '''


class UnsupportedMessageTypeError(ParseError):
    ''' chat item kind we do not know about '''

    def __init__(self, kind: str | None) -> None:
        self.kind = kind
        super().__init__(f'unsupported message type: {kind}')


OAUTH2_ERROR_MARKER = 'oauth2:'


def wrap_oauth_errors(error: BaseException | None) -> BaseException | None:
    ''' turn token endpoint failures into NotLoggedInError so callers can branch on it '''
    if error is None:
        return None
    if isinstance(error, NotLoggedInError):
        return error
    if OAUTH2_ERROR_MARKER in str(error):
        wrapped = NotLoggedInError(f'user not logged in: {error}')
        wrapped.__cause__ = error
        return wrapped
    return error
