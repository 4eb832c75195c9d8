#!/usr/bin/env python3
"""
.env style configuration handling
"""

import io
import logging
import pathlib

from dotenv import dotenv_values


class ConfigFile:
    """key=value settings, keys case-insensitive.

    Nothing is cached at module level; build one per client and hand it
    around.
    """

    def __init__(self, values: dict[str, str | None] | None = None) -> None:
        self.values: dict[str, str] = {
            key.strip().lower(): value or ''
            for key, value in (values or {}).items() if key and key.strip()
        }

    @classmethod
    def from_text(cls, text: str) -> 'ConfigFile':
        """parse key=value lines; # lines ignored, bare keys are blank

        Values are taken literally, with no ${VAR} expansion.  An unquoted
        value ends at ' #', so quote anything that contains one.
        """
        return cls(dotenv_values(stream=io.StringIO(text), interpolate=False))

    @classmethod
    def from_dotfile(cls, path: str | pathlib.Path = '.env') -> 'ConfigFile':
        ''' read a .env file '''
        dotfile = pathlib.Path(path)
        logging.debug('Reading configuration from %s', dotfile)
        return cls.from_text(dotfile.read_text(encoding='utf-8'))

    def value(self, key: str, default: str | None = None) -> str | None:
        ''' look up a key '''
        return self.values.get(key.lower(), default)

    def oauth_credentials(self) -> tuple[str, str, str, list[str]]:
        ''' client_id, client_secret, refresh_token and additional_scopes '''
        scopes = [
            scope.strip() for scope in (self.value('additional_scopes') or '').split(',')
            if scope.strip()
        ]
        return (self.value('client_id', ''), self.value('client_secret', ''),
                self.value('refresh_token', ''), scopes)
