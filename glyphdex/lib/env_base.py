"""Class for handling environment configuration and defaults."""

from os import environ

from glyphdex.lib.util import class_logger


class EnvBase:
    """Wraps environment configuration. Optionally, accepts a dict of
    overrides that take precedence over the process environment."""

    class Error(Exception):
        pass

    def __init__(self, overrides=None):
        self.logger = class_logger(__name__, self.__class__.__name__)
        self._overrides = dict(overrides or {})

    def _get(self, envvar):
        if envvar in self._overrides:
            value = self._overrides[envvar]
            return None if value is None else str(value)
        return environ.get(envvar)

    def default(self, envvar, default):
        value = self._get(envvar)
        return default if value is None else value

    def boolean(self, envvar, default):
        value = self._get(envvar)
        if value is None:
            return default
        return value.strip().lower() not in ('', '0', 'false', 'no', 'off')

    def integer(self, envvar, default):
        value = self._get(envvar)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise self.Error(f'cannot convert envvar {envvar} value {value!r} '
                             f'to an integer') from None

    def number(self, envvar, default):
        value = self._get(envvar)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise self.Error(f'cannot convert envvar {envvar} value {value!r} '
                             f'to a number') from None
