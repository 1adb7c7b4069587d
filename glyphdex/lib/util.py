"""Miscellaneous helpers shared by the lib and server packages."""

import inspect
import logging
import sys
from datetime import datetime, timezone
from typing import List, Type


def class_logger(path: str, classname: str) -> logging.Logger:
    """Return a hierarchical logger for a class."""
    return logging.getLogger(path).getChild(classname)


def subclasses(base_class: Type, strict: bool = True) -> List[Type]:
    """Return a list of subclasses of base_class in its module."""
    def select(obj):
        return (inspect.isclass(obj) and issubclass(obj, base_class)
                and (not strict or obj != base_class))

    pairs = inspect.getmembers(sys.modules[base_class.__module__], select)
    return [pair[1] for pair in pairs]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_unix_time(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def redact_url(url: str) -> str:
    """Strip credentials from a URL before it is logged."""
    scheme, sep, rest = url.partition('://')
    if not sep:
        return url
    if '@' in rest:
        rest = rest.split('@', 1)[1]
    return f'{scheme}://{rest}'
