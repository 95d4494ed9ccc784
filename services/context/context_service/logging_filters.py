import logging
import re
from collections.abc import Iterable
from typing import Any

from .config import settings

_ACCESS_PATH_RE = re.compile(r'"[A-Z]+ (?P<path>/[^ ]*) HTTP/\d(?:\.\d+)?"')


class SuppressQuietPathFilter(logging.Filter):
    """Drop Uvicorn access lines for probe paths such as /health."""

    def __init__(self, quiet_paths: Iterable[str] | None = None) -> None:
        super().__init__()
        paths = settings.quiet_access_paths if quiet_paths is None else quiet_paths
        self.quiet_paths = tuple(p for p in paths if p)

    def filter(self, record: logging.LogRecord) -> bool:
        path = self._extract_path(record)
        if path is None or not self.quiet_paths:
            return True
        return not path.split("?", 1)[0].startswith(self.quiet_paths)

    @staticmethod
    def _extract_path(record: logging.LogRecord) -> str | None:
        args: Any = record.args
        if isinstance(args, tuple) and len(args) >= 3 and isinstance(args[2], str):
            return args[2]

        match = _ACCESS_PATH_RE.search(record.getMessage())
        if not match:
            return None
        return match.group("path")
