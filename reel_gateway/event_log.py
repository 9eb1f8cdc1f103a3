from __future__ import annotations

import contextvars
import json
import sys
import traceback
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterator, TextIO
from urllib.parse import urlsplit, urlunsplit

LEVELS: dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "reel_gateway_request_id", default=None
)


def truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


def redact_url(url: str | None) -> str:
    """Drop query string and fragment; CDN links carry signed tokens there."""
    u = (url or "").strip()
    if not u:
        return ""
    try:
        parts = urlsplit(u)
    except ValueError:
        return truncate(u.split("?", 1)[0], limit=200)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


@contextmanager
def request_scope(request_id: str | None = None) -> Iterator[str]:
    """Tag every event logged inside the block (and its tasks) with one request id."""
    rid = (request_id or "").strip() or uuid.uuid4().hex[:16]
    token = _request_id.set(rid)
    try:
        yield rid
    finally:
        _request_id.reset(token)


def current_request_id() -> str | None:
    return _request_id.get()


class EventLogger:
    """
    JSONL event logger shared by the HTTP service and the CLI.

    One JSON object per line: ts, level, event, session_id, request_id (inside a
    request_scope), url (query stripped) and free-form data. Output goes to `path`
    when given, else to `stream` (stderr by default). Events below `min_level`
    are dropped. Never pass credentials in `data`.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        path: str | Path | None = None,
        overwrite: bool = False,
        session_id: str | None = None,
        min_level: str = "INFO",
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._overwrite = bool(overwrite)
        self._stream = stream
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._threshold = LEVELS.get((min_level or "").strip().upper(), LEVELS["INFO"])
        self._fp: TextIO | None = None
        self._owns_fp = False
        self._lock = Lock()

    @classmethod
    def open(
        cls,
        path: str | Path | None,
        *,
        overwrite: bool = False,
        session_id: str | None = None,
        min_level: str = "INFO",
    ) -> "EventLogger":
        logger = cls(path=path, overwrite=overwrite, session_id=session_id, min_level=min_level)
        logger._attach()
        return logger

    @property
    def session_id(self) -> str:
        return self._session_id

    def close(self) -> None:
        with self._lock:
            fp, owned = self._fp, self._owns_fp
            self._fp = None
            self._owns_fp = False
        if fp is not None and owned:
            try:
                fp.flush()
            finally:
                fp.close()

    def __enter__(self) -> "EventLogger":
        self._attach()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def debug(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("DEBUG", event, url=url, **data)

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        url: str | None = None,
        **data: Any,
    ) -> None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        data["error"] = {
            "type": type(exc).__name__,
            "message": truncate(str(exc), limit=2000),
            "traceback": truncate(tb, limit=12000),
        }
        self.log("ERROR", event, url=url, **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper()
        if lvl not in LEVELS:
            lvl = "INFO"
        if LEVELS[lvl] < self._threshold:
            return

        record: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": lvl,
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }

        rid = _request_id.get()
        if rid:
            record["request_id"] = rid

        safe_url = redact_url(url)
        if safe_url:
            record["url"] = safe_url

        if data:
            record["data"] = data

        self._emit(record)

    def _attach(self) -> TextIO:
        with self._lock:
            if self._fp is not None:
                return self._fp

            if self._path is None:
                self._fp = self._stream if self._stream is not None else sys.stderr
                self._owns_fp = False
                return self._fp

            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fp = self._path.open(
                "w" if self._overwrite else "a", encoding="utf-8", newline="\n"
            )
            self._owns_fp = True
            # A later reopen must not wipe what this logger already wrote.
            self._overwrite = False
            return self._fp

    def _emit(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)
        fp = self._attach()
        with self._lock:
            fp.write(line + "\n")
            fp.flush()
