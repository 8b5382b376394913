"""Structured JSON logger for GCOM runs and closure attempts."""
from __future__ import annotations

import json
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, TextIO

__all__ = ["JsonLogger", "get_logger", "log_event", "timed_event", "new_run_id", "short_token"]

SECRET_FIELDS = frozenset({"password", "senha", "smtp_password", "cookies"})
TOKEN_PREVIEW_CHARS = 8


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S%f")


def short_token(value: str | None) -> str | None:
    """Return a loggable preview of a portal token (view state, execution)."""

    if not value:
        return value
    if len(value) <= TOKEN_PREVIEW_CHARS:
        return value
    return f"{value[:TOKEN_PREVIEW_CHARS]}…({len(value)})"


def _scrub(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: ("***" if key in SECRET_FIELDS else value) for key, value in fields.items()}


def _configured_log_file() -> str | None:
    from baixa_os.config import config

    return config.json_log_file.strip() or None


class _Sink:
    """Stream plus optional append-only file, shared by a logger and its children."""

    def __init__(self, stream: TextIO, file_path: str | None) -> None:
        self.stream = stream
        self.file_path = None
        self.file_handle = None
        if file_path:
            path = Path(file_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.file_path = str(path)
            self.file_handle = open(path, "a", encoding="utf-8")
        self.closed = False

    def write(self, line: str) -> None:
        if self.closed:
            return
        self.stream.write(line + "\n")
        self.stream.flush()
        if self.file_handle:
            self.file_handle.write(line + "\n")
            self.file_handle.flush()

    def close(self) -> None:
        self.closed = True
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None


_AUTO = object()


class JsonLogger:
    """Emit newline-delimited JSON events to stdout and an optional file.

    ``log_file_path`` defaults to ``JSON_LOG_FILE`` from the configuration;
    pass ``None`` to log to the stream only.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        stream: TextIO | None = None,
        *,
        log_file_path: str | None | object = _AUTO,
    ):
        self.run_id = run_id or new_run_id()
        file_path = _configured_log_file() if log_file_path is _AUTO else log_file_path
        self._sink = _Sink(stream or sys.stdout, file_path)  # type: ignore[arg-type]
        self._owns_sink = True
        self.context: Dict[str, Any] = {"run_id": self.run_id}

    def bind(self, **fields: Any) -> "JsonLogger":
        """Return a child logger on the same sink with extra default fields.

        The closure workflow binds ``order_id`` so every stage event of one
        attempt can be filtered without threading the id through each call.
        Closing a child is a no-op.
        """

        child = object.__new__(JsonLogger)
        child.run_id = self.run_id
        child._sink = self._sink
        child._owns_sink = False
        child.context = {**self.context, **fields}
        return child

    @property
    def closed(self) -> bool:
        return self._sink.closed

    @property
    def log_file_path(self) -> str | None:
        return self._sink.file_path

    def info(self, *, phase: str, status: str = "ok", message: str = "", **fields: Any) -> None:
        event = {**self.context, "phase": phase, "status": status, "message": message, **_scrub(fields)}
        event.setdefault("ts", datetime.now(timezone.utc).isoformat())
        self._sink.write(json.dumps(event, default=str, ensure_ascii=False))

    def error(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="error", message=message, **fields)

    def close(self) -> None:
        if self._owns_sink and not self._sink.closed:
            self._sink.close()


def get_logger(run_id: Optional[str] = None) -> JsonLogger:
    return JsonLogger(run_id=run_id)


def log_event(*, logger: JsonLogger, phase: str, status: str = "ok", message: str = "", **extras: Any) -> None:
    logger.info(phase=phase, status=status, message=message, **extras)


@contextmanager
def timed_event(*, logger: JsonLogger, phase: str, message: str = "", **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.error(
            phase=phase,
            message=f"{message} failed: {exc}",
            duration_ms=int((time.perf_counter() - start) * 1000),
            exception=repr(exc),
            **fields,
        )
        raise
    logger.info(phase=phase, message=message, duration_ms=int((time.perf_counter() - start) * 1000), **fields)
