"""Logging configuration for the node automation bot.

Sets up a dual-handler logging pipeline:

1. **Console** -- :class:`SafeStreamHandler` that gracefully handles
   Unicode on Windows by falling back to ``cp1252`` replacement
   encoding.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/node_bot.log`` with automatic gzip rotation (10 MiB per
   file, 5 backups).

Per-wallet log lines go through :func:`wallet_logger`, which tags every
message with the wallet address and (optionally) the protocol step::

    log = wallet_logger(__name__, identity.address)
    log.info("Node started", step="start")
    # -> [0x1234...abcd] [start] Node started

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, MutableMapping, Optional, Tuple

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, 'rb') as f_in:
            with gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that never crashes on unencodable characters.

    Windows consoles default to a narrow code page; on
    :exc:`UnicodeEncodeError` the message is re-encoded as ``cp1252``
    with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            try:
                self.stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                safe_msg = msg.encode(
                    'cp1252', errors='replace',
                ).decode('cp1252')
                self.stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def short_address(address: str) -> str:
    """Abbreviate a hex address for log lines (``0x1234...abcd``)."""
    if not address or len(address) <= 12:
        return address or "?"
    return f"{address[:6]}...{address[-4:]}"


class WalletLoggerAdapter(logging.LoggerAdapter):
    """Prefix log lines with the wallet address and protocol step.

    Accepts an extra ``step=`` keyword on every logging call.  The full
    address and step are also attached to the record as
    ``record.address`` / ``record.step`` for handlers that want them.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        step: Optional[str] = kwargs.pop("step", None)
        address = self.extra.get("address", "")
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("address", address)
        extra.setdefault("step", step)
        kwargs["extra"] = extra

        prefix = f"[{short_address(address)}]"
        if step:
            prefix += f" [{step}]"
        return f"{prefix} {msg}", kwargs


def wallet_logger(name: str, address: str) -> WalletLoggerAdapter:
    """Return a logger adapter bound to *address*."""
    return WalletLoggerAdapter(logging.getLogger(name), {"address": address})


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger with console and file handlers.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
        log_file: Path of the rotating log file.  Defaults to
            ``logs/node_bot.log`` relative to the working directory.
    """
    if sys.platform == "win32" and hasattr(sys.stdout, 'reconfigure'):
        # Must happen before the stream handler captures sys.stdout
        sys.stdout.reconfigure(encoding='utf-8', errors='replace')
        sys.stderr.reconfigure(encoding='utf-8', errors='replace')

    level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = log_file or os.path.join("logs", "node_bot.log")
    log_dir = os.path.dirname(log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    file_handler = CompressedRotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8',
    )

    stream_handler = SafeStreamHandler(sys.stdout)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[file_handler, stream_handler],
        force=True,
    )

    # aiohttp logs every retried connection error at WARNING otherwise
    logging.getLogger("aiohttp").setLevel(max(level, logging.WARNING))
