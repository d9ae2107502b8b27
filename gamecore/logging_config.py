"""Rotating JSON logs for game sessions.

``app.log`` gets everything, ``trades.log`` only the portfolio engine and
the host/client sync path, ``errors.log`` WARNING and above. The console
gets a short human-readable line.
"""

import json
import logging
import logging.handlers
import traceback
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "taskName"}

TRADE_LOGGERS = ("gamecore.portfolio_engine", "multiplayer.sync", "multiplayer.player_session")


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and the record's extras.

    Decimal extras are written as strings so money keeps its exact digits.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, _jsonable(value)) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }
        return json.dumps(entry, default=str)


class _TradeLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(TRADE_LOGGERS)


def _rotating(path: Path, level: int, max_bytes: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def setup(
    log_dir: str = "data/logs",
    level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backups: int = 5,
) -> logging.Logger:
    """Attach the file and console handlers to the root logger.

    Calling it again only changes the level; handlers are never stacked.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if root.handlers:
        return root

    trades = _rotating(log_path / "trades.log", logging.DEBUG, max_bytes, backups)
    trades.addFilter(_TradeLogFilter())
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s", "%H:%M:%S"))

    for handler in (
        _rotating(log_path / "app.log", logging.DEBUG, max_bytes, backups),
        trades,
        _rotating(log_path / "errors.log", logging.WARNING, max_bytes, backups),
        console,
    ):
        root.addHandler(handler)
    return root


def setup_from_config() -> logging.Logger:
    """Run :func:`setup` with the ``logging`` section of config.yaml."""
    from gamecore.config import get_section

    cfg = get_section("logging")
    return setup(
        log_dir=cfg.get("dir", "data/logs"),
        level=cfg.get("level", "INFO"),
        max_bytes=int(cfg.get("max_file_mb", 10)) * 1024 * 1024,
        backups=cfg.get("backup_count", 5),
    )
