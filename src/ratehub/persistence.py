"""
Script: persistence.py
Created: 2026-10-16
Purpose: History file load/save and rotating raw sample log for RateHub
Keywords: persistence, json, history, log, rotation
Status: active
Prerequisites:
  - pydantic (history validation)
Changelog:
  - 2026-10-16: Replaces the SQLite trace table with a bounded history file
    and an append-only JSON-lines sample log
See-Also: store.py, app.py
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from .models import History, utc_now_iso
from .store import TimeSeriesStore


logger = logging.getLogger(__name__)

DEFAULT_LOG_MAX_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class PersistResult:
    ok: bool
    error: Optional[str] = None
    path: Optional[str] = None


class SampleLog:
    """
    Append-only JSON-lines log of raw reports, each stamped with received_at.

    File name is metrics_<date>.log. Once the file grows past `max_bytes`
    it is renamed with a timestamp suffix and a fresh file is started.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        max_bytes: int = DEFAULT_LOG_MAX_BYTES,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self._now = now
        self.path = self.directory / f"metrics_{self._now().strftime('%Y-%m-%d')}.log"
        self.rotations = 0

    def _rotate_if_needed(self) -> Optional[Path]:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return None
        if size <= self.max_bytes:
            return None
        suffix = self._now().strftime("%Y%m%dT%H%M%S%f")
        rotated = self.path.with_name(f"{self.path.name}.{suffix}")
        os.replace(self.path, rotated)
        self.rotations += 1
        logger.info("[Persist] Rotated sample log: %s (%d bytes)", rotated.name, size)
        return rotated

    def append(self, payload: Mapping[str, Any]) -> PersistResult:
        record = {**payload, "received_at": utc_now_iso()}
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed()
            line = json.dumps(record, ensure_ascii=False, default=str)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error("[Persist] Sample log append failed: %s", e)
            return PersistResult(ok=False, error=str(e), path=str(self.path))
        return PersistResult(ok=True, path=str(self.path))


class PersistenceManager:
    """Loads and saves the store's bounded history; owns the sample log."""

    def __init__(
        self,
        store: TimeSeriesStore,
        data_file: Union[str, Path],
        log_dir: Union[str, Path],
        log_max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    ):
        self.store = store
        self.data_file = Path(data_file)
        self.sample_log = SampleLog(log_dir, max_bytes=log_max_bytes)
        self.last_saved_at: Optional[float] = None
        self._log_lock = asyncio.Lock()

    # -------------------------
    # HISTORY FILE
    # -------------------------

    def load(self) -> PersistResult:
        """Hydrate the store from the history file. Falls back to an empty store."""
        if not self.data_file.exists():
            logger.info("[Persist] No history file at %s, starting empty", self.data_file)
            return PersistResult(ok=True, path=str(self.data_file))
        try:
            raw = self.data_file.read_bytes()
        except OSError as e:
            return self._load_failed(e)
        return self._apply(raw)

    def _apply(self, raw: bytes) -> PersistResult:
        try:
            self.store.hydrate(History.model_validate_json(raw))
        except (ValueError, ValidationError) as e:
            return self._load_failed(e)
        logger.info(
            "[Persist] Loaded history: %d timestamps, %d feeds",
            len(self.store.timestamps), len(self.store.feeds()),
        )
        return PersistResult(ok=True, path=str(self.data_file))

    def _load_failed(self, error: Exception) -> PersistResult:
        self.store.reset()
        logger.error("[Persist] Failed to load history from %s: %s", self.data_file, error)
        return PersistResult(ok=False, error=str(error), path=str(self.data_file))

    def write_history(self, history: History) -> PersistResult:
        """Write to a temp sibling then replace, so the previous file survives a crash."""
        tmp = self.data_file.with_name(self.data_file.name + ".tmp")
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(history.to_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.data_file)
        except OSError as e:
            logger.error("[Persist] Failed to save history to %s: %s", self.data_file, e)
            return PersistResult(ok=False, error=str(e), path=str(self.data_file))
        self.last_saved_at = datetime.now(timezone.utc).timestamp()
        return PersistResult(ok=True, path=str(self.data_file))

    def save(self) -> PersistResult:
        return self.write_history(self.store.history())

    # -------------------------
    # ASYNC (event loop never blocks on disk)
    # -------------------------

    async def load_async(self) -> PersistResult:
        # read off-loop, hydrate on the loop
        if not self.data_file.exists():
            return self.load()
        try:
            raw = await asyncio.to_thread(self.data_file.read_bytes)
        except OSError as e:
            return self._load_failed(e)
        return self._apply(raw)

    async def save_async(self) -> PersistResult:
        history = self.store.history()  # copied on the loop
        return await asyncio.to_thread(self.write_history, history)

    async def append_log_async(self, payload: Mapping[str, Any]) -> PersistResult:
        record = dict(payload)
        async with self._log_lock:
            return await asyncio.to_thread(self.sample_log.append, record)

    def append_log(self, payload: Mapping[str, Any]) -> PersistResult:
        return self.sample_log.append(payload)
