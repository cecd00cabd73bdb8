"""
Usage ledger service.

Records every recognition call, keeps the append-only ledger within its
retention caps, and derives summaries, rate limit warnings and exports.

Persistence is best effort. A storage failure is logged and reported in
the returned PersistenceResult, but never raised to the caller.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..config.loader import LedgerConfig, RateLimitConfig, RetentionConfig
from ..storage.models import QuotaSummary, UsageLogEntry, UsageStatus
from ..storage.repository import KeyValueStore, MemoryStore, SQLiteStore, StorageError
from .export import (
    default_export_filename,
    format_log_line,
    render_json_export,
    render_text_export,
)
from .rate_limit import classify_error, is_approaching_rate_limit, rate_limit_warning
from .session import get_or_create_session_id
from .summary import summarize

logger = logging.getLogger(__name__)

LEDGER_KEY = "quota_ledger"
MIRROR_KEY = "quota_ledger_text_mirror"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_midnight(day: date) -> datetime:
    """Start of ``day`` in the local timezone, as an aware datetime."""
    return datetime.combine(day, time.min).astimezone()


@dataclass(frozen=True)
class PersistenceResult:
    """Outcome of the two writes behind a single log call."""
    ledger_saved: bool
    mirror_saved: bool

    @property
    def ok(self) -> bool:
        return self.ledger_saved and self.mirror_saved


class QuotaLedger:
    """Append-only usage ledger with bounded retention.

    Construct one instance at startup and hand it to every consumer.
    """

    def __init__(
        self,
        store: KeyValueStore,
        session_store: KeyValueStore,
        retention: Optional[RetentionConfig] = None,
        rate_limit: Optional[RateLimitConfig] = None,
        export_directory: str = ".",
        clock: Optional[Clock] = None
    ):
        """Initialize the ledger.

        Args:
            store: Durable store holding the ledger and the text mirror
            session_store: Session-scoped store holding the session id
            retention: Entry and line caps (defaults 1000 / 10000)
            rate_limit: Rate limit heuristics
            export_directory: Where download_logs writes its files
            clock: Returns the current aware datetime; defaults to UTC now
        """
        self.store = store
        self.retention = retention or RetentionConfig()
        self.rate_limit = rate_limit or RateLimitConfig()
        self.export_directory = Path(export_directory)
        self._clock = clock or utc_now
        self.session_id = get_or_create_session_id(session_store)

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        session_store: Optional[KeyValueStore] = None
    ) -> "QuotaLedger":
        """Build a ledger backed by SQLite as described by ``config``."""
        return cls(
            store=SQLiteStore(config.storage.db_path, config.storage.quota_chars),
            session_store=session_store or MemoryStore(),
            retention=config.retention,
            rate_limit=config.rate_limit,
            export_directory=config.export_directory,
        )

    def log_success(
        self,
        model: str,
        files_processed: int,
        prompt_tokens: int,
        output_tokens: int,
        estimated_cost: float,
        processing_time_ms: int
    ) -> PersistenceResult:
        """Record a successful recognition call."""
        entry = UsageLogEntry(
            timestamp=self._clock(),
            session_id=self.session_id,
            model=model,
            files_processed=files_processed,
            prompt_tokens=prompt_tokens,
            output_tokens=output_tokens,
            estimated_cost=estimated_cost,
            status=UsageStatus.SUCCESS,
            processing_time_ms=processing_time_ms,
        )
        return self._append(entry)

    def log_error(
        self,
        model: str,
        files_processed: int,
        error_message: str,
        processing_time_ms: int
    ) -> PersistenceResult:
        """Record a failed recognition call.

        The entry is ``rate_limited`` when the message contains one of the
        configured markers, otherwise ``error``. Tokens and cost are zero.
        """
        entry = UsageLogEntry(
            timestamp=self._clock(),
            session_id=self.session_id,
            model=model,
            files_processed=files_processed,
            prompt_tokens=0,
            output_tokens=0,
            estimated_cost=0.0,
            status=classify_error(error_message, self.rate_limit.markers),
            processing_time_ms=processing_time_ms,
            error_message=error_message,
        )
        return self._append(entry)

    def _append(self, entry: UsageLogEntry) -> PersistenceResult:
        result = PersistenceResult(
            ledger_saved=self._save_entry(entry),
            mirror_saved=self._append_mirror_line(format_log_line(entry)),
        )
        logger.debug(
            "Recorded %s call to %s (%d files, %d tokens)",
            entry.status.value, entry.model, entry.files_processed, entry.total_tokens
        )
        return result

    def _save_entry(self, entry: UsageLogEntry) -> bool:
        logs = self.get_all_logs()
        logs.append(entry)
        trimmed = logs[-self.retention.max_entries:]
        try:
            self.store.write(LEDGER_KEY, json.dumps([e.to_dict() for e in trimmed]))
        except StorageError as e:
            logger.warning("Failed to save quota log: %s", e)
            return False
        return True

    def _append_mirror_line(self, line: str) -> bool:
        try:
            existing = self.store.read(MIRROR_KEY) or ""
            lines = existing.split("\n") if existing else []
            lines.append(line)
            self.store.write(MIRROR_KEY, "\n".join(lines[-self.retention.max_text_lines:]))
        except StorageError as e:
            logger.warning("Failed to append quota log line: %s", e)
            return False
        return True

    def read_text_mirror(self) -> str:
        """Return the flat-text mirror, empty if absent or unreadable."""
        try:
            return self.store.read(MIRROR_KEY) or ""
        except StorageError as e:
            logger.warning("Failed to read quota log lines: %s", e)
            return ""

    def get_all_logs(self) -> List[UsageLogEntry]:
        """Return the full ledger, oldest first.

        Empty, unreadable or corrupt storage yields an empty list.
        """
        try:
            raw = self.store.read(LEDGER_KEY)
        except StorageError as e:
            logger.warning("Failed to retrieve quota logs: %s", e)
            return []

        if not raw:
            return []

        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"expected a list, got {type(data).__name__}")
            return [UsageLogEntry.from_dict(item) for item in data]
        except ValueError as e:
            logger.warning("Failed to parse quota logs, treating as empty: %s", e)
            return []

    def get_session_logs(self) -> List[UsageLogEntry]:
        """Return entries recorded by the active session."""
        return [e for e in self.get_all_logs() if e.session_id == self.session_id]

    def get_logs_by_date_range(self, start: datetime, end: datetime) -> List[UsageLogEntry]:
        """Return entries with ``start <= timestamp <= end``, order preserved.

        Raises:
            ValueError: If either bound is not timezone-aware
        """
        if start.tzinfo is None or end.tzinfo is None:
            raise ValueError("start and end must be timezone-aware")
        return [e for e in self.get_all_logs() if start <= e.timestamp <= end]

    def get_logs_for_day(self, day: date) -> List[UsageLogEntry]:
        """Return entries from local midnight of ``day`` up to, not including,
        the next local midnight."""
        start = local_midnight(day)
        end = local_midnight(day + timedelta(days=1))
        return [e for e in self.get_all_logs() if start <= e.timestamp < end]

    def get_today_logs(self) -> List[UsageLogEntry]:
        """Return entries recorded today in local time."""
        return self.get_logs_for_day(self._clock().astimezone().date())

    def get_summary(self, logs: Optional[Sequence[UsageLogEntry]] = None) -> QuotaSummary:
        """Summarize ``logs``, or the full ledger when None."""
        return summarize(self.get_all_logs() if logs is None else logs)

    def is_approaching_rate_limit(self) -> bool:
        return is_approaching_rate_limit(
            self.get_all_logs(),
            now=self._clock(),
            window_seconds=self.rate_limit.window_seconds,
            threshold=self.rate_limit.threshold,
        )

    def get_rate_limit_warning(self) -> Optional[str]:
        """Return at most one advisory message; rate limits hit today win."""
        return rate_limit_warning(self.get_today_logs(), self.is_approaching_rate_limit())

    def download_logs(self, filename: Optional[str] = None) -> Path:
        """Write the text report to the export directory.

        Returns:
            Path of the written file

        Raises:
            OSError: If the file cannot be written
        """
        now = self._clock()
        entries = self.get_all_logs()
        content = render_text_export(
            summarize(entries), self.read_text_mirror(), entries, now
        )
        return self._write_export(content, filename or default_export_filename("txt", now.astimezone()))

    def download_logs_json(self, filename: Optional[str] = None) -> Path:
        """Write the JSON report to the export directory.

        Raises:
            OSError: If the file cannot be written
        """
        now = self._clock()
        entries = self.get_all_logs()
        content = render_json_export(summarize(entries), entries, now)
        return self._write_export(content, filename or default_export_filename("json", now.astimezone()))

    def _write_export(self, content: str, filename: str) -> Path:
        path = self.export_directory / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Exported quota logs to %s", path)
        return path

    def clear_logs(self) -> None:
        """Erase the ledger and the text mirror. Irreversible."""
        for key in (LEDGER_KEY, MIRROR_KEY):
            try:
                self.store.remove(key)
            except StorageError as e:
                logger.warning("Failed to clear %s: %s", key, e)
