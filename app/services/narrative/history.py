"""Append-only persistence for Narrative Index history."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from statistics import fmean
from threading import Lock
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, func, select

from app.config import settings
from app.core.files import atomic_write_json, read_json
from app.models.history_record import NarrativeHistoryRecord
from app.models.narrative import (
    ChartPoint,
    HistoryStatistics,
    NarrativeHistory,
    NarrativeScore,
    StoredNarrativeScore,
)
from app.observability.metrics import metrics
from app.services.errors import HistoryStoreError, InvalidParameterError
from app.services.narrative.engine import detect_trend, interpret_score

logger = logging.getLogger(__name__)

MIN_HISTORY_DAYS = 1
MAX_HISTORY_DAYS = 365
EMPTY_HISTORY_SCORE = 50.0

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_days(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidParameterError("Days must be an integer between 1 and 365")
    if not MIN_HISTORY_DAYS <= days <= MAX_HISTORY_DAYS:
        raise InvalidParameterError("Days must be between 1 and 365")
    return days


class HistoryStore(Protocol):
    """Persistence contract for the Narrative Index history log."""

    def append(self, score: NarrativeScore | StoredNarrativeScore) -> StoredNarrativeScore:
        ...

    def get_historical_scores(self, days: int) -> list[StoredNarrativeScore]:
        ...

    def latest(self) -> StoredNarrativeScore | None:
        ...

    def data_range(self) -> tuple[datetime | None, datetime | None]:
        ...

    def has_history(self) -> bool:
        ...


def _to_stored(score: NarrativeScore | StoredNarrativeScore) -> StoredNarrativeScore:
    if isinstance(score, StoredNarrativeScore):
        return score
    return StoredNarrativeScore.from_score(score)


class _CorruptHistory(Exception):
    """The history file exists but does not decode to a score log."""


class JsonHistoryStore(HistoryStore):
    """``{scores, lastUpdated, version}`` file rewritten atomically on each append.

    Entries already on disk are written back verbatim, including ones that no
    longer validate; reads skip those. A file that cannot be decoded at all is
    renamed to ``<name>.corrupt-<timestamp>`` before a fresh log is started.
    """

    def __init__(self, path: str | Path | None = None, *, clock: Clock = _utcnow) -> None:
        self._path = Path(path or settings.narrative_history_path)
        self._clock = clock
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_raw(self) -> list[Any]:
        """Raw score entries on disk; raises ``_CorruptHistory`` when undecodable."""
        try:
            raw = read_json(self._path)
        except json.JSONDecodeError as exc:
            raise _CorruptHistory(str(exc)) from exc
        if raw is None:
            return []
        scores = raw.get("scores") if isinstance(raw, dict) else None
        if not isinstance(scores, list):
            raise _CorruptHistory("missing scores list")
        return scores

    def _read(self) -> list[StoredNarrativeScore]:
        try:
            raw_scores = self._load_raw()
        except (OSError, _CorruptHistory):
            logger.exception("narrative.history.unreadable", extra={"path": str(self._path)})
            return []
        entries: list[StoredNarrativeScore] = []
        for index, raw in enumerate(raw_scores):
            try:
                entries.append(StoredNarrativeScore.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "narrative.history.entry_skipped",
                    extra={"path": str(self._path), "index": index, "errors": exc.error_count()},
                )
        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    def all(self) -> list[StoredNarrativeScore]:
        return self._read()

    def append(self, score: NarrativeScore | StoredNarrativeScore) -> StoredNarrativeScore:
        stored = _to_stored(score)
        with self._lock:
            try:
                raw_scores = self._load_raw()
            except _CorruptHistory as exc:
                self._quarantine(exc)
                raw_scores = []
            except OSError as exc:
                metrics.increment("narrative.history.append_failed", tags={"backend": "json"})
                raise HistoryStoreError(f"Failed to read narrative history: {exc}") from exc
            scores = [*raw_scores, stored.model_dump(mode="json", by_alias=True)]
            payload = NarrativeHistory(last_updated=self._clock()).model_dump(
                mode="json", by_alias=True
            )
            payload["scores"] = scores
            try:
                atomic_write_json(self._path, payload)
            except OSError as exc:
                metrics.increment("narrative.history.append_failed", tags={"backend": "json"})
                logger.exception("narrative.history.write_failed", extra={"path": str(self._path)})
                raise HistoryStoreError(f"Failed to append narrative history: {exc}") from exc
        metrics.increment("narrative.history.appended", tags={"backend": "json"})
        logger.info(
            "narrative.history.appended",
            extra={"overall": stored.overall, "entries": len(scores), "backend": "json"},
        )
        return stored

    def _quarantine(self, reason: _CorruptHistory) -> Path:
        target = self._path.with_name(
            f"{self._path.name}.corrupt-{self._clock():%Y%m%dT%H%M%S%f}"
        )
        try:
            self._path.replace(target)
        except OSError as exc:
            metrics.increment("narrative.history.append_failed", tags={"backend": "json"})
            raise HistoryStoreError(f"Failed to move corrupt history aside: {exc}") from exc
        metrics.increment("narrative.history.quarantined", tags={"backend": "json"})
        logger.error(
            "narrative.history.quarantined",
            extra={"path": str(self._path), "moved_to": str(target), "reason": str(reason)},
        )
        return target

    def get_historical_scores(self, days: int) -> list[StoredNarrativeScore]:
        cutoff = self._clock() - timedelta(days=validate_days(days))
        return [entry for entry in self._read() if entry.timestamp >= cutoff]

    def latest(self) -> StoredNarrativeScore | None:
        scores = self._read()
        return scores[-1] if scores else None

    def data_range(self) -> tuple[datetime | None, datetime | None]:
        scores = self._read()
        if not scores:
            return None, None
        return scores[0].timestamp, scores[-1].timestamp

    def has_history(self) -> bool:
        return bool(self._read())


class SqlHistoryStore(HistoryStore):
    """SQLModel-backed history in the ``narrative_history`` table."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = True,
        clock: Clock = _utcnow,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlHistoryStore.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": settings.debug,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine, tables=[NarrativeHistoryRecord.__table__])
        self._clock = clock
        self._metrics_tags = {"backend": "sqlite" if is_sqlite else "postgres"}

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def append(self, score: NarrativeScore | StoredNarrativeScore) -> StoredNarrativeScore:
        stored = _to_stored(score)
        record = NarrativeHistoryRecord.from_stored(stored)
        record.recorded_at = record.recorded_at.astimezone(timezone.utc)
        try:
            with self._session() as session:
                session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            metrics.increment("narrative.history.append_failed", tags=self._metrics_tags)
            logger.exception("narrative.history.write_failed", extra=self._metrics_tags)
            raise HistoryStoreError("Failed to append narrative history.") from exc
        metrics.increment("narrative.history.appended", tags=self._metrics_tags)
        logger.info(
            "narrative.history.appended",
            extra={"overall": stored.overall, **self._metrics_tags},
        )
        return stored

    def get_historical_scores(self, days: int) -> list[StoredNarrativeScore]:
        cutoff = (self._clock() - timedelta(days=validate_days(days))).astimezone(timezone.utc)
        statement = (
            select(NarrativeHistoryRecord)
            .where(NarrativeHistoryRecord.recorded_at >= cutoff)
            .order_by(NarrativeHistoryRecord.recorded_at, NarrativeHistoryRecord.id)
        )
        return [record.to_stored() for record in self._fetch(statement)]

    def latest(self) -> StoredNarrativeScore | None:
        statement = (
            select(NarrativeHistoryRecord)
            .order_by(NarrativeHistoryRecord.recorded_at.desc(), NarrativeHistoryRecord.id.desc())
            .limit(1)
        )
        records = self._fetch(statement)
        return records[0].to_stored() if records else None

    def data_range(self) -> tuple[datetime | None, datetime | None]:
        statement = select(
            func.min(NarrativeHistoryRecord.recorded_at),
            func.max(NarrativeHistoryRecord.recorded_at),
        )
        try:
            with self._session() as session:
                start, end = session.exec(statement).one()
        except SQLAlchemyError as exc:
            logger.exception("narrative.history.read_failed", extra=self._metrics_tags)
            raise HistoryStoreError("Failed to read narrative history.") from exc
        return _aware(start), _aware(end)

    def has_history(self) -> bool:
        return self.latest() is not None

    def _fetch(self, statement: Any) -> list[NarrativeHistoryRecord]:
        try:
            with self._session() as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as exc:
            logger.exception("narrative.history.read_failed", extra=self._metrics_tags)
            raise HistoryStoreError("Failed to read narrative history.") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = query.pop("ssl", None) is not None
    sync_url = sync_url.set(query=query or None)

    if drivername.startswith("postgresql") and "sslmode" not in query and removed_ssl:
        connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def build_history_store(database_url: str | None = None) -> HistoryStore:
    """SQL store when DATABASE_URL is set, otherwise the JSON file store."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("narrative.history.initialized", extra={"backend": "json"})
        return JsonHistoryStore()
    try:
        store = SqlHistoryStore(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
        )
    except Exception:
        logger.exception("narrative.history.init_failed", extra={"backend": "database"})
        raise
    logger.info("narrative.history.initialized", extra={"backend": "database"})
    return store


def summarize_history(
    entries: Sequence[StoredNarrativeScore], *, now: datetime | None = None
) -> HistoryStatistics:
    """Count, average, extremes, latest value, and window trend of ``entries``."""
    values = [entry.overall for entry in entries]
    current = values[-1] if values else EMPTY_HISTORY_SCORE
    return HistoryStatistics(
        data_points=len(values),
        avg_score=round(fmean(values), 1) if values else 0.0,
        min_score=min(values) if values else 0.0,
        max_score=max(values) if values else 0.0,
        current_score=current,
        trend=detect_trend(entries, now=now or (entries[-1].timestamp if entries else None)),
        interpretation=interpret_score(current),
    )


def format_for_chart(entries: Sequence[StoredNarrativeScore]) -> list[ChartPoint]:
    """One point per entry with its components flattened alongside ``overall``."""
    return [
        ChartPoint(
            date=entry.timestamp.date().isoformat(),
            timestamp=entry.timestamp,
            overall=entry.overall,
            trend=entry.trend,
            **entry.components,
        )
        for entry in entries
    ]


def calculate_change(entries: Sequence[StoredNarrativeScore]) -> float | None:
    """Change between the last two entries, or ``None`` with fewer than two."""
    if len(entries) < 2:
        return None
    return round(entries[-1].overall - entries[-2].overall, 1)
