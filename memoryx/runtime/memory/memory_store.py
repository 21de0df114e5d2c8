"""
Memory Store - Persistence for the four-level memory hierarchy

WHAT: Store contract plus SQLite and in-process backends
WHERE: memoryx/runtime/memory/memory_store.py - persistence layer
WHO: Index, forgetting, conflict and engine code reading/writing records
TIME: Single-record read/write <5ms on local SQLite

Provides the ``MemoryStore`` protocol and two interchangeable backends.
``create_store`` picks one from configuration: SQLite when a workspace
directory is available, the in-process map otherwise.

Tables (SQLite):
- memories: one row per record; level-specific attributes in JSON metadata
- episode_sources / semantic_sources / theme_relations: ordered join rows
  mirroring each record's child-id list (delete + re-insert on save)

Boundary Notes:
- ``get`` bumps access_count/last_accessed; ``search``/``all`` do not
- ``search`` orders by retention DESC, access DESC, created DESC
- ``transaction()`` is re-entrant and all-or-nothing; it also serializes
  writers on one store handle
- Backend failures surface as StorageError; missing records as None
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from ...errors import StorageError
from .models import MEMORY_LEVELS, MemoryRecord, StoreStats, memory_metadata, parse_memory, utcnow

if TYPE_CHECKING:
    from ...config import MemoryXConfig

logger = logging.getLogger(__name__)

# level -> (table, parent column, child column)
JOIN_TABLES: Dict[str, Tuple[str, str, str]] = {
    "episode": ("episode_sources", "episode_id", "original_id"),
    "semantic": ("semantic_sources", "semantic_id", "episode_id"),
    "theme": ("theme_relations", "theme_id", "semantic_id"),
}

CHILD_LIST_FIELDS = ("original_ids", "source_episodes", "semantic_ids", "child_themes")

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    level TEXT NOT NULL CHECK (level IN ('original', 'episode', 'semantic', 'theme')),
    content TEXT NOT NULL,
    embedding BLOB,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed REAL,
    retention_score REAL NOT NULL DEFAULT 1.0
);
CREATE INDEX IF NOT EXISTS idx_memories_level ON memories (level);
CREATE INDEX IF NOT EXISTS idx_memories_rank ON memories (retention_score DESC, access_count DESC, created_at DESC);
CREATE TABLE IF NOT EXISTS episode_sources (
    episode_id TEXT NOT NULL,
    original_id TEXT NOT NULL,
    position INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_episode_sources ON episode_sources (episode_id);
CREATE TABLE IF NOT EXISTS semantic_sources (
    semantic_id TEXT NOT NULL,
    episode_id TEXT NOT NULL,
    position INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_semantic_sources ON semantic_sources (semantic_id);
CREATE TABLE IF NOT EXISTS theme_relations (
    theme_id TEXT NOT NULL,
    semantic_id TEXT NOT NULL,
    position INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_theme_relations ON theme_relations (theme_id);
"""

Vector = Union[np.ndarray, Sequence[float]]


class MemoryStore(Protocol):
    """Abstract interface for hierarchy persistence."""

    def save(self, record: MemoryRecord) -> None:
        """Insert or replace a record; child-id join rows are rewritten."""

    def get(self, memory_id: str, level: Optional[str] = None) -> Optional[MemoryRecord]:
        """Fetch by id (optionally constrained to a level); bumps access counters."""

    def search(
        self, query: str, *, level: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[MemoryRecord]:
        """Case-insensitive substring match against primary text, ranked."""

    def search_by_keywords(
        self, keywords: Sequence[str], *, level: Optional[str] = None, limit: int = 10
    ) -> List[MemoryRecord]:
        """Records whose primary text contains any keyword, ranked."""

    def all(self, level: Optional[str] = None) -> List[MemoryRecord]:
        """Every record (oldest first) without touching access counters."""

    def delete(self, memory_id: str) -> bool:
        """Remove a record; False when it was already gone."""

    def count(self, level: Optional[str] = None) -> int:
        """Number of records, optionally per level."""

    def stats(self) -> StoreStats:
        """Aggregate counters for status/introspection."""

    def update_embedding(self, memory_id: str, vector: Vector) -> None:
        """Persist an embedding vector for a record."""

    def get_embedding(self, memory_id: str) -> Optional[np.ndarray]:
        """Return the stored embedding or None."""

    def record_access(self, memory_id: str) -> bool:
        """Bump access counters without loading the record."""

    def set_retention_score(self, memory_id: str, score: float) -> bool:
        """Overwrite the persisted retention score."""

    def transaction(self) -> Any:
        """Context manager applying enclosed writes all-or-nothing."""

    def close(self) -> None:
        """Release backend resources."""


def _to_unix(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _from_unix(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _rank_key(record: MemoryRecord) -> Tuple[float, int, float]:
    return (-record.retention_score, -record.access_count, -record.created_at.timestamp())


class SQLiteMemoryStore:
    """SQLite-backed implementation (file or ``:memory:``)."""

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self.path = str(path)
        self._lock = threading.RLock()
        self._depth = 0
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open memory database at {self.path}: {exc}") from exc
        logger.debug(f"Opened SQLite memory store at {self.path}")

    # ------------------ plumbing ----------------
    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite statement failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator["SQLiteMemoryStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            self._execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._depth = 0
                self._execute("ROLLBACK")
                raise
            self._depth = 0
            self._execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _row_to_record(self, row: sqlite3.Row) -> MemoryRecord:
        data: Dict[str, Any] = json.loads(row["metadata"])
        data.update(
            {
                "id": row["id"],
                "level": row["level"],
                "created_at": _from_unix(row["created_at"]),
                "updated_at": _from_unix(row["updated_at"]),
                "access_count": row["access_count"],
                "last_accessed": _from_unix(row["last_accessed"]),
                "retention_score": row["retention_score"],
            }
        )
        join = JOIN_TABLES.get(row["level"])
        if join is not None:
            table, parent_col, child_col = join
            children = self._execute(
                f"SELECT {child_col} FROM {table} WHERE {parent_col} = ? ORDER BY position",
                (row["id"],),
            ).fetchall()
            field = {"episode": "original_ids", "semantic": "source_episodes", "theme": "semantic_ids"}[row["level"]]
            data[field] = [child[0] for child in children]
        return parse_memory(data)

    @staticmethod
    def _level_clause(level: Optional[str]) -> Tuple[str, List[Any]]:
        if level is None:
            return "", []
        return " AND level = ?", [level]

    # ------------------ records -----------------
    def save(self, record: MemoryRecord) -> None:
        with self.transaction():
            self._execute(
                "INSERT INTO memories (id, level, content, metadata, created_at, updated_at, "
                "access_count, last_accessed, retention_score) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET level = excluded.level, content = excluded.content, "
                "metadata = excluded.metadata, updated_at = excluded.updated_at",
                (
                    record.id,
                    record.level,  # type: ignore[attr-defined]
                    record.primary_text(),
                    json.dumps(memory_metadata(record), ensure_ascii=False),
                    _to_unix(record.created_at),
                    _to_unix(record.updated_at),
                    record.access_count,
                    _to_unix(record.last_accessed),
                    record.retention_score,
                ),
            )
            join = JOIN_TABLES.get(record.level)  # type: ignore[attr-defined]
            if join is not None:
                table, parent_col, child_col = join
                self._execute(f"DELETE FROM {table} WHERE {parent_col} = ?", (record.id,))
                for position, child_id in enumerate(record.child_ids()):
                    self._execute(
                        f"INSERT INTO {table} ({parent_col}, {child_col}, position) VALUES (?, ?, ?)",
                        (record.id, child_id, position),
                    )

    def get(self, memory_id: str, level: Optional[str] = None) -> Optional[MemoryRecord]:
        clause, params = self._level_clause(level)
        with self.transaction():
            row = self._execute(f"SELECT * FROM memories WHERE id = ?{clause}", [memory_id, *params]).fetchone()
            if row is None:
                return None
            self._execute(
                "UPDATE memories SET access_count = access_count + 1, last_accessed = ? WHERE id = ?",
                (_to_unix(utcnow()), memory_id),
            )
            row = self._execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
            return self._row_to_record(row)

    def search(
        self, query: str, *, level: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[MemoryRecord]:
        clause, params = self._level_clause(level)
        with self._lock:
            rows = self._execute(
                "SELECT * FROM memories WHERE content LIKE ? ESCAPE '\\'"
                f"{clause} ORDER BY retention_score DESC, access_count DESC, created_at DESC "
                "LIMIT ? OFFSET ?",
                [f"%{_escape_like(query)}%", *params, limit, offset],
            ).fetchall()
            return [self._row_to_record(row) for row in rows]

    def search_by_keywords(
        self, keywords: Sequence[str], *, level: Optional[str] = None, limit: int = 10
    ) -> List[MemoryRecord]:
        keywords = [k for k in keywords if k]
        if not keywords:
            return []
        conditions = " OR ".join("content LIKE ? ESCAPE '\\'" for _ in keywords)
        clause, params = self._level_clause(level)
        with self._lock:
            rows = self._execute(
                f"SELECT * FROM memories WHERE ({conditions}){clause} "
                "ORDER BY retention_score DESC, access_count DESC, created_at DESC LIMIT ?",
                [*(f"%{_escape_like(k)}%" for k in keywords), *params, limit],
            ).fetchall()
            return [self._row_to_record(row) for row in rows]

    def all(self, level: Optional[str] = None) -> List[MemoryRecord]:
        clause, params = self._level_clause(level)
        with self._lock:
            rows = self._execute(f"SELECT * FROM memories WHERE 1 = 1{clause} ORDER BY created_at", params).fetchall()
            return [self._row_to_record(row) for row in rows]

    def delete(self, memory_id: str) -> bool:
        with self.transaction():
            row = self._execute("SELECT level FROM memories WHERE id = ?", (memory_id,)).fetchone()
            if row is None:
                return False
            # drop the record's own join rows and every parent row pointing at it
            for table, parent_col, child_col in JOIN_TABLES.values():
                self._execute(f"DELETE FROM {table} WHERE {parent_col} = ? OR {child_col} = ?", (memory_id, memory_id))
            if row["level"] == "theme":
                self._detach_child_theme(memory_id)
            self._execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            return True

    def _detach_child_theme(self, theme_id: str) -> None:
        rows = self._execute(
            "SELECT id, metadata FROM memories WHERE level = 'theme' AND metadata LIKE ? ESCAPE '\\'",
            (f'%"{_escape_like(theme_id)}"%',),
        ).fetchall()
        for parent in rows:
            metadata = json.loads(parent["metadata"])
            children = metadata.get("child_themes") or []
            if theme_id in children:
                metadata["child_themes"] = [c for c in children if c != theme_id]
                self._execute(
                    "UPDATE memories SET metadata = ? WHERE id = ?",
                    (json.dumps(metadata, ensure_ascii=False), parent["id"]),
                )

    def count(self, level: Optional[str] = None) -> int:
        clause, params = self._level_clause(level)
        with self._lock:
            return int(self._execute(f"SELECT COUNT(*) FROM memories WHERE 1 = 1{clause}", params).fetchone()[0])

    def stats(self) -> StoreStats:
        with self._lock:
            totals = self._execute(
                "SELECT COUNT(*), AVG(access_count), AVG(retention_score) FROM memories"
            ).fetchone()
            by_level = {level: 0 for level in MEMORY_LEVELS}
            for row in self._execute("SELECT level, COUNT(*) FROM memories GROUP BY level").fetchall():
                by_level[row[0]] = int(row[1])
        return StoreStats(
            total=int(totals[0]),
            by_level=by_level,
            avg_access_count=float(totals[1] or 0.0),
            avg_retention_score=float(totals[2]) if totals[2] is not None else 1.0,
        )

    # ------------------ counters ----------------
    def record_access(self, memory_id: str) -> bool:
        with self.transaction():
            cur = self._execute(
                "UPDATE memories SET access_count = access_count + 1, last_accessed = ? WHERE id = ?",
                (_to_unix(utcnow()), memory_id),
            )
            return cur.rowcount > 0

    def set_retention_score(self, memory_id: str, score: float) -> bool:
        with self.transaction():
            cur = self._execute("UPDATE memories SET retention_score = ? WHERE id = ?", (float(score), memory_id))
            return cur.rowcount > 0

    # ------------------ embeddings --------------
    def update_embedding(self, memory_id: str, vector: Vector) -> None:
        blob = np.asarray(vector, dtype=np.float32).tobytes()
        with self.transaction():
            self._execute("UPDATE memories SET embedding = ? WHERE id = ?", (blob, memory_id))

    def get_embedding(self, memory_id: str) -> Optional[np.ndarray]:
        with self._lock:
            row = self._execute("SELECT embedding FROM memories WHERE id = ?", (memory_id,)).fetchone()
        if row is None or row[0] is None:
            return None
        return np.frombuffer(row[0], dtype=np.float32).copy()


class InMemoryMemoryStore:
    """Process-local implementation; one instance per engine, never shared globally."""

    def __init__(self) -> None:
        self._records: Dict[str, MemoryRecord] = {}
        self._embeddings: Dict[str, np.ndarray] = {}
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryMemoryStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            records, embeddings = dict(self._records), dict(self._embeddings)
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._records, self._embeddings = records, embeddings
                raise
            finally:
                self._depth = 0

    def close(self) -> None:
        pass

    def _ranked(self, records: List[MemoryRecord]) -> List[MemoryRecord]:
        return sorted(records, key=_rank_key)

    def _select(self, level: Optional[str]) -> List[MemoryRecord]:
        return [r for r in self._records.values() if level is None or r.level == level]  # type: ignore[attr-defined]

    def save(self, record: MemoryRecord) -> None:
        with self.transaction():
            existing = self._records.get(record.id)
            update: Dict[str, Any] = {}
            if existing is not None:
                update = {
                    "created_at": existing.created_at,
                    "access_count": existing.access_count,
                    "last_accessed": existing.last_accessed,
                    "retention_score": existing.retention_score,
                }
            self._records[record.id] = record.model_copy(deep=True, update=update)

    def get(self, memory_id: str, level: Optional[str] = None) -> Optional[MemoryRecord]:
        with self._lock:
            record = self._records.get(memory_id)
            if record is None or (level is not None and record.level != level):  # type: ignore[attr-defined]
                return None
            record = record.model_copy(
                update={"access_count": record.access_count + 1, "last_accessed": utcnow()}
            )
            self._records[memory_id] = record
            return record.model_copy(deep=True)

    def search(
        self, query: str, *, level: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[MemoryRecord]:
        needle = query.lower()
        with self._lock:
            hits = [r for r in self._select(level) if needle in r.primary_text().lower()]
            return [r.model_copy(deep=True) for r in self._ranked(hits)[offset : offset + limit]]

    def search_by_keywords(
        self, keywords: Sequence[str], *, level: Optional[str] = None, limit: int = 10
    ) -> List[MemoryRecord]:
        needles = [k.lower() for k in keywords if k]
        if not needles:
            return []
        with self._lock:
            hits = [
                r for r in self._select(level) if any(n in r.primary_text().lower() for n in needles)
            ]
            return [r.model_copy(deep=True) for r in self._ranked(hits)[:limit]]

    def all(self, level: Optional[str] = None) -> List[MemoryRecord]:
        with self._lock:
            records = sorted(self._select(level), key=lambda r: r.created_at)
            return [r.model_copy(deep=True) for r in records]

    def delete(self, memory_id: str) -> bool:
        with self.transaction():
            self._embeddings.pop(memory_id, None)
            if self._records.pop(memory_id, None) is None:
                return False
            for record in self._records.values():
                for name in CHILD_LIST_FIELDS:
                    children = getattr(record, name, None)
                    if children and memory_id in children:
                        children[:] = [c for c in children if c != memory_id]
            return True

    def count(self, level: Optional[str] = None) -> int:
        with self._lock:
            return len(self._select(level))

    def stats(self) -> StoreStats:
        with self._lock:
            records = list(self._records.values())
        by_level = {level: 0 for level in MEMORY_LEVELS}
        for record in records:
            by_level[record.level] += 1  # type: ignore[attr-defined]
        if not records:
            return StoreStats(by_level=by_level)
        return StoreStats(
            total=len(records),
            by_level=by_level,
            avg_access_count=sum(r.access_count for r in records) / len(records),
            avg_retention_score=sum(r.retention_score for r in records) / len(records),
        )

    def record_access(self, memory_id: str) -> bool:
        with self._lock:
            record = self._records.get(memory_id)
            if record is None:
                return False
            self._records[memory_id] = record.model_copy(
                update={"access_count": record.access_count + 1, "last_accessed": utcnow()}
            )
            return True

    def set_retention_score(self, memory_id: str, score: float) -> bool:
        with self._lock:
            record = self._records.get(memory_id)
            if record is None:
                return False
            self._records[memory_id] = record.model_copy(update={"retention_score": float(score)})
            return True

    def update_embedding(self, memory_id: str, vector: Vector) -> None:
        with self._lock:
            if memory_id in self._records:
                self._embeddings[memory_id] = np.asarray(vector, dtype=np.float32).copy()

    def get_embedding(self, memory_id: str) -> Optional[np.ndarray]:
        with self._lock:
            vector = self._embeddings.get(memory_id)
            return vector.copy() if vector is not None else None


def create_store(config: "MemoryXConfig") -> MemoryStore:
    """Select a backend from configuration.

    ``storage="auto"`` resolves to SQLite when a workspace directory is
    configured and to the in-process store otherwise.
    """
    backend = config.storage
    if backend == "auto":
        backend = "sqlite" if config.workspace_path is not None else "memory"
    if backend == "memory":
        logger.info("Using in-process memory store")
        return InMemoryMemoryStore()
    path: Union[str, Path] = ":memory:"
    if config.workspace_path is not None:
        path = Path(config.workspace_path) / config.database_filename
    logger.info(f"Using SQLite memory store at {path}")
    return SQLiteMemoryStore(path)


__all__ = [
    "InMemoryMemoryStore",
    "JOIN_TABLES",
    "MemoryStore",
    "SQLiteMemoryStore",
    "create_store",
]
