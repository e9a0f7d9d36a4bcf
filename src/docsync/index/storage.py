"""SQLite persistence for pages and their embedded sections."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from docsync.errors import StoreError

ENTITY_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "page": (
        "id",
        "path",
        "type",
        "source",
        "meta",
        "checksum",
        "parent_page_id",
        "version",
        "last_refresh",
    ),
    "page_section": (
        "id",
        "page_id",
        "slug",
        "heading",
        "content",
        "token_count",
        "embedding",
    ),
}


@dataclass(frozen=True, slots=True)
class NotEqual:
    """Filter value matching rows whose column differs (NULL included)."""

    value: Any


class SQLiteStore:
    """Persistence layer for pages and page section embeddings.

    Every public operation commits on its own unless it runs inside
    ``transaction()``. Deleting a page cascades to its sections.
    """

    def __init__(self, db_path: Path, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._depth = 0
        try:
            self._conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open database {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        self._depth += 1
        try:
            yield self._conn
            if self._depth == 1:
                self._conn.commit()
        except Exception:
            if self._depth == 1:
                self._conn.rollback()
            raise
        finally:
            self._depth -= 1

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS page (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    type TEXT,
                    source TEXT,
                    meta TEXT,
                    checksum TEXT,
                    parent_page_id INTEGER REFERENCES page(id) ON DELETE SET NULL,
                    version TEXT,
                    last_refresh TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS page_section (
                    id INTEGER PRIMARY KEY,
                    page_id INTEGER NOT NULL,
                    slug TEXT,
                    heading TEXT,
                    content TEXT NOT NULL,
                    token_count INTEGER,
                    embedding BLOB NOT NULL,
                    UNIQUE(page_id, slug),
                    FOREIGN KEY(page_id) REFERENCES page(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_page_section_page_id
                    ON page_section(page_id)
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_page_version ON page(version)")

    def _columns(self, entity: str, names: Mapping[str, Any]) -> List[str]:
        if entity not in ENTITY_COLUMNS:
            raise ValueError(f"Unknown entity: {entity}")
        unknown = set(names) - set(ENTITY_COLUMNS[entity])
        if unknown:
            raise ValueError(f"Unknown columns for {entity}: {sorted(unknown)}")
        return list(names)

    def _where(self, entity: str, filters: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column in self._columns(entity, filters):
            value = filters[column]
            if isinstance(value, NotEqual):
                clauses.append(f"{column} IS NOT ?")
                params.append(value.value)
            elif value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", params

    def _encode(self, column: str, value: Any) -> Any:
        if column == "meta" and value is not None:
            return json.dumps(value, ensure_ascii=True)
        if column == "embedding" and value is not None:
            vector = np.asarray(value, dtype="float32")
            if vector.ndim != 1 or vector.shape[0] != self.dimension:
                raise StoreError(
                    f"Embedding has shape {vector.shape}, expected ({self.dimension},)"
                )
            return sqlite3.Binary(vector.tobytes())
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        if record.get("meta") is not None:
            record["meta"] = json.loads(record["meta"])
        if record.get("embedding") is not None:
            record["embedding"] = np.frombuffer(record["embedding"], dtype="float32")
        return record

    def _query(self, sql: str, params: List[Any]) -> List[sqlite3.Row]:
        try:
            with self.transaction() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _execute(self, sql: str, params: List[Any]) -> int:
        try:
            with self.transaction() as conn:
                return conn.execute(sql, params).rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def find_one(self, entity: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        where, params = self._where(entity, filters)
        rows = self._query(f"SELECT * FROM {entity}{where} ORDER BY id LIMIT 1", params)
        return self._decode(rows[0]) if rows else None

    def insert(self, entity: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        columns = self._columns(entity, record)
        values = [self._encode(column, record[column]) for column in columns]
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {entity}({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        return self._decode(self._query(sql, values)[0])

    def upsert(self, entity: str, record: Mapping[str, Any], conflict_key: str) -> Dict[str, Any]:
        columns = self._columns(entity, record)
        if conflict_key not in record:
            raise ValueError(f"Upsert record is missing conflict key '{conflict_key}'")
        values = [self._encode(column, record[column]) for column in columns]
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in columns if column != conflict_key
        )
        sql = (
            f"INSERT INTO {entity}({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({conflict_key}) DO UPDATE SET {assignments} RETURNING *"
        )
        return self._decode(self._query(sql, values)[0])

    def update(self, entity: str, patch: Mapping[str, Any], filters: Mapping[str, Any]) -> int:
        columns = self._columns(entity, patch)
        if not columns:
            return 0
        where, where_params = self._where(entity, filters)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [self._encode(column, patch[column]) for column in columns] + where_params
        return self._execute(f"UPDATE {entity} SET {assignments}{where}", params)

    def delete_where(self, entity: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete_where requires at least one filter")
        where, params = self._where(entity, filters)
        return self._execute(f"DELETE FROM {entity}{where}", params)

    def count(self, entity: str, filters: Mapping[str, Any] | None = None) -> int:
        where, params = self._where(entity, filters or {})
        return int(self._query(f"SELECT COUNT(*) FROM {entity}{where}", params)[0][0])

    def search(self, embedding: np.ndarray, *, top_k: int = 10) -> List[dict]:
        if top_k <= 0:
            return []
        query = np.asarray(embedding, dtype="float32")
        rows = self._query(
            """
            SELECT
                p.path AS path,
                s.heading AS heading,
                s.slug AS slug,
                s.content AS content,
                s.embedding AS embedding
            FROM page_section s
            JOIN page p ON p.id = s.page_id
            ORDER BY s.id
            """,
            [],
        )

        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        if top_k < len(scores):
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        results: List[dict] = []
        for idx in top_indices:
            row = rows[idx]
            results.append(
                {
                    "path": row["path"],
                    "heading": row["heading"],
                    "slug": row["slug"],
                    "content": row["content"],
                    "score": float(scores[idx]),
                }
            )
        return results
