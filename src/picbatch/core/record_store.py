"""SQLite record storage for categories and pictures.

The record store exposes two collections with the same capability set:

- ``insert(entity) -> id``
- ``find_by_id(id) -> entity | None``
- ``update_by_id(id, patch) -> entity | None``
- ``delete_by_id(id) -> entity | None``
- ``find_many(filter) -> list``
- ``sample_matching(filter, skip, limit, sample_size, exclude_ids) -> list``

Filters are plain ``{field: value}`` equality mappings over the entity's
attribute names (``{"category_id": "..."}``).  Ordering for
``sample_matching`` is always most recent ``date_added`` first.

Every call opens its own connection, so a store may be used from worker
threads (the coordinator runs store calls through :func:`asyncio.to_thread`).
There is no optimistic concurrency token: two updates to the same record race
and the last write wins.
"""

from __future__ import annotations

import json
import logging
import random
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generic, TypeVar

from picbatch.core.errors import StoreUnavailable
from picbatch.core.models import Category, Picture

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed-width UTC format so that text comparison matches time order.
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    image_url TEXT NOT NULL,
    date_added TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pictures (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL,
    matches TEXT NOT NULL,
    image_url TEXT NOT NULL,
    date_added TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pictures_category_date
ON pictures(category_id, date_added DESC);

CREATE INDEX IF NOT EXISTS idx_categories_date
ON categories(date_added DESC);
"""


def _format_date(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_DATE_FORMAT)


def _parse_date(value: str) -> datetime:
    return datetime.strptime(value, _DATE_FORMAT).replace(tzinfo=timezone.utc)


class Collection(ABC, Generic[T]):
    """Record capability over a single entity type."""

    @abstractmethod
    def insert(self, entity: T) -> str: ...

    @abstractmethod
    def find_by_id(self, entity_id: str) -> T | None: ...

    @abstractmethod
    def update_by_id(self, entity_id: str, patch: dict[str, Any]) -> T | None: ...

    @abstractmethod
    def delete_by_id(self, entity_id: str) -> T | None: ...

    @abstractmethod
    def find_many(self, filter: dict[str, Any] | None = None) -> list[T]: ...

    @abstractmethod
    def sample_matching(
        self,
        filter: dict[str, Any],
        *,
        skip: int = 0,
        limit: int | None = None,
        sample_size: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[T]: ...


class RecordStore(ABC):
    """The pair of collections the coordinator and sampler work against."""

    categories: Collection[Category]
    pictures: Collection[Picture]


class _SQLiteCollection(Collection[T]):
    """One table of a :class:`SQLiteRecordStore`.

    Args:
        store: Owning store (provides connections and the random source).
        table: Table name.
        columns: Column names in table order; ``id`` must be first.
        to_row: Maps an entity to a column-name → value mapping.
        from_row: Maps a ``sqlite3.Row`` back to an entity.
        encoders: Per-column encoders applied to filter and patch values.
    """

    def __init__(
        self,
        store: SQLiteRecordStore,
        table: str,
        columns: tuple[str, ...],
        to_row: Callable[[T], dict[str, Any]],
        from_row: Callable[[sqlite3.Row], T],
        encoders: dict[str, Callable[[Any], Any]] | None = None,
    ):
        self._store = store
        self._table = table
        self._columns = columns
        self._to_row = to_row
        self._from_row = from_row
        self._encoders = encoders or {}

    def _encode(self, column: str, value: Any) -> Any:
        if column not in self._columns:
            raise ValueError(f"Unknown field for {self._table}: {column}")
        encoder = self._encoders.get(column)
        return encoder(value) if encoder else value

    def _where(self, filter: dict[str, Any] | None) -> tuple[str, list[Any]]:
        if not filter:
            return "", []
        clauses = []
        params = []
        for column, value in filter.items():
            clauses.append(f"{column} = ?")
            params.append(self._encode(column, value))
        return " WHERE " + " AND ".join(clauses), params

    def insert(self, entity: T) -> str:
        row = self._to_row(entity)
        placeholders = ", ".join("?" for _ in self._columns)
        with self._store._connect() as conn:
            conn.execute(
                f"INSERT INTO {self._table} ({', '.join(self._columns)}) VALUES ({placeholders})",
                [row[column] for column in self._columns],
            )
        logger.debug(f"Inserted {self._table} record {row['id']}")
        return row["id"]

    def find_by_id(self, entity_id: str) -> T | None:
        with self._store._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE id = ?",
                (entity_id,),
            ).fetchone()
        return self._from_row(row) if row else None

    def update_by_id(self, entity_id: str, patch: dict[str, Any]) -> T | None:
        if not patch:
            return self.find_by_id(entity_id)
        if "id" in patch:
            raise ValueError("Record identity cannot be patched")

        assignments = ", ".join(f"{column} = ?" for column in patch)
        params = [self._encode(column, value) for column, value in patch.items()]
        with self._store._connect() as conn:
            cursor = conn.execute(
                f"UPDATE {self._table} SET {assignments} WHERE id = ?",
                [*params, entity_id],
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE id = ?",
                (entity_id,),
            ).fetchone()
        return self._from_row(row) if row else None

    def delete_by_id(self, entity_id: str) -> T | None:
        with self._store._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE id = ?",
                (entity_id,),
            ).fetchone()
            if row is None:
                return None
            conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (entity_id,))
        logger.debug(f"Deleted {self._table} record {entity_id}")
        return self._from_row(row)

    def find_many(self, filter: dict[str, Any] | None = None) -> list[T]:
        where, params = self._where(filter)
        with self._store._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self._table}{where} ORDER BY date_added DESC, rowid DESC",
                params,
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def sample_matching(
        self,
        filter: dict[str, Any],
        *,
        skip: int = 0,
        limit: int | None = None,
        sample_size: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[T]:
        """Return a random subset of the matching records in a recency window.

        Matching records are ordered newest first, ``skip`` of them are
        dropped, at most ``limit`` are kept (``None`` keeps all), identities in
        ``exclude_ids`` are removed and ``sample_size`` of the remainder are
        drawn without replacement.  Only identities are read for the draw;
        full rows are loaded for the chosen records alone.
        """
        if sample_size <= 0:
            return []

        where, params = self._where(filter)
        # SQLite treats a negative LIMIT as "no limit".
        window = -1 if limit is None else limit
        with self._store._connect() as conn:
            ids = [
                row["id"]
                for row in conn.execute(
                    f"SELECT id FROM {self._table}{where} "
                    "ORDER BY date_added DESC, rowid DESC LIMIT ? OFFSET ?",
                    [*params, window, max(skip, 0)],
                )
            ]
            excluded = set(exclude_ids)
            candidates = [entity_id for entity_id in ids if entity_id not in excluded]
            chosen = self._store.rng.sample(candidates, min(sample_size, len(candidates)))
            if not chosen:
                return []
            placeholders = ", ".join("?" for _ in chosen)
            rows = conn.execute(
                f"SELECT * FROM {self._table} WHERE id IN ({placeholders})",
                chosen,
            ).fetchall()

        by_id = {row["id"]: row for row in rows}
        return [self._from_row(by_id[entity_id]) for entity_id in chosen if entity_id in by_id]


class SQLiteRecordStore(RecordStore):
    """Record store persisted in a single SQLite database file.

    Args:
        db_path: Path to the database file.  Parent directories are created.
        rng: Random source used by ``sample_matching``.  Tests pass a seeded
            :class:`random.Random`; production uses a fresh one.
    """

    def __init__(self, db_path: Path, rng: random.Random | None = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.rng = rng or random.Random()
        self._initialize_db()

        self.categories: Collection[Category] = _SQLiteCollection(
            self,
            "categories",
            ("id", "title", "image_url", "date_added"),
            to_row=lambda c: {
                "id": c.id,
                "title": c.title,
                "image_url": c.image_url,
                "date_added": _format_date(c.date_added),
            },
            from_row=lambda row: Category(
                id=row["id"],
                title=row["title"],
                image_url=row["image_url"],
                date_added=_parse_date(row["date_added"]),
            ),
            encoders={"date_added": _format_date},
        )
        self.pictures: Collection[Picture] = _SQLiteCollection(
            self,
            "pictures",
            ("id", "category_id", "matches", "image_url", "date_added"),
            to_row=lambda p: {
                "id": p.id,
                "category_id": p.category_id,
                "matches": json.dumps(list(p.matches)),
                "image_url": p.image_url,
                "date_added": _format_date(p.date_added),
            },
            from_row=lambda row: Picture(
                id=row["id"],
                category_id=row["category_id"],
                matches=json.loads(row["matches"]),
                image_url=row["image_url"],
                date_added=_parse_date(row["date_added"]),
            ),
            encoders={"matches": lambda tags: json.dumps(list(tags)), "date_added": _format_date},
        )
        logger.info(f"Initialized record store at {self.db_path}")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and is always closed.

        Raises:
            StoreUnavailable: If SQLite reports any error.
        """
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.row_factory = sqlite3.Row
                with conn:
                    yield conn
        except sqlite3.Error as exc:
            logger.error(f"Record store error on {self.db_path}: {exc}")
            raise StoreUnavailable(f"Record store unavailable: {exc}") from exc

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
