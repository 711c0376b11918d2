"""Read store: offset-based batch retrieval plus column-wise annotation writes.

:class:`ReadStore` is the interface the screening and clustering phases depend on.
:class:`SQLiteReadStore` implements it on a single ``reads`` table; annotation
columns are added to that table the first time they are written.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
)

from .models import Read

logger = logging.getLogger(__name__)

_CORE_COLUMNS = ("read_id", "identifier", "sample", "sequence", "quality")
_COLUMN_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reads (
    read_id INTEGER PRIMARY KEY AUTOINCREMENT,
    identifier TEXT NOT NULL,
    sample TEXT NOT NULL,
    sequence TEXT NOT NULL,
    quality TEXT,
    UNIQUE (sample, identifier)
);
CREATE INDEX IF NOT EXISTS reads_sample_idx ON reads (sample, read_id);
"""


class StoreError(RuntimeError):
    """Raised for invalid store access (unknown reads, bad column names, missing files)."""


class ReadStore(Protocol):
    def columns(self) -> Set[str]: ...

    def count(self, sample: Optional[str] = None) -> int: ...

    def samples(self) -> List[str]: ...

    def fetch_batch(self, sample: Optional[str], offset: int, limit: int) -> List[Read]: ...

    def append_columns(self, read_id: int, values: Mapping[str, Any]) -> None: ...

    def append_columns_many(self, rows: Iterable[Tuple[int, Mapping[str, Any]]]) -> int: ...

    def list_columns(
        self,
        sample: str,
        columns: Sequence[str],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
    ) -> List[Tuple[Any, ...]]: ...

    def iter_columns(
        self,
        sample: str,
        columns: Sequence[str],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
    ) -> Iterator[Tuple[Any, ...]]: ...

    def clear_column(self, sample: str, column: str) -> None: ...

    def transaction(self) -> Any: ...


def _sql_type(value: Any) -> str:
    if isinstance(value, (bool, int)):
        return "INTEGER"
    if isinstance(value, float):
        return "REAL"
    if isinstance(value, str):
        return "TEXT"
    return ""


def _check_column_name(name: str, *, writable: bool = False) -> str:
    if not _COLUMN_NAME.match(name):
        raise StoreError(f"Invalid column name: {name!r}")
    if writable and name in _CORE_COLUMNS:
        raise StoreError(f"Column {name!r} is part of the read record and cannot be annotated")
    return name


class SQLiteReadStore:
    """SQLite-backed :class:`ReadStore`.

    Parameters
    ----------
    path:
        Database file, or ``":memory:"``.
    create:
        Create the file and schema if missing. When False a missing file raises
        :class:`StoreError`.
    """

    def __init__(self, path: str | Path, *, create: bool = True) -> None:
        self.path = str(path)
        if self.path != ":memory:" and not create and not Path(self.path).exists():
            raise StoreError(f"Read store does not exist: {self.path}")

        # autocommit; batches open explicit transactions via transaction()
        self._conn = sqlite3.connect(self.path, isolation_level=None)
        self._conn.executescript(_SCHEMA)
        self._in_transaction = False
        self._column_cache: Optional[Set[str]] = None

    # -----------------
    # lifecycle
    # -----------------

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteReadStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["SQLiteReadStore"]:
        """Group writes so they are committed together or not at all."""
        if self._in_transaction:
            yield self
            return

        self._conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            # rolled-back ALTER TABLEs invalidate the cache
            self._column_cache = None
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    # -----------------
    # columns
    # -----------------

    def columns(self) -> Set[str]:
        if self._column_cache is None:
            rows = self._conn.execute("PRAGMA table_info(reads)").fetchall()
            self._column_cache = {r[1] for r in rows}
        return set(self._column_cache)

    def _ensure_column(self, name: str, example: Any) -> None:
        if name in self.columns():
            return
        decl = _sql_type(example)
        logger.debug("Adding column %s %s", name, decl or "(untyped)")
        self._conn.execute(f"ALTER TABLE reads ADD COLUMN {name} {decl}".rstrip())
        self._column_cache = None

    def _require_columns(self, names: Sequence[str]) -> None:
        existing = self.columns()
        missing = [n for n in names if _check_column_name(n) not in existing]
        if missing:
            raise StoreError(f"Unknown column(s): {', '.join(missing)}")

    # -----------------
    # read API
    # -----------------

    def add_reads(self, rows: Iterable[Tuple[str, str, str, Optional[str]]]) -> int:
        """Insert ``(identifier, sample, sequence, quality)`` rows; return how many were added."""
        with self.transaction():
            cur = self._conn.executemany(
                "INSERT INTO reads (identifier, sample, sequence, quality) VALUES (?, ?, ?, ?)",
                rows,
            )
        return int(cur.rowcount)

    def count(self, sample: Optional[str] = None) -> int:
        if sample is None:
            row = self._conn.execute("SELECT COUNT(*) FROM reads").fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM reads WHERE sample = ?", (sample,)).fetchone()
        return int(row[0])

    def samples(self) -> List[str]:
        rows = self._conn.execute("SELECT DISTINCT sample FROM reads ORDER BY sample").fetchall()
        return [r[0] for r in rows]

    def fetch_batch(self, sample: Optional[str], offset: int, limit: int) -> List[Read]:
        """Reads ``[offset, offset + limit)`` in ascending ``read_id`` order."""
        if offset < 0 or limit < 0:
            raise ValueError("offset and limit must be non-negative")
        sql = "SELECT read_id, identifier, sample, sequence, quality FROM reads"
        params: List[Any] = []
        if sample is not None:
            sql += " WHERE sample = ?"
            params.append(sample)
        sql += " ORDER BY read_id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [Read(*row) for row in self._conn.execute(sql, params)]

    def get_columns(self, read_id: int, columns: Sequence[str]) -> Dict[str, Any]:
        self._require_columns(columns)
        row = self._conn.execute(
            f"SELECT {', '.join(columns)} FROM reads WHERE read_id = ?", (read_id,)
        ).fetchone()
        if row is None:
            raise StoreError(f"Unknown read id: {read_id}")
        return dict(zip(columns, row))

    def iter_columns(
        self,
        sample: str,
        columns: Sequence[str],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
    ) -> Iterator[Tuple[Any, ...]]:
        """Yield ``(read_id, *columns)`` for a sample in ``read_id`` order.

        ``where`` is a trusted SQL boolean expression over the table's columns.
        """
        self._require_columns(columns)
        select = ", ".join(["read_id", *columns])
        sql = f"SELECT {select} FROM reads WHERE sample = ?"
        if where:
            sql += f" AND ({where})"
        sql += " ORDER BY read_id"
        yield from self._conn.execute(sql, [sample, *params])

    def list_columns(
        self,
        sample: str,
        columns: Sequence[str],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
    ) -> List[Tuple[Any, ...]]:
        return list(self.iter_columns(sample, columns, where=where, params=params))

    # -----------------
    # write API
    # -----------------

    def append_columns(self, read_id: int, values: Mapping[str, Any]) -> None:
        """Set annotation columns for one read. Repeating a write leaves the same state."""
        self.append_columns_many([(read_id, values)])

    def append_columns_many(self, rows: Iterable[Tuple[int, Mapping[str, Any]]]) -> int:
        """Set annotation columns for many reads inside one transaction.

        Returns the number of reads updated. Unknown read ids raise :class:`StoreError`
        and nothing from the call is kept.
        """
        grouped: Dict[Tuple[str, ...], List[List[Any]]] = {}
        examples: Dict[str, Any] = {}
        for read_id, values in rows:
            names = tuple(_check_column_name(n, writable=True) for n in values)
            grouped.setdefault(names, []).append([values[n] for n in names] + [int(read_id)])
            for n in names:
                if examples.get(n) is None:
                    examples[n] = values[n]

        updated = 0
        with self.transaction():
            for name, example in examples.items():
                self._ensure_column(name, example)
            for names, params in grouped.items():
                if not names:
                    continue
                assignments = ", ".join(f"{n} = ?" for n in names)
                cur = self._conn.executemany(f"UPDATE reads SET {assignments} WHERE read_id = ?", params)
                if cur.rowcount != len(params):
                    raise StoreError(
                        f"{len(params) - cur.rowcount} of {len(params)} read ids are not in the store"
                    )
                updated += len(params)
        return updated

    def clear_column(self, sample: str, column: str) -> None:
        """Reset ``column`` to NULL for every read of ``sample`` (no-op if the column is new)."""
        name = _check_column_name(column, writable=True)
        if name not in self.columns():
            return
        self._conn.execute(f"UPDATE reads SET {name} = NULL WHERE sample = ?", (sample,))
