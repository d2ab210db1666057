from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, cast

from sqlalchemy import (
    Column,
    CursorResult,
    Engine,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    make_url,
    or_,
    select,
    text,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stream_relay.infrastructure.error import StorageUnavailable
from stream_relay.infrastructure.error_utils import wrap_exceptions

KEY_SEPARATOR = ":"

metadata = MetaData()

kv_records = Table(
    "kv_records",
    metadata,
    Column("record_key", String, primary_key=True),
    Column("payload", Text, nullable=False),
    Column("updated_at", String, nullable=False),
)


def key_matches_prefix(key: str, prefix: str) -> bool:
    """``accounts`` matches ``accounts`` and ``accounts:youtube:x``, not ``accountsx``."""
    return key == prefix or key.startswith(prefix + KEY_SEPARATOR)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class KeyValueBackend(Protocol):
    """Durable (or not) storage the :class:`StateStore` writes through to."""

    name: str

    def read(self, key: str) -> Any | None: ...  # pragma: no cover

    def write(self, key: str, value: Any) -> None: ...  # pragma: no cover

    def delete(self, key: str) -> bool: ...  # pragma: no cover

    def list_prefix(self, prefix: str) -> list[tuple[str, Any]]: ...  # pragma: no cover

    def ping(self) -> None: ...  # pragma: no cover

    def close(self) -> None: ...  # pragma: no cover


def create_sqlite_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for *url*, ensure the file's directory and the schema exist."""
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=echo, future=True)
    with engine.begin() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
    metadata.create_all(engine)
    return engine


class SqliteKeyValueBackend(KeyValueBackend):
    """SQLite-backed key/value records holding JSON documents."""

    name = "sqlite"

    def __init__(self, engine: Engine | str, echo: bool = False) -> None:
        if isinstance(engine, str):
            self.engine = create_sqlite_engine(engine, echo=echo)
        else:
            self.engine = engine

    @wrap_exceptions(StorageUnavailable, SQLAlchemyError)
    def read(self, key: str) -> Any | None:
        with Session(self.engine) as session:
            stmt = select(kv_records.c.payload).where(kv_records.c.record_key == key)
            raw = session.execute(stmt).scalar_one_or_none()
            if raw is None:
                return None
            return json.loads(raw)

    @wrap_exceptions(StorageUnavailable, SQLAlchemyError)
    def write(self, key: str, value: Any) -> None:
        values = {
            "record_key": key,
            "payload": _dumps(value),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        insert_stmt = sqlite_insert(kv_records).values(values)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[kv_records.c.record_key],
            set_={
                "payload": insert_stmt.excluded.payload,
                "updated_at": insert_stmt.excluded.updated_at,
            },
        )
        with Session(self.engine) as session:
            session.execute(stmt)
            session.commit()

    @wrap_exceptions(StorageUnavailable, SQLAlchemyError)
    def delete(self, key: str) -> bool:
        with Session(self.engine) as session:
            stmt = delete(kv_records).where(kv_records.c.record_key == key)
            result = cast(CursorResult[Any], session.execute(stmt))  # pyright: ignore
            session.commit()
            return result.rowcount > 0

    @wrap_exceptions(StorageUnavailable, SQLAlchemyError)
    def list_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        with Session(self.engine) as session:
            stmt = (
                select(kv_records.c.record_key, kv_records.c.payload)
                .where(
                    or_(
                        kv_records.c.record_key == prefix,
                        kv_records.c.record_key.startswith(
                            prefix + KEY_SEPARATOR, autoescape=True
                        ),
                    )
                )
                .order_by(kv_records.c.record_key.asc())
            )
            rows = session.execute(stmt).all()
            return [(key, json.loads(raw)) for key, raw in rows]

    @wrap_exceptions(StorageUnavailable, SQLAlchemyError)
    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()


class InMemoryKeyValueBackend(KeyValueBackend):
    """Process-local fallback with the same contract as the SQLite backend."""

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def read(self, key: str) -> Any | None:
        raw = self._records.get(key)
        return None if raw is None else json.loads(raw)

    def write(self, key: str, value: Any) -> None:
        self._records[key] = _dumps(value)

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def list_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        return [
            (key, json.loads(raw))
            for key, raw in sorted(self._records.items())
            if key_matches_prefix(key, prefix)
        ]

    def ping(self) -> None:
        return None

    def close(self) -> None:
        self._records.clear()
