"""Content-addressed result cache backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import Column, DateTime, Text, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from devloop.common import utc_now


class CachedTaskResult(SQLModel, table=True):
    __tablename__ = "task_results"  # type: ignore[bad-override]

    base_key: str = Field(primary_key=True)
    version: str = Field(primary_key=True)
    output_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ResultCache:
    """Read-many / write-once store of task outputs keyed by base key and version."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = _cache_engine(db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self.engine, tables=[CachedTaskResult.__table__])

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def get(self, base_key: str, version: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(CachedTaskResult).where(
                    CachedTaskResult.base_key == base_key,
                    CachedTaskResult.version == version,
                ),
            ).one_or_none()
            if row is None:
                return None
            return json.loads(row.output_json)

    def put(self, base_key: str, version: str, output: dict[str, Any]) -> bool:
        """Store ``output`` unless this version was already recorded.

        Returns ``False`` when another producer won the write.
        """

        with Session(self.engine) as session:
            session.add(
                CachedTaskResult(
                    base_key=base_key,
                    version=version,
                    output_json=json.dumps(output, sort_keys=True, default=str),
                    created_at=utc_now(),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True


def _cache_engine(db_path: Path, *, busy_timeout_ms: int) -> Engine:
    """SQLite engine in WAL mode, shared by one-shot runs and a concurrent watch loop."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000},
    )

    @event.listens_for(engine, "connect")
    def _use_wal(dbapi_connection, _connection_record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    return engine
