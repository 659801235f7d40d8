from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, create_engine, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker


class ImportCacheBase(DeclarativeBase):
    pass


class ImportedRecordOrm(ImportCacheBase):
    __tablename__ = "imported_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    import_id: Mapped[str] = mapped_column(String, nullable=False)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("source", "import_id", name="uq_imported_source_id"),)


class ImportCacheRepository:
    """Remembers which statement rows were already turned into directives."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def known_ids(self, source: str) -> set[str]:
        stmt = select(ImportedRecordOrm.import_id).where(ImportedRecordOrm.source == source)
        return set(self.session.scalars(stmt))

    def mark_imported(self, source: str, import_ids: Iterable[str], *, at: datetime | None = None) -> None:
        imported_at = at or datetime.now(timezone.utc)
        records = [{"source": source, "import_id": import_id, "imported_at": imported_at} for import_id in import_ids]
        if not records:
            return

        stmt = sqlite_insert(ImportedRecordOrm).values(records)
        stmt = stmt.on_conflict_do_nothing(index_elements=["source", "import_id"])
        self.session.execute(stmt)
        self.session.commit()


def init_import_cache_db(db_file: str | Path, *, echo: bool = False, reset: bool = False) -> Session:
    path = Path(db_file)
    if reset and path.exists():
        path.unlink()
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(f"sqlite:///{path}", echo=echo)
    ImportCacheBase.metadata.create_all(engine)
    return sessionmaker(engine)()
