"""SQLAlchemy ORM models for the naming index."""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class IndexEntryRow(Base):
    __tablename__ = "index_entries"

    # Exact "bucket/key" string
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    digest: Mapped[str] = mapped_column(String(64), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    media_type: Mapped[str] = mapped_column(String(255), nullable=False)
    modified_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
