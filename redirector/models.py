"""SQLAlchemy ORM models for the redirector.

Data Model Layout
=================
::
    tokens table
    ├─ token (VARCHAR(64) PRIMARY KEY)
    └─ target (TEXT NOT NULL)

    counts table (append-only)
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ token (VARCHAR(64), INDEXED)
    ├─ target (TEXT NOT NULL)
    ├─ timestamp (BIGINT, epoch milliseconds)
    └─ count (BIGINT)

Key Behaviours
===============
- token is the primary key, so the database rejects a second row for a token.
- counts rows are only ever inserted; nothing here updates or deletes them.

Classes:
    Token:  A registered token and its target URL.
    CountRecord:  Hits flushed for a token during one aggregator cycle.
"""

from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from redirector.database import Base

__all__ = ["Token", "CountRecord"]


class Token(Base):
    __tablename__ = "tokens"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    target: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<Token(token='{self.token}', target='{self.target}')>"


class CountRecord(Base):
    __tablename__ = "counts"

    # SQLite only autoincrements INTEGER PRIMARY KEY.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    token: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    count: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<CountRecord(token='{self.token}', count={self.count}, timestamp={self.timestamp})>"
