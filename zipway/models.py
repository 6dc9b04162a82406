"""SQLAlchemy ORM models for the Zipway URL shortener.

This module defines the link table owned by this service and a read-only
mapping of the identity provider's session table.

Data Model Layout
=================
::
    urls table (owned)
    ├─ id (VARCHAR(36) PRIMARY KEY, UUID4)
    ├─ "shortId" (VARCHAR(64) UNIQUE, INDEXED)
    ├─ target_url (TEXT NOT NULL)
    ├─ "userId" (TEXT NULL)
    ├─ status (VARCHAR(16) NOT NULL, 'ACTIVE' | 'PAUSED')
    ├─ "createdAt" (TIMESTAMPTZ, DEFAULT NOW())
    └─ clicks (INTEGER DEFAULT 0)

    session table (identity provider, read-only)
    ├─ id (TEXT PRIMARY KEY)
    ├─ token (TEXT UNIQUE)  -- the session ID part of a cookie token
    ├─ "userId" (TEXT NOT NULL)
    └─ "expiresAt" (TIMESTAMPTZ NOT NULL)

How to Use
===========
**Step 1 — Create a link**::
    link = Link(id=str(uuid.uuid4()), short_id="abc123", target_url="https://example.com",
                user_id="user-1", status=LinkStatus.ACTIVE)
    session.add(link)
    await session.commit()

**Step 2 — Query a link**::
    result = await session.execute(select(Link).where(Link.short_id == "abc123"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- short_id is unique; duplicate inserts fail at the database.
- created_at is set by PostgreSQL at insert time and never changed.
- clicks only ever grows, one UPDATE per tracked redirect.
- user_id is nullable in the schema for compatibility with existing rows,
  but link creation always requires an owner.

Classes:
    Link:  A shortened link with owner, status and click count.
    UserSession:  Read-only view of an identity provider session.
"""

import datetime

from sqlalchemy import DateTime, Enum, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from zipway.database import Base
from zipway.enums import LinkStatus

__all__ = ["Link", "UserSession"]


class Link(Base):
    __tablename__ = "urls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    short_id: Mapped[str] = mapped_column("shortId", String(64), unique=True, index=True, nullable=False)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str | None] = mapped_column("userId", Text, nullable=True)
    status: Mapped[LinkStatus] = mapped_column(
        Enum(LinkStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        default=LinkStatus.ACTIVE,
        nullable=False,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        "createdAt", DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Link(id='{self.id}', short_id='{self.short_id}', status={self.status}, clicks={self.clicks})>"


class UserSession(Base):
    __tablename__ = "session"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column("userId", Text, nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column("expiresAt", DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<UserSession(id='{self.id}', user_id='{self.user_id}', expires_at={self.expires_at})>"
