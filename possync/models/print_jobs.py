# possync/models/print_jobs.py
from __future__ import annotations
from sqlalchemy import String, Integer, BigInteger, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from possync.db import Base

class PrintJobRow(Base):
    __tablename__ = "print_jobs"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    destination: Mapped[str] = mapped_column(String(32), index=True)    # receipt | kitchen | ...
    priority: Mapped[int] = mapped_column(Integer, default=0, index=True)
    template: Mapped[str] = mapped_column(Text, default="")
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(32), default="queued", index=True)
    retries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, index=True)      # epoch ms
    last_attempt_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    next_attempt_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    done_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
