# possync/models/oplog.py
from __future__ import annotations
from sqlalchemy import String, Integer, BigInteger, JSON
from sqlalchemy.orm import Mapped, mapped_column
from possync.db import Base

class MutationRow(Base):
    """Local write waiting for the remote authority to acknowledge it."""
    __tablename__ = "mutation_log"
    # AUTOINCREMENT keeps SQLite from handing out a deleted op_id again
    __table_args__ = {"sqlite_autoincrement": True}

    op_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ts: Mapped[int] = mapped_column(BigInteger, index=True)       # epoch ms
    type: Mapped[str] = mapped_column(String(64), index=True)     # e.g. "create_order"
    payload: Mapped[dict] = mapped_column(JSON)
