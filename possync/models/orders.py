# possync/models/orders.py
from __future__ import annotations
from sqlalchemy import String, Float, Integer, BigInteger, JSON
from sqlalchemy.orm import Mapped, mapped_column
from possync.db import Base

class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    items: Mapped[list] = mapped_column(JSON, default=list)
    total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    updated_at: Mapped[int] = mapped_column(BigInteger, index=True)  # epoch ms
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
