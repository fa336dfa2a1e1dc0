# possync/models/catalog.py
from __future__ import annotations
from sqlalchemy import String, Float, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from possync.db import Base

class Dish(Base):
    """Catalog entry; overwritten wholesale by every pull (server wins)."""
    __tablename__ = "catalog"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    category: Mapped[str] = mapped_column(String(128), index=True, default="General")
    source_updated_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)  # epoch ms from remote
