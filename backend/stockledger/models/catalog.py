"""Catalog models: warehouses and stockable items."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base, TimestampMixin


class ItemType(str, Enum):
    """Kind of stockable item."""

    INGREDIENT = "ingredient"
    CONTAINER = "container"


class Warehouse(Base, TimestampMixin):
    """Physical storage place (main store, bar, cold room)."""

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class StockItem(Base, TimestampMixin):
    """Ingredient or container tracked in the stock ledger."""

    __tablename__ = "stock_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    item_type: Mapped[ItemType] = mapped_column(
        SQLEnum(ItemType), default=ItemType.INGREDIENT, nullable=False, index=True
    )
    unit: Mapped[str] = mapped_column(String(20), default="pcs", nullable=False)
    # Only ingredients carry a grade; ungraded ingredients are never audited
    stock_grade: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
