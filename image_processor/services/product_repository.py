"""SQLAlchemy persistence for the product columns the worker owns."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import JSON, DateTime, Integer, String, Text, create_engine, func, update
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from image_processor.core.config import Settings, settings
from image_processor.core.errors import PersistenceError
from image_processor.models.product import ProcessingStatus


class ProductRepository(Protocol):
    def update_processing_status(self, product_id: int, status: ProcessingStatus) -> None: ...

    def update_compressed_images(self, product_id: int, images: Sequence[str]) -> None: ...


class Base(DeclarativeBase):
    pass


class Product(Base):
    """Columns of ``app_products`` the worker reads or writes."""

    __tablename__ = "app_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    processing_status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProcessingStatus.pending.value)
    compressed_product_images: Mapped[Optional[list]] = mapped_column(
        JSON().with_variant(ARRAY(Text), "postgresql"), nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class SqlProductRepository:
    """Writes status and compressed image columns with one transaction per call."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SqlProductRepository":
        engine = create_engine(config.database_url, pool_pre_ping=True)
        return cls(sessionmaker(engine, expire_on_commit=False))

    def update_processing_status(self, product_id: int, status: ProcessingStatus) -> None:
        self._update(product_id, processing_status=ProcessingStatus(status).value)

    def update_compressed_images(self, product_id: int, images: Sequence[str]) -> None:
        self._update(product_id, compressed_product_images=list(images))

    def _update(self, product_id: int, **values: object) -> None:
        statement = update(Product).where(Product.id == product_id).values(updated_at=func.now(), **values)
        try:
            with self._sessions.begin() as session:
                result = session.execute(statement)
                if result.rowcount == 0:
                    raise PersistenceError(f"Product {product_id} not found")
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update product {product_id}: {exc}") from exc
