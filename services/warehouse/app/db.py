"""Warehouse Service — schema"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from services.common.stock_ledger import define_ledger_tables

metadata = MetaData()

warehouses = Table(
    "warehouses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("address", Text, nullable=False, server_default=""),
    Column("photo", Text, nullable=False, server_default=""),
    Column("phone", String(20), nullable=False, server_default=""),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

warehouse_products = Table(
    "warehouse_products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("warehouse_id", Integer, ForeignKey("warehouses.id"), nullable=False, index=True),
    Column("product_id", Integer, nullable=False, index=True),
    Column("stock", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("warehouse_id", "product_id"),
    CheckConstraint("stock >= 0", name="warehouse_products_stock_non_negative"),
)

processed_events, stock_reduction_failures = define_ledger_tables(metadata)
