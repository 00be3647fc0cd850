"""Merchant Service — schema"""

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

from services.common.outbox import define_outbox_table
from services.common.stock_ledger import define_ledger_tables

metadata = MetaData()

merchants = Table(
    "merchants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("address", Text, nullable=False, server_default=""),
    Column("photo", Text, nullable=False, server_default=""),
    Column("phone", String(50), nullable=False, server_default=""),
    Column("keeper_id", Integer, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

merchant_products = Table(
    "merchant_products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("merchant_id", Integer, ForeignKey("merchants.id"), nullable=False, index=True),
    Column("product_id", Integer, nullable=False, index=True),
    Column("warehouse_id", Integer, nullable=False),
    Column("stock", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("merchant_id", "product_id"),
    CheckConstraint("stock >= 0", name="merchant_products_stock_non_negative"),
)

outbox_events = define_outbox_table(metadata)
processed_events, stock_reduction_failures = define_ledger_tables(metadata)
