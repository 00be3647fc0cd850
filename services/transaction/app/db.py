"""Transaction Service — schema"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

from services.common.outbox import define_outbox_table

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("phone", String(50), nullable=False),
    Column("email", String(255), nullable=False),
    Column("address", Text, nullable=False),
    Column("sub_total", BigInteger, nullable=False),
    Column("tax_total", BigInteger, nullable=False),
    Column("grand_total", BigInteger, nullable=False),
    Column("merchant_id", Integer, nullable=False, index=True),
    Column("payment_status", String(20), nullable=False, server_default="pending", index=True),
    Column("payment_method", String(50), nullable=False, server_default=""),
    Column("payment_code", String(100), nullable=False, server_default=""),
    Column("order_id", String(100), nullable=False, unique=True),
    Column("transaction_code", String(100), nullable=False, server_default=""),
    Column("payment_token", String(255), nullable=False, server_default=""),
    Column("callback_url", Text, nullable=False, server_default=""),
    Column("expired_at", DateTime(timezone=True)),
    Column("notes", Text, nullable=False, server_default=""),
    Column("currency", String(10), nullable=False, server_default="IDR"),
    Column("fraud_status", String(50), nullable=False, server_default=""),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

transaction_products = Table(
    "transaction_products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transaction_id", Integer, ForeignKey("transactions.id"), nullable=False, index=True),
    Column("product_id", Integer, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price", BigInteger, nullable=False),
    Column("sub_total", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

outbox_events = define_outbox_table(metadata)
