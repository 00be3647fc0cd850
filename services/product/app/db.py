"""Product Service — schema"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, MetaData, String, Table, Text, func

metadata = MetaData()

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("tagline", String(100), unique=True),
    Column("photo", Text, nullable=False, server_default=""),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("barcode", String(100), nullable=False, unique=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("thumbnail", Text, nullable=False, server_default=""),
    Column("about", Text, nullable=False, server_default=""),
    Column("price", Integer, nullable=False),
    Column("is_popular", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)
