"""
catalog/store.py -- SQLAlchemy-backed persistence layer for local product records.

Uses SQLAlchemy Core (not ORM) so the dataclass in catalog/models.py remains
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. ProductStore is the repository; _row_to_product
is the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ProductStore()
    product = store.create_product(Product(name="Mug", created_by=1))
    store.record_sale("ext-42", quantity=3)
    store.close()
"""

import json
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from catalog.models import Product
from core.config import now_iso

logger = logging.getLogger("permgate.catalog")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'permgate_catalog.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("public_id", String(64), nullable=False, unique=True),
    Column("external_id", String(64), unique=True),
    Column("name", String(255), nullable=False),
    Column("images", Text),  # JSON array serialized as text
    Column("created_by", Integer, index=True),
    Column("sales_count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProductStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def create_product(self, product: Product) -> Product:
        """Insert a product and return it with id and timestamps set.

        Raises sqlalchemy.exc.IntegrityError on a duplicate external_id.
        """
        return self.create_products([product])[0]

    def create_products(self, products: list[Product]) -> list[Product]:
        """Insert a batch of products in one transaction.

        Either every product is written or none is: a duplicate external_id
        anywhere in the batch (against stored rows or within the batch itself)
        rolls the whole insert back and raises sqlalchemy.exc.IntegrityError.
        """
        stamp = now_iso()
        created: list[Product] = []
        with self.engine.begin() as conn:
            for product in products:
                result = conn.execute(
                    _products.insert().values(
                        public_id=product.public_id,
                        external_id=product.external_id,
                        name=product.name,
                        images=json.dumps(product.images),
                        created_by=product.created_by,
                        sales_count=0,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
                created.append(
                    Product(
                        id=result.inserted_primary_key[0],
                        public_id=product.public_id,
                        external_id=product.external_id,
                        name=product.name,
                        images=list(product.images),
                        created_by=product.created_by,
                        sales_count=0,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
        return created

    def list_products(self, created_by: Optional[int] = None) -> list[Product]:
        """All products, or only those created by one user. Newest first."""
        query = _products.select()
        if created_by is not None:
            query = query.where(_products.c.created_by == created_by)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_products.c.id.desc())).fetchall()
        return [_row_to_product(r) for r in rows]

    def list_bestsellers(self, created_by: int, limit: int = 50) -> list[Product]:
        """A user's products ordered by sales_count, highest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _products.select()
                .where(_products.c.created_by == created_by)
                .order_by(_products.c.sales_count.desc(), _products.c.id)
                .limit(limit)
            ).fetchall()
        return [_row_to_product(r) for r in rows]

    def record_sale(self, external_id: str, quantity: int) -> bool:
        """Add quantity to sales_count of the product with this external_id.

        Returns False when no product matches (sales of unknown products are
        ignored, not errors).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _products.update()
                .where(_products.c.external_id == external_id)
                .values(sales_count=_products.c.sales_count + quantity, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_product(row) -> Product:
    try:
        images = json.loads(row.images) if row.images else []
    except ValueError:
        images = []
    return Product(
        id=row.id,
        public_id=row.public_id,
        external_id=row.external_id,
        name=row.name,
        images=images if isinstance(images, list) else [],
        created_by=row.created_by,
        sales_count=row.sales_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
