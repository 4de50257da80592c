"""
shop/store.py -- SQLAlchemy-backed persistence for products and orders.

Uses SQLAlchemy Core (not ORM) so the dataclasses in shop/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. ShopStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL. Sort keys
come from a fixed whitelist, never from raw query text.

Stock: place_order() reserves stock with a conditional UPDATE
(count_in_stock >= qty) inside the same transaction that inserts the order, so
two concurrent orders cannot both take the last unit.

Usage:
    store = ShopStore("sqlite:///storefront.db")
    pid = store.create_product(product)
    products, total = store.list_products(ProductQuery(search="lamp"))
    order = store.place_order(user_id, [(pid, 2)], address, "PayPal")
    store.close()
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from core.errors import BadRequest, NotFound
from shop.models import DEFAULT_IMAGE, Order, OrderItem, PaymentResult, Product, ShippingAddress

# Pricing rules applied when an order is placed.
FREE_SHIPPING_THRESHOLD = 100.0
FLAT_SHIPPING = 10.0
TAX_RATE = 0.15

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text, nullable=False),
    Column("price", Float, nullable=False),
    Column("category", String(100), nullable=False, index=True),
    Column("image", String(500), nullable=False, server_default=DEFAULT_IMAGE),
    Column("count_in_stock", Integer, nullable=False, server_default="0"),
    Column("vendor_id", Integer, nullable=False, index=True),
    Column("rating", Float, nullable=False, server_default="0"),
    Column("num_reviews", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("items", Text, nullable=False),  # JSON array of order lines
    Column("shipping_address", Text, nullable=False),  # JSON object
    Column("payment_method", String(50), nullable=False),
    Column("payment_result", Text),  # JSON object, set when paid
    Column("items_price", Float, nullable=False, server_default="0"),
    Column("tax_price", Float, nullable=False, server_default="0"),
    Column("shipping_price", Float, nullable=False, server_default="0"),
    Column("total_price", Float, nullable=False, server_default="0"),
    Column("is_paid", Integer, nullable=False, server_default="0"),
    Column("paid_at", String(32)),
    Column("is_delivered", Integer, nullable=False, server_default="0"),
    Column("delivered_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Public sort keys -> columns. Both the camelCase API names and the
# snake_case column names are accepted.
_SORT_COLUMNS = {
    "name": _products.c.name,
    "price": _products.c.price,
    "category": _products.c.category,
    "rating": _products.c.rating,
    "createdAt": _products.c.created_at,
    "created_at": _products.c.created_at,
    "countInStock": _products.c.count_in_stock,
    "count_in_stock": _products.c.count_in_stock,
    "numReviews": _products.c.num_reviews,
    "num_reviews": _products.c.num_reviews,
}

_UPDATABLE_PRODUCT_FIELDS = {"name", "description", "price", "category", "image", "count_in_stock"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def price_order(items: list[OrderItem]) -> tuple[float, float, float, float]:
    """Return (items_price, tax_price, shipping_price, total_price).

    Shipping is free above FREE_SHIPPING_THRESHOLD, otherwise FLAT_SHIPPING.
    Tax is TAX_RATE of the items subtotal. All values are rounded to cents.
    """
    items_price = round(sum(i.price * i.qty for i in items), 2)
    shipping_price = 0.0 if items_price > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING
    tax_price = round(TAX_RATE * items_price, 2)
    total_price = round(items_price + tax_price + shipping_price, 2)
    return items_price, tax_price, shipping_price, total_price


def parse_sort(sort: Optional[str]) -> list:
    """Turn "price,-createdAt" into ORDER BY clauses.

    A leading "-" means descending. Unknown fields raise BadRequest. An empty
    value falls back to newest first. id is always appended as a tie-breaker
    so paging is deterministic.
    """
    clauses = []
    for raw in (sort or "").split(","):
        key = raw.strip()
        if not key:
            continue
        descending = key.startswith("-")
        column = _SORT_COLUMNS.get(key.lstrip("-+"))
        if column is None:
            raise BadRequest(f"Invalid sort field: {key.lstrip('-+')}")
        clauses.append(column.desc() if descending else column.asc())
    if not clauses:
        clauses.append(_products.c.created_at.desc())
    clauses.append(_products.c.id.desc())
    return clauses


def pagination_meta(page: int, limit: int, total: int) -> dict:
    """Pagination block returned alongside every paged listing."""
    pages = math.ceil(total / limit) if limit else 0
    meta: dict = {"page": page, "limit": limit, "total": total, "pages": pages}
    if page * limit < total:
        meta["next"] = page + 1
    if page > 1:
        meta["prev"] = page - 1
    return meta


@dataclass
class ProductQuery:
    """Filter, sort and paging options for list_products()."""

    search: Optional[str] = None
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    vendor_id: Optional[int] = None
    sort: Optional[str] = None
    page: int = 1
    limit: int = 10


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode (per connection; PRAGMAs are not pooled)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ShopStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, product: Product) -> int:
        """Insert a product and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _products.insert().values(
                    name=product.name,
                    description=product.description,
                    price=product.price,
                    category=product.category,
                    image=product.image or DEFAULT_IMAGE,
                    count_in_stock=product.count_in_stock,
                    vendor_id=product.vendor_id,
                    rating=product.rating,
                    num_reviews=product.num_reviews,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.engine.connect() as conn:
            row = conn.execute(_products.select().where(_products.c.id == product_id)).fetchone()
        return _row_to_product(row) if row is not None else None

    def list_products(self, query: ProductQuery) -> tuple[list[Product], int]:
        """Return one page of products matching `query` and the total match count.

        search is a case-insensitive substring match over name, description
        and category. category is an exact match.
        """
        conditions = []
        if query.search:
            term = query.search.strip().lower()
            conditions.append(
                or_(
                    func.lower(_products.c.name).contains(term, autoescape=True),
                    func.lower(_products.c.description).contains(term, autoescape=True),
                    func.lower(_products.c.category).contains(term, autoescape=True),
                )
            )
        if query.category:
            conditions.append(_products.c.category == query.category)
        if query.min_price is not None:
            conditions.append(_products.c.price >= query.min_price)
        if query.max_price is not None:
            conditions.append(_products.c.price <= query.max_price)
        if query.vendor_id is not None:
            conditions.append(_products.c.vendor_id == query.vendor_id)

        order_by = parse_sort(query.sort)
        offset = (query.page - 1) * query.limit
        count_stmt = select(func.count()).select_from(_products)
        page_stmt = _products.select()
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt.order_by(*order_by).offset(offset).limit(query.limit)).fetchall()
        return [_row_to_product(r) for r in rows], total

    def list_categories(self) -> list[str]:
        """Distinct categories in alphabetical order (web UI filter list)."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_products.c.category).distinct().order_by(_products.c.category)).fetchall()
        return [r[0] for r in rows]

    def update_product(self, product_id: int, **fields) -> bool:
        """Update mutable product fields. Returns False if product_id was not found."""
        unknown = set(fields) - _UPDATABLE_PRODUCT_FIELDS
        if unknown:
            raise ValueError(f"Unknown product fields: {unknown!r}")
        if not fields:
            return self.get_product(product_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_products.update().where(_products.c.id == product_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_product(self, product_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_products.delete().where(_products.c.id == product_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def place_order(
        self,
        user_id: int,
        lines: list[tuple[int, int]],
        shipping_address: ShippingAddress,
        payment_method: str,
    ) -> Order:
        """Validate stock, copy product details, insert the order, decrement stock.

        `lines` is a list of (product_id, qty). Everything runs in one
        transaction; any failure rolls back every stock change.

        Raises:
            BadRequest: no lines, or a product does not have enough stock.
            NotFound:   a product does not exist.
        """
        if not lines:
            raise BadRequest("No order items")

        # Repeated product ids are checked against stock as one quantity.
        wanted: dict[int, int] = {}
        for product_id, qty in lines:
            wanted[product_id] = wanted.get(product_id, 0) + qty

        with self.engine.begin() as conn:
            products: dict[int, Product] = {}
            for product_id, qty in wanted.items():
                row = conn.execute(_products.select().where(_products.c.id == product_id)).fetchone()
                if row is None:
                    raise NotFound(f"Product not found with id of {product_id}")
                product = _row_to_product(row)
                if product.count_in_stock < qty:
                    raise BadRequest(f"Product {product.name} is out of stock")
                products[product_id] = product

            items = [
                OrderItem(
                    product_id=pid,
                    qty=qty,
                    name=products[pid].name,
                    image=products[pid].image,
                    price=products[pid].price,
                )
                for pid, qty in lines
            ]
            items_price, tax_price, shipping_price, total_price = price_order(items)
            created_at = _now_iso()
            result = conn.execute(
                _orders.insert().values(
                    user_id=user_id,
                    items=json.dumps([i.public_dict() for i in items]),
                    shipping_address=json.dumps(shipping_address.public_dict()),
                    payment_method=payment_method,
                    items_price=items_price,
                    tax_price=tax_price,
                    shipping_price=shipping_price,
                    total_price=total_price,
                    created_at=created_at,
                )
            )
            order_id = result.inserted_primary_key[0]

            for product_id, qty in wanted.items():
                updated = conn.execute(
                    _products.update()
                    .where((_products.c.id == product_id) & (_products.c.count_in_stock >= qty))
                    .values(count_in_stock=_products.c.count_in_stock - qty)
                )
                if updated.rowcount == 0:
                    # Stock moved between the check and the write.
                    raise BadRequest(f"Product {products[product_id].name} is out of stock")

        return Order(
            id=order_id,
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            items_price=items_price,
            tax_price=tax_price,
            shipping_price=shipping_price,
            total_price=total_price,
            created_at=created_at,
        )

    def get_order(self, order_id: int) -> Optional[Order]:
        with self.engine.connect() as conn:
            row = conn.execute(_orders.select().where(_orders.c.id == order_id)).fetchone()
        return _row_to_order(row) if row is not None else None

    def list_orders(self, user_id: Optional[int] = None) -> list[Order]:
        """All orders (admin) or one user's orders, newest first."""
        stmt = _orders.select()
        if user_id is not None:
            stmt = stmt.where(_orders.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_orders.c.created_at.desc(), _orders.c.id.desc())).fetchall()
        return [_row_to_order(r) for r in rows]

    def mark_paid(self, order_id: int, payment: PaymentResult) -> Order:
        """Flip is_paid once. Raises NotFound, or BadRequest if already paid."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _orders.update()
                .where((_orders.c.id == order_id) & (_orders.c.is_paid == 0))
                .values(is_paid=1, paid_at=_now_iso(), payment_result=json.dumps(payment.public_dict()))
            )
            if result.rowcount == 0:
                exists = conn.execute(select(_orders.c.id).where(_orders.c.id == order_id)).fetchone()
                if exists is None:
                    raise NotFound(f"Order not found with id of {order_id}")
                raise BadRequest("Order is already paid")
        return self.get_order(order_id)

    def mark_delivered(self, order_id: int) -> Order:
        """Flip is_delivered once. Raises NotFound, or BadRequest if already delivered."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _orders.update()
                .where((_orders.c.id == order_id) & (_orders.c.is_delivered == 0))
                .values(is_delivered=1, delivered_at=_now_iso())
            )
            if result.rowcount == 0:
                exists = conn.execute(select(_orders.c.id).where(_orders.c.id == order_id)).fetchone()
                if exists is None:
                    raise NotFound(f"Order not found with id of {order_id}")
                raise BadRequest("Order is already delivered")
        return self.get_order(order_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_product(row) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        description=row.description,
        price=row.price,
        category=row.category,
        image=row.image,
        count_in_stock=row.count_in_stock,
        vendor_id=row.vendor_id,
        rating=row.rating,
        num_reviews=row.num_reviews,
        created_at=row.created_at,
    )


def _row_to_order(row) -> Order:
    items = [
        OrderItem(
            product_id=i["product"],
            qty=i["qty"],
            name=i["name"],
            image=i["image"],
            price=i["price"],
        )
        for i in json.loads(row.items)
    ]
    addr = json.loads(row.shipping_address)
    payment = json.loads(row.payment_result) if row.payment_result else None
    return Order(
        id=row.id,
        user_id=row.user_id,
        items=items,
        shipping_address=ShippingAddress(
            address=addr["address"],
            city=addr["city"],
            postal_code=addr["postalCode"],
            country=addr["country"],
        ),
        payment_method=row.payment_method,
        payment_result=PaymentResult(**payment) if payment else None,
        items_price=row.items_price,
        tax_price=row.tax_price,
        shipping_price=row.shipping_price,
        total_price=row.total_price,
        is_paid=bool(row.is_paid),
        paid_at=row.paid_at,
        is_delivered=bool(row.is_delivered),
        delivered_at=row.delivered_at,
        created_at=row.created_at,
    )
