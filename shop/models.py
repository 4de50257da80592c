"""
shop/models.py -- Domain dataclasses for the Storefront catalogue and orders.

These are pure data containers. Pricing and stock rules live in shop/store.py.

Money is stored as float, rounded to cents at the edges (price_order() and
the API models). public_dict() produces the camelCase shape used by every API
response.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_IMAGE = "no-image.jpg"


@dataclass
class Product:
    """A catalogue entry owned by the user who created it (vendor_id).

    id is None before the record is written to the database.
    """

    name: str
    description: str
    price: float
    category: str
    vendor_id: int
    image: str = DEFAULT_IMAGE
    count_in_stock: int = 0
    rating: float = 0.0  # 0..5
    num_reviews: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "image": self.image,
            "countInStock": self.count_in_stock,
            "vendor": self.vendor_id,
            "rating": self.rating,
            "numReviews": self.num_reviews,
            "createdAt": self.created_at,
        }


@dataclass
class OrderItem:
    """One order line. name, image and price are copied from the product at
    order time so later catalogue edits do not rewrite order history."""

    product_id: int
    qty: int
    name: str = ""
    image: str = DEFAULT_IMAGE
    price: float = 0.0

    def public_dict(self) -> dict:
        return {
            "product": self.product_id,
            "name": self.name,
            "image": self.image,
            "price": self.price,
            "qty": self.qty,
        }


@dataclass
class ShippingAddress:
    address: str
    city: str
    postal_code: str
    country: str

    def public_dict(self) -> dict:
        return {
            "address": self.address,
            "city": self.city,
            "postalCode": self.postal_code,
            "country": self.country,
        }


@dataclass
class PaymentResult:
    """Payment provider receipt recorded when an order is marked paid."""

    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "update_time": self.update_time,
            "email_address": self.email_address,
        }


@dataclass
class Order:
    """A placed order.

    Lifecycle: created (unpaid, undelivered) -> paid -> delivered. Each flag
    flips once; a second pay or deliver is rejected.
    """

    user_id: int
    items: list[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: float = 0.0
    tax_price: float = 0.0
    shipping_price: float = 0.0
    total_price: float = 0.0
    payment_result: Optional[PaymentResult] = None
    is_paid: bool = False
    paid_at: Optional[str] = None
    is_delivered: bool = False
    delivered_at: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "user": self.user_id,
            "orderItems": [i.public_dict() for i in self.items],
            "shippingAddress": self.shipping_address.public_dict(),
            "paymentMethod": self.payment_method,
            "paymentResult": self.payment_result.public_dict() if self.payment_result else None,
            "itemsPrice": self.items_price,
            "taxPrice": self.tax_price,
            "shippingPrice": self.shipping_price,
            "totalPrice": self.total_price,
            "isPaid": self.is_paid,
            "paidAt": self.paid_at,
            "isDelivered": self.is_delivered,
            "deliveredAt": self.delivered_at,
            "createdAt": self.created_at,
        }
