"""
api/routes/v1/products.py -- Product catalogue REST endpoints.

Routes:
  GET    /api/v1/products           -- public listing: search, filters, sort, paging
  POST   /api/v1/products           -- create (verified vendor or customer)
  GET    /api/v1/products/vendor    -- caller's own products (vendor)
  GET    /api/v1/products/{id}      -- public detail
  PUT    /api/v1/products/{id}      -- update (owning vendor or admin)
  DELETE /api/v1/products/{id}      -- delete (owning vendor or admin)

GET /products/vendor must be registered before GET /products/{product_id}.

Ownership: the role gate admits vendors and admins; the handler then checks
that a vendor owns the product. Anyone else gets 403.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import ProductCreate, ProductUpdate, envelope
from auth.dependencies import authorize, require_verified
from auth.models import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_VENDOR, User
from core.errors import BadRequest, Forbidden, NotFound
from shop.models import DEFAULT_IMAGE, Product
from shop.store import ProductQuery, pagination_meta

logger = logging.getLogger("storefront.shop")

# Auth policy:
# - GET /products, GET /products/{id}: public
# - POST /products: verified vendor or customer
# - GET /products/vendor: vendor
# - PUT/DELETE /products/{id}: vendor (owner) or admin
router = APIRouter()


def _get_or_404(request: Request, product_id: int) -> Product:
    product = request.app.state.shop_store.get_product(product_id)
    if product is None:
        raise NotFound(f"Product not found with id of {product_id}")
    return product


def _check_owner(product: Product, user: User, action: str) -> None:
    if user.role != ROLE_ADMIN and product.vendor_id != user.id:
        raise Forbidden(f"User {user.id} is not authorized to {action} this product")


@router.get("/products")
def list_products(
    request: Request,
    search: Optional[str] = Query(default=None, max_length=100),
    category: Optional[str] = Query(default=None, max_length=100),
    min_price: Optional[float] = Query(default=None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(default=None, alias="maxPrice", ge=0),
    sort: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict:
    """Public product listing.

    search   -- case-insensitive substring over name, description, category
    sort     -- comma-separated fields, "-" prefix for descending (default -createdAt)
    """
    if min_price is not None and max_price is not None and min_price > max_price:
        raise BadRequest("minPrice cannot be greater than maxPrice")
    query = ProductQuery(
        search=search,
        category=category,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        page=page,
        limit=limit,
    )
    products, total = request.app.state.shop_store.list_products(query)
    return envelope(
        {"products": [p.public_dict() for p in products]},
        count=len(products),
        pagination=pagination_meta(page, limit, total),
    )


@router.post("/products", status_code=201)
def create_product(
    request: Request,
    body: ProductCreate,
    current_user: User = Depends(authorize(ROLE_VENDOR, ROLE_CUSTOMER)),
) -> JSONResponse:
    """Create a product owned by the caller. The caller's email must be verified."""
    require_verified(current_user)
    store = request.app.state.shop_store
    product_id = store.create_product(
        Product(
            name=body.name,
            description=body.description,
            price=body.price,
            category=body.category,
            image=body.image or DEFAULT_IMAGE,
            count_in_stock=body.count_in_stock,
            vendor_id=current_user.id,
        )
    )
    logger.info("Product id=%s created by user_id=%s", product_id, current_user.id)
    return JSONResponse(status_code=201, content=envelope({"product": store.get_product(product_id).public_dict()}))


@router.get("/products/vendor")
def list_vendor_products(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(authorize(ROLE_VENDOR)),
) -> dict:
    query = ProductQuery(vendor_id=current_user.id, page=page, limit=limit)
    products, total = request.app.state.shop_store.list_products(query)
    return envelope(
        {"products": [p.public_dict() for p in products]},
        count=len(products),
        pagination=pagination_meta(page, limit, total),
    )


@router.get("/products/{product_id}")
def get_product(request: Request, product_id: int) -> dict:
    return envelope({"product": _get_or_404(request, product_id).public_dict()})


@router.put("/products/{product_id}")
def update_product(
    request: Request,
    product_id: int,
    body: ProductUpdate,
    current_user: User = Depends(authorize(ROLE_VENDOR, ROLE_ADMIN)),
) -> dict:
    store = request.app.state.shop_store
    product = _get_or_404(request, product_id)
    _check_owner(product, current_user, "update")
    fields = body.model_dump(exclude_none=True)
    store.update_product(product_id, **fields)
    logger.info("Product id=%s updated by user_id=%s fields=%s", product_id, current_user.id, sorted(fields))
    return envelope({"product": store.get_product(product_id).public_dict()})


@router.delete("/products/{product_id}")
def delete_product(
    request: Request,
    product_id: int,
    current_user: User = Depends(authorize(ROLE_VENDOR, ROLE_ADMIN)),
) -> dict:
    product = _get_or_404(request, product_id)
    _check_owner(product, current_user, "delete")
    request.app.state.shop_store.delete_product(product_id)
    logger.info("Product id=%s deleted by user_id=%s", product_id, current_user.id)
    return envelope(message="Product deleted successfully")
