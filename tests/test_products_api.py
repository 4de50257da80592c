"""
tests/test_products_api.py -- Integration tests for /api/v1/products/*.

Covers:
  - Public listing: envelope, pagination block, filters, sort validation
  - Creation requires a verified vendor or customer
  - Vendor listing shows only the caller's products
  - Update/delete: owner vendor or admin; other vendors get 403
"""

from __future__ import annotations

from auth.models import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_VENDOR

NEW_PRODUCT = {
    "name": "Walnut Shelf",
    "description": "Wall-mounted walnut shelf, 80 cm.",
    "price": 45.5,
    "category": "Furniture",
    "countInStock": 4,
}


class TestPublicListing:
    def test_listing_envelope_and_pagination(self, api) -> None:
        vendor, _ = api.make_user(role=ROLE_VENDOR)
        for i in range(3):
            api.make_product(vendor.id, name=f"Paged Item {i}", category="Paging")
        resp = api.client.get("/api/v1/products", params={"category": "Paging", "limit": 2})
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["count"] == 2
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2, "next": 2}
        product = body["data"]["products"][0]
        assert {"id", "name", "price", "countInStock", "vendor", "rating", "numReviews"} <= set(product)

    def test_search_and_price_range(self, api) -> None:
        vendor, _ = api.make_user(role=ROLE_VENDOR)
        api.make_product(vendor.id, name="Zebra Cushion", price=15.0)
        api.make_product(vendor.id, name="Zebra Blanket", price=80.0)
        resp = api.client.get("/api/v1/products", params={"search": "zebra", "minPrice": 10, "maxPrice": 50})
        names = [p["name"] for p in resp.json()["data"]["products"]]
        assert names == ["Zebra Cushion"]

    def test_sort_ascending_by_price(self, api) -> None:
        vendor, _ = api.make_user(role=ROLE_VENDOR)
        for price in (9.0, 3.0, 6.0):
            api.make_product(vendor.id, name="Sortable", category="SortCat", price=price)
        resp = api.client.get("/api/v1/products", params={"category": "SortCat", "sort": "price"})
        assert [p["price"] for p in resp.json()["data"]["products"]] == [3.0, 6.0, 9.0]

    def test_invalid_sort_field(self, api) -> None:
        resp = api.client.get("/api/v1/products", params={"sort": "hashed_password"})
        assert resp.status_code == 400

    def test_inverted_price_range(self, api) -> None:
        resp = api.client.get("/api/v1/products", params={"minPrice": 50, "maxPrice": 10})
        assert resp.status_code == 400

    def test_get_single_and_missing(self, api) -> None:
        vendor, _ = api.make_user(role=ROLE_VENDOR)
        product = api.make_product(vendor.id)
        assert api.client.get(f"/api/v1/products/{product.id}").json()["data"]["product"]["id"] == product.id
        missing = api.client.get("/api/v1/products/999999")
        assert missing.status_code == 404
        assert missing.json()["message"] == "Product not found with id of 999999"


class TestCreate:
    def test_verified_vendor_creates(self, api) -> None:
        vendor, token = api.make_user(role=ROLE_VENDOR)
        resp = api.client.post("/api/v1/products", json=NEW_PRODUCT, headers=api.bearer(token))
        assert resp.status_code == 201, resp.text
        product = resp.json()["data"]["product"]
        assert product["vendor"] == vendor.id
        assert product["image"] == "no-image.jpg"

    def test_verified_customer_creates(self, api) -> None:
        _, token = api.make_user(role=ROLE_CUSTOMER)
        resp = api.client.post("/api/v1/products", json=NEW_PRODUCT, headers=api.bearer(token))
        assert resp.status_code == 201

    def test_unverified_user_rejected(self, api) -> None:
        _, token = api.make_user(role=ROLE_VENDOR, verified=False)
        resp = api.client.post("/api/v1/products", json=NEW_PRODUCT, headers=api.bearer(token))
        assert resp.status_code == 403
        assert resp.json()["message"].startswith("Email not verified")

    def test_admin_role_rejected(self, api) -> None:
        _, token = api.make_user(role=ROLE_ADMIN)
        resp = api.client.post("/api/v1/products", json=NEW_PRODUCT, headers=api.bearer(token))
        assert resp.status_code == 403

    def test_anonymous_rejected(self, api) -> None:
        assert api.client.post("/api/v1/products", json=NEW_PRODUCT).status_code == 401

    def test_validation(self, api) -> None:
        _, token = api.make_user(role=ROLE_VENDOR)
        bad = dict(NEW_PRODUCT, price=-1, description="short")
        resp = api.client.post("/api/v1/products", json=bad, headers=api.bearer(token))
        assert resp.status_code == 400
        assert {"price", "description"} <= {e["field"] for e in resp.json()["errors"]}


class TestVendorListing:
    def test_only_own_products(self, api) -> None:
        vendor, token = api.make_user(role=ROLE_VENDOR)
        other, _ = api.make_user(role=ROLE_VENDOR)
        mine = api.make_product(vendor.id, name="Mine")
        api.make_product(other.id, name="Theirs")
        resp = api.client.get("/api/v1/products/vendor", headers=api.bearer(token))
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()["data"]["products"]] == [mine.id]

    def test_customer_cannot_use_vendor_listing(self, api) -> None:
        _, token = api.make_user(role=ROLE_CUSTOMER)
        assert api.client.get("/api/v1/products/vendor", headers=api.bearer(token)).status_code == 403


class TestOwnership:
    def test_owner_updates(self, api) -> None:
        vendor, token = api.make_user(role=ROLE_VENDOR)
        product = api.make_product(vendor.id)
        resp = api.client.put(
            f"/api/v1/products/{product.id}", json={"price": 30.0, "countInStock": 2}, headers=api.bearer(token)
        )
        assert resp.status_code == 200
        updated = resp.json()["data"]["product"]
        assert updated["price"] == 30.0 and updated["countInStock"] == 2

    def test_other_vendor_forbidden(self, api) -> None:
        owner, _ = api.make_user(role=ROLE_VENDOR)
        intruder, token = api.make_user(role=ROLE_VENDOR)
        product = api.make_product(owner.id)
        resp = api.client.put(f"/api/v1/products/{product.id}", json={"price": 1.0}, headers=api.bearer(token))
        assert resp.status_code == 403
        assert resp.json()["message"] == f"User {intruder.id} is not authorized to update this product"
        delete = api.client.delete(f"/api/v1/products/{product.id}", headers=api.bearer(token))
        assert delete.status_code == 403

    def test_admin_deletes_any_product(self, api) -> None:
        owner, _ = api.make_user(role=ROLE_VENDOR)
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        product = api.make_product(owner.id)
        resp = api.client.delete(f"/api/v1/products/{product.id}", headers=api.bearer(admin_token))
        assert resp.status_code == 200
        assert api.shop_store.get_product(product.id) is None

    def test_customer_cannot_update(self, api) -> None:
        owner, _ = api.make_user(role=ROLE_VENDOR)
        _, token = api.make_user(role=ROLE_CUSTOMER)
        product = api.make_product(owner.id)
        resp = api.client.put(f"/api/v1/products/{product.id}", json={"price": 1.0}, headers=api.bearer(token))
        assert resp.status_code == 403
