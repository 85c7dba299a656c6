"""Tests for the catalog endpoints and product image storage."""

import asyncio
import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from shopfront.errors import UploadError
from shopfront.uploads import PUBLIC_PREFIX, ImageStore

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def image(name="photo.png", data=PNG, content_type="image/png"):
    return ("images", (name, data, content_type))


def upload(name: str, data: bytes = PNG, content_type: str = "image/png") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


def product_form(**overrides) -> dict:
    form = {
        "name": "Desk Lamp",
        "description": "Bright",
        "price": "24.99",
        "category": "lighting",
        "stock": "7",
        "isActive": "true",
    }
    form.update(overrides)
    return form


class TestCreateProduct:
    def test_create_minimal(self, client):
        response = client.post("/products", data=product_form())
        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Product created successfully"
        product = data["product"]
        assert product["name"] == "Desk Lamp"
        assert product["price"] == 24.99
        assert product["stock"] == 7
        assert product["isActive"] is True
        assert product["images"] == []
        assert product["sku"].startswith("SKU")
        assert product["createdAt"].endswith("Z")

    def test_inactive_by_default(self, client):
        form = product_form()
        del form["isActive"]
        product = client.post("/products", data=form).json()["product"]
        assert product["isActive"] is False

    def test_duplicate_sku_409(self, client):
        client.post("/products", data=product_form(sku="LAMP-1"))
        response = client.post("/products", data=product_form(sku="LAMP-1"))
        assert response.status_code == 409
        assert response.json()["message"] == "Product with this SKU already exists"

    def test_negative_price_rejected(self, client):
        response = client.post("/products", data=product_form(price="-1"))
        assert response.status_code == 400

    def test_missing_name_rejected(self, client):
        form = product_form()
        del form["name"]
        assert client.post("/products", data=form).status_code == 400

    def test_images_saved_and_served(self, client, settings):
        response = client.post("/products", data=product_form(), files=[image("a.png"), image("b.jpg")])
        assert response.status_code == 201
        images = response.json()["product"]["images"]
        assert len(images) == 2
        assert all(path.startswith(PUBLIC_PREFIX) for path in images)
        assert images[1].endswith(".jpg")
        assert len(list(settings.product_uploads_dir.iterdir())) == 2

        served = client.get(images[0])
        assert served.status_code == 200
        assert served.content == PNG

    def test_bad_image_rejects_whole_upload(self, client, settings):
        response = client.post(
            "/products",
            data=product_form(),
            files=[image("a.png"), image("notes.txt", b"hello", "text/plain")],
        )
        assert response.status_code == 400
        assert response.json()["message"].startswith("Only image files are allowed")
        assert list(settings.product_uploads_dir.iterdir()) == []
        assert client.get("/products").json()["count"] == 0

    def test_images_removed_when_create_fails(self, client, settings):
        client.post("/products", data=product_form(sku="LAMP-1"))
        response = client.post("/products", data=product_form(sku="LAMP-1"), files=[image()])
        assert response.status_code == 409
        assert list(settings.product_uploads_dir.iterdir()) == []


class TestReadProducts:
    def test_list_and_filters(self, client, make_product):
        make_product(name="Red Chair", category="furniture")
        make_product(name="Blue Chair", category="furniture", is_active=False)
        make_product(name="Lamp", category="lighting")

        everything = client.get("/products").json()
        assert everything["count"] == 3

        furniture = client.get("/products", params={"category": "furniture"}).json()
        assert {p["name"] for p in furniture["products"]} == {"Red Chair", "Blue Chair"}

        active = client.get("/products", params={"isActive": "true"}).json()
        assert {p["name"] for p in active["products"]} == {"Red Chair", "Lamp"}

        search = client.get("/products", params={"search": "chair"}).json()
        assert search["count"] == 2

    def test_get_one(self, client, make_product):
        product = make_product(name="Lamp")
        response = client.get(f"/products/{product['id']}")
        assert response.status_code == 200
        assert response.json()["product"]["name"] == "Lamp"

    def test_get_malformed_id(self, client):
        response = client.get("/products/xyz")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid product ID format"

    def test_get_unknown(self, client):
        response = client.get(f"/products/{'0' * 32}")
        assert response.status_code == 404
        assert response.json()["error_type"] == "ProductNotFoundError"


class TestUpdateProduct:
    def test_put_updates_fields(self, client, make_product):
        product = make_product(name="Lamp", price="10.00")
        response = client.put(f"/products/{product['id']}", data={"name": "Floor Lamp", "price": "15.5"})
        assert response.status_code == 200
        updated = response.json()["product"]
        assert updated["name"] == "Floor Lamp"
        assert updated["price"] == 15.5
        assert updated["category"] == product["category"]

    def test_put_replaces_images(self, client, settings):
        created = client.post("/products", data=product_form(), files=[image("old.png")]).json()["product"]
        old_file = settings.product_uploads_dir / created["images"][0].rsplit("/", 1)[1]
        assert old_file.exists()

        updated = client.put(f"/products/{created['id']}", data={}, files=[image("new.png")]).json()["product"]
        assert updated["images"] != created["images"]
        assert not old_file.exists()
        assert len(list(settings.product_uploads_dir.iterdir())) == 1

    def test_put_without_images_keeps_them(self, client):
        created = client.post("/products", data=product_form(), files=[image()]).json()["product"]
        updated = client.put(f"/products/{created['id']}", data={"stock": "3"}).json()["product"]
        assert updated["images"] == created["images"]
        assert updated["stock"] == 3

    def test_patch_allowed_fields(self, client, make_product):
        product = make_product(stock=5, price="10.00")
        response = client.patch(f"/products/{product['id']}", json={"stock": 9, "price": 12.5, "isActive": False})
        assert response.status_code == 200
        updated = response.json()["product"]
        assert updated["stock"] == 9
        assert updated["price"] == 12.5
        assert updated["isActive"] is False

    def test_patch_rejects_other_fields(self, client, make_product):
        product = make_product(name="Lamp")
        response = client.patch(f"/products/{product['id']}", json={"name": "Hacked"})
        assert response.status_code == 400
        assert client.get(f"/products/{product['id']}").json()["product"]["name"] == "Lamp"

    def test_patch_empty_body_rejected(self, client, make_product):
        product = make_product()
        response = client.patch(f"/products/{product['id']}", json={})
        assert response.status_code == 400
        assert response.json()["message"] == "No valid fields to update"

    @pytest.mark.parametrize("body", [{"stock": "5"}, {"stock": -1}, {"isActive": "yes"}, {"price": -2}])
    def test_patch_rejects_bad_values(self, client, make_product, body):
        product = make_product()
        assert client.patch(f"/products/{product['id']}", json=body).status_code == 400

    def test_status_toggle(self, client, make_product):
        product = make_product(is_active=True)
        response = client.patch(f"/products/{product['id']}/status", json={"isActive": False})
        assert response.status_code == 200
        assert response.json()["message"] == "Product deactivated successfully"
        assert response.json()["product"]["isActive"] is False

    @pytest.mark.parametrize("value", ["false", 0, None])
    def test_status_requires_boolean(self, client, make_product, value):
        product = make_product()
        response = client.patch(f"/products/{product['id']}/status", json={"isActive": value})
        assert response.status_code == 400
        assert response.json()["message"] == "isActive must be a boolean"

    def test_status_unknown_product(self, client):
        response = client.patch(f"/products/{'0' * 32}/status", json={"isActive": True})
        assert response.status_code == 404


class TestDeleteProduct:
    def test_delete_removes_product_and_files(self, client, settings):
        created = client.post("/products", data=product_form(), files=[image()]).json()["product"]

        response = client.delete(f"/products/{created['id']}")
        assert response.status_code == 200
        assert response.json()["message"] == "Product deleted successfully"
        assert client.get(f"/products/{created['id']}").status_code == 404
        assert list(settings.product_uploads_dir.iterdir()) == []

    def test_delete_unknown(self, client):
        assert client.delete(f"/products/{'0' * 32}").status_code == 404

    def test_cart_shows_deleted_product_as_missing(self, client, make_product):
        user_id = "a" * 32
        product = make_product()
        client.post("/cart/add", json={"userId": user_id, "productId": product["id"]})
        client.delete(f"/products/{product['id']}")

        cart = client.get("/cart", params={"userId": user_id}).json()["cart"]
        assert cart["items"][0]["productId"] == product["id"]
        assert cart["items"][0]["product"] is None


class TestImageStore:
    def test_too_many_files(self, tmp_path):
        store = ImageStore(tmp_path, max_files=2)
        with pytest.raises(UploadError, match="Too many files"):
            asyncio.run(store.save([upload("a.png"), upload("b.png"), upload("c.png")]))

    def test_oversized_file_cleans_up(self, tmp_path):
        store = ImageStore(tmp_path, max_bytes=32)
        with pytest.raises(UploadError, match="File too large"):
            asyncio.run(store.save([upload("small.png", b"x" * 8), upload("big.png", b"x" * 64)]))
        assert list(tmp_path.iterdir()) == []

    def test_content_type_checked(self, tmp_path):
        store = ImageStore(tmp_path)
        with pytest.raises(UploadError):
            asyncio.run(store.save([upload("a.png", content_type="application/pdf")]))

    def test_uploads_without_filename_ignored(self, tmp_path):
        store = ImageStore(tmp_path)
        assert asyncio.run(store.save([upload("")])) == []

    def test_delete_ignores_foreign_paths(self, tmp_path):
        store = ImageStore(tmp_path)
        outside = tmp_path.parent / "keep.txt"
        outside.write_text("keep")
        store.delete(["/etc/passwd", f"{PUBLIC_PREFIX}../keep.txt", f"{PUBLIC_PREFIX}missing.png"])
        assert outside.exists()

    def test_path_for(self, tmp_path):
        store = ImageStore(tmp_path)
        assert store.path_for(f"{PUBLIC_PREFIX}x.png") == tmp_path / "x.png"
        assert store.path_for("/static/x.png") is None
