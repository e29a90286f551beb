"""Tests for the catalog endpoints and the admin book management."""

import os

from app.config import settings


def test_created_book_is_listed_with_cover(client, make_book):
    book = make_book(price="349.00")

    assert book["is_active"] is True
    assert book["image_url"].startswith(f"{settings.API_URL}/uploads/")
    assert os.path.exists(os.path.join(settings.UPLOADS_DIR, os.path.basename(book["image_url"])))

    listing = client.get("/books", params={"limit": 500})
    assert listing.status_code == 200
    assert book["book_id"] in [b["book_id"] for b in listing.json()]
    assert client.get(f"/books/{book['book_id']}").json()["title"] == book["title"]


def test_featured_books_are_limited(client, make_book):
    for _ in range(9):
        make_book()

    response = client.get("/books/featured")

    assert response.status_code == 200
    assert len(response.json()) == 8


def test_hidden_book_disappears_from_storefront(client, make_book, admin_headers):
    book = make_book()

    response = client.patch(f"/admin/books/{book['book_id']}/status", json={"active": False}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert client.get(f"/books/{book['book_id']}").status_code == 404
    admin_listing = client.get("/admin/books", params={"limit": 500}, headers=admin_headers).json()
    assert book["book_id"] in [b["book_id"] for b in admin_listing]


def test_duplicate_title_conflicts(client, make_book, admin_headers):
    book = make_book()

    response = client.post(
        "/admin/books",
        data={
            "title": book["title"],
            "author": "Someone Else",
            "description": "Same title",
            "price": "10.00",
            "genre": "Fiction",
            "language": "English",
        },
        files={"image": ("cover.jpg", b"jpeg", "image/jpeg")},
        headers=admin_headers,
    )

    assert response.status_code == 409


def test_missing_required_fields(client, admin_headers):
    response = client.post(
        "/admin/books",
        data={"title": "Untitled draft", "price": "10.00"},
        files={"image": ("cover.png", b"png", "image/png")},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_non_positive_price_is_rejected(client, admin_headers):
    response = client.post(
        "/admin/books",
        data={
            "title": "Free Book",
            "author": "Nobody",
            "description": "-",
            "price": "0",
            "genre": "Fiction",
            "language": "English",
        },
        files={"image": ("cover.png", b"png", "image/png")},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_cover_with_unsupported_extension(client, admin_headers):
    response = client.post(
        "/admin/books",
        data={
            "title": "Script Kiddie",
            "author": "Nobody",
            "description": "-",
            "price": "10.00",
            "genre": "Tech",
            "language": "English",
        },
        files={"image": ("cover.exe", b"MZ", "application/octet-stream")},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_update_book_price_keeps_order_snapshot(client, make_book, order_payload, admin_headers):
    book = make_book(price="100.00")
    order = client.post("/orders", json=order_payload([{"book_id": book["book_id"], "quantity": 1}])).json()

    response = client.put(f"/admin/books/{book['book_id']}", data={"price": "150.00"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["price"] == "150.00"
    stored = client.get(f"/orders/{order['order']['order_id']}").json()
    assert stored["items"][0]["price"] == "100.00"
    assert stored["order"]["total_amount"] == "100.00"


def test_admin_books_require_admin_code(client):
    assert client.get("/admin/books").status_code == 401


def test_delete_book_removes_cover(client, make_book, admin_headers):
    book = make_book()
    cover = os.path.join(settings.UPLOADS_DIR, os.path.basename(book["image_url"]))

    response = client.delete(f"/admin/books/{book['book_id']}", headers=admin_headers)

    assert response.status_code == 204
    assert not os.path.exists(cover)
    assert client.get(f"/books/{book['book_id']}").status_code == 404


def test_ordered_book_cannot_be_deleted(client, make_book, order_payload, admin_headers):
    book = make_book()
    client.post("/orders", json=order_payload([{"book_id": book["book_id"], "quantity": 1}]))

    response = client.delete(f"/admin/books/{book['book_id']}", headers=admin_headers)

    assert response.status_code == 409
    assert client.get(f"/books/{book['book_id']}").status_code == 200
