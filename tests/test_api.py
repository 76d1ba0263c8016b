import pytest
from fastapi.testclient import TestClient

import api

HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(api, "store", store)
    return TestClient(api.app)


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_requires_user(client):
    resp = client.get("/api/books")
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "not_logged_in"}


def test_list_books(client, make_book):
    make_book("b1")
    resp = client.get("/api/books", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    body = resp.json()
    assert body["ok"] is True
    assert body["count"] == 1
    assert body["books"][0]["id"] == "b1"


def test_load_book(client, make_book):
    make_book("b1", user_id="u1")
    body = client.get("/api/books/b1", headers=HEADERS).json()
    assert body["book"]["scope"] == "user"
    assert body["book"]["themeLabel"] == "Viagem Espacial"


def test_unknown_book_is_404(client):
    resp = client.get("/api/books/nope", headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["ok"] is False


def test_edit_state(client, make_book):
    make_book("b1", title="Minha História", overrides={"pagesText": {"1": "Oi"}})
    body = client.get("/api/books/b1/edit-state", headers=HEADERS).json()
    assert body == {"ok": True, "text": {"cover": "Minha História", "pages": {"1": "Oi"}}}


def test_save_edits_and_serve_result(client, make_book):
    make_book("b1")
    resp = client.post(
        "/api/books/b1/save-edits",
        json={"textEdits": [{"target": "cover", "text": "Hello"}], "imageEdits": []},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    cover_url = resp.json()["coverUrl"]
    assert cover_url.startswith("/output/books/b1/edited/cover-")

    image = client.get(cover_url, headers=HEADERS)
    assert image.status_code == 200
    assert image.content.startswith(b"\x89PNG")


def test_save_edits_over_quota(client, make_book):
    make_book("b1")
    edits = [{"target": "page", "page": 1, "text": "x"}] * 11
    resp = client.post("/api/books/b1/save-edits", json={"textEdits": edits}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_save_edits_missing_page(client, make_book):
    make_book("b1", pages=(1,))
    resp = client.post(
        "/api/books/b1/save-edits",
        json={"textEdits": [{"target": "page", "page": 3, "text": "x"}]},
        headers=HEADERS,
    )
    assert resp.status_code == 404
    assert "page_03.png" in resp.json()["error"]


def test_save_edits_rejects_bad_json(client, make_book):
    make_book("b1")
    resp = client.post(
        "/api/books/b1/save-edits",
        content=b"{broken",
        headers={**HEADERS, "Content-Type": "application/json"},
    )
    assert resp.status_code == 400


def test_apply_image_edit(client, make_book):
    make_book("b1")
    resp = client.post(
        "/api/books/b1/apply-image-edit",
        json={"target": "page", "page": 2, "instruction": "Coloque um chapéu", "imageUrl": "/api/image/b1/page_02.png"},
        headers=HEADERS,
    )
    body = resp.json()
    assert resp.status_code == 200
    assert body["requestId"].startswith("imgedit_")
    assert body["newUrl"] == ""
    assert body["page"] == 2


def test_download_not_ready(client, make_book):
    book_dir = make_book("b1", status="generating")
    (book_dir / "book-b1.pdf").write_bytes(b"%PDF-1.4")
    resp = client.get("/download/b1", headers=HEADERS)
    assert resp.status_code == 409


def test_download_missing_file(client, make_book):
    make_book("b1")
    assert client.get("/download/b1", headers=HEADERS).status_code == 404


def test_download(client, make_book):
    book_dir = make_book("b1")
    (book_dir / "book-b1.pdf").write_bytes(b"%PDF-1.4 test")
    resp = client.get("/download/b1", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert "livro-b1.pdf" in resp.headers["content-disposition"]
    assert resp.content == b"%PDF-1.4 test"


def test_output_assets(client, make_book):
    book_dir = make_book("b1")
    (book_dir / "notes.txt").write_text("private", encoding="utf-8")

    assert client.get("/output/books/b1/page_01.png", headers=HEADERS).status_code == 200
    assert client.get("/output/books/b1/page_09.png", headers=HEADERS).status_code == 404
    assert client.get("/output/books/b1/notes.txt", headers=HEADERS).status_code == 400
    assert client.get("/output/books/b1/page_01.png").status_code == 401


def test_output_assets_of_other_users_are_hidden(client, make_book):
    book_dir = make_book("secret", user_id="alice")
    (book_dir / "book-secret.pdf").write_bytes(b"%PDF-1.4 private")

    own = client.get("/output/users/alice/books/secret/page_01.png", headers={"X-User-Id": "alice"})
    other = client.get("/output/users/alice/books/secret/page_01.png", headers={"X-User-Id": "mallory"})
    other_pdf = client.get("/output/users/alice/books/secret/book-secret.pdf", headers={"X-User-Id": "mallory"})

    assert own.status_code == 200
    assert other.status_code == 404
    assert other_pdf.status_code == 404
    assert client.get("/download/secret", headers={"X-User-Id": "mallory"}).status_code == 404
