import json
from pathlib import Path

import pytest
from PIL import Image

from services.locks import BookLockManager
from services.storage import DerivedArtifactStore


def _write_png(path, size=(200, 150), color=(40, 120, 200)):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


@pytest.fixture
def make_png():
    return _write_png


@pytest.fixture
def store(tmp_path):
    return DerivedArtifactStore(output_dir=str(tmp_path / "output"))


@pytest.fixture
def locks():
    return BookLockManager()


@pytest.fixture
def make_book(store):
    """
    Create a book folder with a clean cover, clean pages and a book.json.

    Pass user_id for a user-scoped book; extra manifest keys override the defaults.
    """

    def _make(book_id="b1", user_id=None, pages=(1, 2, 3), cover=True, size=(200, 150), **manifest):
        if user_id:
            book_dir = store.user_books_dir(user_id) / book_id
        else:
            book_dir = store.global_books_dir / book_id
        book_dir.mkdir(parents=True, exist_ok=True)

        if cover:
            _write_png(book_dir / "cover.png", size, (200, 60, 60))
        for page in pages:
            _write_png(book_dir / f"page_{page:02d}.png", size, (20 * page, 80, 160))

        data = {
            "id": book_id,
            "status": "done",
            "theme": "space",
            "style": "read",
            "childName": "Ana",
            "createdAt": "2024-05-01T10:00:00.000Z",
            "updatedAt": "2024-05-01T10:00:00.000Z",
            "images": [{"page": p, "url": f"/api/image/{book_id}/page_{p:02d}.png"} for p in pages],
        }
        data.update(manifest)
        (book_dir / "book.json").write_text(json.dumps(data), encoding="utf-8")
        return book_dir

    return _make


def read_manifest(book_dir):
    return json.loads((Path(book_dir) / "book.json").read_text(encoding="utf-8"))


@pytest.fixture
def manifest_of():
    return read_manifest
