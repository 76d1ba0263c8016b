import copy

from services import book_view, books


def _manifest(**extra):
    manifest = {
        "id": "b1",
        "status": "done",
        "theme": "dragon",
        "style": "color",
        "child": {"name": "Leo"},
        "createdAt": "2024-05-01T10:00:00.000Z",
        "updatedAt": "2024-05-02T08:30:00.000Z",
        "coverUrl": "/api/image/b1/cover.png",
        "images": [
            {"page": 2, "url": "/api/image/b1/page_02.png"},
            {"page": 1, "url": "/api/image/b1/page_01.png"},
        ],
    }
    manifest.update(extra)
    return manifest


class Probe:
    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.answer


def test_resolve_merges_overrides():
    manifest = _manifest(
        overrides={"coverUrl": "/output/books/b1/edited/cover-1.png", "pagesImageUrl": {"2": "/edited/p2.png"}}
    )
    view = book_view.resolve(manifest, Probe(True), dir_id="b1", scope="global")

    assert view["coverUrl"] == "/output/books/b1/edited/cover-1.png"
    assert view["images"] == [
        {"page": 1, "url": "/api/image/b1/page_01.png"},
        {"page": 2, "url": "/edited/p2.png"},
    ]
    assert view["imagesCount"] == 2
    assert view["childName"] == "Leo"
    assert view["scope"] == "global"


def test_resolve_labels():
    view = book_view.resolve(_manifest(), Probe(False))
    assert view["themeLabel"] == "Reino dos Dragões"
    assert view["styleLabel"] == "Leitura + Colorir"
    assert view["createdAtLabel"] == "01/05/2024 10:00"
    assert view["updatedAtLabel"] == "02/05/2024 08:30"
    assert book_view.theme_label("pirates") == "pirates"
    assert book_view.style_label("read") == "Livro para leitura"


def test_pdf_requires_done_status():
    probe = Probe(True)
    view = book_view.resolve(_manifest(status="generating"), probe)
    assert view["hasPdf"] is False
    assert view["pdfUrl"] == ""
    assert probe.calls == 0


def test_pdf_available_when_done_and_on_disk():
    view = book_view.resolve(_manifest(), Probe(True), dir_id="b1")
    assert view["hasPdf"] is True
    assert view["pdfUrl"] == "/download/b1"

    assert book_view.resolve(_manifest(), Probe(False))["hasPdf"] is False


def test_resolve_is_pure_and_idempotent():
    manifest = _manifest(overrides={"coverText": "Oi", "pagesText": {"1": "x"}})
    snapshot = copy.deepcopy(manifest)

    first = book_view.resolve(manifest, Probe(True), dir_id="b1")
    second = book_view.resolve(manifest, Probe(True), dir_id="b1")

    assert first == second
    assert manifest == snapshot


def test_cover_url_from_cover_object():
    view = book_view.resolve(_manifest(cover={"url": "/api/image/b1/capa.png"}), Probe(False))
    assert view["coverUrl"] == "/api/image/b1/capa.png"


def test_sort_views_newest_first():
    views = [
        {"id": "old", "updatedAt": "2024-01-01T00:00:00Z"},
        {"id": "broken", "updatedAt": "not a date"},
        {"id": "new", "updatedAt": "2024-06-01T00:00:00Z"},
        {"id": "created-only", "createdAt": "2024-03-01T00:00:00Z"},
    ]
    assert [v["id"] for v in book_view.sort_views(views)] == ["new", "created-only", "old", "broken"]


def test_edit_state_prefers_overrides():
    manifest = _manifest(
        title="O Dragão",
        overrides={"pagesText": {"2": "Editado"}},
        images=[
            {"page": 1, "url": "/p1.png", "text": "Legenda 1"},
            {"page": 2, "url": "/p2.png", "text": "Legenda 2"},
        ],
        story={"pages": [{"text": "História 1"}, {"text": "História 2"}, {"text": "História 3"}]},
    )
    state = book_view.edit_state(manifest)
    assert state == {"cover": "O Dragão", "pages": {"2": "Editado", "1": "Legenda 1", "3": "História 3"}}


def test_list_books_merges_scopes(make_book, store):
    make_book("shared", updatedAt="2024-01-01T00:00:00.000Z")
    make_book("mine", user_id="u1", updatedAt="2024-02-01T00:00:00.000Z")
    make_book("other", user_id="u2")

    views = books.list_books("u1", store=store)

    assert [(v["id"], v["scope"]) for v in views] == [("mine", "user"), ("shared", "global")]


def test_list_books_skips_corrupt_manifests(make_book, store):
    make_book("good")
    broken = make_book("broken")
    (broken / "book.json").write_text("{oops", encoding="utf-8")

    assert [v["id"] for v in books.list_books("u1", store=store)] == ["good"]


def test_load_book_reports_stale_pdf_as_unavailable(make_book, store):
    book_dir = make_book("b1", status="generating")
    (book_dir / "book-b1.pdf").write_bytes(b"%PDF-1.4 stale")

    view = books.load_book("u1", "b1", store=store)

    assert view["status"] == "generating"
    assert view["hasPdf"] is False
