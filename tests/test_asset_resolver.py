import pytest

from book_utils import (
    COVER,
    expected_page_filename,
    is_derived_or_final,
    resolve_base,
    resolve_clean_base,
    resolve_final,
)


def test_cover_prefers_clean_names(tmp_path, make_png):
    make_png(tmp_path / "capa.png")
    make_png(tmp_path / "cover_final.png")
    assert resolve_base(tmp_path, COVER) == tmp_path / "capa.png"

    make_png(tmp_path / "cover.png")
    assert resolve_base(tmp_path, COVER) == tmp_path / "cover.png"


def test_cover_falls_back_to_first_page(tmp_path, make_png):
    make_png(tmp_path / "page_01.png")
    assert resolve_base(tmp_path, COVER) == tmp_path / "page_01.png"
    # page 1 standing in for the cover is not a clean cover source
    assert resolve_clean_base(tmp_path, COVER) is None


def test_clean_cover_skips_burned_text(tmp_path, make_png):
    make_png(tmp_path / "cover_final.png")
    assert resolve_base(tmp_path, COVER) == tmp_path / "cover_final.png"
    assert resolve_clean_base(tmp_path, COVER) is None

    make_png(tmp_path / "edit_base.png")
    assert resolve_clean_base(tmp_path, COVER) == tmp_path / "edit_base.png"


@pytest.mark.parametrize("file_name", ["page_03.png", "page-03.png", "p03.png", "page_3.png"])
def test_page_naming_conventions(tmp_path, make_png, file_name):
    make_png(tmp_path / file_name)
    assert resolve_base(tmp_path, 3) == tmp_path / file_name
    assert resolve_clean_base(tmp_path, 3) == tmp_path / file_name


def test_padded_name_wins_over_legacy_final(tmp_path, make_png):
    make_png(tmp_path / "page_03_final.png")
    assert resolve_base(tmp_path, 3) == tmp_path / "page_03_final.png"
    assert resolve_clean_base(tmp_path, 3) is None

    make_png(tmp_path / "page_03.png")
    assert resolve_base(tmp_path, 3) == tmp_path / "page_03.png"


def test_missing_asset_is_none(tmp_path):
    assert resolve_base(tmp_path, 7) is None
    assert resolve_base(tmp_path / "nope", COVER) is None
    assert resolve_final(tmp_path, 7) is None


def test_resolve_final(tmp_path, make_png):
    make_png(tmp_path / "page_02.png")
    make_png(tmp_path / "page_02_final.png")
    make_png(tmp_path / "capa_final.png")
    assert resolve_final(tmp_path, 2) == tmp_path / "page_02_final.png"
    assert resolve_final(tmp_path, COVER) == tmp_path / "capa_final.png"


def test_expected_page_filename():
    assert expected_page_filename(3) == "page_03.png"
    assert expected_page_filename(12) == "page_12.png"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("/output/books/b1/edited/page_03-1700000000000.png", True),
        ("https://cdn.example.com/books/b1/edited/cover.png", True),
        ("/api/image/b1/page_03_final.png", True),
        ("page_03.final.png", True),
        ("/api/image/b1/page_03.png", False),
        ("/output/books/b1/cover.png", False),
        ("", False),
        (None, False),
    ],
)
def test_is_derived_or_final(value, expected):
    assert is_derived_or_final(value) is expected


def test_is_derived_or_final_on_paths(tmp_path):
    assert is_derived_or_final(tmp_path / "edited" / "cover-1.png")
    assert not is_derived_or_final(tmp_path / "cover.png")
