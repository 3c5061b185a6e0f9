import pytest

from certia.utils import canonical_json, content_disposition, safe_filename


@pytest.mark.parametrize(
    "name, expected",
    [
        ("carnet identidad.pdf", "carnet_identidad.pdf"),
        ("Pérez.pdf", "Perez.pdf"),
        ("علي حسن", "file"),
        ("", "file"),
    ],
)
def test_safe_filename_is_ascii(name, expected):
    assert safe_filename(name) == expected


def test_content_disposition_is_latin1_safe():
    header = content_disposition("شهادة علي.pdf")
    header.encode("ascii")
    assert header.startswith('attachment; filename=".pdf"; filename*=UTF-8\'\'')
    assert "%D8%B4" in header


def test_canonical_json_refuses_nan():
    with pytest.raises(ValueError):
        canonical_json({"age": float("nan")})
