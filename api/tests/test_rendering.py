import base64
import time
from io import BytesIO

from pypdf import PdfReader

from certia import rendering
from certia.rendering import certificate_filename, load_images, render_certificate

from factories import FIELDS, FORM_DATA, make_template

# 1x1 transparent PNG
PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def _text(pdf: bytes) -> str:
    return "\n".join(page.extract_text() for page in PdfReader(BytesIO(pdf)).pages)


def test_render_produces_a_pdf(session, make_profile):
    template = make_template(session, make_profile("company", "acme"))
    pdf = render_certificate(template, FORM_DATA, "Ana Pérez", images={})
    assert pdf.startswith(b"%PDF")
    text = _text(pdf)
    assert "Certificado" in text
    assert "Nombre *" in text
    assert "Certificados CERTIA" in text
    assert "Emitido a: Ana" in text


def test_invalid_values_render_empty(session, make_profile):
    template = make_template(session, make_profile("company", "acme"))
    data = dict(FORM_DATA, age="not a number", course="Experto")
    text = _text(render_certificate(template, data, "Ana", images={}))
    assert "not a number" not in text
    assert "Experto" not in text


def test_long_forms_continue_on_new_pages(session, make_profile):
    fields = [
        {"id": f"f{i}", "type": "textarea", "label_es": f"Campo {i}", "order": i}
        for i in range(40)
    ]
    template = make_template(session, make_profile("company", "acme"), fields=fields, design={"columns": 1})
    data = {f"f{i}": "texto largo " * 30 for i in range(40)}
    pdf = render_certificate(template, data, "Ana", images={})
    assert len(PdfReader(BytesIO(pdf)).pages) > 1


def test_broken_logo_is_left_blank(session, make_profile, mock_storage):
    template = make_template(
        session,
        make_profile("company", "acme"),
        design={"logo_left": "logos/missing.png", "logo_right": "data:image/png;base64," + base64.b64encode(PNG).decode()},
    )
    pdf = render_certificate(template, FORM_DATA, "Ana")
    assert pdf.startswith(b"%PDF")


def test_load_images_gives_up_after_timeout(monkeypatch):
    def slow_fetch(ref):
        if ref == "slow":
            time.sleep(2)
        return PNG

    monkeypatch.setattr(rendering, "fetch_image", slow_fetch)
    started = time.monotonic()
    images = load_images({"logo_left": "slow", "logo_right": "fast", "background": None}, timeout=0.3)
    assert time.monotonic() - started < 1.5
    assert images["logo_left"] is None
    assert images["logo_right"] is not None
    assert images["background"] is None


def test_certificate_filename(session, make_profile):
    template = make_template(session, make_profile("company", "acme"), fields=FIELDS)
    name = certificate_filename(template, "Ana Pérez")
    assert name.startswith("Curso_de_seguridad_Ana_Pérez_")
    assert name.endswith(".pdf")
