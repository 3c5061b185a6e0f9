"""Certificate PDF rendering with reportlab.

One A4 page per certificate (more only if the field grid overflows): header
with two logo slots and the three titles, a divider, the field grid and a
footer with the generation time and recipient name.
"""

import base64
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from io import BytesIO
from typing import Dict, Optional

import httpx
from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from .config import ASSETS_BUCKET, PDF_FONT_PATH, RENDER_IMAGE_TIMEOUT
from .forms import display_values
from .models import Template
from .storage import get_bytes, key_from_public_url
from .templates import template_design, template_fields
from .utils import utcnow

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = A4
MARGIN = 56.0
LOGO_SIZE = 80.0
GAP = 14.0
FOOTER_H = 60.0

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
if PDF_FONT_PATH:
    try:
        pdfmetrics.registerFont(TTFont("CertiaSans", PDF_FONT_PATH))
        FONT = FONT_BOLD = "CertiaSans"
    except Exception as exc:
        logger.warning("could not register font %s: %s", PDF_FONT_PATH, exc)


def _color(value: Optional[str], fallback: str):
    try:
        return HexColor(value or fallback)
    except (ValueError, TypeError):
        return HexColor(fallback)


def fetch_image(ref: str) -> Optional[bytes]:
    if ref.startswith("data:"):
        return base64.b64decode(ref.split(",", 1)[1])
    key = key_from_public_url(ASSETS_BUCKET, ref)
    if key:
        return get_bytes(ASSETS_BUCKET, key)
    if ref.startswith(("http://", "https://")):
        resp = httpx.get(ref, timeout=RENDER_IMAGE_TIMEOUT, follow_redirects=True)
        resp.raise_for_status()
        return resp.content
    return get_bytes(ASSETS_BUCKET, ref)


def load_images(refs: Dict[str, Optional[str]], timeout: float = RENDER_IMAGE_TIMEOUT) -> Dict[str, Optional[ImageReader]]:
    """Load every referenced image, waiting at most `timeout` seconds overall.

    Anything that fails or is still loading when time runs out comes back as None.
    """
    wanted = {slot: ref for slot, ref in refs.items() if ref}
    images: Dict[str, Optional[ImageReader]] = {slot: None for slot in refs}
    if not wanted:
        return images
    pool = ThreadPoolExecutor(max_workers=len(wanted))
    futures = {pool.submit(fetch_image, ref): slot for slot, ref in wanted.items()}
    done, pending = wait(futures, timeout=timeout)
    for future in done:
        slot = futures[future]
        try:
            data = future.result()
            images[slot] = ImageReader(BytesIO(data)) if data else None
        except Exception as exc:
            logger.warning("image %s (%s) could not be loaded: %s", slot, wanted[slot], exc)
    for future in pending:
        logger.warning("image %s (%s) timed out after %.1fs", futures[future], wanted[futures[future]], timeout)
    pool.shutdown(wait=False, cancel_futures=True)
    return images


def _draw_image(c: canvas.Canvas, image: Optional[ImageReader], x, y, w, h):
    if image is None:
        return
    try:
        c.drawImage(image, x, y, width=w, height=h, preserveAspectRatio=True, anchor="c", mask="auto")
    except Exception as exc:
        logger.warning("skipping unreadable image: %s", exc)


def _draw_page_frame(c: canvas.Canvas, design, images):
    c.setFillColor(_color(design.background_color, "#ffffff"))
    c.rect(0, 0, PAGE_W, PAGE_H, stroke=0, fill=1)
    if images.get("background"):
        c.saveState()
        c.setFillAlpha(design.background_opacity)
        _draw_image(c, images["background"], MARGIN, MARGIN, PAGE_W - 2 * MARGIN, PAGE_H - 2 * MARGIN)
        c.restoreState()
    if design.border_style == "none" or not design.border_width:
        return
    inset = 18.0
    c.setStrokeColor(_color(design.border_color, "#1f2937"))
    c.setLineWidth(design.border_width)
    c.rect(inset, inset, PAGE_W - 2 * inset, PAGE_H - 2 * inset, stroke=1, fill=0)
    if design.border_style in ("double", "ridge"):
        if design.border_style == "ridge":
            c.setStrokeColor(_color("#9ca3af", "#9ca3af"))
        step = design.border_width * 2 + 2
        c.rect(inset + step, inset + step, PAGE_W - 2 * (inset + step), PAGE_H - 2 * (inset + step), stroke=1, fill=0)


def _draw_header(c: canvas.Canvas, template: Template, images) -> float:
    top = PAGE_H - MARGIN
    _draw_image(c, images.get("logo_left"), MARGIN, top - LOGO_SIZE, LOGO_SIZE, LOGO_SIZE)
    _draw_image(c, images.get("logo_right"), PAGE_W - MARGIN - LOGO_SIZE, top - LOGO_SIZE, LOGO_SIZE, LOGO_SIZE)
    center = PAGE_W / 2
    y = top - 18
    c.setFillColor(HexColor("#1f2937"))
    if template.title_ar:
        c.setFont(FONT_BOLD, 16)
        c.drawCentredString(center, y, template.title_ar)
        y -= 26
    c.setFont(FONT_BOLD, 22)
    c.drawCentredString(center, y, template.title_es or template.name)
    y -= 22
    if template.title_en:
        c.setFillColor(HexColor("#4b5563"))
        c.setFont(FONT_BOLD, 14)
        c.drawCentredString(center, y, template.title_en)
        y -= 18
    if template.subtitle_es:
        c.setFillColor(HexColor("#6b7280"))
        c.setFont(FONT, 10)
        c.drawCentredString(center, y, template.subtitle_es)
        y -= 14
    return min(y, top - LOGO_SIZE) - 12


def _draw_divider(c: canvas.Canvas, y: float) -> float:
    c.setStrokeColor(HexColor("#3b82f6"))
    c.setLineWidth(3)
    c.line(MARGIN, y, PAGE_W - MARGIN, y)
    return y - 24


def _cell_height(field, value, width: float) -> float:
    h = 14 + 10 + 10 + 4
    if field.type == "checkbox":
        return h + 16
    lines = simpleSplit(str(value or field.placeholder or ""), FONT, 10, width - 12) or [""]
    if field.type == "textarea":
        return h + max(60.0, 13.0 * len(lines) + 12)
    return h + 13.0 * len(lines) + 10


def _draw_cell(c: canvas.Canvas, field, value, x: float, y: float, width: float, height: float):
    c.setFillColor(HexColor("#374151"))
    c.setFont(FONT_BOLD, 10)
    c.drawString(x, y - 10, (field.label_es + (" *" if field.required else ""))[:80])
    c.setFillColor(HexColor("#6b7280"))
    c.setFont(FONT, 7.5)
    c.drawString(x, y - 21, f"EN: {field.label_en}"[:100])
    c.drawRightString(x + width, y - 31, f"{field.label_ar} :AR"[:100])
    box_top = y - 38
    c.setStrokeColor(HexColor("#d1d5db"))
    c.setLineWidth(1)
    if field.type == "checkbox":
        c.setFillColor(white)
        c.rect(x, box_top - 14, 12, 12, stroke=1, fill=1)
        if value is True:
            c.setStrokeColor(HexColor("#10b981"))
            c.setLineWidth(2)
            c.line(x + 2, box_top - 8, x + 5, box_top - 12)
            c.line(x + 5, box_top - 12, x + 10, box_top - 3)
        return
    box_h = height - 38
    c.setFillColor(white)
    c.roundRect(x, box_top - box_h, width, box_h, 4, stroke=1, fill=1)
    c.setFillColor(HexColor("#1f2937"))
    c.setFont(FONT, 10)
    text_y = box_top - 14
    for line in simpleSplit(str(value if value not in (None, "") else ""), FONT, 10, width - 12):
        c.drawString(x + 6, text_y, line)
        text_y -= 13


def _draw_footer(c: canvas.Canvas, recipient: str, generated_at: str):
    c.setStrokeColor(HexColor("#e5e7eb"))
    c.setLineWidth(1)
    c.line(MARGIN, MARGIN + FOOTER_H - 10, PAGE_W - MARGIN, MARGIN + FOOTER_H - 10)
    c.setFillColor(HexColor("#6b7280"))
    c.setFont(FONT_BOLD, 9)
    c.drawCentredString(PAGE_W / 2, MARGIN + 32, "Sistema de Gestión de Certificados CERTIA")
    c.setFont(FONT, 8)
    c.drawCentredString(PAGE_W / 2, MARGIN + 20, f"Documento generado el {generated_at}")
    c.drawCentredString(PAGE_W / 2, MARGIN + 8, f"Emitido a: {recipient}")


def render_certificate(template: Template, form_data: dict, recipient: str, images: Optional[dict] = None) -> bytes:
    design = template_design(template)
    fields = template_fields(template)
    values = display_values(fields, form_data)
    if images is None:
        images = load_images(
            {
                "logo_left": design.logo_left,
                "logo_right": design.logo_right,
                "background": design.background_image,
            }
        )
    generated_at = utcnow().strftime("%d/%m/%Y %H:%M UTC")

    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(template.title_es or template.name)
    c.setAuthor("CERTIA")
    _draw_page_frame(c, design, images)
    y = _draw_divider(c, _draw_header(c, template, images))

    cols = design.columns
    col_w = (PAGE_W - 2 * MARGIN - GAP * (cols - 1)) / cols
    floor = MARGIN + FOOTER_H
    for start in range(0, len(fields), cols):
        row = fields[start:start + cols]
        row_h = max(_cell_height(f, values[f.id], col_w) for f in row)
        if y - row_h < floor:
            _draw_footer(c, recipient, generated_at)
            c.showPage()
            _draw_page_frame(c, design, images)
            y = PAGE_H - MARGIN
        for idx, field in enumerate(row):
            _draw_cell(c, field, values[field.id], MARGIN + idx * (col_w + GAP), y, col_w, row_h)
        y -= row_h + GAP

    _draw_footer(c, recipient, generated_at)
    c.showPage()
    c.save()
    return buf.getvalue()


def certificate_filename(template: Template, recipient: str) -> str:
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    base = "_".join((template.name or "certificado").split())
    who = "_".join((recipient or "cliente").split())
    return f"{base}_{who}_{stamp}.pdf"
