"""Lifecycle emails. Delivery failures are logged and never reach the caller."""

import logging
from html import escape
from .config import WEB_BASE_URL
from .email import send_email
from .utils import utcnow

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "pending": "Pendiente",
    "reviewed": "Revisado",
    "approved": "Aprobado",
    "rejected": "Rechazado",
    "signing": "Firmando",
    "signed": "Firmado",
    "error": "Error",
}

STATUS_MESSAGES = {
    "approved": "¡Felicitaciones! Tu certificado ha sido aprobado.",
    "rejected": "Lo sentimos, tu certificado ha sido rechazado. Revisa las notas y vuelve a enviarlo si es necesario.",
    "signed": "Tu certificado ha sido firmado digitalmente y está listo para descargar.",
}


def _wrap_html(title: str, inner: str) -> str:
    return f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f4f4f5; padding: 24px;">
    <div style="max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 8px; padding: 30px;">
      <h2 style="margin-top: 0; font-size: 22px; color: #1f2937;">{escape(title)}</h2>
      {inner}
    </div>
  </body>
</html>
"""


def _deliver(to: str | None, subject: str, body: str, html_body: str):
    if not to:
        logger.warning("skipping notification %r: no recipient address", subject)
        return False
    try:
        send_email(to, subject, body, html_body=html_body)
    except Exception:
        logger.exception("notification %r to %s failed", subject, to)
        return False
    return True


def notify_new_submission(company_email, client_name: str, template_name: str, submission_id: str):
    link = f"{WEB_BASE_URL}/submissions?id={submission_id}"
    sent_at = utcnow().strftime("%Y-%m-%d %H:%M UTC")
    body = (
        f"Se ha recibido un nuevo formulario que requiere tu atención.\n"
        f"Cliente: {client_name}\nTemplate: {template_name}\nFecha de envío: {sent_at}\n\n"
        f"Ver formulario: {link}\n"
    )
    inner = f"""
      <p style="font-size: 14px; color: #4b5563;">Se ha recibido un nuevo formulario que requiere tu atención:</p>
      <p style="font-size: 14px; color: #1f2937;"><strong>Cliente:</strong> {escape(client_name)}<br />
      <strong>Template:</strong> {escape(template_name)}<br />
      <strong>Fecha de envío:</strong> {escape(sent_at)}</p>
      <a href="{escape(link)}" style="display: inline-block; background: #0284c7; color: #fff; padding: 12px 24px; border-radius: 8px; text-decoration: none;">Ver Formulario</a>
"""
    return _deliver(company_email, f"Nuevo formulario: {template_name}", body, _wrap_html("Nuevo Formulario Recibido", inner))


def notify_submission_received(client_email, client_name: str, template_name: str, submission_id: str):
    tracking = submission_id[:8].upper()
    body = (
        f"Hola {client_name},\n\nTu formulario ha sido enviado correctamente.\n"
        f"Template: {template_name}\nID de seguimiento: {tracking}\n\n"
        f"Ver estado del envío: {WEB_BASE_URL}/my-submissions\n"
    )
    inner = f"""
      <p style="font-size: 14px; color: #4b5563;">Hola {escape(client_name)}, tu formulario ha sido enviado correctamente y está siendo procesado.</p>
      <p style="font-size: 14px; color: #1f2937;"><strong>Template:</strong> {escape(template_name)}<br />
      <strong>ID de seguimiento:</strong> {escape(tracking)}</p>
"""
    return _deliver(client_email, f"Formulario recibido: {template_name}", body, _wrap_html("Formulario Enviado Exitosamente", inner))


def notify_status_change(client_email, client_name: str, template_name: str, old_status: str, new_status: str, notes: str | None = None):
    old_label = STATUS_LABELS.get(old_status, old_status)
    new_label = STATUS_LABELS.get(new_status, new_status)
    extra = STATUS_MESSAGES.get(new_status, "")
    lines = [
        f"Hola {client_name},",
        "",
        f"El estado de tu certificado \"{template_name}\" cambió de {old_label} a {new_label}.",
    ]
    if notes:
        lines.append(f"Notas: {notes}")
    if extra:
        lines.append(extra)
    lines.append(f"\nVer mis envíos: {WEB_BASE_URL}/my-submissions")
    notes_html = f"<p style=\"font-size: 14px; color: #1f2937;\"><strong>Notas:</strong> {escape(notes)}</p>" if notes else ""
    extra_html = f"<p style=\"font-size: 14px; font-weight: 600;\">{escape(extra)}</p>" if extra else ""
    inner = f"""
      <p style="font-size: 14px; color: #4b5563;">Hola {escape(client_name)}, el estado de tu certificado <strong>{escape(template_name)}</strong> cambió:</p>
      <p style="font-size: 14px; color: #1f2937;">{escape(old_label)} &rarr; <strong>{escape(new_label)}</strong></p>
      {notes_html}
      {extra_html}
"""
    return _deliver(
        client_email,
        f"Actualización: {template_name}",
        "\n".join(lines),
        _wrap_html("Actualización de Estado", inner),
    )
