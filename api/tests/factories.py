import os

from certia.schemas import TemplateCreate
from certia.templates import create_template

ADMIN_HEADERS = {"X-Access-Token": os.environ.get("ADMIN_ACCESS_TOKEN", "admin-test-token")}
SYSTEM_HEADERS = {"X-Access-Token": os.environ.get("SYSTEM_ACCESS_TOKEN", "system-test-token")}

FIELDS = [
    {"id": "full_name", "type": "text", "label_es": "Nombre", "label_en": "Name", "label_ar": "الاسم", "required": True, "order": 0},
    {"id": "email", "type": "email", "label_es": "Correo", "label_en": "Email", "order": 1},
    {"id": "age", "type": "number", "label_es": "Edad", "label_en": "Age", "order": 2},
    {"id": "birth_date", "type": "date", "label_es": "Fecha de nacimiento", "order": 3},
    {"id": "course", "type": "select", "label_es": "Curso", "options": ["Basico", "Avanzado"], "order": 4},
    {"id": "accepts", "type": "checkbox", "label_es": "Acepto", "required": True, "order": 5},
]

FORM_DATA = {
    "full_name": "Ana Pérez",
    "email": "ana@example.com",
    "age": 31,
    "birth_date": "1993-04-12",
    "course": "Avanzado",
    "accepts": True,
}


def template_payload(**overrides) -> dict:
    payload = {
        "name": "Curso de seguridad",
        "description": "Certificado de asistencia",
        "title_es": "Certificado",
        "title_en": "Certificate",
        "title_ar": "شهادة",
        "subtitle_es": "de asistencia",
        "design": {"border_style": "double", "border_color": "#112233", "columns": 3},
        "fields": FIELDS,
    }
    payload.update(overrides)
    return payload


def make_template(session, company, **overrides):
    return create_template(session, company.id, TemplateCreate.model_validate(template_payload(**overrides)))


def create_profile(client, role: str, username: str, full_name: str | None = None):
    resp = client.post(
        "/api/profiles",
        json={"username": username, "email": f"{username}@example.com", "full_name": full_name, "role": role},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return body, {"X-Access-Token": body["access_token"]}
