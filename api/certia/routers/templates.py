from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlmodel import Session
from .. import templates as template_service
from ..auth import Actor, require_company, resolve_actor
from ..config import ASSETS_BUCKET, FILES_BUCKET, MAX_UPLOAD_BYTES
from ..db import get_session
from ..models import Role
from ..schemas import TemplateCreate, TemplateToggle, TemplateUpdate
from ..storage import delete_objects, public_url, put_bytes
from ..utils import safe_filename, utcnow, canonical_json

router = APIRouter()

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif", "image/svg+xml"}
ASSET_SLOTS = {"logo_left", "logo_right", "background_image"}

def _company_scope(actor: Actor, company_id: str | None) -> str:
    if actor.role == Role.COMPANY.value:
        return actor.profile_id
    if not company_id:
        raise HTTPException(400, "company_id is required for admin requests")
    return company_id

@router.post("", status_code=201)
def create_template(
    payload: TemplateCreate,
    company_id: str | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    template = template_service.create_template(session, _company_scope(actor, company_id), payload)
    return template_service.serialize_template(template)

@router.get("")
def list_templates(
    company_id: str | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    templates = template_service.list_company_templates(session, _company_scope(actor, company_id))
    return [template_service.serialize_template(t) for t in templates]

@router.get("/active")
def list_active_templates(
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    return [template_service.serialize_template(t) for t in template_service.list_active_templates(session)]

@router.get("/{template_id}")
def get_template(
    template_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    template = template_service.get_template(session, template_id)
    owner = actor.is_admin or actor.profile_id == template.company_id
    if not template.is_active and not owner:
        raise HTTPException(404, "template not found")
    return template_service.serialize_template(template)

@router.put("/{template_id}")
def update_template(
    template_id: str,
    payload: TemplateUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    template = template_service.update_template(session, template_id, payload, actor)
    return template_service.serialize_template(template)

@router.patch("/{template_id}/active")
def toggle_template(
    template_id: str,
    payload: TemplateToggle,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    template = template_service.set_active(session, template_id, payload.is_active, actor)
    return template_service.serialize_template(template)

@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: str,
    force: bool = False,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    keys = template_service.delete_template(session, template_id, actor, force=force)
    delete_objects(FILES_BUCKET, keys)

@router.post("/{template_id}/assets/{slot}")
async def upload_asset(
    template_id: str,
    slot: str,
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    if slot not in ASSET_SLOTS:
        raise HTTPException(400, f"slot must be one of {', '.join(sorted(ASSET_SLOTS))}")
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(415, "only image uploads are allowed")
    data = await file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(413, "file too large")
    template = template_service.get_template(session, template_id)
    if not (actor.is_admin or actor.profile_id == template.company_id):
        raise HTTPException(403, "only the owning company may change this template")
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    key = f"{template.company_id}/{template.id}/{slot}_{stamp}_{safe_filename(file.filename)}"
    put_bytes(ASSETS_BUCKET, key, data, content_type=file.content_type)
    url = public_url(ASSETS_BUCKET, key)
    design = template_service.template_design(template).model_copy(update={slot: url})
    template.design_json = canonical_json(design.model_dump())
    template.updated_at = utcnow()
    session.add(template)
    session.commit()
    return {"slot": slot, "url": url}
