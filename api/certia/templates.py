"""Template entity manager: CRUD scoped to the owning company."""

import logging
from typing import List, Optional
from sqlmodel import Session, select, func

from .auth import Actor
from .errors import ConflictError, NotFoundError, UnauthorizedError
from .models import Template, Submission, SubmissionFile, SubmissionEvent, Role
from .schemas import DesignSpec, FieldSpec, TemplateCreate, TemplateUpdate
from .utils import canonical_json, load_json, utcnow

logger = logging.getLogger(__name__)

_TEXT_COLUMNS = ("name", "description", "title_es", "title_en", "title_ar", "subtitle_es", "subtitle_en", "subtitle_ar")


def template_fields(template: Template) -> List[FieldSpec]:
    raw = load_json(template.fields_json, [])
    fields = [FieldSpec.model_validate(item) for item in raw]
    return sorted(fields, key=lambda f: f.order)


def template_design(template: Template) -> DesignSpec:
    return DesignSpec.model_validate(load_json(template.design_json, {}))


def serialize_template(template: Template) -> dict:
    data = {col: getattr(template, col) for col in _TEXT_COLUMNS}
    data.update(
        {
            "id": template.id,
            "company_id": template.company_id,
            "design": template_design(template).model_dump(),
            "fields": [f.model_dump() for f in template_fields(template)],
            "is_active": template.is_active,
            "created_at": template.created_at,
            "updated_at": template.updated_at,
        }
    )
    return data


def _ensure_owner(template: Template, actor: Actor):
    if actor.is_admin:
        return
    if actor.role == Role.COMPANY.value and actor.profile_id == template.company_id:
        return
    raise UnauthorizedError("only the owning company may change this template")


def get_template(session: Session, template_id: str) -> Template:
    template = session.get(Template, template_id)
    if not template:
        raise NotFoundError(f"template {template_id} not found")
    return template


def get_active_template(session: Session, template_id: str) -> Template:
    template = session.get(Template, template_id)
    if not template or not template.is_active:
        raise NotFoundError(f"template {template_id} not found or inactive")
    return template


def create_template(session: Session, company_id: str, data: TemplateCreate) -> Template:
    template = Template(
        company_id=company_id,
        design_json=canonical_json(data.design.model_dump()),
        fields_json=canonical_json([f.model_dump() for f in data.fields]),
        is_active=data.is_active,
        **{col: getattr(data, col) for col in _TEXT_COLUMNS},
    )
    session.add(template)
    session.commit()
    session.refresh(template)
    logger.info("template %s created for company %s", template.id, company_id)
    return template


def update_template(session: Session, template_id: str, data: TemplateUpdate, actor: Actor) -> Template:
    template = get_template(session, template_id)
    _ensure_owner(template, actor)
    changes = data.model_dump(exclude_unset=True)
    if "design" in changes and data.design is not None:
        template.design_json = canonical_json(data.design.model_dump())
    if "fields" in changes and data.fields is not None:
        template.fields_json = canonical_json([f.model_dump() for f in data.fields])
    for key in _TEXT_COLUMNS + ("is_active",):
        if key in changes and changes[key] is not None:
            setattr(template, key, changes[key])
    template.updated_at = utcnow()
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


def set_active(session: Session, template_id: str, is_active: bool, actor: Actor) -> Template:
    template = get_template(session, template_id)
    _ensure_owner(template, actor)
    template.is_active = is_active
    template.updated_at = utcnow()
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


def list_company_templates(session: Session, company_id: str) -> List[Template]:
    return session.exec(
        select(Template).where(Template.company_id == company_id).order_by(Template.created_at.desc())
    ).all()


def list_active_templates(session: Session) -> List[Template]:
    return session.exec(
        select(Template).where(Template.is_active == True).order_by(Template.created_at.desc())  # noqa: E712
    ).all()


def count_dependents(session: Session, template_id: str) -> int:
    return session.exec(
        select(func.count()).select_from(Submission).where(Submission.template_id == template_id)
    ).one()


def purge_submissions(session: Session, submission_ids: List[str]) -> List[str]:
    """Delete submissions with their files and events; returns storage keys to remove after commit."""
    if not submission_ids:
        return []
    keys = []
    files = session.exec(select(SubmissionFile).where(SubmissionFile.submission_id.in_(submission_ids))).all()
    for f in files:
        keys.append(f.file_path)
        session.delete(f)
    events = session.exec(select(SubmissionEvent).where(SubmissionEvent.submission_id.in_(submission_ids))).all()
    for event in events:
        session.delete(event)
    for submission in session.exec(select(Submission).where(Submission.id.in_(submission_ids))).all():
        session.delete(submission)
    return keys


def delete_template(session: Session, template_id: str, actor: Actor, force: bool = False) -> List[str]:
    template = get_template(session, template_id)
    _ensure_owner(template, actor)
    dependents = count_dependents(session, template_id)
    if dependents and not force:
        raise ConflictError(f"template {template_id} has {dependents} submission(s); pass force=true to delete them too")
    submission_ids = session.exec(select(Submission.id).where(Submission.template_id == template_id)).all()
    keys = purge_submissions(session, list(submission_ids))
    session.delete(template)
    session.commit()
    logger.info("template %s deleted with %d submission(s)", template_id, len(submission_ids))
    return keys
