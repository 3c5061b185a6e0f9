import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from ..auth import Actor, issue_profile_token, require_admin, resolve_actor
from ..config import FILES_BUCKET
from ..db import get_session
from ..models import Profile, Submission, Template
from ..schemas import ProfileCreate, ProfileUpdate
from ..storage import delete_objects
from ..templates import purge_submissions
from ..utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

def _serialize_profile(profile: Profile, include_token: bool = False):
    data = {
        "id": profile.id,
        "username": profile.username,
        "email": profile.email,
        "full_name": profile.full_name,
        "role": profile.role,
        "created_at": profile.created_at,
        "updated_at": profile.updated_at,
    }
    if include_token:
        data["access_token"] = profile.access_token
    return data

def _get_profile(session: Session, profile_id: str) -> Profile:
    profile = session.get(Profile, profile_id)
    if not profile:
        raise HTTPException(404, "profile not found")
    return profile

@router.post("", status_code=201)
def create_profile(
    payload: ProfileCreate,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    existing = session.exec(select(Profile).where(Profile.username == payload.username)).first()
    if existing:
        raise HTTPException(status.HTTP_409_CONFLICT, "username already exists")
    profile = Profile(**payload.model_dump())
    session.add(profile)
    session.flush()
    profile.access_token = issue_profile_token(profile)
    session.commit()
    session.refresh(profile)
    logger.info("profile %s (%s) created", profile.id, profile.role)
    return _serialize_profile(profile, include_token=True)

@router.get("")
def list_profiles(
    role: str | None = None,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    stmt = select(Profile)
    if role:
        stmt = stmt.where(Profile.role == role)
    return [_serialize_profile(p) for p in session.exec(stmt.order_by(Profile.created_at.desc())).all()]

@router.get("/me")
def get_me(session: Session = Depends(get_session), actor: Actor = Depends(resolve_actor)):
    if not actor.profile_id:
        return {"role": actor.role}
    return _serialize_profile(_get_profile(session, actor.profile_id))

@router.patch("/{profile_id}")
def update_profile(
    profile_id: str,
    payload: ProfileUpdate,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    profile = _get_profile(session, profile_id)
    data = payload.model_dump(exclude_unset=True)
    for key, value in data.items():
        setattr(profile, key, value)
    if "role" in data:
        profile.access_token = issue_profile_token(profile)
    profile.updated_at = utcnow()
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return _serialize_profile(profile, include_token="role" in data)

@router.post("/{profile_id}/access-token")
def regenerate_access_token(
    profile_id: str,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    profile = _get_profile(session, profile_id)
    profile.access_token = issue_profile_token(profile)
    profile.updated_at = utcnow()
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return {"access_token": profile.access_token}

@router.delete("/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_profile(
    profile_id: str,
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    profile = _get_profile(session, profile_id)

    # client-owned submissions, then every submission against the company's templates
    template_ids = session.exec(select(Template.id).where(Template.company_id == profile_id)).all()
    submission_ids = set(session.exec(select(Submission.id).where(Submission.client_id == profile_id)).all())
    if template_ids:
        submission_ids.update(
            session.exec(select(Submission.id).where(Submission.template_id.in_(template_ids))).all()
        )
    file_keys = purge_submissions(session, list(submission_ids))
    for template in session.exec(select(Template).where(Template.company_id == profile_id)).all():
        session.delete(template)
    session.delete(profile)
    session.commit()
    logger.info(
        "profile %s deleted with %d template(s) and %d submission(s)",
        profile_id,
        len(template_ids),
        len(submission_ids),
    )
    delete_objects(FILES_BUCKET, file_keys)
