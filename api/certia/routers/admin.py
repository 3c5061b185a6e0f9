from fastapi import APIRouter, Depends
from sqlmodel import Session, select, func
from .. import workflow
from ..auth import require_admin
from ..db import get_session
from ..models import Profile, Template

router = APIRouter()

@router.get("/stats")
def system_stats(
    session: Session = Depends(get_session),
    ctx=Depends(require_admin),
):
    profiles_by_role = dict(
        session.exec(select(Profile.role, func.count()).select_from(Profile).group_by(Profile.role)).all()
    )
    return {
        "profiles": sum(profiles_by_role.values()),
        "profiles_by_role": profiles_by_role,
        "templates": session.exec(select(func.count()).select_from(Template)).one(),
        "active_templates": session.exec(
            select(func.count()).select_from(Template).where(Template.is_active == True)  # noqa: E712
        ).one(),
        "submissions": workflow.submission_stats(session),
    }
