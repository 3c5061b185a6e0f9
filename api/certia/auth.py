import secrets
from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, status
from itsdangerous import BadSignature
from pydantic import BaseModel
from sqlmodel import Session

from .config import ADMIN_ACCESS_TOKEN, SYSTEM_ACCESS_TOKEN
from .db import get_session
from .models import Profile, Role
from .utils import make_token, read_token


class Actor(BaseModel):
    role: str  # admin|system|company|client
    profile_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    @property
    def label(self) -> str:
        if self.profile_id:
            return f"profile:{self.profile_id}"
        return self.role


SYSTEM_ACTOR = Actor(role="system")


def issue_profile_token(profile: Profile) -> str:
    return make_token({"profile_id": profile.id, "role": profile.role, "nonce": secrets.token_hex(8)})


def resolve_actor(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
) -> Actor:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if ADMIN_ACCESS_TOKEN and candidate == ADMIN_ACCESS_TOKEN:
        return Actor(role=Role.ADMIN.value)
    if SYSTEM_ACCESS_TOKEN and candidate == SYSTEM_ACCESS_TOKEN:
        return SYSTEM_ACTOR
    try:
        data = read_token(candidate)
    except BadSignature:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    profile = session.get(Profile, data.get("profile_id"))
    if not profile or profile.access_token != candidate:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    return Actor(role=profile.role, profile_id=profile.id)


def require_admin(actor: Actor = Depends(resolve_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


def require_company(actor: Actor = Depends(resolve_actor)) -> Actor:
    if actor.is_admin or actor.role == Role.COMPANY.value:
        return actor
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Company access required")


def require_client(actor: Actor = Depends(resolve_actor)) -> Actor:
    if actor.role != Role.CLIENT.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Client access required")
    return actor


def require_system(actor: Actor = Depends(resolve_actor)) -> Actor:
    if not actor.is_system:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System access required")
    return actor
