
from enum import Enum
from typing import Optional
from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow


def new_id() -> str:
    return uuid4().hex


class Role(str, Enum):
    ADMIN = "admin"
    COMPANY = "company"
    CLIENT = "client"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    SIGNING = "signing"
    SIGNED = "signed"
    ERROR = "error"


class Profile(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    username: str = ORMField(index=True, unique=True)
    email: str
    full_name: Optional[str] = None
    role: str = Role.CLIENT.value
    access_token: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or self.email or "Cliente"


class Template(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    company_id: str = ORMField(index=True)
    name: str
    description: Optional[str] = None
    title_es: Optional[str] = None
    title_en: Optional[str] = None
    title_ar: Optional[str] = None
    subtitle_es: Optional[str] = None
    subtitle_en: Optional[str] = None
    subtitle_ar: Optional[str] = None
    design_json: str = "{}"
    fields_json: str = "[]"
    is_active: bool = True
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


class Submission(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    template_id: str = ORMField(index=True)
    client_id: str = ORMField(index=True)
    form_data_json: str = "{}"
    status: str = SubmissionStatus.PENDING.value
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    signature_transaction_id: Optional[str] = ORMField(default=None, index=True)
    signature_status: Optional[str] = None
    signed_pdf_url: Optional[str] = None
    signed_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)


class SubmissionFile(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    submission_id: str = ORMField(index=True)
    file_name: str
    file_path: str
    file_type: str = "application/octet-stream"
    file_size: Optional[int] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class SubmissionEvent(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    submission_id: str = ORMField(index=True)
    actor: str  # system|admin|profile:<id>
    type: str   # created|reviewed|approved|rejected|signing|signed|error|cancelled|reset
    meta_json: str = "{}"
    at: datetime = ORMField(default_factory=utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None


class SignatureTransaction(SQLModel, table=True):
    id: str = ORMField(primary_key=True)
    idempotency_key: str = ORMField(index=True, unique=True)
    submission_id: Optional[str] = None
    document_key: str
    file_name: str
    signer_name: Optional[str] = None
    status: str = "pending"  # pending|completed|failed|cancelled
    artifact_url: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    completed_at: Optional[datetime] = None
