"""Submission lifecycle.

    pending  -> reviewed | approved | rejected     owning company
    reviewed -> approved | rejected                owning company
    approved -> signing                            system
    signing  -> signed | error | approved          system
    error    -> approved                           owning company or admin

Every change is a single conditional UPDATE keyed on the status and version
the caller last saw; when another writer got there first no row matches and
ConflictError is raised instead of silently overwriting.
"""

import logging
from typing import Callable, Optional

from sqlalchemy import update
from sqlmodel import Session, func, select

from .auth import SYSTEM_ACTOR, Actor
from .config import REQUIRE_REJECTION_NOTES
from .errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from .forms import validate_form_data
from .models import Profile, Role, Submission, SubmissionEvent, SubmissionStatus, Template
from .notifications import notify_new_submission, notify_status_change, notify_submission_received
from .realtime import publish_change
from .rendering import certificate_filename, render_certificate
from .signature import CANCELLED, FAILURE, PENDING, SUCCESS, Initiation, SignatureProvider
from .templates import get_active_template, get_template, template_fields
from .utils import canonical_json, load_json, sha256_bytes, utcnow

logger = logging.getLogger(__name__)

S = SubmissionStatus
STATUSES = tuple(s.value for s in SubmissionStatus)

REVIEW = "review"
SYSTEM = "system"
OPERATOR = "operator"

TRANSITIONS = {
    (S.PENDING.value, S.REVIEWED.value): REVIEW,
    (S.PENDING.value, S.APPROVED.value): REVIEW,
    (S.PENDING.value, S.REJECTED.value): REVIEW,
    (S.REVIEWED.value, S.APPROVED.value): REVIEW,
    (S.REVIEWED.value, S.REJECTED.value): REVIEW,
    (S.APPROVED.value, S.SIGNING.value): SYSTEM,
    (S.SIGNING.value, S.SIGNED.value): SYSTEM,
    (S.SIGNING.value, S.ERROR.value): SYSTEM,
    (S.SIGNING.value, S.APPROVED.value): SYSTEM,
    (S.ERROR.value, S.APPROVED.value): OPERATOR,
}


def allowed_targets(status: str) -> list:
    return [to for (frm, to) in TRANSITIONS if frm == status]


def _event_type(current: str, target: str) -> str:
    if (current, target) == (S.SIGNING.value, S.APPROVED.value):
        return "cancelled"
    if (current, target) == (S.ERROR.value, S.APPROVED.value):
        return "reset"
    return target


def _append_event(session: Session, submission_id: str, actor: str, type_: str, meta: dict):
    last = session.exec(
        select(SubmissionEvent)
        .where(SubmissionEvent.submission_id == submission_id)
        .order_by(SubmissionEvent.id.desc())
    ).first()
    prev_hash = last.hash if last else "0" * 64
    payload = {"actor": actor, "type": type_, "meta": meta}
    event = SubmissionEvent(
        submission_id=submission_id,
        actor=actor,
        type=type_,
        meta_json=canonical_json(payload),
        prev_hash=prev_hash,
    )
    event.hash = sha256_bytes((prev_hash + event.meta_json).encode())
    session.add(event)


def get_submission(session: Session, submission_id: str) -> Submission:
    submission = session.get(Submission, submission_id)
    if not submission:
        raise NotFoundError(f"submission {submission_id} not found")
    return submission


def submission_form_data(submission: Submission) -> dict:
    return load_json(submission.form_data_json, {})


def serialize_submission(submission: Submission, template: Optional[Template] = None, client: Optional[Profile] = None) -> dict:
    data = {
        "id": submission.id,
        "template_id": submission.template_id,
        "client_id": submission.client_id,
        "form_data": submission_form_data(submission),
        "status": submission.status,
        "notes": submission.notes,
        "reviewed_at": submission.reviewed_at,
        "reviewed_by": submission.reviewed_by,
        "signature_transaction_id": submission.signature_transaction_id,
        "signature_status": submission.signature_status,
        "signed_pdf_url": submission.signed_pdf_url,
        "signed_at": submission.signed_at,
        "version": submission.version,
        "created_at": submission.created_at,
        "updated_at": submission.updated_at,
        "allowed_transitions": allowed_targets(submission.status),
    }
    if template is not None:
        data["template"] = {"id": template.id, "name": template.name, "title_es": template.title_es}
    if client is not None:
        data["client"] = {"id": client.id, "full_name": client.full_name, "email": client.email}
    return data


def create_submission(session: Session, template_id: str, client_id: str, form_data: dict) -> Submission:
    template = get_active_template(session, template_id)
    client = session.get(Profile, client_id)
    if not client:
        raise NotFoundError(f"client {client_id} not found")
    cleaned = validate_form_data(template_fields(template), form_data or {})
    submission = Submission(
        template_id=template.id,
        client_id=client.id,
        form_data_json=canonical_json(cleaned),
    )
    session.add(submission)
    session.flush()
    _append_event(session, submission.id, f"profile:{client.id}", "created", {"template_id": template.id})
    session.commit()
    session.refresh(submission)
    logger.info("submission %s created for template %s by %s", submission.id, template.id, client.id)
    publish_change("INSERT", submission)

    company = session.get(Profile, template.company_id)
    notify_new_submission(company.email if company else None, client.display_name, template.name, submission.id)
    notify_submission_received(client.email, client.display_name, template.name, submission.id)
    return submission


def _authorize(kind: str, template: Optional[Template], actor: Actor):
    owner = (
        template is not None
        and actor.role == Role.COMPANY.value
        and actor.profile_id == template.company_id
    )
    if kind == REVIEW and owner:
        return
    if kind == SYSTEM and actor.is_system:
        return
    if kind == OPERATOR and (owner or actor.is_admin):
        return
    raise UnauthorizedError(f"{actor.label} may not perform a {kind} transition on this submission")


def _companion_values(current: str, target: str, kind: str, actor: Actor, notes, transaction_id, artifact_url) -> dict:
    now = utcnow()
    if kind == REVIEW:
        if target == S.REJECTED.value and REQUIRE_REJECTION_NOTES and not (notes or "").strip():
            raise ValidationError("rejection requires notes")
        values = {"reviewed_at": now, "reviewed_by": actor.profile_id}
        if notes and target in (S.APPROVED.value, S.REJECTED.value):
            values["notes"] = notes
        return values
    if target == S.SIGNING.value:
        if not transaction_id:
            raise ValidationError("entering signing requires a transaction id")
        return {"signature_transaction_id": transaction_id, "signature_status": "signing"}
    if target == S.SIGNED.value:
        if not artifact_url:
            raise ValidationError("entering signed requires the signed artifact url")
        return {"signed_pdf_url": artifact_url, "signed_at": now, "signature_status": "completed"}
    if target == S.ERROR.value:
        return {"signature_status": "error"}
    if current == S.SIGNING.value:
        return {"signature_transaction_id": None, "signature_status": "cancelled"}
    return {"signature_transaction_id": None, "signature_status": None}


def transition(
    session: Session,
    submission_id: str,
    target: str,
    actor: Actor,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    transaction_id: Optional[str] = None,
    artifact_url: Optional[str] = None,
    reason: Optional[str] = None,
) -> Submission:
    target = getattr(target, "value", target)
    if target not in STATUSES:
        raise ValidationError(f"unknown status {target!r}")
    submission = get_submission(session, submission_id)
    current = submission.status
    kind = TRANSITIONS.get((current, target))
    if kind is None:
        raise InvalidTransitionError(f"cannot move submission from {current} to {target}")
    template = session.get(Template, submission.template_id)
    _authorize(kind, template, actor)
    values = _companion_values(current, target, kind, actor, notes, transaction_id, artifact_url)

    version = submission.version if expected_version is None else expected_version
    values.update(status=target, version=version + 1, updated_at=utcnow())
    result = session.exec(
        update(Submission)
        .where(
            Submission.id == submission.id,
            Submission.status == current,
            Submission.version == version,
        )
        .values(**values)
    )
    if result.rowcount == 0:
        session.rollback()
        raise ConflictError(f"submission {submission_id} changed concurrently; reload and retry")
    meta = {"from": current, "to": target, "version": version + 1}
    for key in ("notes", "signature_transaction_id", "signed_pdf_url"):
        if values.get(key):
            meta[key] = values[key]
    if reason:
        meta["reason"] = reason
    _append_event(session, submission.id, actor.label, _event_type(current, target), meta)
    session.commit()
    session.refresh(submission)
    logger.info("submission %s: %s -> %s by %s", submission.id, current, target, actor.label)
    publish_change("UPDATE", submission)

    client = session.get(Profile, submission.client_id)
    if client:
        notify_status_change(
            client.email,
            client.display_name,
            template.name if template else submission.template_id,
            current,
            target,
            submission.notes if target in (S.APPROVED.value, S.REJECTED.value) else None,
        )
    return submission


def review(session: Session, submission_id: str, actor: Actor, expected_version: Optional[int] = None) -> Submission:
    return transition(session, submission_id, S.REVIEWED.value, actor, expected_version=expected_version)


def approve(session: Session, submission_id: str, actor: Actor, notes: Optional[str] = None, expected_version: Optional[int] = None) -> Submission:
    return transition(session, submission_id, S.APPROVED.value, actor, notes=notes, expected_version=expected_version)


def reject(session: Session, submission_id: str, actor: Actor, notes: Optional[str] = None, expected_version: Optional[int] = None) -> Submission:
    return transition(session, submission_id, S.REJECTED.value, actor, notes=notes, expected_version=expected_version)


def complete_signing(session: Session, submission_id: str, artifact_url: str) -> Submission:
    return transition(session, submission_id, S.SIGNED.value, SYSTEM_ACTOR, artifact_url=artifact_url)


def fail_signing(session: Session, submission_id: str, reason: Optional[str] = None) -> Submission:
    return transition(session, submission_id, S.ERROR.value, SYSTEM_ACTOR, reason=reason)


def cancel_signing(session: Session, submission_id: str, provider: Optional[SignatureProvider] = None) -> Submission:
    submission = get_submission(session, submission_id)
    if submission.status != S.SIGNING.value:
        raise InvalidTransitionError(f"cannot cancel signing of submission {submission_id} in {submission.status}")
    if provider is not None and submission.signature_transaction_id:
        provider.cancel(submission.signature_transaction_id)
    return transition(session, submission_id, S.APPROVED.value, SYSTEM_ACTOR)


def reset_from_error(session: Session, submission_id: str, actor: Actor) -> Submission:
    return transition(session, submission_id, S.APPROVED.value, actor)


def start_signing(
    session: Session,
    submission_id: str,
    provider: SignatureProvider,
    renderer: Callable[..., bytes] = render_certificate,
) -> tuple[Submission, Initiation]:
    """Render the certificate and open a signature transaction.

    Nothing is written to the submission until the provider has answered, so
    a renderer or provider failure leaves it `approved`.
    """
    submission = get_submission(session, submission_id)
    if submission.status != S.APPROVED.value:
        raise InvalidTransitionError(f"cannot start signing from {submission.status}")
    if submission.signed_pdf_url:
        raise InvalidTransitionError(f"submission {submission_id} already has a signed document")
    version = submission.version
    template = get_template(session, submission.template_id)
    client = session.get(Profile, submission.client_id)
    company = session.get(Profile, template.company_id)
    recipient = client.display_name if client else "Cliente"

    try:
        document = renderer(template, submission_form_data(submission), recipient)
    except Exception as exc:
        logger.exception("rendering submission %s failed", submission_id)
        raise ProviderError(f"document rendering failed: {exc}") from exc

    try:
        initiation = provider.initiate(
            document,
            certificate_filename(template, recipient),
            f"{submission.id}:{version}",
            metadata={
                "submission_id": submission.id,
                "signer_name": company.display_name if company else "CERTIA",
            },
        )
    except ProviderError:
        raise
    except Exception as exc:
        logger.exception("signature initiate for submission %s failed", submission_id)
        raise ProviderError(f"signature provider failed: {exc}") from exc

    try:
        submission = transition(
            session,
            submission_id,
            S.SIGNING.value,
            SYSTEM_ACTOR,
            expected_version=version,
            transaction_id=initiation.transaction_id,
        )
    except ConflictError:
        logger.warning(
            "submission %s changed while signature transaction %s was opened; remote outcome unknown",
            submission_id,
            initiation.transaction_id,
        )
        raise
    return submission, initiation


def find_by_transaction(session: Session, transaction_id: str) -> Submission:
    submission = session.exec(
        select(Submission).where(Submission.signature_transaction_id == transaction_id)
    ).first()
    if not submission:
        raise NotFoundError(f"no submission holds signature transaction {transaction_id}")
    return submission


def resolve_signing(
    session: Session,
    transaction_id: str,
    outcome: str,
    artifact_url: Optional[str] = None,
    reason: Optional[str] = None,
) -> Submission:
    """Apply a provider outcome. Replaying an outcome that was already applied changes nothing."""
    submission = find_by_transaction(session, transaction_id)
    if outcome == PENDING:
        return submission
    if outcome == SUCCESS:
        if not artifact_url:
            raise ValidationError("a successful signature needs an artifact url")
        if submission.status == S.SIGNED.value:
            if submission.signed_pdf_url == artifact_url:
                return submission
            raise ConflictError(f"submission {submission.id} is already signed with a different artifact")
        return transition(session, submission.id, S.SIGNED.value, SYSTEM_ACTOR, artifact_url=artifact_url)
    if outcome == FAILURE:
        if submission.status == S.ERROR.value:
            return submission
        return transition(session, submission.id, S.ERROR.value, SYSTEM_ACTOR, reason=reason)
    if outcome == CANCELLED:
        if submission.status != S.SIGNING.value:
            raise InvalidTransitionError(f"cannot cancel signing of submission {submission.id} in {submission.status}")
        return transition(session, submission.id, S.APPROVED.value, SYSTEM_ACTOR, reason=reason)
    raise ValidationError(f"unknown signing outcome {outcome!r}")


def poll_signing(session: Session, submission_id: str, provider: SignatureProvider) -> Submission:
    submission = get_submission(session, submission_id)
    if submission.status != S.SIGNING.value or not submission.signature_transaction_id:
        return submission
    resolution = provider.resolve(submission.signature_transaction_id)
    return resolve_signing(
        session,
        submission.signature_transaction_id,
        resolution.outcome,
        artifact_url=resolution.artifact_ref,
        reason=resolution.reason,
    )


def _check_status_filter(status: Optional[str]):
    if status and status not in STATUSES:
        raise ValidationError(f"unknown status {status!r}")


def list_for_reviewer(session: Session, company_id: str, status: Optional[str] = None):
    """(submission, template, client) rows for the company's templates, newest first."""
    _check_status_filter(status)
    stmt = (
        select(Submission, Template, Profile)
        .join(Template, Submission.template_id == Template.id)
        .join(Profile, Submission.client_id == Profile.id, isouter=True)
        .where(Template.company_id == company_id)
    )
    if status:
        stmt = stmt.where(Submission.status == status)
    return session.exec(stmt.order_by(Submission.created_at.desc())).all()


def list_for_client(session: Session, client_id: str, status: Optional[str] = None):
    _check_status_filter(status)
    stmt = (
        select(Submission, Template)
        .join(Template, Submission.template_id == Template.id, isouter=True)
        .where(Submission.client_id == client_id)
    )
    if status:
        stmt = stmt.where(Submission.status == status)
    return session.exec(stmt.order_by(Submission.created_at.desc())).all()


def submission_stats(session: Session, company_id: Optional[str] = None) -> dict:
    stmt = select(Submission.status, func.count()).select_from(Submission)
    if company_id:
        stmt = stmt.join(Template, Submission.template_id == Template.id).where(Template.company_id == company_id)
    counts = {status: 0 for status in STATUSES}
    for status, count in session.exec(stmt.group_by(Submission.status)).all():
        counts[status] = count
    counts["total"] = sum(counts[s] for s in STATUSES)
    return counts
