import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from .. import workflow
from ..auth import Actor, require_company, require_system, resolve_actor
from ..config import SIGNATURE_POLL_ASYNC
from ..db import get_session
from ..models import SignatureTransaction, Template
from ..schemas import SigningResolution
from ..signature import SignatureProvider, get_signature_provider

logger = logging.getLogger(__name__)

router = APIRouter()

def get_provider(session: Session = Depends(get_session)) -> SignatureProvider:
    return get_signature_provider(session)

def _ensure_owner(session: Session, submission_id: str, actor: Actor):
    submission = workflow.get_submission(session, submission_id)
    if actor.is_admin or actor.is_system:
        return submission
    template = session.get(Template, submission.template_id)
    if not template or template.company_id != actor.profile_id:
        raise HTTPException(403, "only the owning company may sign this submission")
    return submission

@router.post("/submissions/{submission_id}/start")
def start_signing(
    submission_id: str,
    session: Session = Depends(get_session),
    provider: SignatureProvider = Depends(get_provider),
    actor: Actor = Depends(require_company),
):
    _ensure_owner(session, submission_id, actor)
    submission, initiation = workflow.start_signing(session, submission_id, provider)
    if SIGNATURE_POLL_ASYNC:
        from ..worker import poll_signature
        poll_signature.delay(submission.id)
    return {
        "submission": workflow.serialize_submission(submission),
        "transaction_id": initiation.transaction_id,
        "continuation_ref": initiation.continuation_ref,
    }

@router.post("/submissions/{submission_id}/poll")
def poll_signing(
    submission_id: str,
    session: Session = Depends(get_session),
    provider: SignatureProvider = Depends(get_provider),
    actor: Actor = Depends(resolve_actor),
):
    _ensure_owner(session, submission_id, actor)
    submission = workflow.poll_signing(session, submission_id, provider)
    return workflow.serialize_submission(submission)

@router.post("/submissions/{submission_id}/cancel")
def cancel_signing(
    submission_id: str,
    session: Session = Depends(get_session),
    provider: SignatureProvider = Depends(get_provider),
    actor: Actor = Depends(require_company),
):
    _ensure_owner(session, submission_id, actor)
    submission = workflow.cancel_signing(session, submission_id, provider)
    return workflow.serialize_submission(submission)

@router.post("/callback")
def signing_callback(
    payload: SigningResolution,
    session: Session = Depends(get_session),
    ctx=Depends(require_system),
):
    submission = workflow.resolve_signing(
        session,
        payload.transaction_id,
        payload.outcome,
        artifact_url=payload.artifact_url,
        reason=payload.reason,
    )
    return workflow.serialize_submission(submission)

# Mock signing page backend: what /mock-firma calls when the signer confirms or backs out.

def _mock_transaction(session: Session, transaction_id: str, actor: Actor) -> SignatureTransaction:
    tx = session.get(SignatureTransaction, transaction_id)
    if not tx:
        raise HTTPException(404, "transaction not found")
    if tx.submission_id:
        _ensure_owner(session, tx.submission_id, actor)
    return tx

@router.get("/mock/{transaction_id}")
def mock_transaction(
    transaction_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    tx = _mock_transaction(session, transaction_id, actor)
    return {
        "transaction_id": tx.id,
        "submission_id": tx.submission_id,
        "file_name": tx.file_name,
        "signer_name": tx.signer_name,
        "status": tx.status,
        "artifact_url": tx.artifact_url,
    }

@router.post("/mock/{transaction_id}/confirm")
def mock_confirm(
    transaction_id: str,
    session: Session = Depends(get_session),
    provider: SignatureProvider = Depends(get_provider),
    actor: Actor = Depends(resolve_actor),
):
    _mock_transaction(session, transaction_id, actor)
    resolution = provider.resolve(transaction_id)
    submission = workflow.resolve_signing(
        session,
        transaction_id,
        resolution.outcome,
        artifact_url=resolution.artifact_ref,
        reason=resolution.reason,
    )
    return workflow.serialize_submission(submission)

@router.post("/mock/{transaction_id}/cancel")
def mock_cancel(
    transaction_id: str,
    session: Session = Depends(get_session),
    provider: SignatureProvider = Depends(get_provider),
    actor: Actor = Depends(resolve_actor),
):
    tx = _mock_transaction(session, transaction_id, actor)
    provider.cancel(tx.id)
    submission = workflow.resolve_signing(session, tx.id, "cancelled")
    return workflow.serialize_submission(submission)
