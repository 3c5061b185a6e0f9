import logging
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.responses import RedirectResponse
from sqlmodel import Session, select
from .. import workflow
from ..auth import Actor, require_client, require_company, resolve_actor
from ..config import FILES_BUCKET, MAX_UPLOAD_BYTES
from ..db import get_session
from ..models import Profile, Role, SubmissionEvent, SubmissionFile, Template
from ..realtime import subscribe
from ..rendering import certificate_filename, render_certificate
from ..schemas import ReviewAction, SubmissionCreate, TransitionRequest
from ..storage import delete_object, get_bytes, put_bytes
from ..utils import content_disposition, load_json, safe_filename

logger = logging.getLogger(__name__)

router = APIRouter()

def _load_visible(session: Session, submission_id: str, actor: Actor):
    submission = workflow.get_submission(session, submission_id)
    template = session.get(Template, submission.template_id)
    if actor.is_admin or actor.is_system:
        return submission, template
    if actor.profile_id == submission.client_id:
        return submission, template
    if template and actor.role == Role.COMPANY.value and actor.profile_id == template.company_id:
        return submission, template
    raise HTTPException(404, "submission not found")

def _company_scope(actor: Actor, company_id: str | None) -> str:
    if actor.role == Role.COMPANY.value:
        return actor.profile_id
    if not company_id:
        raise HTTPException(400, "company_id is required for admin requests")
    return company_id

@router.post("", status_code=201)
def create_submission(
    payload: SubmissionCreate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_client),
):
    submission = workflow.create_submission(session, payload.template_id, actor.profile_id, payload.form_data)
    return workflow.serialize_submission(submission)

@router.get("")
def list_submissions(
    status: str | None = None,
    company_id: str | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    if actor.role == Role.CLIENT.value:
        rows = workflow.list_for_client(session, actor.profile_id, status)
        return [workflow.serialize_submission(sub, template=tmpl) for sub, tmpl in rows]
    if not (actor.is_admin or actor.role == Role.COMPANY.value):
        raise HTTPException(403, "Company access required")
    rows = workflow.list_for_reviewer(session, _company_scope(actor, company_id), status)
    return [workflow.serialize_submission(sub, template=tmpl, client=client) for sub, tmpl, client in rows]

@router.get("/stats")
def submission_stats(
    company_id: str | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    return workflow.submission_stats(session, _company_scope(actor, company_id))

@router.websocket("/stream")
async def stream_changes(websocket: WebSocket):
    # read-view refresh only; payloads carry ids and status, never form data
    await websocket.accept()
    try:
        async for payload in subscribe():
            await websocket.send_text(payload)
    except WebSocketDisconnect:
        logger.debug("realtime subscriber went away")

@router.get("/{submission_id}")
def get_submission(
    submission_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    submission, template = _load_visible(session, submission_id, actor)
    client = session.get(Profile, submission.client_id)
    return workflow.serialize_submission(submission, template=template, client=client)

@router.post("/{submission_id}/transition")
def transition_submission(
    submission_id: str,
    payload: TransitionRequest,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    submission = workflow.transition(
        session,
        submission_id,
        payload.status,
        actor,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    return workflow.serialize_submission(submission)

@router.post("/{submission_id}/review")
def review_submission(
    submission_id: str,
    payload: ReviewAction | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    payload = payload or ReviewAction()
    submission = workflow.review(session, submission_id, actor, expected_version=payload.expected_version)
    return workflow.serialize_submission(submission)

@router.post("/{submission_id}/approve")
def approve_submission(
    submission_id: str,
    payload: ReviewAction | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    payload = payload or ReviewAction()
    submission = workflow.approve(session, submission_id, actor, notes=payload.notes, expected_version=payload.expected_version)
    return workflow.serialize_submission(submission)

@router.post("/{submission_id}/reject")
def reject_submission(
    submission_id: str,
    payload: ReviewAction | None = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    payload = payload or ReviewAction()
    submission = workflow.reject(session, submission_id, actor, notes=payload.notes, expected_version=payload.expected_version)
    return workflow.serialize_submission(submission)

@router.post("/{submission_id}/reset")
def reset_submission(
    submission_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_company),
):
    submission = workflow.reset_from_error(session, submission_id, actor)
    return workflow.serialize_submission(submission)

@router.get("/{submission_id}/events")
def list_events(
    submission_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    _load_visible(session, submission_id, actor)
    events = session.exec(
        select(SubmissionEvent).where(SubmissionEvent.submission_id == submission_id).order_by(SubmissionEvent.id)
    ).all()
    return [
        {
            "id": e.id,
            "actor": e.actor,
            "type": e.type,
            "meta": load_json(e.meta_json, {}).get("meta", {}),
            "at": e.at,
            "hash": e.hash,
            "prev_hash": e.prev_hash,
        }
        for e in events
    ]

@router.get("/{submission_id}/pdf")
def download_pdf(
    submission_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    submission, template = _load_visible(session, submission_id, actor)
    if submission.signed_pdf_url:
        return RedirectResponse(submission.signed_pdf_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    if template is None:
        raise HTTPException(404, "template not found")
    client = session.get(Profile, submission.client_id)
    recipient = client.display_name if client else "Cliente"
    pdf_bytes = render_certificate(template, workflow.submission_form_data(submission), recipient)
    filename = certificate_filename(template, recipient)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": content_disposition(filename)},
    )

def _serialize_file(f: SubmissionFile):
    return {
        "id": f.id,
        "file_name": f.file_name,
        "file_type": f.file_type,
        "file_size": f.file_size,
        "created_at": f.created_at,
    }

@router.post("/{submission_id}/files", status_code=201)
async def upload_file(
    submission_id: str,
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    submission, _ = _load_visible(session, submission_id, actor)
    data = await file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(413, "file too large")
    record = SubmissionFile(
        submission_id=submission.id,
        file_name=file.filename or "file",
        file_path="pending",
        file_type=file.content_type or "application/octet-stream",
        file_size=len(data),
    )
    session.add(record)
    session.flush()
    key = f"submissions/{submission.id}/files/{record.id}-{safe_filename(file.filename)}"
    put_bytes(FILES_BUCKET, key, data, content_type=record.file_type)
    record.file_path = key
    session.add(record)
    session.commit()
    session.refresh(record)
    return _serialize_file(record)

@router.get("/{submission_id}/files")
def list_files(
    submission_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    _load_visible(session, submission_id, actor)
    files = session.exec(
        select(SubmissionFile).where(SubmissionFile.submission_id == submission_id).order_by(SubmissionFile.created_at)
    ).all()
    return [_serialize_file(f) for f in files]

@router.get("/{submission_id}/files/{file_id}")
def download_file(
    submission_id: str,
    file_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    _load_visible(session, submission_id, actor)
    record = session.get(SubmissionFile, file_id)
    if not record or record.submission_id != submission_id:
        raise HTTPException(404, "file not found")
    return Response(
        content=get_bytes(FILES_BUCKET, record.file_path),
        media_type=record.file_type,
        headers={"Content-Disposition": content_disposition(record.file_name)},
    )

@router.delete("/{submission_id}/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    submission_id: str,
    file_id: str,
    session: Session = Depends(get_session),
    actor: Actor = Depends(resolve_actor),
):
    _load_visible(session, submission_id, actor)
    record = session.get(SubmissionFile, file_id)
    if not record or record.submission_id != submission_id:
        raise HTTPException(404, "file not found")
    delete_object(FILES_BUCKET, record.file_path)
    session.delete(record)
    session.commit()
