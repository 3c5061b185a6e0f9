import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from certia import workflow
from certia.auth import SYSTEM_ACTOR, Actor
from certia.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from certia.models import Submission, SubmissionEvent
from certia.signature import CANCELLED, FAILURE, PENDING, SUCCESS, Initiation, SignatureProvider
from certia.templates import set_active

from factories import FORM_DATA, make_template


class RecordingProvider(SignatureProvider):
    name = "recording"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self.cancelled = []

    def initiate(self, document_bytes, file_name, idempotency_key, metadata=None):
        self.calls.append((file_name, idempotency_key))
        if self.fail:
            raise RuntimeError("provider down")
        return Initiation(f"TX-{len(self.calls)}", "https://sign.example/continue")

    def resolve(self, transaction_id):
        raise AssertionError("not used")

    def cancel(self, transaction_id):
        self.cancelled.append(transaction_id)


def fake_renderer(template, form_data, recipient):
    return b"%PDF-1.4 fake"


@pytest.fixture
def company(make_profile):
    return make_profile("company", "acme", full_name="Acme S.A.")


@pytest.fixture
def client_profile(make_profile):
    return make_profile("client", "ana", full_name="Ana Pérez")


@pytest.fixture
def template(session, company):
    return make_template(session, company)


@pytest.fixture
def owner(company):
    return Actor(role="company", profile_id=company.id)


@pytest.fixture
def submission(session, template, client_profile, sent_emails):
    return workflow.create_submission(session, template.id, client_profile.id, dict(FORM_DATA))


def _force_status(session, submission_id, status, **extra):
    session.exec(update(Submission).where(Submission.id == submission_id).values(status=status, **extra))
    session.commit()


def test_create_submission_starts_pending_and_notifies(session, submission, sent_emails, published_changes):
    assert submission.status == "pending"
    assert submission.version == 1
    assert workflow.submission_form_data(submission)["age"] == 31
    recipients = sorted(m["to"] for m in sent_emails)
    assert recipients == ["acme@example.com", "ana@example.com"]
    assert published_changes == [("INSERT", submission.id, "pending")]
    events = session.exec(select(SubmissionEvent).where(SubmissionEvent.submission_id == submission.id)).all()
    assert [e.type for e in events] == ["created"]


def test_create_submission_rejects_empty_form(session, template, client_profile):
    with pytest.raises(ValidationError):
        workflow.create_submission(session, template.id, client_profile.id, {})
    assert session.exec(select(Submission)).all() == []


@pytest.mark.parametrize(
    "changes",
    [
        {"full_name": ""},
        {"accepts": False},
        {"age": "many"},
        {"age": "NaN"},
        {"age": "inf"},
        {"birth_date": "12/04/1993"},
        {"birth_date": "19930412"},
        {"course": "Experto"},
        {"email": "not-an-email"},
        {"nickname": "Anita"},
    ],
)
def test_create_submission_validates_against_fields(session, template, client_profile, changes):
    data = dict(FORM_DATA)
    data.update(changes)
    with pytest.raises(ValidationError):
        workflow.create_submission(session, template.id, client_profile.id, data)


def test_create_submission_needs_active_template(session, template, client_profile):
    set_active(session, template.id, False, Actor(role="admin"))
    with pytest.raises(NotFoundError):
        workflow.create_submission(session, template.id, client_profile.id, dict(FORM_DATA))
    with pytest.raises(NotFoundError):
        workflow.create_submission(session, "missing", client_profile.id, dict(FORM_DATA))


def test_unknown_status_is_a_validation_error(session, submission, owner):
    with pytest.raises(ValidationError):
        workflow.transition(session, submission.id, "archived", owner)


def test_every_edge_outside_the_table_is_refused(session, submission, owner):
    statuses = workflow.STATUSES
    for current in statuses:
        for target in statuses:
            if (current, target) in workflow.TRANSITIONS:
                continue
            _force_status(session, submission.id, current)
            with pytest.raises(InvalidTransitionError):
                workflow.transition(session, submission.id, target, SYSTEM_ACTOR)
            session.refresh(submission)
            assert submission.status == current


def test_pending_cannot_jump_to_signed(session, submission):
    with pytest.raises(InvalidTransitionError):
        workflow.complete_signing(session, submission.id, "https://files/signed.pdf")
    session.refresh(submission)
    assert submission.status == "pending"
    assert submission.signed_pdf_url is None


def test_review_edges_belong_to_owning_company(session, submission, make_profile, client_profile):
    rival = make_profile("company", "rival")
    with pytest.raises(UnauthorizedError):
        workflow.approve(session, submission.id, Actor(role="company", profile_id=rival.id))
    with pytest.raises(UnauthorizedError):
        workflow.approve(session, submission.id, Actor(role="client", profile_id=client_profile.id))
    with pytest.raises(UnauthorizedError):
        workflow.approve(session, submission.id, SYSTEM_ACTOR)


def test_signing_edges_belong_to_system(session, submission, owner):
    _force_status(session, submission.id, "approved")
    with pytest.raises(UnauthorizedError):
        workflow.transition(session, submission.id, "signing", owner, transaction_id="TX")


def test_review_then_approve_stamps_reviewer(session, submission, owner, company):
    reviewed = workflow.review(session, submission.id, owner)
    assert reviewed.status == "reviewed"
    assert reviewed.reviewed_by == company.id
    approved = workflow.approve(session, submission.id, owner, notes="Todo correcto")
    assert approved.status == "approved"
    assert approved.notes == "Todo correcto"
    assert approved.version == 3
    assert approved.reviewed_at is not None


def test_reject_requires_notes(session, submission, owner, sent_emails):
    with pytest.raises(ValidationError):
        workflow.reject(session, submission.id, owner, notes="   ")
    session.refresh(submission)
    assert submission.status == "pending"

    rejected = workflow.reject(session, submission.id, owner, notes="Falta documentación")
    assert rejected.status == "rejected"
    assert rejected.notes == "Falta documentación"
    assert "Falta documentación" in sent_emails[-1]["text"]
    assert workflow.allowed_targets("rejected") == []


def test_stale_version_is_a_conflict(session, submission, owner):
    workflow.review(session, submission.id, owner)
    with pytest.raises(ConflictError):
        workflow.approve(session, submission.id, owner, expected_version=1)
    session.refresh(submission)
    assert submission.status == "reviewed"
    assert submission.version == 2


def test_concurrent_writer_wins_once(session, test_engine, submission, owner):
    with Session(test_engine) as other:
        workflow.approve(other, submission.id, owner)
    # this session still holds the old version in its identity map
    with pytest.raises(ConflictError):
        workflow.transition(session, submission.id, "rejected", owner, notes="tarde", expected_version=1)


def test_start_signing_moves_to_signing(session, submission, owner):
    workflow.approve(session, submission.id, owner)
    provider = RecordingProvider()
    updated, initiation = workflow.start_signing(session, submission.id, provider, renderer=fake_renderer)
    assert updated.status == "signing"
    assert updated.signature_transaction_id == initiation.transaction_id == "TX-1"
    assert provider.calls[0][1] == f"{submission.id}:2"


def test_start_signing_requires_approved(session, submission):
    with pytest.raises(InvalidTransitionError):
        workflow.start_signing(session, submission.id, RecordingProvider(), renderer=fake_renderer)


def test_provider_failure_leaves_submission_approved(session, submission, owner):
    workflow.approve(session, submission.id, owner)
    with pytest.raises(ProviderError):
        workflow.start_signing(session, submission.id, RecordingProvider(fail=True), renderer=fake_renderer)
    session.refresh(submission)
    assert submission.status == "approved"
    assert submission.signature_transaction_id is None
    assert submission.version == 2


def test_renderer_failure_leaves_submission_approved(session, submission, owner):
    workflow.approve(session, submission.id, owner)
    provider = RecordingProvider()

    def broken_renderer(template, form_data, recipient):
        raise OSError("disk full")

    with pytest.raises(ProviderError):
        workflow.start_signing(session, submission.id, provider, renderer=broken_renderer)
    assert provider.calls == []
    session.refresh(submission)
    assert submission.status == "approved"


@pytest.fixture
def signing(session, submission, owner):
    workflow.approve(session, submission.id, owner)
    updated, _ = workflow.start_signing(session, submission.id, RecordingProvider(), renderer=fake_renderer)
    return updated


def test_resolve_success_is_idempotent(session, signing, published_changes):
    url = "https://files.example/signed.pdf"
    first = workflow.resolve_signing(session, "TX-1", SUCCESS, artifact_url=url)
    assert first.status == "signed"
    assert first.signed_pdf_url == url
    assert first.signed_at is not None
    version = first.version
    updates = len(published_changes)

    again = workflow.resolve_signing(session, "TX-1", SUCCESS, artifact_url=url)
    assert again.status == "signed"
    assert again.version == version
    assert len(published_changes) == updates

    with pytest.raises(ConflictError):
        workflow.resolve_signing(session, "TX-1", SUCCESS, artifact_url="https://files.example/other.pdf")


def test_resolve_pending_changes_nothing(session, signing):
    same = workflow.resolve_signing(session, "TX-1", PENDING)
    assert same.status == "signing"
    assert same.version == signing.version


def test_resolve_failure_then_reset(session, signing, owner, make_profile):
    failed = workflow.resolve_signing(session, "TX-1", FAILURE, reason="signer declined")
    assert failed.status == "error"
    assert failed.signature_status == "error"
    assert workflow.resolve_signing(session, "TX-1", FAILURE).version == failed.version

    outsider = make_profile("company", "other-co")
    with pytest.raises(UnauthorizedError):
        workflow.reset_from_error(session, failed.id, Actor(role="company", profile_id=outsider.id))

    reset = workflow.reset_from_error(session, failed.id, owner)
    assert reset.status == "approved"
    assert reset.signature_transaction_id is None

    events = session.exec(
        select(SubmissionEvent).where(SubmissionEvent.submission_id == reset.id).order_by(SubmissionEvent.id)
    ).all()
    assert [e.type for e in events] == ["created", "approved", "signing", "error", "reset"]
    for prev, event in zip(events, events[1:]):
        assert event.prev_hash == prev.hash


def test_resolve_cancelled_returns_to_approved(session, signing):
    cancelled = workflow.resolve_signing(session, "TX-1", CANCELLED)
    assert cancelled.status == "approved"
    assert cancelled.signature_transaction_id is None
    with pytest.raises(NotFoundError):
        workflow.resolve_signing(session, "TX-1", CANCELLED)


def test_cancel_signing_asks_provider(session, signing):
    provider = RecordingProvider()
    cancelled = workflow.cancel_signing(session, signing.id, provider)
    assert provider.cancelled == ["TX-1"]
    assert cancelled.status == "approved"
    assert cancelled.signature_status == "cancelled"


def test_complete_signing_requires_artifact(session, signing):
    with pytest.raises(ValidationError):
        workflow.complete_signing(session, signing.id, "")


def test_notification_failure_does_not_block(session, submission, owner, monkeypatch):
    from certia import notifications

    def boom(*args, **kwargs):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(notifications, "send_email", boom)
    approved = workflow.approve(session, submission.id, owner)
    assert approved.status == "approved"


def test_list_for_reviewer_newest_first(session, template, client_profile, company, make_profile):
    first = workflow.create_submission(session, template.id, client_profile.id, dict(FORM_DATA))
    second = workflow.create_submission(session, template.id, client_profile.id, dict(FORM_DATA))
    session.exec(update(Submission).where(Submission.id == first.id).values(created_at=second.created_at.replace(year=2000)))
    session.commit()
    _force_status(session, second.id, "approved")

    rows = workflow.list_for_reviewer(session, company.id)
    assert [row[0].id for row in rows] == [second.id, first.id]
    assert rows[0][1].name == template.name
    assert rows[0][2].display_name == "Ana Pérez"

    approved = workflow.list_for_reviewer(session, company.id, status="approved")
    assert [row[0].id for row in approved] == [second.id]
    other = make_profile("company", "nobody")
    assert workflow.list_for_reviewer(session, other.id) == []
    with pytest.raises(ValidationError):
        workflow.list_for_reviewer(session, company.id, status="archived")

    mine = workflow.list_for_client(session, client_profile.id)
    assert [row[0].id for row in mine] == [second.id, first.id]

    stats = workflow.submission_stats(session, company.id)
    assert stats["pending"] == 1
    assert stats["approved"] == 1
    assert stats["total"] == 2


def test_cancel_outside_signing_is_an_invalid_transition(session, signing):
    workflow.resolve_signing(session, "TX-1", FAILURE, reason="signer declined")
    with pytest.raises(InvalidTransitionError):
        workflow.resolve_signing(session, "TX-1", CANCELLED)
    provider = RecordingProvider()
    with pytest.raises(InvalidTransitionError):
        workflow.cancel_signing(session, signing.id, provider)
    assert provider.cancelled == []
    session.refresh(signing)
    assert signing.status == "error"
