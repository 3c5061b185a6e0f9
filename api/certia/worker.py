
import logging
from celery import Celery
from sqlmodel import Session
from .config import REDIS_URL, WORKER_QUEUE
from .db import engine
from .errors import ProviderError
from .signature import get_signature_provider
from . import workflow

logger = logging.getLogger(__name__)

cel = Celery("certia", broker=REDIS_URL, backend=REDIS_URL)

POLL_INTERVAL = 30
MAX_POLLS = 20

@cel.task(name="poll_signature", queue=WORKER_QUEUE, bind=True, max_retries=MAX_POLLS)
def poll_signature(self, submission_id: str):
    with Session(engine) as session:
        try:
            submission = workflow.poll_signing(session, submission_id, get_signature_provider(session))
        except ProviderError as exc:
            # unknown outcome; leave the submission in signing for an operator
            logger.warning("signature poll for %s failed: %s", submission_id, exc)
            return {"submission_id": submission_id, "status": "unknown"}
        status = submission.status
    if status == "signing":
        raise self.retry(countdown=POLL_INTERVAL)
    return {"submission_id": submission_id, "status": status}
