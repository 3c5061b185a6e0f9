
import io
import logging
from minio import Minio
from minio.error import S3Error
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_SECURE, PUBLIC_STORAGE_URL

logger = logging.getLogger(__name__)

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=MINIO_SECURE,
)

_known_buckets: set[str] = set()

def ensure_bucket(bucket: str):
    if bucket in _known_buckets:
        return
    if not _client.bucket_exists(bucket):
        _client.make_bucket(bucket)
    _known_buckets.add(bucket)

def put_bytes(bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket(bucket)
    _client.put_object(bucket, key, io.BytesIO(data), length=len(data), content_type=content_type)

def get_bytes(bucket: str, key: str) -> bytes:
    resp = _client.get_object(bucket, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()

def delete_object(bucket: str, key: str):
    _client.remove_object(bucket, key)

def delete_objects(bucket: str, keys: list[str]):
    """Best-effort removal; a missing object is not an error."""
    for key in keys:
        try:
            _client.remove_object(bucket, key)
        except S3Error as exc:
            logger.warning("could not remove %s/%s: %s", bucket, key, exc)

def public_url(bucket: str, key: str) -> str:
    return f"{PUBLIC_STORAGE_URL.rstrip('/')}/{bucket}/{key}"

def key_from_public_url(bucket: str, url: str) -> str | None:
    prefix = f"{PUBLIC_STORAGE_URL.rstrip('/')}/{bucket}/"
    if url and url.startswith(prefix):
        return url[len(prefix):]
    return None
