
import hashlib, json, unicodedata
from datetime import datetime, timezone
from urllib.parse import quote
from itsdangerous import URLSafeSerializer
from .config import SECRET_KEY


def utcnow() -> datetime:
    # naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str, allow_nan=False)

def load_json(raw: str | None, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="certia-access")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="certia-access")
    return s.loads(token)

def safe_filename(name: str) -> str:
    """ASCII-only name for storage keys and header fallbacks."""
    folded = unicodedata.normalize("NFKD", (name or "").strip()).encode("ascii", "ignore").decode()
    cleaned = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in folded)
    return cleaned.strip("_") or "file"

def content_disposition(name: str) -> str:
    # headers are latin-1 on the wire; the real name travels in filename*
    fallback = safe_filename(name)
    encoded = quote(name or fallback, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"
