
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./certia.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() == "true"
PUBLIC_STORAGE_URL = os.getenv("PUBLIC_STORAGE_URL", f"http://{MINIO_ENDPOINT}")
ASSETS_BUCKET = os.getenv("ASSETS_BUCKET", "template-assets")
FILES_BUCKET = os.getenv("FILES_BUCKET", "submission-files")
TEMP_SIGNATURES_BUCKET = os.getenv("TEMP_SIGNATURES_BUCKET", "temp-signatures")
SIGNED_BUCKET = os.getenv("SIGNED_BUCKET", "signed-certificates")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN", "admin-test-token")
SYSTEM_ACCESS_TOKEN = os.getenv("SYSTEM_ACCESS_TOKEN", "system-test-token")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "signing")
REALTIME_CHANNEL = os.getenv("REALTIME_CHANNEL", "submissions")
WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
SIGNATURE_PROVIDER = os.getenv("SIGNATURE_PROVIDER", "mock")
SIGNATURE_API_URL = os.getenv("SIGNATURE_API_URL", "")
SIGNATURE_API_KEY = os.getenv("SIGNATURE_API_KEY", "")
SIGNATURE_TIMEOUT = float(os.getenv("SIGNATURE_TIMEOUT", "15"))
SIGNATURE_POLL_ASYNC = os.getenv("SIGNATURE_POLL_ASYNC", "false").lower() == "true"
RENDER_IMAGE_TIMEOUT = float(os.getenv("RENDER_IMAGE_TIMEOUT", "5"))
PDF_FONT_PATH = os.getenv("PDF_FONT_PATH")
REQUIRE_REJECTION_NOTES = os.getenv("REQUIRE_REJECTION_NOTES", "true").lower() == "true"
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
SMTP_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "30"))
EMAIL_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@certia.local")
EMAIL_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "CERTIA")
