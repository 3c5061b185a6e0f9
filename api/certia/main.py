
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routers import admin, profiles, templates, submissions, signing
from .config import LOG_LEVEL
from .db import init_db
from .errors import WorkflowError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="CERTIA certificate API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def on_startup():
    init_db()

@app.exception_handler(WorkflowError)
def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})

app.include_router(profiles.router, prefix="/api/profiles", tags=["profiles"])
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(submissions.router, prefix="/api/submissions", tags=["submissions"])
app.include_router(signing.router, prefix="/api/signatures", tags=["signatures"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

@app.get("/")
def root():
    return {"ok": True, "service": "certia-api"}
