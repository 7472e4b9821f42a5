# api/statementdesk/main.py
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse

from . import settings
from .errors import StatementError
from .routers import auth as auth_router
from .routers.statements import router as statements_router
from .services.background_tasks import get_task_manager
from .services.orchestrator import get_orchestrator
from .services.sequence import ensure_sequence

from .models import Base
from .database import engine, SessionLocal

# ---------- logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
log = logging.getLogger("main")

app = FastAPI(title="Statement Desk API")

app.include_router(statements_router)

# /auth endpoints (login/logout/me)
app.include_router(auth_router.router)

# Rendered statement PDFs
app.mount(
    settings.ATTACHMENTS_BASE_URL,
    StaticFiles(directory=str(settings.ATTACHMENTS_DIR), check_dir=False),
    name="statement_attachments",
)


@app.on_event("startup")
def ensure_tables():
    Base.metadata.create_all(bind=engine)
    settings.ATTACHMENTS_DIR.mkdir(parents=True, exist_ok=True)
    db = SessionLocal()
    try:
        ensure_sequence(db)
        # builds that were running when the last process died
        get_orchestrator().recover_stale_generations(db)
    finally:
        db.close()


@app.on_event("shutdown")
def stop_workers():
    get_task_manager().shutdown(wait=True)


@app.exception_handler(StatementError)
async def statement_error_handler(request: Request, exc: StatementError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.__class__.__name__},
    )


# Global handler: unauthenticated API calls get a JSON 401 instead of the login redirect
@app.exception_handler(HTTPException)
async def friendly_auth_handler(request: Request, exc: HTTPException):
    loc = (exc.headers or {}).get("Location")
    redirect_to_login = exc.status_code == status.HTTP_307_TEMPORARY_REDIRECT and (loc or "").startswith("/auth/login")

    if redirect_to_login and (request.url.path.startswith("/api/") or request.url.path.startswith("/auth/")):
        return JSONResponse({"detail": "Not authenticated"}, status_code=status.HTTP_401_UNAUTHORIZED)

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
