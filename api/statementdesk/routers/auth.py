# api/statementdesk/routers/auth.py
from typing import Optional
from datetime import datetime, timedelta
import logging

from fastapi import APIRouter, Depends, Form, Request, Response, status, HTTPException
from sqlalchemy.orm import Session

from .. import settings
from ..crypto_secrets import encrypt_secret, decrypt_secret
from ..database import get_db
from ..models import User
from ..security import verify_password
from ..services.access import Principal

log = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["auth"])

COOKIE_NAME = "sd_session"
REMEMBER_SECONDS = 60 * 60 * 24 * 14
SESSION_SECONDS = 60 * 60 * 12


def set_session(resp: Response, user_id: int, remember: bool):
    max_age = REMEMBER_SECONDS if remember else None
    lifetime = REMEMBER_SECONDS if remember else SESSION_SECONDS
    expires = int((datetime.utcnow() + timedelta(seconds=lifetime)).timestamp())
    resp.set_cookie(
        COOKIE_NAME,
        encrypt_secret(f"{user_id}:{expires}"),
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=False,
    )

def clear_session(resp: Response):
    resp.delete_cookie(COOKIE_NAME)

def get_uid_from_cookie(request: Request) -> Optional[int]:
    raw = request.cookies.get(COOKIE_NAME)
    if not raw:
        return None
    try:
        uid, expires = decrypt_secret(raw).split(":", 1)
        if int(expires) < datetime.utcnow().timestamp():
            return None
        return int(uid)
    except ValueError:
        log.info("rejected session cookie")
        return None

def _user_out(user: User) -> dict:
    return {"id": user.id, "email": user.email, "role": user.role}

# --- Login ---

@router.post("/login")
def login_submit(
    email: str = Form(...),
    password: str = Form(...),
    remember: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    email = (email or "").strip().lower()

    user = (
        db.query(User)
          .filter(User.email == email, User.is_active == True)  # noqa: E712
          .first()
    )

    if not user or not verify_password(password, user.password_hash or ""):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    set_session(resp, user.id, remember is not None)
    log.info("user %s logged in", user.id)
    return resp

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout():
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session(resp)
    return resp

# Dependency for protected routes
def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    uid = get_uid_from_cookie(request)
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": f"/auth/login?next={request.url.path}"},
        )

    user = db.get(User, uid)
    if not user or not getattr(user, "is_active", False):
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": "/auth/login"},
        )
    return user

def require_principal(user: User = Depends(require_user)) -> Principal:
    return Principal.from_user(user)

@router.get("/me")
def me(user: User = Depends(require_user)):
    return _user_out(user)

# --- Admin-only dependency ---

def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    """
    Admin guard for system actions. The configured owner account
    (IC_OWNER_EMAIL env var) always passes.
    """
    if not (principal.is_admin or principal.email == settings.OWNER_EMAIL):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return principal
