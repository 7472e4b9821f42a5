# api/statementdesk/security.py
import logging

from passlib.context import CryptContext
from passlib.exc import UnknownHashError

log = logging.getLogger("security")

# Match the stored hashes: bcrypt $2b$
pwd_ctx = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",  # ensure $2b$ prefix
)

def hash_password(plain: str) -> str:
    return pwd_ctx.hash(plain or "")

def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_ctx.verify(plain or "", hashed)
    except (UnknownHashError, ValueError) as e:
        log.warning("unusable password hash: %s", e)
        return False
