# api/statementdesk/crypto_secrets.py
import os
import base64
import binascii
from secrets import token_bytes

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_KEY_SIZES = (16, 24, 32)

def _get_key() -> bytes:
    k = os.getenv("APP_SECRETS_KEY")
    if not k:
        raise RuntimeError("APP_SECRETS_KEY env var is required (32 bytes, base64/hex/raw).")
    # Accept hex, base64, or raw 16/24/32-byte strings
    if all(c in "0123456789abcdefABCDEF" for c in k) and len(k) in (32, 48, 64):
        return bytes.fromhex(k)
    try:
        b = base64.b64decode(k, validate=True)
        if len(b) in _KEY_SIZES:
            return b
    except binascii.Error:
        pass
    b = k.encode("utf-8")
    if len(b) in _KEY_SIZES:
        return b
    raise RuntimeError("APP_SECRETS_KEY must decode to 16/24/32 bytes (AES-128/192/256).")

def encrypt_secret(plaintext: str) -> str:
    aes = AESGCM(_get_key())
    nonce = token_bytes(12)
    ct = aes.encrypt(nonce, plaintext.encode("utf-8"), None)
    # unpadded so the token is a plain cookie value
    return base64.urlsafe_b64encode(nonce + ct).decode("ascii").rstrip("=")

def decrypt_secret(token_b64: str) -> str:
    """Raises ValueError for anything that was not produced by encrypt_secret."""
    try:
        raw = base64.urlsafe_b64decode(token_b64.encode("ascii") + b"=" * (-len(token_b64) % 4))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError("malformed token") from e
    if len(raw) <= 12:
        raise ValueError("malformed token")
    nonce, ct = raw[:12], raw[12:]
    try:
        pt = AESGCM(_get_key()).decrypt(nonce, ct, None)
    except InvalidTag as e:
        raise ValueError("token failed authentication") from e
    return pt.decode("utf-8")
