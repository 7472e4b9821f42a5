# api/statementdesk/services/attachments.py
import logging
import re
import secrets
from pathlib import Path
from typing import Optional

from .. import settings

log = logging.getLogger("attachments")


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "-", name or "").strip("-") or "document"


class LocalAttachmentStore:
    """
    Writes documents under a directory that is served as static files and
    returns the public URL for them.
    """

    def __init__(self, base_dir: Optional[Path] = None, base_url: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.ATTACHMENTS_DIR)
        self.base_url = (base_url or settings.ATTACHMENTS_BASE_URL).rstrip("/")

    def store(self, data: bytes, filename: str) -> str:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        stored = f"{secrets.token_hex(6)}-{_safe_name(filename)}"
        path = self.base_dir / stored
        path.write_bytes(data)
        log.info("stored attachment %s (%d bytes)", path, len(data))
        return f"{self.base_url}/{stored}"
