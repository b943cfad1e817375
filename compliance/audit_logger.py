from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List

from settings import SETTINGS


def hash_for_gdpr(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class AuditLogger:
    """Append-only JSONL log of consent and data-subject actions.

    Emails and IPs are stored as SHA-256 hashes only.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path or SETTINGS.audit_log_path
        self._lock = Lock()
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    def log_action(
        self,
        action: str,
        user_id: str | None,
        email: str | None = None,
        ip: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": action,
            "user_id": user_id,
            "user_email_hash": hash_for_gdpr(email.lower()) if email else None,
            "ip_hash": hash_for_gdpr(ip) if ip else None,
            "details": dict(details or {}),
            "created_at": datetime.utcnow().isoformat(),
        }
        self.log_json(payload)
        return payload

    def log_json(self, payload: Dict[str, Any]) -> None:
        line = json.dumps(payload, ensure_ascii=True, default=str)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def read_all(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as fh:
                return [json.loads(line) for line in fh if line.strip()]
