"""
Audit Trail — account and content events, logged locally and mirrored to the
Supabase audit_trail table when it is configured.
Details never carry PII; callers pass identifiers and counts only.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("alia.audit")

AUDIT_TABLE = "audit_trail"


class AuditLogger:
    """Records audit events. A failed Supabase write is logged, never raised."""

    def __init__(self, supabase_url: str = "", service_key: str = "", client=None):
        self._supabase_url = supabase_url
        self._service_key = service_key
        self._client = client
        self._connect_attempted = client is not None

    @classmethod
    def from_settings(cls, settings) -> "AuditLogger":
        return cls(settings.supabase_url, settings.supabase_service_key)

    def _connect(self):
        if self._connect_attempted:
            return self._client
        self._connect_attempted = True
        if not (self._supabase_url and self._service_key):
            return None
        try:
            from supabase import create_client
            self._client = create_client(self._supabase_url, self._service_key)
            logger.info("Supabase audit logger connected")
        except Exception as e:
            logger.warning("Supabase not available: %s — audit logs local only", e)
        return self._client

    def _persist(self, row: Dict[str, Any]):
        client = self._connect()
        if client is not None:
            client.table(AUDIT_TABLE).insert(row).execute()

    async def log(
        self,
        event: str,
        subject_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        logger.info("AUDIT: %s | subject=%s | %s", event, str(subject_id)[:8], details)
        row = {
            "subject_id": subject_id,
            "event_type": event,
            "details": details or {},
        }
        # supabase-py is synchronous
        try:
            await asyncio.to_thread(self._persist, row)
        except Exception as e:
            logger.warning("Supabase audit write failed: %s", e)
