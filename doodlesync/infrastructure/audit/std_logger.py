import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from ...application.ports.audit_logger import SyncAuditLogger


class StdSyncAuditLogger(SyncAuditLogger):
    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def log(self, action: str, drawing_id: str, success: bool = True, user_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "action": action,
            "drawing_id": drawing_id,
            "user_id": user_id,
            "success": success,
            "details": details or {},
        }
        self._logger.info(f"SYNC_AUDIT: {json.dumps(entry, default=str)}")
