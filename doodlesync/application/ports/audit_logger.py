from typing import Optional, Dict, Any, Protocol


class SyncAuditLogger(Protocol):
    def log(self, action: str, drawing_id: str, success: bool = True, user_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        ...
