"""Sync state tracking for drawing records.

The persisted part of a record's sync state lives on the record itself
(``firebase_synced``, the two URLs, ``firebase_upload_date`` and the
metadata document id). Whether an upload is currently running, how far it
got and why it last failed is only meaningful while the process is alive,
so ``SyncStateMachine`` keeps that part in memory, keyed by drawing id.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ...db.models import Drawing
from ...exceptions import InvalidSyncTransition, SyncInProgress

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    LOCAL_ONLY = "local_only"
    UPLOADING = "uploading"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"


TRANSITIONS = {
    SyncState.LOCAL_ONLY: {SyncState.UPLOADING},
    SyncState.UPLOADING: {SyncState.SYNCED, SyncState.SYNC_FAILED, SyncState.LOCAL_ONLY},
    SyncState.SYNC_FAILED: {SyncState.UPLOADING, SyncState.LOCAL_ONLY},
    SyncState.SYNCED: {SyncState.LOCAL_ONLY},
}


def needs_sync(drawing: Drawing) -> bool:
    if not drawing.firebase_synced or not drawing.firebase_image_url:
        return True
    if drawing.firebase_upload_date is None:
        return True
    return drawing.modified_date > drawing.firebase_upload_date


def mark_as_synced(drawing: Drawing, image_url: str, thumbnail_url: Optional[str] = None, uploaded_at: Optional[datetime] = None) -> None:
    if not image_url:
        raise ValueError("image_url must be non-empty to mark a drawing as synced")
    drawing.firebase_synced = True
    drawing.firebase_image_url = image_url
    drawing.firebase_thumbnail_url = thumbnail_url
    drawing.firebase_upload_date = uploaded_at or datetime.utcnow()


def mark_as_not_synced(drawing: Drawing) -> None:
    drawing.firebase_synced = False
    drawing.firebase_image_url = None
    drawing.firebase_thumbnail_url = None
    drawing.firebase_upload_date = None


def persisted_state(drawing: Drawing) -> SyncState:
    return SyncState.LOCAL_ONLY if needs_sync(drawing) else SyncState.SYNCED


@dataclass
class SyncStatus:
    state: SyncState
    progress: float = 0.0
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    # modified_date of the record when the upload began
    content_version: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self.state == SyncState.UPLOADING


SyncListener = Callable[[str, SyncStatus], None]


class SyncStateMachine:
    """Per-record sync status with validated transitions.

    Listeners registered with ``subscribe`` receive a snapshot of the status
    after every change. They are called synchronously, from whatever task
    drives the upload, so a UI layer should hop onto its own thread there.
    """

    def __init__(self) -> None:
        self._statuses: Dict[str, SyncStatus] = {}
        self._listeners: List[SyncListener] = []
        self._resyncs: Dict[str, Optional[str]] = {}

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def state_for(self, drawing: Drawing) -> SyncState:
        status = self._statuses.get(drawing.id)
        if status is not None and status.state in (SyncState.UPLOADING, SyncState.SYNC_FAILED):
            return status.state
        return persisted_state(drawing)

    def status_for(self, drawing: Drawing) -> SyncStatus:
        status = self._statuses.get(drawing.id)
        if status is None:
            state = persisted_state(drawing)
            return SyncStatus(state=state, progress=1.0 if state == SyncState.SYNCED else 0.0)
        return replace(status, state=self.state_for(drawing))

    def begin(self, drawing: Drawing) -> None:
        current = self.state_for(drawing)
        if current == SyncState.UPLOADING:
            raise SyncInProgress(f"Drawing {drawing.id} is already uploading", drawing_id=drawing.id)
        if current == SyncState.SYNCED:
            # Re-uploading an up-to-date record still goes through LOCAL_ONLY.
            self._transition(drawing.id, current, SyncState.LOCAL_ONLY)
            current = SyncState.LOCAL_ONLY
        self._transition(drawing.id, current, SyncState.UPLOADING)
        self._set(drawing.id, SyncStatus(
            state=SyncState.UPLOADING,
            progress=0.0,
            last_error=None,
            started_at=datetime.utcnow(),
            content_version=drawing.modified_date,
        ))

    def report_progress(self, drawing_id: str, fraction: float) -> None:
        status = self._statuses.get(drawing_id)
        if status is None or status.state != SyncState.UPLOADING:
            return
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction <= status.progress:
            return
        self._set(drawing_id, replace(status, progress=fraction))

    def succeed(self, drawing: Drawing, image_url: str, thumbnail_url: Optional[str], document_id: str) -> None:
        """Commit a finished upload onto the record.

        The upload date is the moment the upload began, so an edit made while
        it was running leaves the record stale and due for another sync.
        """
        if not image_url:
            raise ValueError("image_url must be non-empty to mark a drawing as synced")
        self._transition(drawing.id, self._in_flight_state(drawing.id), SyncState.SYNCED)
        status = self._statuses[drawing.id]
        if drawing.modified_date != status.content_version:
            logger.info(f"Drawing {drawing.id} changed during upload and stays pending")
        drawing.firebase_document_id = document_id
        mark_as_synced(drawing, image_url, thumbnail_url, uploaded_at=status.started_at)
        # Nothing to remember once synced; state_for falls back to the record.
        self._notify(drawing.id, SyncStatus(state=SyncState.SYNCED, progress=1.0))
        self._statuses.pop(drawing.id, None)

    def fail(self, drawing_id: str, message: str) -> None:
        self._transition(drawing_id, self._in_flight_state(drawing_id), SyncState.SYNC_FAILED)
        status = self._statuses[drawing_id]
        self._set(drawing_id, replace(status, state=SyncState.SYNC_FAILED, last_error=message))

    def cancel(self, drawing_id: str) -> None:
        status = self._statuses.pop(drawing_id, None)
        if status is not None:
            self._notify(drawing_id, SyncStatus(state=SyncState.LOCAL_ONLY))

    def invalidate(self, drawing: Drawing) -> None:
        current = self.state_for(drawing)
        if current == SyncState.UPLOADING:
            raise SyncInProgress(f"Drawing {drawing.id} is uploading and cannot be invalidated", drawing_id=drawing.id)
        if current != SyncState.LOCAL_ONLY:
            self._transition(drawing.id, current, SyncState.LOCAL_ONLY)
        mark_as_not_synced(drawing)
        self._statuses.pop(drawing.id, None)
        self._notify(drawing.id, SyncStatus(state=SyncState.LOCAL_ONLY))

    def request_resync(self, drawing_id: str, user_id: Optional[str] = None) -> None:
        """Ask whoever runs the current upload of this drawing to sync it again afterwards."""
        self._resyncs[drawing_id] = user_id
        logger.info(f"Drawing {drawing_id} queued for another sync after the running one")

    def take_resync(self, drawing_id: str) -> Tuple[bool, Optional[str]]:
        if drawing_id not in self._resyncs:
            return False, None
        return True, self._resyncs.pop(drawing_id)

    def forget(self, drawing_id: str) -> None:
        self._statuses.pop(drawing_id, None)
        self._resyncs.pop(drawing_id, None)

    def _in_flight_state(self, drawing_id: str) -> SyncState:
        status = self._statuses.get(drawing_id)
        return status.state if status is not None else SyncState.LOCAL_ONLY

    def _transition(self, drawing_id: str, current: SyncState, target: SyncState) -> None:
        if target not in TRANSITIONS[current]:
            raise InvalidSyncTransition(
                f"Cannot move drawing {drawing_id} from {current.value} to {target.value}",
                drawing_id=drawing_id,
            )
        logger.debug(f"Drawing {drawing_id}: {current.value} -> {target.value}")

    def _set(self, drawing_id: str, status: SyncStatus) -> None:
        self._statuses[drawing_id] = status
        self._notify(drawing_id, status)

    def _notify(self, drawing_id: str, status: SyncStatus) -> None:
        for listener in list(self._listeners):
            listener(drawing_id, replace(status))
