from typing import List, Optional, Protocol

from ...db.models import Drawing


class RecordStore(Protocol):
    """Durable local store of drawing records. Write failures raise StoreFailed."""

    def insert(self, drawing: Drawing) -> Drawing:
        ...

    def update(self, drawing: Drawing) -> Drawing:
        ...

    def delete(self, drawing: Drawing) -> None:
        ...

    def get(self, drawing_id: str) -> Optional[Drawing]:
        ...

    def reload(self, drawing_id: str) -> Optional[Drawing]:
        """Like get, but re-reads the stored row over any cached instance."""
        ...

    def list_all(self) -> List[Drawing]:
        ...
