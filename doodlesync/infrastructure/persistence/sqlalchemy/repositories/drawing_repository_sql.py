import logging
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .....db.models import Drawing
from .....application.ports.record_store import RecordStore
from .....exceptions import StoreFailed

logger = logging.getLogger(__name__)


class SqlDrawingRepository(RecordStore):
    def __init__(self, session: Session):
        self.session = session

    def _save(self, drawing: Drawing, action: str) -> Drawing:
        try:
            self.session.add(drawing)
            self.session.commit()
            self.session.refresh(drawing)
            return drawing
        except SQLAlchemyError as e:
            logger.error(f"Error trying to {action} drawing {drawing.id}: {e}")
            self.session.rollback()
            raise StoreFailed(f"Failed to {action} drawing: {e}", drawing_id=drawing.id, original_error=e)

    def insert(self, drawing: Drawing) -> Drawing:
        return self._save(drawing, "save")

    def update(self, drawing: Drawing) -> Drawing:
        return self._save(drawing, "update")

    def delete(self, drawing: Drawing) -> None:
        try:
            self.session.delete(drawing)
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting drawing {drawing.id}: {e}")
            self.session.rollback()
            raise StoreFailed(f"Failed to delete drawing: {e}", drawing_id=drawing.id, original_error=e)

    def get(self, drawing_id: str) -> Optional[Drawing]:
        return self.session.get(Drawing, drawing_id)

    def reload(self, drawing_id: str) -> Optional[Drawing]:
        return self.session.get(Drawing, drawing_id, populate_existing=True)

    def list_all(self) -> List[Drawing]:
        return list(self.session.exec(
            select(Drawing).order_by(Drawing.modified_date.desc())
        ).all())
