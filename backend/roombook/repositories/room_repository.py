# backend/roombook/repositories/room_repository.py
import logging
from typing import Dict, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.room import Room
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class RoomRepository(BaseRepository[Room]):
    def __init__(self, db: Session):
        super().__init__(db, Room)

    def get_tiers(self, room_ids: Iterable[str]) -> Dict[str, int]:
        """Map room id -> tier for the given ids."""
        ids = {room_id for room_id in room_ids if room_id}
        if not ids:
            return {}
        try:
            rows = self.db.query(Room.id, Room.tier).filter(Room.id.in_(ids)).all()
            return {room_id: tier for room_id, tier in rows}
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load room tiers: %s", str(exc))
            raise RepositoryException("Failed to load room tiers") from exc
