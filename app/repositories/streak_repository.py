from typing import Optional
from sqlalchemy.orm import Session

from app.models.streak_state import StreakState
from app.repositories.base import BaseRepository


class StreakRepository(BaseRepository[StreakState]):
    def __init__(self, db: Session):
        super().__init__(db, StreakState)

    def get_by_user(self, user_id: str) -> Optional[StreakState]:
        return self.get_first_by(user_id=user_id)
