from sqlalchemy import Column, String, Integer, Date
from .base import BaseModel

"""
学习连续天数与经验值
每完成一个新课时后尽力更新，允许短暂过期。
"""
class StreakState(BaseModel):
    __tablename__ = "streak_states"

    user_id = Column(String(64), unique=True, index=True, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    last_qualifying_day = Column(Date)
    xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "current_streak": self.current_streak,
            "last_qualifying_day": self.last_qualifying_day.isoformat() if self.last_qualifying_day else None,
            "xp": self.xp,
            "level": self.level
        }
