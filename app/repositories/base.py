from typing import Optional, TypeVar, Generic
from sqlalchemy.orm import Session
from sqlalchemy import func

T = TypeVar('T')

class BaseRepository(Generic[T]):
    """基础Repository类，提供通用的CRUD操作"""

    def __init__(self, db: Session, model_class: T):
        self.db = db
        self.model_class = model_class

    def get_by_id(self, id: int) -> Optional[T]:
        """根据ID获取记录"""
        return self.db.query(self.model_class).filter(self.model_class.id == id).first()

    def create(self, **kwargs) -> T:
        """创建新记录"""
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        return instance

    def update_instance(self, instance: T, **kwargs) -> T:
        """更新已加载的记录"""
        for key, value in kwargs.items():
            setattr(instance, key, value)
        self.db.commit()
        self.db.refresh(instance)
        return instance

    def _filtered(self, **filters):
        query = self.db.query(self.model_class)
        for attr, value in filters.items():
            if hasattr(self.model_class, attr):
                query = query.filter(getattr(self.model_class, attr) == value)
        return query

    def get_first_by(self, **filters) -> Optional[T]:
        """根据条件获取第一条记录"""
        return self._filtered(**filters).first()

    def count_by(self, **filters) -> int:
        """根据条件统计记录数"""
        return self._filtered(**filters).with_entities(func.count(self.model_class.id)).scalar() or 0
