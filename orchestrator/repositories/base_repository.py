from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.core.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Accès commun aux tables.

    Toute erreur SQLAlchemy annule la transaction en cours avant d'être relancée.
    `commit=False` laisse l'écriture dans la transaction de l'appelant (flush seul),
    pour grouper plusieurs écritures sous un même verrou d'app.
    """

    def __init__(self, model: Type[ModelType], db: Session):
        self.model = model
        self.db = db

    def get_by_id(self, id: int) -> Optional[ModelType]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def get_by_field(self, field: str, value: Any) -> Optional[ModelType]:
        try:
            return self.db.query(self.model).filter(getattr(self.model, field) == value).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def create(self, obj_data: Dict[str, Any], commit: bool = True) -> ModelType:
        try:
            db_obj = self.model(**obj_data)
            self.db.add(db_obj)
            self._finish(commit)
            if commit:
                self.db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def save(self, db_obj: ModelType, commit: bool = True, **fields: Any) -> ModelType:
        """Écrit des champs sur un objet déjà chargé"""
        try:
            for field, value in fields.items():
                setattr(db_obj, field, value)
            self._finish(commit)
            return db_obj
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def _finish(self, commit: bool) -> None:
        if commit:
            self.db.commit()
        else:
            self.db.flush()
