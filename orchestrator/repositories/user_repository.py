from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.models.user import User
from orchestrator.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(User, db)

    def username_or_email_taken(self, username: str, email: str) -> bool:
        try:
            query = self.db.query(User.id).filter(or_(User.username == username, User.email == email))
            return self.db.query(query.exists()).scalar()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
