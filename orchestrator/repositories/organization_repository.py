from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.models.app import AppGroup
from orchestrator.models.organization import Organization, OrgMembership
from orchestrator.repositories.base_repository import BaseRepository


class OrganizationRepository(BaseRepository[Organization]):
    def __init__(self, db: Session):
        super().__init__(Organization, db)

    def create_with_owner(self, name: str, user_id: int) -> Organization:
        """Crée une organisation dont l'utilisateur est le premier membre"""
        try:
            org = Organization(name=name)
            org.memberships.append(OrgMembership(user_id=user_id))
            self.db.add(org)
            self.db.commit()
            self.db.refresh(org)
            return org
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def list_for_user(self, user_id: int) -> List[Organization]:
        try:
            return (
                self.db.query(Organization)
                .join(OrgMembership, OrgMembership.organization_id == Organization.id)
                .filter(OrgMembership.user_id == user_id)
                .order_by(Organization.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def is_member(self, organization_id: int, user_id: int) -> bool:
        try:
            return (
                self.db.query(OrgMembership)
                .filter(OrgMembership.organization_id == organization_id, OrgMembership.user_id == user_id)
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def create_group(self, organization_id: int, name: str) -> AppGroup:
        try:
            group = AppGroup(organization_id=organization_id, name=name)
            self.db.add(group)
            self.db.commit()
            self.db.refresh(group)
            return group
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def get_group(self, organization_id: int, group_id: int) -> Optional[AppGroup]:
        try:
            return (
                self.db.query(AppGroup)
                .filter(AppGroup.id == group_id, AppGroup.organization_id == organization_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def list_groups(self, organization_id: int) -> List[AppGroup]:
        try:
            return (
                self.db.query(AppGroup)
                .filter(AppGroup.organization_id == organization_id)
                .order_by(AppGroup.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
