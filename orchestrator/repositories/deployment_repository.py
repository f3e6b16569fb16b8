from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.models.deployment import Deployment, DeploymentStatus, IN_FLIGHT_STATUSES
from orchestrator.repositories.base_repository import BaseRepository


class DeploymentRepository(BaseRepository[Deployment]):
    def __init__(self, db: Session):
        super().__init__(Deployment, db)

    def get_for_app(self, app_id: int, deployment_id: int) -> Optional[Deployment]:
        try:
            return (
                self.db.query(Deployment)
                .filter(Deployment.id == deployment_id, Deployment.app_id == app_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def list_for_app(self, app_id: int, page: int = 0, length: int = 20) -> Tuple[List[Deployment], int]:
        """Déploiements d'une app, du plus récent au plus ancien"""
        try:
            query = self.db.query(Deployment).filter(Deployment.app_id == app_id)
            total = query.count()
            items = query.order_by(Deployment.id.desc()).offset(page * length).limit(length).all()
            return items, total
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def in_flight(self, app_id: int, statuses: Iterable[DeploymentStatus] = IN_FLIGHT_STATUSES) -> List[Deployment]:
        try:
            return (
                self.db.query(Deployment)
                .filter(Deployment.app_id == app_id, Deployment.status.in_(list(statuses)))
                .order_by(Deployment.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def get_by_status(self, status: DeploymentStatus) -> List[Deployment]:
        try:
            return self.db.query(Deployment).filter(Deployment.status == status).order_by(Deployment.id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def find_awaiting_workflow(self, app_id: int, workflow_run_id: int) -> Optional[Deployment]:
        try:
            return (
                self.db.query(Deployment)
                .filter(
                    Deployment.app_id == app_id,
                    Deployment.workflow_run_id == workflow_run_id,
                    Deployment.awaiting_workflow.is_(True),
                    Deployment.status.in_(list(IN_FLIGHT_STATUSES)),
                )
                .order_by(Deployment.id.desc())
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def compare_and_set_status(
            self,
            deployment_id: int,
            expected: Iterable[DeploymentStatus],
            target: DeploymentStatus,
            commit: bool = True,
            **fields: Any
    ) -> bool:
        """UPDATE ... WHERE status IN (expected).

        Retourne False si le statut a changé entre-temps : la transition n'a pas eu lieu.
        """
        values = {"status": target, "status_changed_at": datetime.utcnow()}
        values.update(fields)
        try:
            updated = (
                self.db.query(Deployment)
                .filter(Deployment.id == deployment_id, Deployment.status.in_(list(expected)))
                .update(values, synchronize_session="fetch")
            )
            self._finish(commit)
            return updated == 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
