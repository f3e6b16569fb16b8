from typing import Iterable, List, Optional

from sqlalchemy import exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.models.app import App
from orchestrator.models.deployment import Deployment, SERVING_STATUSES
from orchestrator.repositories.base_repository import BaseRepository


class AppRepository(BaseRepository[App]):
    def __init__(self, db: Session):
        super().__init__(App, db)

    def list_for_organization(self, organization_id: int) -> List[App]:
        try:
            return self.db.query(App).filter(App.organization_id == organization_id).order_by(App.id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def get_all_apps(self) -> List[App]:
        try:
            return self.db.query(App).order_by(App.id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def lock(self, app_id: int) -> Optional[App]:
        """SELECT ... FOR UPDATE sur la ligne de l'app (ignoré par SQLite)"""
        try:
            return (
                self.db.query(App)
                .filter(App.id == app_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def set_active_deployment_if_newest(self, app_id: int, deployment_id: int) -> bool:
        """Écriture gardée de active_deployment_id.

        N'a d'effet que si aucun déploiement plus récent de la même app n'est
        déjà COMPLETE ou STOPPED.
        """
        newer_serving = exists().where(
            Deployment.app_id == app_id,
            Deployment.id > deployment_id,
            Deployment.status.in_(SERVING_STATUSES),
        )
        try:
            updated = (
                self.db.query(App)
                .filter(App.id == app_id, ~newer_serving)
                .update({App.active_deployment_id: deployment_id}, synchronize_session=False)
            )
            self.db.commit()
            return updated == 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def add_sensitive_names(self, app: App, names: Iterable[str], commit: bool = True) -> None:
        merged = sorted(set(app.sensitive_env_names or []) | set(names))
        if merged == list(app.sensitive_env_names or []):
            return
        try:
            app.sensitive_env_names = merged
            self._finish(commit)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def delete_with_deployments(self, app: App) -> None:
        """Supprime l'app et tout son historique de déploiements"""
        try:
            app.active_deployment_id = None
            self.db.flush()
            self.db.query(Deployment).filter(Deployment.app_id == app.id).delete(synchronize_session=False)
            self.db.delete(app)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
