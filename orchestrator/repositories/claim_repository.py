import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from orchestrator.core.exceptions import ConflictError
from orchestrator.models.claim import ClaimKind, ResourceClaim
from orchestrator.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ClaimRepository(BaseRepository[ResourceClaim]):
    """Index d'unicité des sous-domaines et namespaces.

    La réservation repose sur la contrainte unique (kind, value) : l'INSERT est le
    compare-and-swap, une IntegrityError signifie qu'une autre app a gagné la course.
    """

    def __init__(self, db: Session):
        super().__init__(ResourceClaim, db)

    def owner_of(self, kind: ClaimKind, value: str) -> Optional[int]:
        try:
            claim = (
                self.db.query(ResourceClaim)
                .filter(ResourceClaim.kind == kind, ResourceClaim.value == value)
                .first()
            )
            return claim.app_id if claim else None
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def claim(self, kind: ClaimKind, value: str, app_id: int) -> None:
        owner = self.owner_of(kind, value)
        if owner == app_id:
            return
        if owner is not None:
            raise ConflictError(f"{kind.value} '{value}' déjà utilisé par une autre app")

        try:
            self.db.add(ResourceClaim(kind=kind, value=value, app_id=app_id))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.owner_of(kind, value) != app_id:
                logger.info(f"Course perdue pour {kind.value} '{value}' (app {app_id})")
                raise ConflictError(f"{kind.value} '{value}' vient d'être réservé par une autre app")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def release_others(self, app_id: int, kind: ClaimKind, keep: Iterable[str]) -> int:
        """Libère les réservations de l'app pour ce type, sauf les valeurs gardées"""
        keep = [value for value in keep if value]
        try:
            query = self.db.query(ResourceClaim).filter(
                ResourceClaim.app_id == app_id, ResourceClaim.kind == kind
            )
            if keep:
                query = query.filter(ResourceClaim.value.notin_(keep))
            released = query.delete(synchronize_session=False)
            self.db.commit()
            return released
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def release_all(self, app_id: int) -> None:
        try:
            self.db.query(ResourceClaim).filter(ResourceClaim.app_id == app_id).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
