import enum

from sqlalchemy import Column, Enum, ForeignKey, Integer, String, UniqueConstraint

from .base import BaseModel


class ClaimKind(str, enum.Enum):
    SUBDOMAIN = "subdomain"
    NAMESPACE = "namespace"


class ResourceClaim(BaseModel):
    """Index d'unicité global des sous-domaines et namespaces"""

    __tablename__ = "resource_claims"
    __table_args__ = (UniqueConstraint("kind", "value", name="uq_claim_kind_value"),)

    kind = Column(Enum(ClaimKind), nullable=False)
    value = Column(String(63), nullable=False)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True)
