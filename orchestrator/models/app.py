from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class AppGroup(BaseModel):
    __tablename__ = "app_groups"

    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)

    apps = relationship("App", back_populates="app_group")


class App(BaseModel):
    __tablename__ = "apps"

    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    app_group_id = Column(Integer, ForeignKey("app_groups.id", ondelete="SET NULL"), nullable=True)

    name = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=False)
    # Immuable après création
    namespace = Column(String(63), unique=True, nullable=False)

    cd_enabled = Column(Boolean, default=True, nullable=False)
    # Modifié uniquement par ActiveDeploymentSelector
    active_deployment_id = Column(
        Integer,
        ForeignKey("deployments.id", ondelete="SET NULL", use_alter=True, name="fk_apps_active_deployment"),
        nullable=True,
    )
    # Noms de variables ayant été marquées sensibles au moins une fois
    sensitive_env_names = Column(JSON, default=list, nullable=False)

    organization = relationship("Organization", back_populates="apps")
    app_group = relationship("AppGroup", back_populates="apps")
    deployments = relationship(
        "Deployment",
        back_populates="app",
        foreign_keys="Deployment.app_id",
        cascade="all, delete-orphan",
    )
    active_deployment = relationship("Deployment", foreign_keys=[active_deployment_id], post_update=True)

    def __repr__(self):
        return f"<App(name='{self.name}', namespace='{self.namespace}')>"
