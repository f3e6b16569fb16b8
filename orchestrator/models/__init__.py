from .base import BaseModel
from .user import User, UserRole
from .organization import Organization, OrgMembership
from .app import App, AppGroup
from .deployment import Deployment, DeploymentStatus, TriggerKind, TemplateMode
from .claim import ResourceClaim, ClaimKind

__all__ = [
    "BaseModel", "User", "UserRole", "Organization", "OrgMembership", "App", "AppGroup",
    "Deployment", "DeploymentStatus", "TriggerKind", "TemplateMode", "ResourceClaim", "ClaimKind",
]
