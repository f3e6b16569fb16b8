import enum
import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated


class TriggerEvent(str, enum.Enum):
    PUSH = "push"
    WORKFLOW_RUN = "workflow_run"


class Builder(str, enum.Enum):
    DOCKERFILE = "dockerfile"
    RAILPACK = "railpack"


class SourceKind(str, enum.Enum):
    GIT = "git"
    IMAGE = "image"
    HELM = "helm"


class GitSource(BaseModel):
    kind: Literal["git"] = "git"
    repository_id: int
    branch: str
    event: TriggerEvent = TriggerEvent.PUSH
    event_id: Optional[int] = None  # id du workflow pour event=workflow_run
    root_dir: str = "."
    builder: Builder = Builder.RAILPACK
    dockerfile_path: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class ImageSource(BaseModel):
    kind: Literal["image"] = "image"
    image: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class HelmSource(BaseModel):
    kind: Literal["helm"] = "helm"
    chart: str
    repo_url: Optional[str] = None
    version: Optional[str] = None
    values: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


Source = Annotated[Union[GitSource, ImageSource, HelmSource], Field(discriminator="kind")]


class EnvVar(BaseModel):
    name: str
    # None dans une requête = conserver la valeur précédente (secrets masqués côté UI)
    value: Optional[str] = None
    is_sensitive: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class VolumeMount(BaseModel):
    path: str
    size_mib: int

    model_config = ConfigDict(frozen=True, extra="forbid")


# Champs propres aux configs de type "workload" (sources git et image)
WORKLOAD_FIELDS = (
    "port",
    "replicas",
    "cpu",
    "memory",
    "env",
    "mounts",
    "create_ingress",
    "subdomain",
    "collect_logs",
    "pre_stop",
    "post_start",
)


class DeploymentConfig(BaseModel):
    """Configuration complètement résolue et immuable d'un déploiement"""

    source: Source
    port: Optional[int] = None
    replicas: Optional[int] = None
    cpu: Optional[str] = None
    memory: Optional[str] = None
    env: List[EnvVar] = Field(default_factory=list)
    mounts: List[VolumeMount] = Field(default_factory=list)
    create_ingress: bool = False
    subdomain: Optional[str] = None
    collect_logs: bool = False
    pre_stop: Optional[str] = None
    post_start: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def kind(self) -> SourceKind:
        return SourceKind(self.source.kind)

    @property
    def is_workload(self) -> bool:
        return self.kind != SourceKind.HELM

    @property
    def requires_build(self) -> bool:
        return self.kind == SourceKind.GIT

    def sensitive_names(self) -> List[str]:
        return [var.name for var in self.env if var.is_sensitive]

    def canonical_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

    def redacted(self) -> Dict[str, Any]:
        """Version exposable par l'API : valeurs sensibles masquées"""
        data = self.model_dump(mode="json")
        data["env"] = [
            {**var, "value": None} if var["is_sensitive"] else var
            for var in data["env"]
        ]
        return data


class ConfigDelta(BaseModel):
    """Surcharge partielle : seuls les champs renseignés remplacent la base"""

    source: Optional[Dict[str, Any]] = None
    port: Optional[int] = None
    replicas: Optional[int] = None
    cpu: Optional[str] = None
    memory: Optional[str] = None
    env: Optional[List[EnvVar]] = None
    mounts: Optional[List[VolumeMount]] = None
    create_ingress: Optional[bool] = None
    subdomain: Optional[str] = None
    collect_logs: Optional[bool] = None
    pre_stop: Optional[str] = None
    post_start: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
