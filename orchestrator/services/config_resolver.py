"""Résolution de la configuration d'un déploiement.

Trois couches sont fusionnées champ par champ : la config courante de l'app, un delta
explicite et, éventuellement, la config d'un déploiement modèle. Le delta gagne
toujours ; le mode décide qui de la config courante ou du modèle gagne ensuite.

`resolve` est une fonction pure : mêmes entrées, même sortie. La seule dépendance
extérieure (qui possède déjà un sous-domaine ?) est passée en paramètre.
"""
import posixpath
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from kubernetes.utils import parse_quantity
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from orchestrator.api.schemas.config import (
    WORKLOAD_FIELDS,
    Builder,
    ConfigDelta,
    DeploymentConfig,
    SourceKind,
    TriggerEvent,
)
from orchestrator.core.exceptions import ValidationError
from orchestrator.models.deployment import TemplateMode

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,52}[a-z0-9])?$")
NAMESPACE_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
RESERVED_ENV_PREFIX = "_PRIVATE_PLATFORM_"
DEFAULT_REPLICAS = 1

# Champs de source git dont la modification impose un nouveau build
BUILD_INPUT_FIELDS = ("repository_id", "branch", "builder", "root_dir", "dockerfile_path")

ConfigLike = Union[DeploymentConfig, ConfigDelta, Mapping[str, Any], None]
SubdomainOwner = Callable[[str], Optional[int]]


def resolve(
        current: ConfigLike = None,
        delta: ConfigLike = None,
        template: ConfigLike = None,
        mode: TemplateMode = TemplateMode.REUSE_BUILD,
        *,
        locked_sensitive_names: Iterable[str] = (),
        subdomain_owner: Optional[SubdomainOwner] = None,
        app_id: Optional[int] = None
) -> DeploymentConfig:
    """Produit une DeploymentConfig complète et validée, ou lève ValidationError.

    Args:
        current: config de l'app (celle du déploiement actif en général)
        delta: surcharge explicite, ses champs renseignés gagnent toujours
        template: config d'un déploiement modèle (redeploy / rollback)
        mode: REUSE_BUILD -> la config courante prime sur le modèle,
              REUSE_CONFIG -> le modèle prime sur la config courante
        locked_sensitive_names: noms déjà marqués sensibles pour cette app
        subdomain_owner: renvoie l'id de l'app qui détient un sous-domaine
        app_id: app pour laquelle on résout
    """
    current_layer = _layer(current)
    delta_layer = _layer(delta)
    template_layer = _layer(template)

    if template is None:
        order = [delta_layer, current_layer]
        source_order = order
    else:
        if mode == TemplateMode.REUSE_CONFIG:
            order = [delta_layer, template_layer, current_layer]
        else:
            order = [delta_layer, current_layer, template_layer]
        # La source (et donc l'artefact) vient toujours du modèle
        source_order = [delta_layer, template_layer, current_layer]

    merged: Dict[str, Any] = {"source": _merge_source(source_order)}

    if merged["source"]["kind"] != SourceKind.HELM.value:
        for field in WORKLOAD_FIELDS:
            if field == "env":
                continue
            for layer in order:
                if field in layer:
                    merged[field] = layer[field]
                    break
        merged.setdefault("replicas", DEFAULT_REPLICAS)

        env_layer = next((layer for layer in order if "env" in layer), {})
        merged["env"] = _resolve_env(
            env_layer.get("env", []),
            delta_supplied="env" in delta_layer,
            previous=[current_layer.get("env", []), template_layer.get("env", [])],
            locked=frozenset(locked_sensitive_names),
        )

    try:
        config = DeploymentConfig.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e

    validate_config(config, app_id=app_id, subdomain_owner=subdomain_owner)
    return config


def validate_config(
        config: DeploymentConfig,
        app_id: Optional[int] = None,
        subdomain_owner: Optional[SubdomainOwner] = None
) -> None:
    if config.kind == SourceKind.GIT:
        _validate_git_source(config.source)
    elif config.kind == SourceKind.IMAGE:
        if not config.source.image.strip() or any(c.isspace() for c in config.source.image):
            raise ValidationError("Référence d'image invalide")
    elif config.kind == SourceKind.HELM:
        if not config.source.chart.strip():
            raise ValidationError("Le chart helm est obligatoire")
        return

    if config.port is not None and not 1 <= config.port <= 65535:
        raise ValidationError(f"Port invalide: {config.port} (attendu entre 1 et 65535)")
    if config.replicas is None or config.replicas < 1:
        raise ValidationError("Le nombre de replicas doit être au moins 1")

    _positive_quantity("cpu", config.cpu)
    _positive_quantity("memory", config.memory)
    _validate_env(config)
    _validate_mounts(config)

    if config.create_ingress:
        if config.port is None:
            raise ValidationError("Un port est requis pour exposer l'app")
        if not config.subdomain:
            raise ValidationError("Un sous-domaine est requis pour créer un ingress")
        if not SUBDOMAIN_PATTERN.match(config.subdomain):
            raise ValidationError(f"Sous-domaine invalide: '{config.subdomain}'")
        if subdomain_owner is not None:
            owner = subdomain_owner(config.subdomain)
            if owner is not None and owner != app_id:
                raise ValidationError(f"Le sous-domaine '{config.subdomain}' est déjà utilisé")


def validate_namespace(namespace: str) -> None:
    if not namespace or len(namespace) > 63 or not NAMESPACE_PATTERN.match(namespace):
        raise ValidationError(f"Namespace invalide: '{namespace}'")


def needs_build(
        template: Optional[DeploymentConfig],
        template_image_ref: Optional[str],
        resolved: DeploymentConfig,
        commit_changed: bool = False
) -> bool:
    """Un update de config ne relance un build que si les entrées du build ont changé"""
    if not resolved.requires_build:
        return False
    if template is None or not template_image_ref or template.kind != resolved.kind:
        return True
    if commit_changed:
        return True
    return any(
        getattr(template.source, field) != getattr(resolved.source, field)
        for field in BUILD_INPUT_FIELDS
    )


def _layer(value: ConfigLike) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        data = value.model_dump(mode="json", exclude_none=True)
    else:
        data = dict(value)
    return {key: item for key, item in data.items() if item is not None}


def _merge_source(layers: List[Dict[str, Any]]) -> Dict[str, Any]:
    kind = next(
        (layer["source"]["kind"] for layer in layers if layer.get("source", {}).get("kind")),
        None,
    )
    if kind is None:
        raise ValidationError("Une source (git, image ou helm) est obligatoire")

    merged: Dict[str, Any] = {}
    # Du moins prioritaire au plus prioritaire ; les sources d'un autre type sont ignorées
    for layer in reversed(layers):
        source = layer.get("source")
        if not source or source.get("kind", kind) != kind:
            continue
        merged.update({key: value for key, value in source.items() if value is not None})
    merged["kind"] = kind
    return merged


def _resolve_env(
        chosen: List[Dict[str, Any]],
        delta_supplied: bool,
        previous: List[List[Dict[str, Any]]],
        locked: frozenset
) -> List[Dict[str, Any]]:
    prior_by_name: Dict[str, Dict[str, Any]] = {}
    for env in reversed(previous):
        for var in env:
            prior_by_name[var.get("name")] = var

    resolved = []
    for var in chosen:
        name = var.get("name")
        value = var.get("value")
        sensitive = bool(var.get("is_sensitive", False))

        if value is None:
            prior = prior_by_name.get(name)
            if prior is None or prior.get("value") is None:
                raise ValidationError(f"Aucune valeur précédente pour la variable '{name}'")
            value = prior["value"]

        if name in locked:
            if delta_supplied and not sensitive:
                raise ValidationError(f"La variable '{name}' est verrouillée comme sensible")
            sensitive = True

        resolved.append({"name": name, "value": value, "is_sensitive": sensitive})

    present = {var["name"] for var in resolved}
    missing = [name for name in sorted(locked) if name not in present]
    if missing and delta_supplied:
        raise ValidationError(
            f"Variables sensibles ni renommables ni supprimables: {', '.join(missing)}"
        )
    for name in missing:
        prior = prior_by_name.get(name)
        if prior is not None and prior.get("value") is not None:
            resolved.append({"name": name, "value": prior["value"], "is_sensitive": True})

    return resolved


def _validate_git_source(source) -> None:
    if posixpath.isabs(source.root_dir) or _has_quotes(source.root_dir):
        raise ValidationError(f"root_dir doit être un chemin relatif: '{source.root_dir}'")
    if source.builder == Builder.DOCKERFILE:
        path = source.dockerfile_path
        if not path or posixpath.isabs(path) or _has_quotes(path):
            raise ValidationError("Le builder dockerfile requiert un dockerfile_path relatif")
    if source.event == TriggerEvent.WORKFLOW_RUN and source.event_id is None:
        raise ValidationError("Un déclencheur workflow_run requiert l'id du workflow")


def _validate_env(config: DeploymentConfig) -> None:
    seen = set()
    for var in config.env:
        if not var.name:
            raise ValidationError("Nom de variable d'environnement vide")
        if var.name.startswith(RESERVED_ENV_PREFIX):
            raise ValidationError(f"Le préfixe {RESERVED_ENV_PREFIX} est réservé")
        if var.name in seen:
            raise ValidationError(f"Variable d'environnement en double: '{var.name}'")
        seen.add(var.name)


def _validate_mounts(config: DeploymentConfig) -> None:
    seen = set()
    for mount in config.mounts:
        if not posixpath.isabs(mount.path):
            raise ValidationError(f"Le point de montage doit être absolu: '{mount.path}'")
        if mount.path in seen:
            raise ValidationError(f"Point de montage en double: '{mount.path}'")
        if mount.size_mib <= 0:
            raise ValidationError(f"Taille de volume invalide pour '{mount.path}'")
        seen.add(mount.path)


def _positive_quantity(field: str, value: Optional[str]) -> None:
    if value is None:
        return
    try:
        quantity = parse_quantity(value)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{field} invalide: '{value}'") from e
    if quantity <= 0:
        raise ValidationError(f"{field} doit être positif")


def _has_quotes(value: str) -> bool:
    return '"' in value or "'" in value


def _describe(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )
