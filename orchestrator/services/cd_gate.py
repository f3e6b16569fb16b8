from orchestrator.models.deployment import TriggerKind

# Seuls les déclencheurs automatiques passent par le gate
AUTOMATIC_TRIGGERS = frozenset({TriggerKind.GIT_PUSH, TriggerKind.GIT_WORKFLOW_RUN})


def is_allowed(cd_enabled: bool, trigger_kind: TriggerKind) -> bool:
    if trigger_kind in AUTOMATIC_TRIGGERS:
        return bool(cd_enabled)
    return True
