import pytest

from orchestrator.models.deployment import TriggerKind
from orchestrator.services.cd_gate import is_allowed


@pytest.mark.parametrize("trigger_kind", [TriggerKind.GIT_PUSH, TriggerKind.GIT_WORKFLOW_RUN])
def test_automatic_triggers_follow_cd_flag(trigger_kind):
    assert is_allowed(True, trigger_kind)
    assert not is_allowed(False, trigger_kind)


@pytest.mark.parametrize("trigger_kind", [TriggerKind.MANUAL, TriggerKind.CONFIG_UPDATE])
def test_user_triggers_always_allowed(trigger_kind):
    assert is_allowed(False, trigger_kind)
    assert is_allowed(True, trigger_kind)
