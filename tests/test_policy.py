from __future__ import annotations

import pytest

from infra_orchestrator.core.contracts import Action, Stage
from infra_orchestrator.core.environments import EnvironmentResolver
from infra_orchestrator.core.policy import DEFAULT_STAGE_TABLE, StagePolicy, only_for


@pytest.fixture
def resolver() -> EnvironmentResolver:
    return EnvironmentResolver()


def test_plan_is_a_dry_run(resolver) -> None:
    plan = StagePolicy().plan_for(Action.PLAN, resolver.resolve("prod"))

    assert plan.stages == (Stage.CHECKOUT, Stage.INITIALIZE, Stage.VALIDATE, Stage.PLAN, Stage.TEST)
    assert plan.approval_gates == 0
    assert not plan.is_active(Stage.EXECUTE)


@pytest.mark.parametrize("action", [Action.APPLY, Action.DESTROY])
def test_mutating_actions_gate_execute(resolver, action) -> None:
    plan = StagePolicy().plan_for(action, resolver.resolve("stg"))

    assert plan.stages == (
        Stage.CHECKOUT, Stage.INITIALIZE, Stage.VALIDATE, Stage.PLAN, Stage.APPROVAL, Stage.EXECUTE,
    )
    assert plan.approval_gates == 1


@pytest.mark.parametrize(
    "action, env, gates",
    [
        (Action.DESTROY, "prod", 2),
        (Action.APPLY, "prod", 1),
        (Action.DESTROY, "dev", 1),
    ],
)
def test_escalation_needs_environment_and_action(resolver, action, env, gates) -> None:
    assert StagePolicy().plan_for(action, resolver.resolve(env)).approval_gates == gates


def test_escalated_actions_come_from_settings(resolver) -> None:
    policy = StagePolicy.from_settings(["apply", "destroy"])

    assert policy.plan_for(Action.APPLY, resolver.resolve("prod")).approval_gates == 2


def test_environment_can_enable_test_for_apply(resolver) -> None:
    env = resolver.resolve("dev").model_copy(
        update={"stage_overrides": {Stage.TEST: (Action.PLAN, Action.APPLY)}}
    )

    assert StagePolicy().plan_for(Action.APPLY, env).is_active(Stage.TEST)


def test_environment_cannot_override_fixed_stages(resolver) -> None:
    env = resolver.resolve("dev").model_copy(update={"stage_overrides": {Stage.APPROVAL: (Action.PLAN,)}})

    plan = StagePolicy().plan_for(Action.APPLY, env)

    assert plan.is_active(Stage.APPROVAL)


def test_execute_without_approval_is_rejected(resolver) -> None:
    table = {**DEFAULT_STAGE_TABLE, Stage.APPROVAL: only_for(Action.PLAN)}

    with pytest.raises(ValueError, match="without an approval gate"):
        StagePolicy(table=table).plan_for(Action.APPLY, resolver.resolve("dev"))


def test_retries_default_to_zero(resolver) -> None:
    plan = StagePolicy(retries={Stage.PLAN: 2}).plan_for(Action.PLAN, resolver.resolve("dev"))

    assert plan.attempts_for(Stage.PLAN) == 3
    assert plan.attempts_for(Stage.INITIALIZE) == 1
