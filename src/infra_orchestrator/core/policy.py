"""Declarative stage activation.

Every stage of the sequence is gated by a predicate over the requested action
(and the environment's policy flags). The table is evaluated once per run to
produce a ``StagePlan``; the orchestrator only ever consults the plan.

Defaults:
- checkout, initialize, plan: always
- validate: always, before plan
- test: only for ``plan`` (non-mutating dry runs)
- approval: only for mutating actions
- escalated second gate: only when the environment requires it and the
  action is listed in ``escalated_actions`` (``destroy`` by default)
- execute: only for mutating actions
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from infra_orchestrator.core.contracts import Action, EnvironmentConfig, Stage

StagePredicate = Callable[[Action, EnvironmentConfig], bool]


def always(action: Action, env: EnvironmentConfig) -> bool:
    return True


def only_for(*actions: Action) -> StagePredicate:
    """Predicate active for the given actions only."""
    allowed = frozenset(actions)

    def predicate(action: Action, env: EnvironmentConfig) -> bool:
        return action in allowed

    return predicate


def mutating(action: Action, env: EnvironmentConfig) -> bool:
    return action.is_mutating


DEFAULT_STAGE_TABLE: Mapping[Stage, StagePredicate] = {
    Stage.CHECKOUT: always,
    Stage.INITIALIZE: always,
    Stage.VALIDATE: always,
    Stage.PLAN: always,
    Stage.TEST: only_for(Action.PLAN),
    Stage.APPROVAL: mutating,
    Stage.EXECUTE: mutating,
}

# Stages whose activation cannot be overridden per environment
_FIXED_STAGES = frozenset({Stage.CHECKOUT, Stage.INITIALIZE, Stage.PLAN, Stage.APPROVAL, Stage.EXECUTE})


@dataclass(frozen=True)
class StagePlan:
    """Stages active for one run, in execution order."""

    action: Action
    stages: tuple[Stage, ...]
    approval_gates: int
    retries: Mapping[Stage, int] = field(default_factory=dict)

    def is_active(self, stage: Stage) -> bool:
        return stage in self.stages

    def attempts_for(self, stage: Stage) -> int:
        return 1 + max(0, self.retries.get(stage, 0))


@dataclass
class StagePolicy:
    """Stage activation table plus per-stage retry policy.

    Retries are explicit and zero everywhere unless configured.
    """

    table: Mapping[Stage, StagePredicate] = field(default_factory=lambda: dict(DEFAULT_STAGE_TABLE))
    escalated_actions: frozenset[Action] = frozenset({Action.DESTROY})
    retries: Mapping[Stage, int] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, escalated_actions: Iterable[str]) -> "StagePolicy":
        return cls(escalated_actions=frozenset(Action(a) for a in escalated_actions))

    def requires_escalation(self, action: Action, env: EnvironmentConfig) -> bool:
        return env.requires_escalated_approval and action in self.escalated_actions

    def predicate_for(self, stage: Stage, env: EnvironmentConfig) -> StagePredicate:
        override = env.stage_overrides.get(stage)
        if override is not None and stage not in _FIXED_STAGES:
            return only_for(*override)
        return self.table.get(stage, always)

    def plan_for(self, action: Action, env: EnvironmentConfig) -> StagePlan:
        """Evaluate every predicate once and freeze the result."""
        stages = tuple(
            stage for stage in Stage
            if self.predicate_for(stage, env)(action, env)
        )
        if Stage.EXECUTE in stages and Stage.APPROVAL not in stages:
            raise ValueError(f"Stage table runs execute for '{action.value}' without an approval gate")
        gates = 0
        if Stage.APPROVAL in stages:
            gates = 2 if self.requires_escalation(action, env) else 1
        return StagePlan(
            action=action,
            stages=stages,
            approval_gates=gates,
            retries=dict(self.retries),
        )
