"""Orchestration core: stage runner, plan artifacts, approval gates and the run graph.

The pieces compose leaf-first:
- StageRunner runs one external command as a named stage
- PlanArtifactManager names, records and prunes plan artifacts
- ApprovalGate suspends a run until a human answers or time runs out
- EnvironmentResolver maps environment names to their configuration
- Orchestrator sequences all of them as a LangGraph state machine
"""

from infra_orchestrator.core.approval import ApprovalGate
from infra_orchestrator.core.artifacts import PlanArtifactManager
from infra_orchestrator.core.environments import EnvironmentResolver
from infra_orchestrator.core.graph import Orchestrator
from infra_orchestrator.core.stages import StageOptions, StageRunner

__all__ = [
    "ApprovalGate",
    "EnvironmentResolver",
    "Orchestrator",
    "PlanArtifactManager",
    "StageOptions",
    "StageRunner",
]
