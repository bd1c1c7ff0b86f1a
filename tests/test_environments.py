from __future__ import annotations

from pathlib import Path

import pytest

from infra_orchestrator.config import Environment
from infra_orchestrator.core.contracts import Action, Stage
from infra_orchestrator.core.environments import EnvironmentResolver, get_resolver
from infra_orchestrator.core.errors import UnknownEnvironment


def test_default_table_has_three_environments() -> None:
    resolver = EnvironmentResolver()

    assert resolver.names() == ["dev", "prod", "stg"]
    prod = resolver.resolve("prod")
    assert prod.name == Environment.PROD
    assert prod.requires_escalated_approval is True
    assert prod.variable_file_path == "environments/prod.tfvars"
    assert resolver.resolve("stg").requires_escalated_approval is False


@pytest.mark.parametrize("name", ["DEV", " dev ", Environment.DEV])
def test_resolve_is_case_insensitive(name) -> None:
    assert EnvironmentResolver().resolve(name).name == Environment.DEV


def test_unknown_environment_lists_configured_names() -> None:
    with pytest.raises(UnknownEnvironment) as exc_info:
        EnvironmentResolver().resolve("qa")

    assert "qa" in exc_info.value.message
    assert "dev, prod, stg" in exc_info.value.message


def test_table_cannot_be_mutated_through_resolver() -> None:
    resolver = EnvironmentResolver()

    with pytest.raises(TypeError):
        resolver._table["qa"] = resolver.resolve("dev")


def test_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "environments.yaml"
    path.write_text(
        """
environments:
  dev:
    variable_file_path: vars/dev.tfvars
    region: eu-west-1
    credential_secrets: [infra/dev/deployer]
    stages:
      test: [plan, apply]
  PROD:
    variable_file_path: vars/prod.tfvars
    region: eu-central-1
    requires_escalated_approval: true
"""
    )

    resolver = get_resolver(path)

    dev = resolver.resolve("dev")
    assert dev.region == "eu-west-1"
    assert dev.credential_secrets == ("infra/dev/deployer",)
    assert dev.stage_overrides == {Stage.TEST: (Action.PLAN, Action.APPLY)}
    assert resolver.resolve("prod").requires_escalated_approval is True
    with pytest.raises(UnknownEnvironment):
        resolver.resolve("stg")


def test_from_yaml_rejects_unknown_environment_names(tmp_path: Path) -> None:
    path = tmp_path / "environments.yaml"
    path.write_text("environments:\n  qa:\n    variable_file_path: qa.tfvars\n    region: us-east-1\n")

    with pytest.raises(ValueError, match="Invalid environment 'qa'"):
        EnvironmentResolver.from_yaml(path)
