"""Environment table lookup.

The table is static for the lifetime of a resolver: either the built-in
defaults below or a YAML file of the form::

    environments:
      dev:
        variable_file_path: environments/dev.tfvars
        region: us-east-1
        credential_secrets: [infra/dev/deployer]
        stages:
          test: [plan, apply]
      prod:
        variable_file_path: environments/prod.tfvars
        region: us-east-1
        requires_escalated_approval: true
"""

from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from infra_orchestrator.config import Environment
from infra_orchestrator.core.contracts import EnvironmentConfig
from infra_orchestrator.core.errors import UnknownEnvironment


DEFAULT_ENVIRONMENTS: Mapping[str, EnvironmentConfig] = MappingProxyType({
    "dev": EnvironmentConfig(
        name=Environment.DEV,
        variable_file_path="environments/dev.tfvars",
        region="us-east-1",
    ),
    "stg": EnvironmentConfig(
        name=Environment.STG,
        variable_file_path="environments/stg.tfvars",
        region="us-east-1",
    ),
    "prod": EnvironmentConfig(
        name=Environment.PROD,
        variable_file_path="environments/prod.tfvars",
        region="us-east-1",
        requires_escalated_approval=True,
    ),
})


class EnvironmentResolver:
    """Maps environment names to their static configuration."""

    def __init__(self, table: Optional[Mapping[str, EnvironmentConfig]] = None):
        self._table = MappingProxyType(dict(table if table is not None else DEFAULT_ENVIRONMENTS))

    @classmethod
    def from_yaml(cls, path: Path) -> "EnvironmentResolver":
        """Build a resolver from a YAML environments file."""
        data = yaml.safe_load(Path(path).read_text()) or {}
        return cls(_parse_table(data.get("environments") or {}, source=str(path)))

    def resolve(self, environment_name: str) -> EnvironmentConfig:
        """Return the configuration for an environment name.

        Raises:
            UnknownEnvironment: If the name is not in the table.
        """
        key = environment_name.value if isinstance(environment_name, Environment) else str(environment_name)
        try:
            return self._table[key.strip().lower()]
        except KeyError:
            known = ", ".join(sorted(self._table))
            raise UnknownEnvironment(
                f"Unknown environment '{environment_name}' (configured: {known})"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._table)


def _parse_table(raw: dict[str, Any], source: str) -> dict[str, EnvironmentConfig]:
    table: dict[str, EnvironmentConfig] = {}
    for name, entry in raw.items():
        entry = dict(entry or {})
        stages = entry.pop("stages", None) or {}
        try:
            table[name.lower()] = EnvironmentConfig(
                name=name.lower(),
                stage_overrides=stages,
                **entry,
            )
        except ValidationError as e:
            raise ValueError(f"Invalid environment '{name}' in {source}: {e}") from e
    return table


def get_resolver(environments_file: Optional[Path] = None) -> EnvironmentResolver:
    """Resolver for the configured table, falling back to the built-in one."""
    if environments_file:
        return EnvironmentResolver.from_yaml(environments_file)
    return EnvironmentResolver()
