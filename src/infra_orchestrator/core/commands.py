"""Argument vectors for the infrastructure tool.

Only the command line is built here; what the tool prints is never parsed.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from infra_orchestrator.config import Settings


@dataclass(frozen=True)
class ToolCommands:
    """Builds Terraform-compatible command lines."""

    binary: str = "terraform"
    region_variable: str = "region"
    test_command: str = "terraform test -no-color"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolCommands":
        return cls(
            binary=settings.tool_binary,
            region_variable=settings.region_variable,
            test_command=settings.test_command,
        )

    def init(self, backend_config: Optional[str] = None) -> list[str]:
        cmd = [self.binary, "init", "-input=false", "-no-color"]
        if backend_config:
            cmd.append(f"-backend-config={backend_config}")
        return cmd

    def format_check(self) -> list[str]:
        return [self.binary, "fmt", "-check", "-recursive", "-no-color"]

    def validate(self) -> list[str]:
        return [self.binary, "validate", "-no-color"]

    def plan(
        self,
        artifact: Path,
        region: str,
        var_file: Optional[str] = None,
        destroy: bool = False,
    ) -> list[str]:
        cmd = [
            self.binary, "plan",
            "-input=false",
            "-no-color",
            f"-out={artifact}",
            f"-var={self.region_variable}={region}",
        ]
        if var_file:
            cmd.append(f"-var-file={var_file}")
        if destroy:
            cmd.append("-destroy")
        return cmd

    def test(self) -> list[str]:
        return shlex.split(self.test_command)

    def apply(self, artifact: Path) -> list[str]:
        # A saved plan carries its own destroy flag, so destroy runs the same way.
        return [self.binary, "apply", "-input=false", "-no-color", "-auto-approve", str(artifact)]
