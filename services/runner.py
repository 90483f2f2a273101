"""Process launching seam shared by the services."""
from __future__ import annotations

import subprocess
from typing import Protocol, Sequence


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(list(command), capture_output=True, text=True, errors="replace", check=False)


def format_command_detail(completed: subprocess.CompletedProcess[str]) -> str:
    output = (completed.stderr or completed.stdout or "").strip()
    if output:
        return f"exit {completed.returncode}: {output}"
    return f"exit {completed.returncode}"
