"""pre-commit hook adapter."""

import re
from typing import Any, Dict, List, Optional

from ..core.interfaces import AdapterResult, StageRequest
from .base import CommandAdapter


_FAILED_HOOK = re.compile(r"^(.+?)\.{3,}\s*Failed\s*$", re.MULTILINE)


def failed_hooks(output: str) -> List[str]:
    """Names of hooks pre-commit reported as Failed."""
    return [name.strip() for name in _FAILED_HOOK.findall(output)]


class PreCommitAdapter(CommandAdapter):
    """Runs ``pre-commit run`` over the repository."""

    name = "pre_commit"
    executable = "pre-commit"
    required_inputs = ()

    def __init__(self, version: Optional[str] = None, all_files: bool = True,
                 hook: Optional[str] = None, **kwargs):
        super().__init__(version=version, **kwargs)
        self.all_files = all_files
        self.hook = hook

    def validate_inputs(self, inputs: Dict[str, Any]) -> List[str]:
        return []

    def run(self, request: StageRequest) -> AdapterResult:
        args = ["run", "--show-diff-on-failure", "--color", "never"]
        if self.hook:
            args.insert(1, self.hook)
        if self.all_files:
            args.append("--all-files")

        cwd = self._optional(request, "repo_dir") or self._optional(request, "stack_dir")
        result = self._run(request, args, cwd=cwd)

        if result.returncode != 0:
            hooks = failed_hooks(result.stdout)
            detail = f": {', '.join(hooks)}" if hooks else ""
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"pre-commit hooks failed{detail}",
            )

        return AdapterResult(success=True, diagnostics=result.output)
