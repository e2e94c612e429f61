"""Native MSBuild invocation against a staged fixture project."""

import logging
from pathlib import Path

from scanner_its.errors import ExternalBuildFailure
from scanner_its.models import ProcessResult
from scanner_its.process import RunCommand, run_process

log = logging.getLogger(__name__)

# Forces every project in the solution to be skipped by the analysis targets
EXCLUDE_ALL_PROPERTY = "ExcludeProjectsFromAnalysis"


class BuildInvoker:
    """Runs ``msbuild /t:<target> /p:<key>=<value>...`` in a project directory."""

    def __init__(self, msbuild: list[str], timeout: float, run: RunCommand | None = None) -> None:
        self._msbuild = list(msbuild)
        self._timeout = timeout
        self._run = run

    def command(self, target: str = "Rebuild", properties: dict[str, str] | None = None) -> list[str]:
        command = [*self._msbuild, f"/t:{target}"]
        for key, value in (properties or {}).items():
            command.append(f"/p:{key}={value}")
        return command

    def run(
        self,
        project_dir: Path,
        target: str = "Rebuild",
        properties: dict[str, str] | None = None,
        check: bool = False,
    ) -> ProcessResult:
        """Build *project_dir* and return the captured result.

        With ``check=True`` a non-zero exit raises ExternalBuildFailure;
        otherwise the caller decides what a failed build means.
        """
        kwargs = {"run": self._run} if self._run else {}
        result = run_process(self.command(target, properties), project_dir, self._timeout, **kwargs)
        if not result.success:
            log.warning("Build of %s exited with code %d", project_dir, result.exit_code)
            if check:
                raise ExternalBuildFailure(
                    f"MSBuild exited with code {result.exit_code} in '{project_dir}'",
                    result=result,
                )
        return result
