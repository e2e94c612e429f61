"""Data models for analysis sessions and their results.

Contains:
    - BeginConfig / EndConfig   (validated scanner arguments)
    - SessionState / AnalysisSession
    - Issue / Measure / IssueFilter
    - QualityProfileBinding
    - ProcessResult             (captured scanner or build run)
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from scanner_its.errors import ConfigError

# SonarQube accepts letters, digits, '-', '_', '.' and ':' and at least one non-digit
_PROJECT_KEY_RE = re.compile(r"^[\w\-.:]+$")
_ANALYSIS_PARAM_RE = re.compile(r"^/d:([^=\s]+)=(.*)$")

VERBOSE_FLAG = "/d:sonar.verbose=true"


# ---------------------------------------------------------------------------
# Project keys
# ---------------------------------------------------------------------------

def is_in_subtree(component: str, root: str) -> bool:
    """Return True when *component* is *root* or lives below it.

    Keys are hierarchical (``project:module:file``), so ``my.project:mod``
    contains ``my.project:mod:Foo.cs`` but not ``my.project:module2:Foo.cs``.
    """
    return component == root or component.startswith(root + ":")


def validate_project_key(key: str) -> None:
    if not isinstance(key, str) or not key.strip():
        raise ConfigError("projectKey is required and must be a non-empty string.")
    if not _PROJECT_KEY_RE.match(key) or key.isdigit():
        raise ConfigError(
            f"Invalid projectKey '{key}': use letters, digits, '-', '_', '.' or ':' "
            "with at least one non-digit."
        )


def parse_analysis_parameters(arguments) -> dict[str, str]:
    """Extract ``/d:key=value`` flags into an ordered mapping."""
    params: dict[str, str] = {}
    for arg in arguments:
        match = _ANALYSIS_PARAM_RE.match(arg)
        if match:
            params[match.group(1)] = match.group(2)
    return params


def _validate_arguments(arguments) -> None:
    for arg in arguments:
        if not isinstance(arg, str) or not arg.strip():
            raise ConfigError(f"Extra arguments must be non-empty strings, got {arg!r}.")
        if arg.startswith("/d:") and not _ANALYSIS_PARAM_RE.match(arg):
            raise ConfigError(f"Malformed analysis parameter '{arg}': expected /d:<key>=<value>.")


# ---------------------------------------------------------------------------
# Begin / end configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BeginConfig:
    project_key: str
    project_name: str | None = None
    project_version: str | None = None
    verbose: bool = False
    extra_arguments: tuple[str, ...] = ()

    def validate(self) -> None:
        """Raise ConfigError if the configuration cannot be sent to the scanner."""
        validate_project_key(self.project_key)
        for label, value in (("projectName", self.project_name),
                             ("projectVersion", self.project_version)):
            if value is not None and not str(value).strip():
                raise ConfigError(f"{label} must be omitted or non-empty.")
        _validate_arguments(self.extra_arguments)

    def arguments(self) -> list[str]:
        """Verb-specific flags, in the order the scanner expects them."""
        args = [f"/k:{self.project_key}"]
        if self.project_name is not None:
            args.append(f"/n:{self.project_name}")
        if self.project_version is not None:
            args.append(f"/v:{self.project_version}")
        if self.verbose:
            args.append(VERBOSE_FLAG)
        args.extend(self.extra_arguments)
        return args


@dataclass(frozen=True)
class EndConfig:
    verbose: bool = False
    extra_arguments: tuple[str, ...] = ()

    def validate(self) -> None:
        _validate_arguments(self.extra_arguments)

    def arguments(self) -> list[str]:
        args = [VERBOSE_FLAG] if self.verbose else []
        args.extend(self.extra_arguments)
        return args


# ---------------------------------------------------------------------------
# Processes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProcessResult:
    """Exit code and merged stdout/stderr of a scanner or build run."""

    command: tuple[str, ...]
    exit_code: int
    logs: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class SessionState(Enum):
    IDLE = "idle"
    BEGAN = "began"
    BUILT = "built"
    ENDED_SUCCESS = "ended_success"
    ENDED_FAILURE = "ended_failure"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.ENDED_SUCCESS, SessionState.ENDED_FAILURE,
                        SessionState.REJECTED)


@dataclass
class AnalysisSession:
    """One begin → build → end cycle for a single project key."""

    project_key: str
    project_name: str | None = None
    project_version: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    state: SessionState = SessionState.IDLE
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    begin_result: ProcessResult | None = None
    build_result: ProcessResult | None = None
    end_result: ProcessResult | None = None
    failure_reason: str | None = None
    working_dir: str | None = None
    # last compute-engine task seen before begin, so end never settles on a stale one
    baseline_task: str | None = None

    @classmethod
    def from_config(cls, config: BeginConfig) -> "AnalysisSession":
        return cls(
            project_key=config.project_key,
            project_name=config.project_name,
            project_version=config.project_version,
            parameters=parse_analysis_parameters(config.arguments()),
        )

    @property
    def logs(self) -> str:
        """Scanner and build logs captured so far, in execution order."""
        parts = [r.logs for r in (self.begin_result, self.build_result, self.end_result) if r]
        return "\n".join(parts)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Issue:
    """A rule violation; compared on rule, message and owning component."""

    rule_key: str
    message: str
    component: str

    @classmethod
    def from_api(cls, raw: dict) -> "Issue":
        return cls(
            rule_key=raw.get("rule", ""),
            message=raw.get("message", ""),
            component=raw.get("component", ""),
        )


@dataclass(frozen=True)
class Measure:
    component: str
    metric: str
    value: int | float


@dataclass(frozen=True)
class IssueFilter:
    component_key: str | None = None
    qualifier: Literal["root", "any"] = "any"

    def __post_init__(self) -> None:
        if self.qualifier not in ("root", "any"):
            raise ConfigError(f"qualifier must be 'root' or 'any', got '{self.qualifier}'.")
        if self.qualifier == "root" and not self.component_key:
            raise ConfigError("A 'root' issue filter needs a component key.")
        if self.qualifier == "any" and self.component_key:
            raise ConfigError("An 'any' issue filter takes no component key; use qualifier='root'.")


@dataclass(frozen=True)
class QualityProfileBinding:
    language: str
    profile_name: str
