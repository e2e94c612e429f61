"""Scanner for MSBuild command surface.

Builds the ``begin`` / ``end`` / ``/?`` command lines and maps the scanner's
log output onto a fixed set of diagnostic phrases, because the scanner does
not emit structured error payloads.
"""

from scanner_its.models import BeginConfig, EndConfig

# Reason key -> phrase the scanner writes to its log
KNOWN_PHRASES: dict[str, str] = {
    "no_analysable_projects": "No analysable projects were found",
    "project_excluded": "The exclude flag has been set so the project will not be analyzed",
    "usage": "Usage:",
    "verbose_enabled": "sonar.verbose=true was specified - setting the log verbosity to 'Debug'",
    "downloading": "Downloading from http",
}

# Phrases that explain why an analysis did not happen, most specific first
FAILURE_REASONS = ("no_analysable_projects", "project_excluded")


def begin_command(scanner: list[str], config: BeginConfig, host_url: str, token: str) -> list[str]:
    command = [*scanner, "begin", *config.arguments()]
    command.append(f"/d:sonar.host.url={host_url}")
    if token:
        command.append(f"/d:sonar.login={token}")
    return command


def end_command(scanner: list[str], config: EndConfig, token: str) -> list[str]:
    command = [*scanner, "end", *config.arguments()]
    if token:
        command.append(f"/d:sonar.login={token}")
    return command


def help_command(scanner: list[str]) -> list[str]:
    return [*scanner, "/?"]


def phrases_in(logs: str) -> set[str]:
    """Return the keys of every known phrase present in *logs*."""
    return {key for key, phrase in KNOWN_PHRASES.items() if phrase in logs}


def diagnose(logs: str) -> str:
    """Return the reason key explaining a failed run, or ``"unknown"``."""
    found = phrases_in(logs)
    for reason in FAILURE_REASONS:
        if reason in found:
            return reason
    return "unknown"
