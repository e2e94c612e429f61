"""Configuration loading and validation.

Usage:
    config = load("its-config.yaml")         # raises ConfigError on bad config
    client = config.make_client()
    generate_template("its-config.yaml")     # writes example file to disk
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from scanner_its.errors import ConfigError

DEFAULT_PROJECT_KEY = "my.project"


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class Timeouts:
    """Upper bounds, in seconds, for every blocking call."""

    request: float = 30
    begin: float = 300
    build: float = 600
    end: float = 600
    settle: float = 120
    poll_interval: float = 1


@dataclass
class Config:
    url: str
    token: str
    scanner_path: str
    msbuild_path: str
    fixtures_root: str = "projects"
    project_key: str = DEFAULT_PROJECT_KEY
    timeouts: Timeouts = field(default_factory=Timeouts)

    @property
    def scanner_command(self) -> list[str]:
        """Scanner launcher as argv, e.g. ``["dotnet", "SonarScanner.MSBuild.dll"]``."""
        return shlex.split(self.scanner_path)

    @property
    def msbuild_command(self) -> list[str]:
        return shlex.split(self.msbuild_path)

    def make_client(self):
        from scanner_its.client import SonarClient
        return SonarClient(url=self.url, token=self.token, timeout=self.timeouts.request)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str = "its-config.yaml") -> Config:
    """Load and validate configuration from a YAML file.

    Environment variables SONAR_URL, SONAR_TOKEN, SCANNER_PATH and
    MSBUILD_PATH override file values.

    Raises:
        ConfigError: if the file is missing, malformed, or required fields
                     are absent.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `python -m scanner_its init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    server   = raw.get("server") or {}
    scanner  = raw.get("scanner") or {}
    msbuild  = raw.get("msbuild") or {}
    fixtures = raw.get("fixtures") or {}

    url     = os.environ.get("SONAR_URL")    or server.get("url", "")
    token   = os.environ.get("SONAR_TOKEN")  or server.get("token", "")
    scanner_path = os.environ.get("SCANNER_PATH") or scanner.get("path", "")
    msbuild_path = os.environ.get("MSBUILD_PATH") or msbuild.get("path", "")

    config = Config(
        url=str(url).strip(),
        token=str(token or "").strip(),
        scanner_path=str(scanner_path).strip(),
        msbuild_path=str(msbuild_path).strip(),
        fixtures_root=str(fixtures.get("root") or "projects"),
        project_key=str(raw.get("project_key") or DEFAULT_PROJECT_KEY),
        timeouts=_load_timeouts(raw.get("timeouts") or {}, config_path),
    )
    _validate(config)
    return config


def _load_timeouts(raw: dict, config_path: str) -> Timeouts:
    if not isinstance(raw, dict):
        raise ConfigError(f"'timeouts' in '{config_path}' must be a mapping.")
    known = Timeouts.__dataclass_fields__.keys()
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"Unknown timeout(s) in '{config_path}': {', '.join(unknown)}")
    values: dict[str, float] = {}
    for key, value in raw.items():
        try:
            values[key] = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"timeouts.{key} must be a number, got {value!r}") from exc
        if values[key] <= 0:
            raise ConfigError(f"timeouts.{key} must be positive, got {value!r}")
    return Timeouts(**values)


def _validate(config: Config) -> None:
    """Raise ConfigError if required fields are missing."""
    errors: list[str] = []

    if not config.url:
        errors.append(
            "  - 'server.url' is missing (or set the SONAR_URL environment variable)"
        )
    if not config.scanner_path:
        errors.append(
            "  - 'scanner.path' is missing (or set the SCANNER_PATH environment variable)"
        )
    if not config.msbuild_path:
        errors.append(
            "  - 'msbuild.path' is missing (or set the MSBUILD_PATH environment variable)"
        )

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
server:
  url: "http://localhost:9000"
  token: "squ_xxxxxxxxxxxx"       # Admin token: provisioning needs 'Administer' rights

scanner:
  # Executable or command line, e.g. "dotnet /opt/sonar-scanner/SonarScanner.MSBuild.dll"
  path: "SonarQube.Scanner.MSBuild.exe"

msbuild:
  path: "msbuild"

fixtures:
  root: "projects"               # Holds ProjectUnderTest/, ExcludedTest/, ConsoleMultiLanguage/

project_key: "my.project"

timeouts:                        # Seconds
  request: 30
  begin: 300
  build: 600
  end: 600
  settle: 120
  poll_interval: 1
"""


def generate_template(output_path: str = "its-config.yaml") -> None:
    """Write a template its-config.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
