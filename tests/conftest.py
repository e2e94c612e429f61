"""Shared fixtures: a scripted stand-in for subprocess.run and a controller."""

import subprocess

import pytest

from scanner_its.client import SonarClient
from scanner_its.config import Timeouts
from scanner_its.session import AnalysisSessionController

BASE = "http://sonar.example.com"
PROJECT = "my.project"


def _verb(command: list[str]) -> str:
    for arg in command:
        if arg in ("begin", "end", "/?"):
            return arg
        if arg.startswith("/t:"):
            return "build"
    return "unknown"


class FakeRun:
    """Records commands and answers with a scripted (exit code, output) per verb."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []
        self.outputs: dict[str, tuple[int, str]] = {}
        self.raises: dict[str, BaseException] = {}

    def script(self, verb: str, exit_code: int = 0, output: str = "") -> None:
        self.outputs[verb] = (exit_code, output)

    def verbs(self) -> list[str]:
        return [_verb(c) for c in self.calls]

    def __call__(self, command, **kwargs):
        self.calls.append(list(command))
        self.kwargs.append(kwargs)
        verb = _verb(command)
        if verb in self.raises:
            raise self.raises[verb]
        exit_code, output = self.outputs.get(verb, (0, f"{verb} ok"))
        return subprocess.CompletedProcess(command, exit_code, stdout=output)


@pytest.fixture
def fake_run() -> FakeRun:
    return FakeRun()


@pytest.fixture
def client() -> SonarClient:
    return SonarClient(url=BASE, token="squ_test")


@pytest.fixture
def timeouts() -> Timeouts:
    return Timeouts(request=5, begin=10, build=10, end=10, settle=5, poll_interval=1)


@pytest.fixture
def controller(client, timeouts, fake_run) -> AnalysisSessionController:
    return AnalysisSessionController(
        client, ["scanner"], timeouts, run=fake_run, sleep=lambda _: None
    )


def mock_provisioned(requests_mock, key: str = PROJECT) -> None:
    requests_mock.get(f"{BASE}/api/projects/search", json={"components": [{"key": key}]})


def mock_settled(requests_mock, status: str = "SUCCESS") -> None:
    """Baseline task 'old' before begin, then a queued task that settles as 'new'."""
    requests_mock.get(f"{BASE}/api/ce/component", [
        {"json": {"queue": [], "current": {"id": "old", "status": "SUCCESS"}}},
        {"json": {"queue": [{"id": "new", "status": "PENDING"}], "current": {"id": "old"}}},
        {"json": {"queue": [], "current": {"id": "new", "status": status}}},
    ])
