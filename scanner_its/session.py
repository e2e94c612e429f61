"""Begin/end protocol controller.

A session moves through::

    IDLE -> BEGAN -> BUILT -> ENDED_SUCCESS | ENDED_FAILURE
    IDLE -> REJECTED

``begin`` and ``end`` run the scanner and block until it exits; ``end`` then
blocks until the server has finished computing the submitted report, so
issues and measures are complete as soon as it returns.
"""

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable

from scanner_its import scanner
from scanner_its.client import SonarClient
from scanner_its.config import Timeouts
from scanner_its.errors import (
    AnalysisFailed,
    ExternalServiceFailure,
    OperationTimeout,
    SessionAlreadyActive,
    SessionNotBuilt,
    SessionStateError,
)
from scanner_its.models import (
    AnalysisSession,
    BeginConfig,
    EndConfig,
    ProcessResult,
    SessionState,
)
from scanner_its.process import RunCommand, run_process
from scanner_its.provisioning import Provisioner

log = logging.getLogger(__name__)

_CE_PENDING = ("PENDING", "IN_PROGRESS")
_CE_FAILED = ("FAILED", "CANCELED")


class AnalysisSessionController:
    """Drives scanner sessions; at most one active session per project key."""

    def __init__(
        self,
        client: SonarClient,
        scanner_command: list[str],
        timeouts: Timeouts,
        run: RunCommand = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._provisioner = Provisioner(client)
        self._scanner = list(scanner_command)
        self._timeouts = timeouts
        self._run = run
        self._sleep = sleep
        self._clock = clock
        self._active: dict[str, AnalysisSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def active(self, project_key: str) -> AnalysisSession | None:
        with self._lock:
            return self._active.get(project_key)

    def begin(self, config: BeginConfig, project_dir: Path | str) -> AnalysisSession:
        """Register a new analysis with the server.

        Raises:
            ConfigError:            malformed *config* (nothing is contacted)
            SessionAlreadyActive:   a session for the key has not ended yet
            ExternalServiceFailure: project not provisioned, or the scanner
                                    exited non-zero (session is REJECTED)
            OperationTimeout:       the scanner did not exit in time
        """
        config.validate()
        session = AnalysisSession.from_config(config)
        session.working_dir = str(project_dir)
        self._claim(session)

        try:
            if not self._provisioner.is_provisioned(config.project_key):
                session.failure_reason = "not_provisioned"
                raise ExternalServiceFailure(
                    f"Project '{config.project_key}' is not provisioned on the server; "
                    "create it and bind a quality profile before begin."
                )
            session.baseline_task = self._current_task_id(config.project_key)

            command = scanner.begin_command(self._scanner, config, self._client.base_url,
                                            self._client.token)
            result = self._execute(command, project_dir, self._timeouts.begin)
        except Exception:
            self._reject(session, session.failure_reason or "begin_error")
            raise

        session.begin_result = result
        if not result.success:
            reason = scanner.diagnose(result.logs)
            self._reject(session, reason)
            raise AnalysisFailed(
                f"begin failed for '{config.project_key}' (exit code {result.exit_code})",
                result=result,
                reason=reason,
            )

        session.state = SessionState.BEGAN
        log.info("Session %s began for %s", session.token, session.project_key)
        return session

    def mark_built(self, session: AnalysisSession, build_result: ProcessResult) -> None:
        """Record that the build process has terminated, whatever its exit code."""
        if session.state is not SessionState.BEGAN:
            raise SessionStateError(
                f"Cannot record a build for session in state '{session.state.value}'."
            )
        session.build_result = build_result
        session.state = SessionState.BUILT

    def end(self, session: AnalysisSession, config: EndConfig | None = None) -> AnalysisSession:
        """Submit the analysis and wait until the server has processed it.

        Raises:
            SessionNotBuilt:  the build has not been recorded (nothing is contacted)
            ConfigError:      malformed *config*
            AnalysisFailed:   the scanner or the server reported a failure
                              (session is ENDED_FAILURE)
            OperationTimeout: the scanner or the server did not finish in time
        """
        config = config or EndConfig()
        if session.state is not SessionState.BUILT:
            raise SessionNotBuilt(
                f"end called for '{session.project_key}' in state '{session.state.value}'; "
                "the build must run first."
            )
        config.validate()

        command = scanner.end_command(self._scanner, config, self._client.token)
        try:
            result = self._execute(command, session.working_dir, self._timeouts.end)
        except Exception:
            self.abandon(session)
            raise

        session.end_result = result
        if not result.success:
            reason = scanner.diagnose(result.logs)
            self._finish(session, SessionState.ENDED_FAILURE, reason)
            raise AnalysisFailed(
                f"end failed for '{session.project_key}' (exit code {result.exit_code}): {reason}",
                result=result,
                reason=reason,
            )

        try:
            status = self._wait_for_settlement(session)
        except Exception:
            self.abandon(session)
            raise

        if status in _CE_FAILED:
            self._finish(session, SessionState.ENDED_FAILURE, "background_task_" + status.lower())
            raise AnalysisFailed(
                f"Server-side processing of '{session.project_key}' ended with status {status}",
                result=result,
                reason=session.failure_reason,
            )

        self._finish(session, SessionState.ENDED_SUCCESS)
        return session

    def abandon(self, session: AnalysisSession) -> None:
        """Give up on *session* (failed build, timeout) and free its key."""
        if not session.state.is_terminal:
            session.state = SessionState.ENDED_FAILURE
            session.failure_reason = session.failure_reason or "abandoned"
        self._release(session)

    def help(self, project_dir: Path | str) -> ProcessResult:
        """Run ``/?``; stateless, independent of any active session."""
        result = self._execute(scanner.help_command(self._scanner), project_dir,
                               self._timeouts.begin)
        if not result.success or "usage" not in scanner.phrases_in(result.logs):
            raise AnalysisFailed(
                f"Help invocation failed (exit code {result.exit_code}) or printed no usage banner",
                result=result,
                reason=scanner.diagnose(result.logs),
            )
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _execute(self, command: list[str], cwd, timeout: float) -> ProcessResult:
        return run_process(command, cwd or ".", timeout, run=self._run)

    def _claim(self, session: AnalysisSession) -> None:
        with self._lock:
            if session.project_key in self._active:
                raise SessionAlreadyActive(
                    f"A session for '{session.project_key}' is already active."
                )
            self._active[session.project_key] = session

    def _release(self, session: AnalysisSession) -> None:
        with self._lock:
            if self._active.get(session.project_key) is session:
                del self._active[session.project_key]

    def _reject(self, session: AnalysisSession, reason: str) -> None:
        session.failure_reason = reason
        session.state = SessionState.REJECTED
        self._release(session)

    def _finish(self, session: AnalysisSession, state: SessionState, reason: str | None = None) -> None:
        session.state = state
        session.failure_reason = reason
        self._release(session)
        log.info("Session %s for %s: %s", session.token, session.project_key, state.value)

    def _current_task_id(self, project_key: str) -> str | None:
        data = self._client.get("/api/ce/component", {"component": project_key})
        current = data.get("current") or {}
        return current.get("id")

    def _wait_for_settlement(self, session: AnalysisSession) -> str:
        """Poll the compute engine until the submitted report is processed.

        Returns the status of the new task (``SUCCESS``, ``FAILED``, ``CANCELED``).
        """
        deadline = self._clock() + self._timeouts.settle
        while True:
            data = self._client.get("/api/ce/component", {"component": session.project_key})
            queue = data.get("queue") or []
            current = data.get("current") or {}
            pending = [t for t in queue if t.get("status") in _CE_PENDING]
            if not pending and current.get("id") and current.get("id") != session.baseline_task:
                log.debug("Task %s settled with status %s", current["id"], current.get("status"))
                return current.get("status", "SUCCESS")
            if self._clock() >= deadline:
                raise OperationTimeout(
                    f"Analysis of '{session.project_key}' was not processed within "
                    f"{self._timeouts.settle}s"
                )
            self._sleep(self._timeouts.poll_interval)
