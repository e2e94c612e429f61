"""Blocking execution of external commands with a hard timeout."""

import logging
import subprocess
from pathlib import Path
from typing import Callable

from scanner_its.errors import ConfigError, OperationTimeout
from scanner_its.models import ProcessResult

log = logging.getLogger(__name__)

RunCommand = Callable[..., subprocess.CompletedProcess]


def run_process(
    command: list[str],
    cwd: Path | str,
    timeout: float,
    run: RunCommand = subprocess.run,
) -> ProcessResult:
    """Run *command* in *cwd* and capture stdout and stderr as one log.

    Raises:
        ConfigError:      the executable does not exist
        OperationTimeout: the process did not exit within *timeout* seconds
    """
    log.info("Running %s (cwd=%s)", " ".join(command), cwd)
    try:
        completed = run(
            command,
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise OperationTimeout(
            f"'{command[0]}' did not finish within {timeout}s"
        ) from exc
    except FileNotFoundError as exc:
        raise ConfigError(f"Executable not found: '{command[0]}'") from exc

    result = ProcessResult(
        command=tuple(command),
        exit_code=completed.returncode,
        logs=completed.stdout or "",
    )
    log.debug("'%s' exited with code %d", command[0], result.exit_code)
    return result
