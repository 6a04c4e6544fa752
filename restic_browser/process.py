"""
Subprocess execution for the restic binary.

The runner hands the repository password to restic on stdin, collects
stdout and stderr, and turns launch problems and non-zero exit codes into
LaunchFailure / CommandFailure. Every pipe it opens is released on every
exit path.
"""

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from .errors import CommandFailure, LaunchFailure

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a successful restic invocation."""

    command: str
    stdout: bytes
    stderr: str
    returncode: int


def _close_stream(stream: IO | None) -> None:
    """Close a pipe once; later calls on the same stream are no-ops."""
    if stream is None or stream.closed:
        return
    try:
        stream.close()
    except BrokenPipeError:
        # Flushing stdin of an exited process; the handle is closed anyway
        logger.debug("Broken pipe while closing stream")


class ProcessRunner:
    """
    Runs a command with a secret on stdin and captures its output.

    No retries happen at this layer.
    """

    def __init__(
        self,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        encoding: str = "utf-8",
    ):
        self._popen = popen
        self.encoding = encoding

    def run(
        self,
        args: Sequence[str],
        secret: str,
        stdout_path: str | Path | None = None,
    ) -> CommandResult:
        """
        Execute a command and wait for it to finish.

        Args:
            args: Full argument vector, binary first. No shell is involved.
            secret: Written to the process's stdin, which is then closed.
            stdout_path: If given, stdout is written to this file instead of
                being captured.

        Returns:
            CommandResult with captured stdout (empty when redirected) and stderr.

        Raises:
            LaunchFailure: If the process could not be started.
            CommandFailure: If the process exited with a non-zero status.
        """
        command = shlex.join(args)
        logger.debug("Executing command: %s", command)

        with ExitStack() as stack:
            if stdout_path is not None:
                stdout_target = stack.enter_context(open(stdout_path, "wb"))
            else:
                stdout_target = subprocess.PIPE

            try:
                process = self._popen(
                    list(args),
                    stdin=subprocess.PIPE,
                    stdout=stdout_target,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                logger.error("Error executing command: %s. Error was: %s", command, e)
                raise LaunchFailure(command, str(e)) from e

            # Unwinds in reverse: pipes first, then the process is reaped
            stack.callback(self._reap, process)
            for stream in (process.stdin, process.stdout, process.stderr):
                if stream is not None:
                    stack.callback(_close_stream, stream)

            # stdout and stderr are drained together
            secret_bytes = secret.encode(self.encoding)
            try:
                stdout, stderr_bytes = process.communicate(input=secret_bytes)
            except BrokenPipeError:
                # Exit status and stderr tell the caller what went wrong
                logger.warning("Process exited before reading the password: %s", command)
                stdout, stderr_bytes = process.communicate()
            stdout = stdout or b""
            stderr = (stderr_bytes or b"").decode(self.encoding, errors="replace")
            returncode = process.returncode

        if returncode != 0:
            logger.error(
                "Error executing command: %s. Stderr was: %s (return code: %d)",
                command,
                stderr.strip(),
                returncode,
            )
            raise CommandFailure(command, stderr, returncode)

        logger.debug("Command finished: %s (%d bytes of output)", command, len(stdout))
        return CommandResult(command=command, stdout=stdout, stderr=stderr, returncode=returncode)

    @staticmethod
    def _reap(process: subprocess.Popen) -> None:
        if process.poll() is None:
            logger.debug("Killing unfinished process %s", process.pid)
            process.kill()
            process.wait()
