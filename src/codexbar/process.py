import subprocess
import time
from dataclasses import dataclass

import structlog

from codexbar.errors import CommandTimeout, ProcessNotFound

logger = structlog.get_logger()

# liveness poll interval while waiting on a child
POLL_INTERVAL_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class CommandOutput:
    stdout: "str"
    stderr: "str"
    returncode: "int"

    @property
    def ok(self) -> "bool":
        return self.returncode == 0


def run_command(
    program: "str",
    args: "list[str]",
    input_text: "str | None" = None,
    timeout: "float" = 20.0,
) -> "CommandOutput":
    """
    runs program with args, optionally feeding input_text on stdin,
    and waits at most timeout seconds for it to exit.

    Raises ProcessNotFound when the program is missing or cannot be
    spawned, and CommandTimeout when the deadline passes. On timeout
    the child is killed and reaped before raising; any output it
    produced is discarded.
    """
    try:
        proc = subprocess.Popen(
            [program, *args],
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as exc:
        raise ProcessNotFound(program) from exc
    except OSError as exc:
        raise ProcessNotFound(program, exc.strerror or str(exc)) from exc

    deadline = time.monotonic() + timeout
    pending_input = input_text
    try:
        # communicate() with a short timeout doubles as the poll loop and
        # keeps draining the pipes so a chatty child cannot block on write
        while True:
            try:
                stdout, stderr = proc.communicate(
                    input=pending_input,
                    timeout=POLL_INTERVAL_SECONDS,
                )
                return CommandOutput(
                    stdout=stdout or "",
                    stderr=stderr or "",
                    returncode=proc.returncode,
                )
            except subprocess.TimeoutExpired:
                pending_input = None

            if time.monotonic() >= deadline:
                logger.debug("command_timeout", program=program, timeout=timeout)
                raise CommandTimeout(program, timeout)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()
