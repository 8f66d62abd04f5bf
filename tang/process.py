"""External command execution."""

import logging
import os
import signal
import subprocess
import threading
from typing import IO, Iterable, Mapping, Optional, Sequence

from .errors import CommandError
from .models import CommandResult

logger = logging.getLogger(__name__)


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill `proc` and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run(
    args: Sequence[str],
    cwd: str,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    sinks: Iterable[IO[str]] = (),
) -> CommandResult:
    """
    Run a command in `cwd`, capturing stdout and stderr together.

    Each line of output is also written to every stream in `sinks` as it
    arrives. If `timeout` seconds pass first, the command's process group is
    killed and the result is marked timed_out.

    Raises CommandError if the command cannot be started.
    """
    args = list(args)
    sinks = list(sinks)
    logger.info(f"wd = {cwd} cmd = {args[0]}, args = {args[1:]!r}")

    try:
        proc = subprocess.Popen(
            args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            # Own process group, so a timeout takes down grandchildren too.
            start_new_session=True,
        )
    except OSError as e:
        raise CommandError(f"failed to execute {args[0]}: {e}") from e

    timed_out = threading.Event()

    def _expire():
        if proc.poll() is not None:
            return
        timed_out.set()
        logger.warning(f"Killing {args!r} after {timeout}s")
        _kill_group(proc)

    timer = None
    if timeout is not None:
        timer = threading.Timer(timeout, _expire)
        timer.daemon = True
        timer.start()

    lines = []
    try:
        with proc:
            for line in proc.stdout:
                lines.append(line)
                for sink in sinks:
                    sink.write(line)
                    sink.flush()
            proc.wait()
    finally:
        if timer is not None:
            timer.cancel()

    return CommandResult(
        exit_code=proc.returncode,
        output="".join(lines),
        timed_out=timed_out.is_set(),
    )


def describe_failure(result: CommandResult) -> str:
    """Short error text for a failed command, e.g. `exit status 1`."""
    if result.timed_out:
        return "timed out"
    if result.exit_code < 0:
        try:
            return f"signal: {signal.Signals(-result.exit_code).name}"
        except ValueError:
            return f"signal: {-result.exit_code}"
    return f"exit status {result.exit_code}"
