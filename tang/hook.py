"""Build hook execution."""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Sequence

from .config import HOOK_NAME
from .errors import CommandError
from .process import describe_failure, run

logger = logging.getLogger(__name__)


@dataclass
class HookResult:
    """Result of running the build hook."""
    success: bool
    error: str
    duration: float


def _emit(sinks: Sequence[IO[str]], text: str) -> None:
    for sink in sinks:
        sink.write(text)
        sink.flush()


def hook_env(sha: str, ref: str, log_path: Path) -> dict:
    """Process environment plus the variables the hook contract promises."""
    env = os.environ.copy()
    env["TANG_SHA"] = sha
    env["TANG_REF"] = ref
    env["TANG_LOG"] = str(log_path)
    return env


def run_hook(
    workdir: Path,
    sha: str,
    ref: str,
    log_path: Path,
    sinks: Sequence[IO[str]],
    timeout: Optional[float] = None,
) -> HookResult:
    """
    Run ./tang.hook in `workdir`, writing everything it prints to `sinks`.

    The hook gets TANG_SHA, TANG_REF and TANG_LOG (absolute path of the build
    log) in its environment. A nonzero exit, a timeout or a hook that cannot
    be executed all give an unsuccessful result; nothing is raised.
    """
    workdir = Path(workdir).resolve()
    _emit(sinks, f"repo_path={workdir} pwd={os.getcwd()}\n")

    for label, args in (("pwd:", ["pwd"]), ("ls -l:", ["ls", "-l"])):
        _emit(sinks, label + "\n")
        try:
            run(args, cwd=str(workdir), sinks=sinks)
        except CommandError as e:
            _emit(sinks, f"{e}\n")

    logger.info(f"Running {HOOK_NAME} in {workdir}")
    start = time.monotonic()
    try:
        result = run(
            [f"./{HOOK_NAME}"],
            cwd=str(workdir),
            env=hook_env(sha, ref, log_path),
            timeout=timeout,
            sinks=sinks,
        )
        error = "" if result.ok else describe_failure(result)
    except CommandError as e:
        error = str(e)
    duration = time.monotonic() - start

    _emit(sinks, f"Hook took {duration:.3f}s\n")
    if error:
        logger.warning(f"{HOOK_NAME} in {workdir} failed: {error}")
    return HookResult(success=not error, error=error, duration=duration)
