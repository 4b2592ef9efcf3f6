"""Run external tools with merged, line-streamed output.

The child's stdout and stderr are merged into one ordered stream.  Extra
environment variables are layered over a copy of ``os.environ`` and
handed to the child only -- the parent environment is never modified,
so a password set for one run cannot leak into another.

Usage:
    from bbf_backup.process.runner import run_streamed

    output = run_streamed(
        "pg_restore",
        ["-v", "-d", "babelfish_db", "/tmp/dump"],
        {"PGPASSWORD": "secret"},
        progress=print,
    )
"""

import logging
import os
import subprocess
from collections.abc import Callable, Mapping, Sequence

from bbf_backup.errors import ProcessError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]


def _child_env(env_vars: Mapping[str, str] | None) -> dict[str, str]:
    env = dict(os.environ)
    if env_vars:
        env.update(env_vars)
    return env


def _creation_flags() -> int:
    """Spawn without a console window on Windows; no-op elsewhere."""
    if os.name == "nt":
        return getattr(subprocess, "CREATE_NO_WINDOW", 0)
    return 0


def run_streamed(
    executable: str,
    args: Sequence[str],
    env_vars: Mapping[str, str] | None = None,
    progress: ProgressSink | None = None,
) -> str:
    """Run ``executable`` and forward each output line as it arrives.

    Args:
        executable: Program to run (path or name resolved via ``PATH``).
        args: Command-line arguments.
        env_vars: Variables added to the child's environment only.
        progress: Optional sink called once per output line, without the
            trailing newline.

    Returns:
        Combined output, newline-joined.

    Raises:
        ProcessError: If the process cannot be spawned or exits non-zero.
    """
    cmd = [executable, *args]
    logger.debug("Spawning %s", cmd)
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            env=_child_env(env_vars),
            text=True,
            encoding="utf-8",
            errors="replace",
            creationflags=_creation_flags(),
        )
    except OSError as e:
        raise ProcessError(
            executable, None, message=f"Error spawning process: {executable}: {e}"
        ) from e

    lines: list[str] = []
    with proc:
        assert proc.stdout is not None
        for raw in proc.stdout:
            line = raw.rstrip("\r\n")
            lines.append(line)
            if progress is not None:
                progress(line)
        exit_code = proc.wait()

    output = "\n".join(lines)
    if exit_code != 0:
        raise ProcessError(executable, exit_code, output)
    return output


def run_captured(
    executable: str,
    args: Sequence[str],
    env_vars: Mapping[str, str] | None = None,
) -> str:
    """Run ``executable`` to completion and return its combined output.

    Same contract as ``run_streamed`` without per-line forwarding.

    Raises:
        ProcessError: If the process cannot be spawned or exits non-zero.
    """
    cmd = [executable, *args]
    logger.debug("Running %s", cmd)
    try:
        completed = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            env=_child_env(env_vars),
            text=True,
            encoding="utf-8",
            errors="replace",
            creationflags=_creation_flags(),
        )
    except OSError as e:
        raise ProcessError(
            executable, None, message=f"Error spawning process: {executable}: {e}"
        ) from e

    output = completed.stdout.rstrip("\r\n")
    if completed.returncode != 0:
        raise ProcessError(executable, completed.returncode, output)
    return output
