from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """An external tool exited non-zero or did not finish in time."""

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            msg = f"Command timed out: {fmt_argv(self.argv)}"
        else:
            msg = f"Command failed ({returncode}): {fmt_argv(self.argv)}"
        if stderr.strip():
            msg += "\n" + stderr.strip()
        super().__init__(msg)

    @property
    def tool(self) -> str:
        return self.argv[0] if self.argv else ""


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def which(tool: str) -> bool:
    return shutil.which(tool) is not None


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: float | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr; both are logged at debug level.
    - dry_run logs but does not execute.
    - timeout=None waits for the tool indefinitely.
    - Output that is not valid UTF-8 is decoded with replacement characters.
    """

    argv_list = list(argv)
    if cwd:
        logger.info("CMD (cwd=%s) %s", cwd, fmt_argv(argv_list))
    else:
        logger.info("CMD %s", fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(argv_list, None) from e
    except FileNotFoundError as e:
        raise CommandError(argv_list, 127, str(e)) from e

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(argv_list, p.returncode, p.stderr or "")

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout or "", stderr=p.stderr or "")
