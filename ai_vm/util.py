"""Subprocess and filesystem helpers shared by the selector and the manager."""

from __future__ import annotations

import collections
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

log = logger


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


class CmdError(RuntimeError):
    def __init__(self, cmd: Sequence[str], result: CmdResult):
        self.cmd = cmd
        self.result = result
        msg = f'{shell_join(cmd)} exited with code {result.code}'
        if result.stderr.strip():
            msg = f'{msg}\n{result.stderr.strip()}'
        super().__init__(msg)


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(str(c)) for c in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    cwd: Optional[Path] = None,
) -> CmdResult:
    """Run ``cmd`` to completion; ``capture=False`` leaves output on the tty."""
    log.opt(depth=1).debug('RUN (cwd={}): {}', cwd or '.', shell_join(cmd))
    proc = subprocess.run(
        [str(c) for c in cmd],
        capture_output=capture,
        text=True,
        cwd=None if cwd is None else str(cwd),
    )
    res = CmdResult(proc.returncode, proc.stdout or '', proc.stderr or '')
    if proc.returncode != 0:
        log.opt(depth=1).debug(
            'Command exited code={} cmd={} stderr={}',
            proc.returncode,
            shell_join(cmd),
            res.stderr.strip(),
        )
        if check:
            raise CmdError(cmd, res)
    return res


def stream_cmd(
    cmd: Sequence[str], *, cwd: Optional[Path] = None, tail: int = 40
) -> CmdResult:
    """Run ``cmd`` echoing its stderr live; only the last ``tail`` lines are kept.

    Stdout is inherited. Never raises on a non-zero exit; an executable that
    cannot be started raises ``OSError`` from :class:`subprocess.Popen`.
    """
    log.opt(depth=1).debug('STREAM (cwd={}): {}', cwd or '.', shell_join(cmd))
    proc = subprocess.Popen(
        [str(c) for c in cmd],
        cwd=None if cwd is None else str(cwd),
        stderr=subprocess.PIPE,
        text=True,
        errors='replace',
    )
    kept: collections.deque[str] = collections.deque(maxlen=tail)
    for line in proc.stderr or ():
        sys.stderr.write(line)
        kept.append(line.rstrip('\n'))
    code = proc.wait()
    log.opt(depth=1).debug('Stream finished code={}', code)
    return CmdResult(code, '', '\n'.join(kept))


def which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def is_writable_dir(path: Path) -> bool:
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def write_text_atomic(path: Path, text: str, *, mode: int = 0o644) -> None:
    """Replace ``path`` in one rename so readers never see a partial file."""
    tmp = path.with_name(f'.{path.name}.tmp')
    tmp.write_text(text, encoding='utf-8')
    tmp.chmod(mode)
    os.replace(tmp, path)
