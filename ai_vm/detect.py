"""Detection of the flake reference the VM should be built from.

The tool can be launched directly or through ``nix run``, which does not
forward its own flake location. Each detector inspects one signal and either
returns a :class:`SourceReference` or ``None``; :func:`resolve_source` tries
them in order and commits to the first hit.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from loguru import logger

from .config import DEFAULT_FLAKE_REF, SelectorSettings
from .errors import ResolutionError

log = logger

FLAKE_MARKER = 'flake.nix'
PROJECT_SUBDIRS = (
    'Projects/nixos-configs/ai-vm',
    '../nixos-configs/ai-vm',
    'nixos-configs/ai-vm',
)
LOCAL_PREFIXES = ('path:', 'git+file:', '/')


@dataclass(frozen=True)
class SourceReference:
    ref: str
    strategy: str
    local_dir: Optional[Path] = None

    @property
    def is_remote(self) -> bool:
        return not self.ref.startswith(LOCAL_PREFIXES)

    def __str__(self) -> str:
        return self.ref


def _read_proc(pid: int, name: str) -> bytes | None:
    try:
        return Path(f'/proc/{pid}/{name}').read_bytes()
    except OSError:
        return None


def _parent_pid(pid: int) -> int | None:
    raw = _read_proc(pid, 'stat')
    if raw is None:
        return None
    # The command name field may contain spaces; ppid follows the last ')'.
    tail = raw.decode('utf-8', errors='replace').rsplit(')', 1)[-1].split()
    if len(tail) < 2 or not tail[1].isdigit():
        return None
    return int(tail[1])


def ancestor_cmdlines(depth: int = 3, pid: int | None = None) -> list[str]:
    """Command lines of up to ``depth`` ancestors, nearest first."""
    out: list[str] = []
    cur = os.getppid() if pid is None else pid
    for _ in range(depth):
        if not cur or cur <= 1:
            break
        raw = _read_proc(cur, 'cmdline')
        if raw:
            out.append(
                raw.rstrip(b'\x00').replace(b'\x00', b' ').decode(
                    'utf-8', errors='replace'
                )
            )
        parent = _parent_pid(cur)
        if parent is None:
            break
        cur = parent
    return out


@dataclass
class DetectContext:
    cwd: Path
    environ: Mapping[str, str]
    fallback_ref: str = DEFAULT_FLAKE_REF
    cmdlines: Callable[[], list[str]] = field(default=ancestor_cmdlines)

    @classmethod
    def current(cls, settings: SelectorSettings | None = None) -> 'DetectContext':
        settings = settings or SelectorSettings()
        return cls(
            cwd=Path.cwd(),
            environ=dict(os.environ),
            fallback_ref=settings.fallback_flake_ref,
        )


Detector = Callable[[DetectContext], Optional[SourceReference]]


def _has_flake(path: Path) -> bool:
    return (path / FLAKE_MARKER).is_file()


def _local(path: Path, strategy: str) -> SourceReference:
    resolved = path.resolve()
    return SourceReference(f'git+file://{resolved}', strategy, resolved)


def detect_env_store_path(ctx: DetectContext) -> SourceReference | None:
    raw = ctx.environ.get('NIX_FLAKE_STORE_PATH', '')
    if not raw:
        return None
    path = Path(raw)
    if not _has_flake(path):
        log.debug('NIX_FLAKE_STORE_PATH={} has no {}', raw, FLAKE_MARKER)
        return None
    return SourceReference(f'path:{path}', 'env_store_path', path)


_PATH_REF = re.compile(r'path:([^\s#]+)')
_ABS_ARG = re.compile(r'\s(/[^\s#]+)')


def detect_process_tree(ctx: DetectContext) -> SourceReference | None:
    for cmd in ctx.cmdlines():
        args = cmd.split()
        if not args or os.path.basename(args[0]) != 'nix' or 'run' not in args:
            continue
        log.debug('Inspecting ancestor command line: {}', cmd)
        match = _PATH_REF.search(cmd)
        if match:
            path = Path(match.group(1))
            if not path.is_absolute():
                path = ctx.cwd / path
        else:
            match = _ABS_ARG.search(cmd)
            if not match:
                return None
            path = Path(match.group(1))
        if _has_flake(path):
            return _local(path, 'process_tree')
        log.debug('Discarding {}: no {}', path, FLAKE_MARKER)
        return None
    return None


def detect_build_attrs(ctx: DetectContext) -> SourceReference | None:
    raw = ctx.environ.get('NIX_ATTRS_JSON_FILE', '')
    if not raw:
        return None
    try:
        data = json.loads(Path(raw).read_text(encoding='utf-8'))
    except (OSError, ValueError) as ex:
        log.debug('Unable to read NIX_ATTRS_JSON_FILE={}: {}', raw, ex)
        return None
    ref = data.get('flakeRef') if isinstance(data, dict) else None
    if not ref or not isinstance(ref, str):
        return None
    return SourceReference(ref, 'build_attrs')


def detect_cwd_flake(ctx: DetectContext) -> SourceReference | None:
    if _has_flake(ctx.cwd):
        return _local(ctx.cwd, 'cwd_flake')
    return None


def detect_project_dirs(ctx: DetectContext) -> SourceReference | None:
    for rel in PROJECT_SUBDIRS:
        cand = ctx.cwd / rel
        if _has_flake(cand):
            return _local(cand, 'project_dirs')
    return None


def detect_fallback(ctx: DetectContext) -> SourceReference | None:
    if not ctx.fallback_ref:
        return None
    return SourceReference(ctx.fallback_ref, 'fallback')


DEFAULT_DETECTORS: list[tuple[str, Detector]] = [
    ('env_store_path', detect_env_store_path),
    ('process_tree', detect_process_tree),
    ('build_attrs', detect_build_attrs),
    ('cwd_flake', detect_cwd_flake),
    ('project_dirs', detect_project_dirs),
    ('fallback', detect_fallback),
]


def resolve_source(
    settings: SelectorSettings | None = None,
    *,
    ctx: DetectContext | None = None,
    detectors: list[tuple[str, Detector]] | None = None,
) -> SourceReference:
    settings = settings or SelectorSettings()
    ctx = ctx or DetectContext.current(settings)
    disabled = set(settings.disabled_detectors)
    for name, detector in detectors or DEFAULT_DETECTORS:
        if name in disabled:
            log.debug('Source detector {} disabled by settings', name)
            continue
        found = detector(ctx)
        if found is not None:
            log.info('Using flake {} (detected via {})', found.ref, name)
            return found
    raise ResolutionError(
        'Could not determine which flake to build from. Run from a directory '
        'containing flake.nix or set fallback_flake_ref in the settings file.'
    )
