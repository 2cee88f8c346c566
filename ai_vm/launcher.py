"""Emit the ``start-<name>.sh`` restart script and hand control to it.

The script is rendered from a :class:`LauncherContext` whose fields are
already plain values. Every value is embedded with :func:`shlex.quote`, so
the generated text never refers back to variables of the generating process;
the only runtime expansion is the script locating its own directory.
"""

from __future__ import annotations

import datetime
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .build import RESULT_LINK
from .config import VMRecord
from .detect import SourceReference
from .errors import UserCancelled
from .prompt import Prompter
from .summary import (
    audio_status,
    desktop_status,
    overlay_status,
    ports_text,
    resources_text,
    share_lines,
    shares_text,
)
from .util import write_text_atomic

log = logger


@dataclass(frozen=True)
class LauncherContext:
    vm_name: str
    resources: str
    overlay: str
    audio: str
    display: str
    ports: str
    shares: str
    share_lines: tuple[str, ...]
    flake_ref: str
    vm_dir: str
    ssh_port: int
    guest_user: str
    binary: str
    disk_image: str
    script_name: str
    generated_at: str = field(
        default_factory=lambda: datetime.datetime.now().strftime('%c')
    )

    @classmethod
    def from_record(
        cls,
        record: VMRecord,
        source: SourceReference,
        vm_dir: Path,
        *,
        guest_user: str = 'dennis',
    ) -> 'LauncherContext':
        return cls(
            vm_name=record.vm_name,
            resources=resources_text(record),
            overlay=overlay_status(record),
            audio=audio_status(record),
            display=desktop_status(record),
            ports=ports_text(record),
            shares=shares_text(record),
            share_lines=tuple(share_lines(record)),
            flake_ref=source.ref,
            vm_dir=str(vm_dir),
            ssh_port=record.ssh_port,
            guest_user=guest_user,
            binary=f'./{RESULT_LINK}/bin/{record.binary_name}',
            disk_image=record.disk_image_name,
            script_name=record.launcher_name,
        )


def _comment(text: object) -> str:
    return ' '.join(str(text).splitlines())


def _echo(text: str = '') -> str:
    return f'echo {shlex.quote(text)}' if text else 'echo'


def render_launcher(ctx: LauncherContext) -> str:
    q = shlex.quote
    lines = [
        '#!/usr/bin/env bash',
        '',
        f'# Generated VM startup script for: {_comment(ctx.vm_name)}',
        f'# Configuration: {ctx.resources}',
        f'# Display: {ctx.display}, Audio: {ctx.audio}, '
        f'Overlay: {ctx.overlay}{_comment(ctx.shares)}',
        f'# Ports: {ctx.ports}',
        f'# Generated on: {_comment(ctx.generated_at)}',
        f'# VM Directory: {_comment(ctx.vm_dir)}',
        f'# Built from flake: {_comment(ctx.flake_ref)}',
        '',
        'set -euo pipefail',
        '',
        'cd -- "$(dirname -- "$(readlink -f -- "${BASH_SOURCE[0]}")")"',
        '',
        f'if [[ ! -x {q(ctx.binary)} ]]; then',
        '    ' + _echo(f'Error: VM binary {ctx.binary} not found.') + ' >&2',
        '    '
        + _echo('Re-run vm-selector to rebuild this VM.')
        + ' >&2',
        '    exit 1',
        'fi',
        f'if [[ ! -f {q(ctx.disk_image)} ]]; then',
        '    '
        + _echo(
            f"Disk image '{ctx.disk_image}' not found; "
            'a new one will be created on boot.'
        ),
        'fi',
        '',
        _echo(f'Starting VM: {ctx.vm_name}'),
        _echo(f'Configuration: {ctx.resources}'),
        _echo(f'Display: {ctx.display}'),
        _echo(f'Audio passthrough: {ctx.audio}'),
        _echo(f'Overlay filesystem: {ctx.overlay}'),
        _echo(f'Port forwarding: {ctx.ports}'),
    ]
    lines += [_echo(line) for line in ctx.share_lines]
    lines += [
        _echo(),
        _echo(f'SSH access: ssh -p {ctx.ssh_port} {ctx.guest_user}@localhost'),
        _echo('Press Ctrl+C to stop the VM'),
        _echo(),
        '',
        f'exec {q(ctx.binary)}',
    ]
    return '\n'.join(lines) + '\n'


def write_launcher(
    ctx: LauncherContext,
    vm_dir: Path,
    *,
    prompter: Prompter | None = None,
) -> Path:
    """Write the launcher, asking before replacing an existing one."""
    path = vm_dir / ctx.script_name
    if path.exists():
        msg = (
            f"Startup script '{ctx.script_name}' already exists in {vm_dir}. "
            'This will overwrite the existing script.'
        )
        if prompter is None:
            log.warning('{} Proceeding with overwrite (non-interactive mode).', msg)
        else:
            prompter.notify(f'Warning: {msg}')
            if not prompter.confirm('Overwrite existing startup script?'):
                prompter.notify(
                    'VM was built but startup script was not updated.\n'
                    f'You can still run the VM with: {ctx.binary}'
                )
                raise UserCancelled()
    print(f'Creating startup script: {ctx.script_name}')
    write_text_atomic(path, render_launcher(ctx), mode=0o755)
    return path


def link_into_cwd(launcher: Path, cwd: Path | None = None) -> Path | None:
    """Drop a convenience symlink when the VM lives outside the cwd."""
    cwd = cwd or Path.cwd()
    if launcher.parent.resolve() == cwd.resolve():
        return None
    link = cwd / launcher.name
    if link.exists() or link.is_symlink():
        return None
    try:
        link.symlink_to(launcher)
    except OSError as ex:
        log.warning('Could not create convenience symlink {}: {}', link, ex)
        return None
    print(f'Created convenience symlink: {link}')
    return link


def restart_hint(launcher: Path, cwd: Path | None = None) -> str:
    cwd = cwd or Path.cwd()
    name = launcher.name
    if launcher.parent.resolve() == cwd.resolve():
        return f'To restart this VM later, run: ./{name}'
    return '\n'.join(
        [
            'To restart this VM later:',
            f'  ./{name} (via symlink)',
            f'  cd {launcher.parent} && ./{name} (direct)',
            f'  {launcher} (full path)',
        ]
    )


def chain_into(launcher: Path) -> None:
    """Replace the current process with the launcher; does not return."""
    os.chdir(launcher.parent)
    log.debug('exec {}', launcher)
    os.execv(str(launcher), [str(launcher)])
