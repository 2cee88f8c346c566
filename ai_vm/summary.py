"""Human-readable descriptions of a VM record."""

from __future__ import annotations

from pathlib import PurePosixPath

from .config import VMRecord

GUEST_RW_ROOT = '/mnt/host-rw'
GUEST_RO_ROOT = '/mnt/host-ro'


def _enabled(flag: bool) -> str:
    return 'enabled' if flag else 'disabled'


def resources_text(record: VMRecord) -> str:
    return (
        f'{record.ram_gib}GB RAM, {record.cpu_cores} CPU cores, '
        f'{record.storage_gib}GB storage'
    )


def desktop_status(record: VMRecord) -> str:
    if not record.desktop:
        return 'terminal'
    if record.resolution is not None:
        return f'KDE Plasma ({record.resolution})'
    return 'KDE Plasma (auto)'


def audio_status(record: VMRecord) -> str:
    return _enabled(record.audio)


def overlay_status(record: VMRecord) -> str:
    return _enabled(record.overlay.enabled)


def shares_text(record: VMRecord) -> str:
    parts = []
    if record.shared_rw:
        parts.append(f'RW shares: {len(record.shared_rw)}')
    if record.shared_ro:
        parts.append(f'RO shares: {len(record.shared_ro)}')
    return ''.join(f', {p}' for p in parts)


def ports_text(record: VMRecord) -> str:
    return ', '.join(f'{m.host}→{m.guest}' for m in record.ports)


def guest_mount_point(host_path: str, *, read_only: bool) -> str:
    root = GUEST_RO_ROOT if read_only else GUEST_RW_ROOT
    return f'{root}/{PurePosixPath(host_path).name}'


def share_lines(record: VMRecord) -> list[str]:
    lines: list[str] = []
    if record.shared_rw:
        lines.append('Read-write shared folders:')
        for path in record.shared_rw:
            lines.append(
                f'  Host: {path} → VM: {guest_mount_point(path, read_only=False)}'
            )
    if record.shared_ro:
        lines.append('Read-only shared folders:')
        for path in record.shared_ro:
            lines.append(
                f'  Host: {path} → VM: '
                f'{guest_mount_point(path, read_only=True)} (read-only)'
            )
    return lines


def render_summary(record: VMRecord) -> str:
    return '\n'.join(
        [
            f'Starting VM: {resources_text(record)}',
            f'Display: {desktop_status(record)}, Audio: {audio_status(record)}, '
            f'Overlay: {overlay_status(record)}{shares_text(record)}',
            f'Ports: {ports_text(record)}',
        ]
    )
