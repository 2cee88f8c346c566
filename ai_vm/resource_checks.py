"""Host resource sanity checks applied before a VM is built."""

from __future__ import annotations

import os
import re
from pathlib import Path

from .config import VMRecord
from .errors import ResourceError
from .util import run_cmd, which

# Fraction of host RAM/CPUs a VM may claim before we warn.
HOST_SHARE_PERCENT = 80
# Extra space needed on top of the disk size for qcow2 metadata.
DISK_OVERHEAD_PERCENT = 120
# Free space that should remain on the filesystem after allocation.
DISK_RESERVE_PERCENT = 20


def host_mem_total_gib() -> int | None:
    try:
        text = Path('/proc/meminfo').read_text(encoding='utf-8', errors='ignore')
    except Exception:
        return None
    for line in text.splitlines():
        if line.startswith('MemTotal:'):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1]) // 1024 // 1024
    return None


def host_cpu_count() -> int | None:
    try:
        count = os.cpu_count()
    except Exception:
        return None
    return int(count) if count else None


def host_disk_gib(path: Path) -> tuple[int, int] | None:
    """Return ``(free_gib, total_gib)`` for the filesystem holding ``path``."""
    try:
        stat = os.statvfs(str(path))
    except Exception:
        return None
    free = int(stat.f_bavail) * int(stat.f_frsize) // (1024**3)
    total = int(stat.f_blocks) * int(stat.f_frsize) // (1024**3)
    return free, total


def host_port_in_use(port: int) -> bool | None:
    """Best-effort check for a listening TCP/UDP socket on ``port``."""
    for tool in ('ss', 'netstat'):
        if which(tool) is None:
            continue
        res = run_cmd([tool, '-tuln'], check=False, capture=True)
        if res.code != 0:
            continue
        pat = re.compile(rf':{port}\s')
        return any(pat.search(line) for line in res.stdout.splitlines())
    return None


def ram_warning(ram_gib: int) -> str | None:
    total = host_mem_total_gib()
    if total is None:
        return None
    threshold = total * HOST_SHARE_PERCENT // 100
    if ram_gib <= threshold:
        return None
    return (
        f'Requested RAM ({ram_gib}GB) exceeds 80% of system RAM ({total}GB). '
        f'System RAM: {total}GB | Threshold (80%): {threshold}GB | '
        f'Requested: {ram_gib}GB. This may cause system instability or swapping.'
    )


def cpu_warning(cpu_cores: int) -> str | None:
    total = host_cpu_count()
    if total is None:
        return None
    threshold = max(1, total * HOST_SHARE_PERCENT // 100)
    if cpu_cores <= threshold:
        return None
    return (
        f'Requested CPU cores ({cpu_cores}) exceeds 80% of system CPUs ({total}). '
        f'System CPUs: {total} | Threshold (80%): {threshold} | '
        f'Requested: {cpu_cores}. This may cause performance degradation on the host.'
    )


def vm_resource_warning_lines(record: VMRecord) -> list[str]:
    warnings = [ram_warning(record.ram_gib), cpu_warning(record.cpu_cores)]
    return [w for w in warnings if w]


def check_disk_space(vm_dir: Path, storage_gib: int) -> list[str]:
    """Fail if ``vm_dir`` cannot hold the disk image; return advisory warnings."""
    usage = host_disk_gib(vm_dir)
    if usage is None:
        return []
    free, total = usage
    required = storage_gib * DISK_OVERHEAD_PERCENT // 100
    if free < required:
        raise ResourceError(
            f'Insufficient disk space in {vm_dir}\n'
            f'Available: {free}GB | Required (with 20% overhead): {required}GB '
            f'| VM storage: {storage_gib}GB\n'
            'Free up disk space or choose a smaller storage size.'
        )
    remaining = free - storage_gib
    if remaining * 100 < total * DISK_RESERVE_PERCENT:
        return [
            f'Requested storage ({storage_gib}GB) leaves {remaining}GB free, '
            f'less than 20% of the filesystem ({total}GB) at {vm_dir}.'
        ]
    return []
