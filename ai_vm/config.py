"""Configuration record for a VM build and persisted selector settings."""

from __future__ import annotations

import enum
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import ubelt as ub

from .errors import ValidationError
from .util import expand, write_text_atomic

DEFAULT_FLAKE_REF = 'github:dvaerum/ai-vm'
DEFAULT_VM_NAME = 'ai-vm'
DEFAULT_SSH_PORT = 2222
DEFAULT_DEV_PORTS = [3001, 9080]
SSH_GUEST_PORT = 22

RESOURCE_LIMITS = {
    'RAM': 1024,
    'CPU': 128,
    'Storage': 10000,
}


class OverlayMode(enum.Enum):
    PERSISTENT = 'persistent'
    EPHEMERAL = 'ephemeral'

    @property
    def enabled(self) -> bool:
        return self is OverlayMode.EPHEMERAL


@dataclass(frozen=True)
class Resolution:
    width: int
    height: int

    def __str__(self) -> str:
        return f'{self.width}x{self.height}'


@dataclass(frozen=True)
class PortMapping:
    host: int
    guest: int

    def __str__(self) -> str:
        return f'{self.host}:{self.guest}'


@dataclass(frozen=True)
class VMRecord:
    """A complete, validated VM configuration.

    Instances are only produced by the collector and are never mutated
    afterwards. Invariants are re-checked on construction so that a record
    built by hand (e.g. in tests) cannot bypass them.
    """

    ram_gib: int
    cpu_cores: int
    storage_gib: int
    overlay: OverlayMode = OverlayMode.PERSISTENT
    vm_name: str = DEFAULT_VM_NAME
    audio: bool = False
    desktop: bool = False
    resolution: Optional[Resolution] = None
    shared_rw: tuple[str, ...] = ()
    shared_ro: tuple[str, ...] = ()
    ports: tuple[PortMapping, ...] = (
        PortMapping(DEFAULT_SSH_PORT, SSH_GUEST_PORT),
    )
    claude_auth_shared: bool = False

    def __post_init__(self) -> None:
        # Import lazily: validate imports the value types defined here.
        from .validate import (
            validate_identifier,
            validate_numeric,
            validate_port,
        )

        validate_numeric(str(self.ram_gib), 'RAM')
        validate_numeric(str(self.cpu_cores), 'CPU')
        validate_numeric(str(self.storage_gib), 'Storage')
        validate_identifier(self.vm_name)
        seen: set[int] = set()
        for mapping in self.ports:
            validate_port(mapping.host, 'host')
            validate_port(mapping.guest, 'guest')
            if mapping.host in seen:
                raise ValidationError(
                    f'Host port {mapping.host} is mapped more than once'
                )
            seen.add(mapping.host)
        if not any(m.guest == SSH_GUEST_PORT for m in self.ports):
            raise ValidationError('Port mappings must include an SSH entry')
        object.__setattr__(self, 'shared_rw', _dedupe(self.shared_rw))
        object.__setattr__(self, 'shared_ro', _dedupe(self.shared_ro))

    @property
    def ssh_port(self) -> int:
        for mapping in self.ports:
            if mapping.guest == SSH_GUEST_PORT:
                return mapping.host
        return DEFAULT_SSH_PORT

    @property
    def binary_name(self) -> str:
        return f'run-{self.vm_name}-vm'

    @property
    def launcher_name(self) -> str:
        return f'start-{self.vm_name}.sh'

    @property
    def disk_image_name(self) -> str:
        return f'{self.vm_name}.qcow2'


def _dedupe(items) -> tuple[str, ...]:
    out: list[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return tuple(out)


@dataclass
class SelectorSettings:
    fallback_flake_ref: str = DEFAULT_FLAKE_REF
    remote_vm_dir: str = field(
        default_factory=lambda: str(ub.Path.appdir('ai-vms', type='data'))
    )
    guest_user: str = 'dennis'
    ssh_port: int = DEFAULT_SSH_PORT
    default_dev_ports: list[int] = field(
        default_factory=lambda: list(DEFAULT_DEV_PORTS)
    )
    ram_options: list[str] = field(
        default_factory=lambda: ['2', '4', '8', '16', '32']
    )
    cpu_options: list[str] = field(
        default_factory=lambda: ['1', '2', '4', '8']
    )
    storage_options: list[str] = field(
        default_factory=lambda: ['20', '50', '100', '200']
    )
    resolution_options: list[str] = field(
        default_factory=lambda: [
            '1280x720 (HD)',
            '1920x1080 (Full HD)',
            '2560x1440 (2K)',
            '3840x2160 (4K)',
        ]
    )
    disabled_detectors: list[str] = field(default_factory=list)
    verbosity: int = 0

    def expanded_paths(self) -> 'SelectorSettings':
        self.remote_vm_dir = expand(self.remote_vm_dir)
        return self


def user_settings_path() -> Path:
    """Per-user settings file under the XDG config directory."""
    return Path(ub.Path.appdir('ai-vm', type='config')) / 'config.toml'


def settings_search_paths(cwd: Path | None = None) -> list[Path]:
    base = cwd or Path.cwd()
    return [
        base / '.ai-vm.toml',
        user_settings_path(),
    ]


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def _toml_value(v: object) -> str:
    if isinstance(v, bool):
        return 'true' if v else 'false'
    if isinstance(v, int):
        return str(v)
    if isinstance(v, list):
        return '[' + ', '.join(_toml_value(item) for item in v) + ']'
    return f'"{_toml_escape(str(v))}"'


def dump_toml(settings: SelectorSettings) -> str:
    lines = [f'{k} = {_toml_value(v)}' for k, v in asdict(settings).items()]
    return '\n'.join(lines) + '\n'


def load(path: Path) -> SelectorSettings:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    settings = SelectorSettings()
    for k, v in raw.items():
        if hasattr(settings, k):
            setattr(settings, k, v)
    return settings


def save(path: Path, settings: SelectorSettings) -> None:
    write_text_atomic(path, dump_toml(settings))


def load_settings(config_path: str | None = None) -> SelectorSettings:
    """Load settings from an explicit path or the first existing default."""
    if config_path is not None:
        path = Path(expand(config_path))
        if not path.exists():
            raise FileNotFoundError(f'Settings file not found: {path}')
        return load(path).expanded_paths()
    for path in settings_search_paths():
        if path.exists():
            return load(path).expanded_paths()
    return SelectorSettings().expanded_paths()
