"""Collect a complete VMRecord from command-line flags or interactive prompts."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, TypeVar

from loguru import logger

from .config import (
    DEFAULT_VM_NAME,
    SSH_GUEST_PORT,
    OverlayMode,
    PortMapping,
    Resolution,
    SelectorSettings,
    VMRecord,
)
from .errors import PolicyError, UserCancelled, ValidationError
from .policy import READ_ONLY, READ_WRITE, authorize_share
from .prompt import Cancelled, Prompter, prompt_until_valid
from .resource_checks import (
    check_disk_space,
    host_port_in_use,
    vm_resource_warning_lines,
)
from .validate import (
    validate_identifier,
    validate_numeric,
    validate_port,
    validate_port_mapping,
    validate_resolution,
)

log = logger

T = TypeVar('T')

CLAUDE_DIR_NAME = '.claude'


@dataclass(frozen=True)
class CollectorOptions:
    """Raw flag values as they arrive from the command line."""

    ram: str | None = None
    cpu: str | None = None
    storage: str | None = None
    name: str | None = None
    overlay: bool = False
    audio: bool = False
    desktop: bool = False
    resolution: str | None = None
    share_rw: tuple[str, ...] = ()
    share_ro: tuple[str, ...] = ()
    share_claude_auth: bool = False
    ports: tuple[str, ...] = ()
    ssh_port: str | None = None
    no_default_ports: bool = False


def is_direct_mode(opts: CollectorOptions) -> bool:
    """Any resource or feature flag switches off the interactive prompts."""
    valued = (
        opts.ram,
        opts.cpu,
        opts.storage,
        opts.name,
        opts.resolution,
        opts.ssh_port,
    )
    flags = (
        opts.overlay,
        opts.audio,
        opts.desktop,
        opts.share_claude_auth,
        opts.no_default_ports,
    )
    return (
        any(v is not None for v in valued)
        or any(flags)
        or bool(opts.share_rw or opts.share_ro or opts.ports)
    )


def build_port_mappings(
    ssh_port: int,
    *,
    use_default_ports: bool = True,
    extra: Sequence[PortMapping] = (),
    dev_ports: Sequence[int] = (3001, 9080),
) -> tuple[PortMapping, ...]:
    """SSH first, then the default dev ports, then any extra mappings."""
    mappings = [PortMapping(ssh_port, SSH_GUEST_PORT)]
    if use_default_ports:
        mappings.extend(PortMapping(p, p) for p in dev_ports)
    mappings.extend(extra)
    seen: set[int] = set()
    for mapping in mappings:
        if mapping.host in seen:
            raise ValidationError(
                f'Host port {mapping.host} is mapped more than once'
            )
        seen.add(mapping.host)
    return tuple(mappings)


def claude_auth_dir(home: Path | None = None) -> Path:
    return (home or Path.home()) / CLAUDE_DIR_NAME


def _claude_auth_share(
    home: Path | None, prompter: Prompter | None
) -> str | None:
    claude_dir = claude_auth_dir(home)
    if not claude_dir.is_dir():
        msg = (
            f'--share-claude-auth specified but {claude_dir} not found. '
            'Claude Code may not be authenticated on this host.'
        )
        if prompter is None:
            log.warning('{} Continuing without Claude auth.', msg)
            return None
        prompter.notify(f'Warning: {msg}')
        if not prompter.confirm('Continue without Claude auth?'):
            raise UserCancelled()
        return None
    # Opting in to Claude auth is the confirmation for ~/.claude.
    return authorize_share(
        claude_dir,
        READ_ONLY,
        prompter=None,
        require_sensitive_confirmation=False,
    )


def sync_claude_settings(home: Path | None = None) -> Path | None:
    """Expose the host ``~/.claude.json`` inside the shared ``~/.claude``."""
    home = home or Path.home()
    src = home / '.claude.json'
    if not src.is_file():
        return None
    dst = claude_auth_dir(home) / '.settings.json'
    shutil.copyfile(src, dst)
    log.info('Copied host Claude settings to {}', dst)
    return dst


def confirm_port_advisories(
    ports: Sequence[PortMapping], prompter: Prompter | None = None
) -> None:
    for mapping in ports:
        check = validate_port(mapping.host, 'host')
        validate_port(mapping.guest, 'guest')
        notes: list[str] = []
        if check.privileged:
            notes.append(
                f'Host port {check.port} is a privileged port (<1024). '
                'You may need root permissions to bind to this port.'
            )
        if host_port_in_use(check.port):
            notes.append(f'Host port {check.port} appears to be in use.')
        for note in notes:
            _confirm_or_proceed(note, prompter)


def confirm_resources(record: VMRecord, prompter: Prompter | None = None) -> None:
    for warning in vm_resource_warning_lines(record):
        _confirm_or_proceed(warning, prompter)


def confirm_disk_space(
    vm_dir: Path, storage_gib: int, prompter: Prompter | None = None
) -> None:
    for warning in check_disk_space(vm_dir, storage_gib):
        _confirm_or_proceed(warning, prompter)


def _confirm_or_proceed(message: str, prompter: Prompter | None) -> None:
    if prompter is None:
        log.warning('{} Proceeding anyway (non-interactive mode).', message)
        return
    prompter.notify(f'Warning: {message}')
    if not prompter.confirm('Continue anyway?'):
        raise UserCancelled()


def collect_direct(
    opts: CollectorOptions,
    settings: SelectorSettings | None = None,
    *,
    home: Path | None = None,
) -> VMRecord:
    """Build a record from flags alone; any problem is fatal."""
    settings = settings or SelectorSettings()
    shared_rw = [authorize_share(p, READ_WRITE) for p in opts.share_rw]
    shared_ro = [authorize_share(p, READ_ONLY) for p in opts.share_ro]
    name = validate_identifier(
        opts.name if opts.name is not None else DEFAULT_VM_NAME
    )
    resolution = None
    if opts.resolution is not None:
        resolution = validate_resolution(opts.resolution)
        if not opts.desktop:
            log.warning('--resolution has no effect without --desktop')
    extra = [validate_port_mapping(p) for p in opts.ports]
    ssh_port = settings.ssh_port
    if opts.ssh_port is not None:
        ssh_port = validate_port(opts.ssh_port, 'host').port

    if opts.ram is None or opts.cpu is None or opts.storage is None:
        raise ValidationError(
            'In direct mode, --ram, --cpu, and --storage are required.'
        )
    ram = validate_numeric(opts.ram, 'RAM')
    cpu = validate_numeric(opts.cpu, 'CPU')
    storage = validate_numeric(opts.storage, 'Storage')

    claude = None
    if opts.share_claude_auth:
        claude = _claude_auth_share(home, None)
        if claude is not None:
            shared_ro.append(claude)

    ports = build_port_mappings(
        ssh_port,
        use_default_ports=not opts.no_default_ports,
        extra=extra,
        dev_ports=settings.default_dev_ports,
    )
    return VMRecord(
        ram_gib=ram,
        cpu_cores=cpu,
        storage_gib=storage,
        overlay=OverlayMode.EPHEMERAL if opts.overlay else OverlayMode.PERSISTENT,
        vm_name=name,
        audio=opts.audio,
        desktop=opts.desktop,
        resolution=resolution,
        shared_rw=tuple(shared_rw),
        shared_ro=tuple(shared_ro),
        ports=ports,
        claude_auth_shared=claude is not None,
    )


def _require(value: T) -> T:
    if value is Cancelled:
        raise UserCancelled()
    return value


def _select(prompter: Prompter, message: str, options: list[str]) -> str:
    choice = prompter.select(message, options)
    return _require(choice).value


def _ask_name(prompter: Prompter) -> str:
    options = [f'Use default name ({DEFAULT_VM_NAME})', 'Specify custom name']
    if _select(prompter, 'VM name:', options) == options[0]:
        return DEFAULT_VM_NAME
    while True:
        raw = prompter.text(
            'Enter VM name (letters, numbers, hyphens, underscores only):'
        )
        if raw is None:
            raise UserCancelled()
        if not raw:
            prompter.notify('VM name cannot be empty.')
            continue
        try:
            return validate_identifier(raw)
        except ValidationError as ex:
            prompter.notify(f'Error: {ex}')


def _ask_resolution(
    prompter: Prompter, settings: SelectorSettings
) -> Resolution | None:
    auto = 'Auto (default)'
    custom = 'Custom resolution'
    choice = _select(
        prompter,
        'Display resolution:',
        [auto, *settings.resolution_options, custom],
    )
    if choice == auto:
        return None
    if choice != custom:
        # Presets look like "1920x1080 (Full HD)".
        return validate_resolution(choice.split(' ', 1)[0])
    while True:
        raw = prompter.text('Enter resolution (WIDTHxHEIGHT, e.g., 1920x1080):')
        if raw is None:
            raise UserCancelled()
        if not raw:
            prompter.notify('Using auto resolution.')
            return None
        try:
            return validate_resolution(raw)
        except ValidationError as ex:
            prompter.notify(f'Invalid format. {ex}')


def _ask_ports(
    prompter: Prompter, settings: SelectorSettings
) -> tuple[PortMapping, ...]:
    dev = ', '.join(str(p) for p in settings.default_dev_ports)
    options = [
        f'Use default ports (SSH:{settings.ssh_port}, {dev})',
        'Customize ports',
    ]
    if _select(prompter, 'Port forwarding:', options) == options[0]:
        return build_port_mappings(
            settings.ssh_port, dev_ports=settings.default_dev_ports
        )

    ssh_port = settings.ssh_port
    while True:
        raw = prompter.text(f'SSH host port [{settings.ssh_port}]:')
        if raw is None:
            raise UserCancelled()
        if not raw:
            break
        try:
            ssh_port = validate_port(raw, 'host').port
            break
        except ValidationError as ex:
            prompter.notify(f'Error: {ex}')
    use_defaults = prompter.confirm(
        f'Include default dev ports {dev}?', default=True
    )

    prompter.notify('Add custom port mappings (format: HOST:GUEST, e.g., 8080:80)')
    extra: list[PortMapping] = []
    while True:
        raw = prompter.text('Add port mapping (or press Enter to finish):')
        if raw is None:
            raise UserCancelled()
        if not raw:
            break
        try:
            mapping = validate_port_mapping(raw)
            build_port_mappings(
                ssh_port,
                use_default_ports=use_defaults,
                extra=[*extra, mapping],
                dev_ports=settings.default_dev_ports,
            )
        except ValidationError as ex:
            prompter.notify(f'Error: {ex}')
            continue
        extra.append(mapping)
        prompter.notify(f'Added: {mapping}')
    return build_port_mappings(
        ssh_port,
        use_default_ports=use_defaults,
        extra=extra,
        dev_ports=settings.default_dev_ports,
    )


def _ask_shares(prompter: Prompter, mode: str) -> list[str]:
    out: list[str] = []
    while True:
        raw = prompter.text(
            f'Enter host directory path for {mode} sharing '
            '(or press Enter to finish):'
        )
        if raw is None:
            raise UserCancelled()
        if not raw:
            return out
        try:
            path = authorize_share(raw, mode, prompter=prompter)
        except PolicyError as ex:
            prompter.notify(f'{ex} Skipping directory.')
            continue
        out.append(path)
        prompter.notify(f'Added: {path} ({mode})')


def collect_interactive(
    prompter: Prompter,
    settings: SelectorSettings | None = None,
    *,
    home: Path | None = None,
) -> VMRecord:
    """Walk the operator through every choice; empty answers cancel."""
    settings = settings or SelectorSettings()

    def resource(kind: str, message: str, presets: list[str]) -> int:
        return _require(
            prompt_until_valid(
                lambda: prompter.choose(message, presets),
                lambda v: validate_numeric(v, kind),
                on_error=prompter.notify,
            )
        )

    ram = resource('RAM', 'Select or type RAM (GB):', settings.ram_options)
    cpu = resource('CPU', 'Select or type CPU cores:', settings.cpu_options)
    storage = resource(
        'Storage', 'Select or type storage (GB):', settings.storage_options
    )
    name = _ask_name(prompter)

    desktop_opt = 'Desktop mode (KDE Plasma graphical environment)'
    desktop = (
        _select(
            prompter,
            'Display mode:',
            ['Terminal mode (headless, SSH access)', desktop_opt],
        )
        == desktop_opt
    )
    resolution = _ask_resolution(prompter, settings) if desktop else None

    audio_opt = 'Enable audio passthrough (microphone + speakers)'
    audio = (
        _select(prompter, 'Audio:', ['No audio passthrough', audio_opt])
        == audio_opt
    )

    overlay_opt = 'With overlay (slower startup, clean state each boot)'
    overlay = (
        _select(
            prompter,
            'Nix store overlay:',
            ['No overlay (faster startup, changes persist)', overlay_opt],
        )
        == overlay_opt
    )

    share_claude = False
    if claude_auth_dir(home).is_dir():
        claude_opt = 'Share Claude auth from host (no re-login)'
        share_claude = (
            _select(
                prompter,
                'Claude Code auth:',
                [
                    "Don't share Claude auth (will need to login in VM)",
                    claude_opt,
                ],
            )
            == claude_opt
        )

    ports = _ask_ports(prompter, settings)

    shared_rw: list[str] = []
    shared_ro: list[str] = []
    add_opt = 'Add shared folders'
    if _select(prompter, 'Shared folders:', ['No shared folders', add_opt]) == add_opt:
        shared_rw = _ask_shares(prompter, READ_WRITE)
        shared_ro = _ask_shares(prompter, READ_ONLY)

    claude = None
    if share_claude:
        claude = _claude_auth_share(home, prompter)
        if claude is not None:
            shared_ro.append(claude)
            prompter.notify(f'Will share: {claude} (read-only)')

    return VMRecord(
        ram_gib=ram,
        cpu_cores=cpu,
        storage_gib=storage,
        overlay=OverlayMode.EPHEMERAL if overlay else OverlayMode.PERSISTENT,
        vm_name=name,
        audio=audio,
        desktop=desktop,
        resolution=resolution,
        shared_rw=tuple(shared_rw),
        shared_ro=tuple(shared_ro),
        ports=ports,
        claude_auth_shared=claude is not None,
    )
