"""Build the configured VM with ``nix build`` and verify the resulting artifact."""

from __future__ import annotations

import enum
import os
import textwrap
from dataclasses import dataclass
from pathlib import Path

import ubelt as ub
from loguru import logger

from .config import SelectorSettings, VMRecord
from .detect import SourceReference
from .errors import BuildInvocationError, BuildVerificationError, ResourceError
from .util import expand, is_writable_dir, stream_cmd

log = logger

RESULT_LINK = 'result'
DIAGNOSTIC_TAIL_LINES = 40


class BuildState(enum.Enum):
    NOT_STARTED = 'not-started'
    BUILDING = 'building'
    SUCCEEDED = 'succeeded'
    FAILED_INVOCATION = 'failed-invocation'
    FAILED_VERIFICATION = 'failed-verification'


@dataclass(frozen=True)
class BuildResult:
    artifact_root: Path
    vm_binary: Path


def resolve_vm_dir(
    source: SourceReference,
    settings: SelectorSettings | None = None,
    *,
    cwd: Path | None = None,
) -> Path:
    """Directory that receives the ``result`` link, disk image and launcher.

    Remote flakes get a dedicated per-user directory; local flakes build into
    the directory the tool was invoked from.
    """
    settings = settings or SelectorSettings()
    if not source.is_remote:
        vm_dir = cwd or Path.cwd()
        if not vm_dir.is_dir():
            raise ResourceError(f'Current directory does not exist: {vm_dir}')
        if not is_writable_dir(vm_dir):
            raise ResourceError(f'Current directory is not writable: {vm_dir}')
        return vm_dir

    vm_dir = Path(expand(settings.remote_vm_dir))
    if vm_dir.is_symlink():
        raise ResourceError(
            f"VM directory '{vm_dir}' is a symbolic link, which is not allowed "
            'for security reasons. Remove the symlink and let ai-vm create a '
            'real directory.'
        )
    try:
        ub.Path(vm_dir).ensuredir()
    except OSError as ex:
        raise ResourceError(
            f'Failed to create VM directory: {vm_dir} ({ex}). '
            'Check permissions and ensure the parent directory exists.'
        ) from ex
    if not is_writable_dir(vm_dir):
        raise ResourceError(f'VM directory is not writable: {vm_dir}')
    log.info('VM files will be created in: {}', vm_dir)
    return vm_dir


def nix_string(value: str) -> str:
    escaped = (
        value.replace('\\', '\\\\').replace('"', '\\"').replace('${', '\\${')
    )
    return f'"{escaped}"'


def _nix_bool(flag: bool) -> str:
    return 'true' if flag else 'false'


def _nix_list(items) -> str:
    return '[ ' + ''.join(f'{item} ' for item in items) + ']'


def builder_arguments(record: VMRecord) -> list[str]:
    """Positional ``makeCustomVM`` arguments rendered as Nix expressions."""
    ports = (
        f'{{ host = {m.host}; guest = {m.guest}; }}' for m in record.ports
    )
    resolution = (
        nix_string(str(record.resolution))
        if record.resolution is not None
        else 'null'
    )
    return [
        str(record.ram_gib),
        str(record.cpu_cores),
        str(record.storage_gib),
        _nix_bool(record.overlay.enabled),
        _nix_list(nix_string(p) for p in record.shared_rw),
        _nix_list(nix_string(p) for p in record.shared_ro),
        nix_string(record.vm_name),
        _nix_bool(record.audio),
        _nix_bool(record.desktop),
        _nix_list(ports),
        resolution,
    ]


def nix_expression(record: VMRecord, source: SourceReference) -> str:
    args = ' '.join(builder_arguments(record))
    return textwrap.dedent(
        f"""
        let
          flake = builtins.getFlake {nix_string(source.ref)};
        in
          flake.lib.${{builtins.currentSystem}}.makeCustomVM {args}
        """
    ).strip() + '\n'


def build_command(record: VMRecord, source: SourceReference) -> list[str]:
    return ['nix', 'build', '--impure', '--expr', nix_expression(record, source)]


def _invocation_help(source: SourceReference) -> str:
    return textwrap.dedent(
        f"""
        Error: Nix build failed!

        Possible causes:
          - Flake reference is invalid or inaccessible: {source.ref}
          - Network issues (if using remote flake)
          - Insufficient disk space
          - Nix evaluation error in VM configuration

        Troubleshooting steps:
          1. Check flake reference: nix flake show "{source.ref}"
          2. Check disk space: df -h
          3. Try with verbose output: nix build --impure --show-trace --expr '...'
        """
    ).strip()


class BuildInvoker:
    """Run one build and verify its output; terminal states are final."""

    def __init__(self, record: VMRecord, source: SourceReference, vm_dir: Path):
        self.record = record
        self.source = source
        self.vm_dir = vm_dir
        self.state = BuildState.NOT_STARTED

    def run(self) -> BuildResult:
        if self.state is not BuildState.NOT_STARTED:
            raise RuntimeError(f'Build already ran (state={self.state.value})')
        self.state = BuildState.BUILDING
        try:
            self._invoke()
        except BuildInvocationError:
            self.state = BuildState.FAILED_INVOCATION
            raise
        try:
            result = self.verify()
        except BuildVerificationError:
            self.state = BuildState.FAILED_VERIFICATION
            raise
        self.state = BuildState.SUCCEEDED
        print('✓ VM built successfully')
        return result

    def _invoke(self) -> None:
        cmd = build_command(self.record, self.source)
        print('Building VM with Nix...')
        try:
            res = stream_cmd(cmd, cwd=self.vm_dir, tail=DIAGNOSTIC_TAIL_LINES)
        except OSError as ex:
            raise BuildInvocationError(
                f'Unable to run nix: {ex}. Is the Nix package manager installed?',
                returncode=127,
            ) from ex
        if res.code != 0:
            raise BuildInvocationError(
                _invocation_help(self.source),
                returncode=res.code,
                diagnostic=res.stderr,
            )

    def verify(self) -> BuildResult:
        """Check ``result`` link, its target directory, and the VM binary."""
        link = self.vm_dir / RESULT_LINK
        if not link.is_symlink():
            raise BuildVerificationError(
                f"Nix build succeeded but '{RESULT_LINK}' symlink was not "
                f'created in {self.vm_dir}. The build may have partially failed.'
            )
        if not link.is_dir():
            raise BuildVerificationError(
                f"'{RESULT_LINK}' symlink exists but does not point to a valid "
                f'directory (target: {os.readlink(link)})'
            )
        binary = link / 'bin' / self.record.binary_name
        if not binary.is_file():
            bin_dir = link / 'bin'
            available = (
                ', '.join(sorted(p.name for p in bin_dir.iterdir()))
                if bin_dir.is_dir()
                else '(directory not accessible)'
            )
            raise BuildVerificationError(
                f'VM binary not found at expected location: {binary}\n'
                f'Available files in {bin_dir}: {available or "(none)"}'
            )
        if not os.access(binary, os.X_OK):
            raise BuildVerificationError(
                f'VM binary is not executable: {binary}'
            )
        return BuildResult(artifact_root=link.resolve(), vm_binary=binary)
