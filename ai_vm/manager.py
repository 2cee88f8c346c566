"""``ai-vm-manager``: build, run, ssh into and clean a VM checkout."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click
import ubelt as ub
from loguru import logger

from .build import RESULT_LINK
from .cli import _setup_logging
from .config import SelectorSettings, load_settings, save, user_settings_path
from .errors import AIVMError, BuildVerificationError
from .util import CmdError, expand, run_cmd, which

log = logger

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])


def find_vm_binary(vm_dir: Path) -> Path:
    """The single ``run-*-vm`` entry point under ``result/bin``."""
    bin_dir = vm_dir / RESULT_LINK / 'bin'
    found = sorted(bin_dir.glob('run-*-vm')) if bin_dir.is_dir() else []
    if len(found) != 1:
        names = ', '.join(p.name for p in found) or '(none)'
        raise BuildVerificationError(
            f'Expected exactly one run-*-vm binary in {bin_dir}, found: {names}'
        )
    return found[0]


def build_flake_vm(vm_dir: Path) -> None:
    click.echo('Building VM...')
    try:
        run_cmd(['nix', 'build', '.#vm'], cwd=vm_dir, capture=False)
    except FileNotFoundError as ex:
        raise AIVMError('nix is not installed or not on PATH') from ex
    except CmdError as ex:
        raise AIVMError(f'nix build .#vm failed with code {ex.result.code}') from ex
    click.echo('VM built successfully!')


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    '-C', '--dir', 'vm_dir', type=click.Path(file_okay=False, path_type=Path),
    default='.', show_default=True, help='Flake checkout holding the VM.',
)
@click.option('--config', 'config_path', metavar='PATH', help='Settings TOML.')
@click.option('-v', '--verbose', count=True, help='Increase log verbosity.')
@click.pass_context
def cli(ctx, vm_dir, config_path, verbose):
    """Manage the VM defined by the flake in the current directory."""
    if ctx.invoked_subcommand == 'init-config':
        settings = SelectorSettings()
    else:
        try:
            settings = load_settings(config_path)
        except (OSError, ValueError) as ex:
            raise click.ClickException(f'Cannot load settings: {ex}') from ex
    _setup_logging(verbose, settings.verbosity)
    ctx.obj = dict(
        vm_dir=vm_dir.resolve(),
        settings=settings,
        config_path=Path(expand(config_path)) if config_path else None,
    )


@cli.command()
@click.pass_obj
def build(obj):
    """Build the VM (nix build .#vm)."""
    build_flake_vm(obj['vm_dir'])


@cli.command()
@click.pass_obj
def run(obj):
    """Run the VM, building it first if needed."""
    vm_dir = obj['vm_dir']
    settings = obj['settings']
    if not (vm_dir / RESULT_LINK).is_dir():
        click.echo('VM not built yet. Building now...')
        build_flake_vm(vm_dir)
    binary = find_vm_binary(vm_dir)
    click.echo('Starting VM...')
    click.echo('Use Ctrl+C to stop the VM')
    click.echo(
        f'SSH access: ssh -p {settings.ssh_port} {settings.guest_user}@localhost'
    )
    os.chdir(vm_dir)
    log.debug('exec {}', binary)
    os.execv(str(binary), [str(binary)])


@cli.command()
@click.option('--port', type=int, help='Host SSH port (default from settings).')
@click.option('--user', help='Guest user (default from settings).')
@click.pass_obj
def ssh(obj, port, user):
    """SSH into the running VM."""
    settings = obj['settings']
    port = port or settings.ssh_port
    user = user or settings.guest_user
    exe = which('ssh')
    if exe is None:
        raise click.ClickException('ssh is not installed or not on PATH')
    click.echo('Connecting to VM...')
    argv = ['ssh', '-p', str(port), f'{user}@localhost']
    log.debug('exec {}', argv)
    os.execv(exe, argv)


@cli.command()
@click.pass_obj
def clean(obj):
    """Remove the build result link."""
    link = obj['vm_dir'] / RESULT_LINK
    click.echo('Cleaning build artifacts...')
    if link.is_symlink():
        link.unlink()
    elif link.exists():
        raise click.ClickException(
            f'{link} is not a symlink; refusing to remove it'
        )
    click.echo('Clean complete!')


@cli.command('init-config')
@click.option('--force', is_flag=True, help='Overwrite an existing settings file.')
@click.pass_obj
def init_config(obj, force):
    """Write default settings to the user settings file (or --config PATH)."""
    path = obj['config_path'] or user_settings_path()
    if path.exists() and not force:
        raise click.ClickException(
            f'Settings file already exists: {path}. Use --force to overwrite it.'
        )
    ub.Path(path.parent).ensuredir()
    save(path, SelectorSettings())
    log.info('Wrote settings to {}', path)
    click.echo(f'Wrote settings: {path}')


def main() -> None:
    try:
        cli(standalone_mode=True)
    except AIVMError as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('ai-vm-manager failed: {}', ex)
        sys.exit(1)
