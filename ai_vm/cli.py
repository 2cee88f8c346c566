"""Command-line entry point for ``vm-selector``."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import NoReturn

import click
from loguru import logger

from .build import BuildInvoker, nix_expression, resolve_vm_dir
from .collect import (
    CollectorOptions,
    collect_direct,
    collect_interactive,
    confirm_disk_space,
    confirm_port_advisories,
    confirm_resources,
    is_direct_mode,
    sync_claude_settings,
)
from .config import SelectorSettings, load_settings
from .detect import resolve_source
from .errors import UserCancelled
from .launcher import (
    LauncherContext,
    chain_into,
    link_into_cwd,
    restart_hint,
    write_launcher,
)
from .prompt import Prompter
from .summary import render_summary

log = logger

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'], max_content_width=100)


class _Command(click.Command):
    """Usage errors exit with status 1, like every other failure."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as ex:
            ex.exit_code = 1
            raise


EPILOG = """
\b
SECURITY NOTES
  Blocked directories (cannot be shared):
    /  /boot  /sys  /proc  /dev
  Sensitive directories (require confirmation, refused in direct mode):
    /root  /etc  /var  /home  /usr  /bin  /sbin  /lib  /opt
  Share specific project directories rather than whole trees; use /tmp
  for temporary file exchange.

\b
EXAMPLES
  vm-selector
  vm-selector --ram 8 --cpu 4 --storage 100
  vm-selector -r 16 -c 8 -s 200 --desktop --resolution 2560x1440 --audio
  vm-selector -r 16 -c 8 -s 50 --name dev-vm --share-rw ~/projects
  vm-selector -r 8 -c 4 -s 50 --ssh-port 2300 --no-default-ports -p 8080:80
"""


@click.command(cls=_Command, context_settings=CONTEXT_SETTINGS, epilog=EPILOG)
@click.option('-r', '--ram', metavar='GB', help='RAM in GB.')
@click.option('-c', '--cpu', metavar='COUNT', help='CPU cores.')
@click.option('-s', '--storage', metavar='GB', help='Disk size in GB.')
@click.option(
    '-n', '--name', metavar='NAME',
    help='VM name (default: ai-vm); names the disk image and startup script.',
)
@click.option(
    '-o', '--overlay', is_flag=True,
    help='Ephemeral Nix store overlay (clean state each boot).',
)
@click.option('-a', '--audio', is_flag=True, help='Enable audio passthrough.')
@click.option('-d', '--desktop', is_flag=True, help='Enable the KDE Plasma desktop.')
@click.option(
    '--resolution', metavar='WxH',
    help='Display resolution, e.g. 1920x1080; only applies with --desktop.',
)
@click.option(
    '--share-rw', multiple=True, metavar='PATH',
    help='Share a directory read-write at /mnt/host-rw/<dirname> (repeatable).',
)
@click.option(
    '--share-ro', multiple=True, metavar='PATH',
    help='Share a directory read-only at /mnt/host-ro/<dirname> (repeatable).',
)
@click.option(
    '--share-claude-auth', is_flag=True,
    help='Share ~/.claude read-only so the VM needs no Claude login.',
)
@click.option(
    '-p', '--port', 'ports', multiple=True, metavar='HOST:GUEST',
    help='Add a port forward (repeatable).',
)
@click.option('--ssh-port', metavar='PORT', help='SSH port on the host (default: 2222).')
@click.option(
    '--no-default-ports', is_flag=True,
    help="Don't forward the default dev ports (3001, 9080).",
)
@click.option(
    '--config', 'config_path', metavar='PATH',
    help='Settings TOML (default: ./.ai-vm.toml, then $XDG_CONFIG_HOME/ai-vm/config.toml).',
)
@click.option('-v', '--verbose', count=True, help='Increase log verbosity.')
@click.option(
    '--dry-run', is_flag=True,
    help='Print the nix expression that would be built and exit.',
)
@click.option(
    '--no-exec', is_flag=True,
    help='Write the startup script but do not start the VM.',
)
def main(
    ram,
    cpu,
    storage,
    name,
    overlay,
    audio,
    desktop,
    resolution,
    share_rw,
    share_ro,
    share_claude_auth,
    ports,
    ssh_port,
    no_default_ports,
    config_path,
    verbose,
    dry_run,
    no_exec,
):
    """Select, build and launch an AI development VM.

    Without resource or feature flags every setting is asked for
    interactively. Passing any of them switches to direct mode, where
    --ram, --cpu and --storage are required and nothing is prompted.
    """
    try:
        settings = load_settings(config_path)
    except Exception as ex:
        _setup_logging(verbose, 0)
        _fail(ex)
    _setup_logging(verbose, settings.verbosity)

    opts = CollectorOptions(
        ram=ram,
        cpu=cpu,
        storage=storage,
        name=name,
        overlay=overlay,
        audio=audio,
        desktop=desktop,
        resolution=resolution,
        share_rw=tuple(share_rw),
        share_ro=tuple(share_ro),
        share_claude_auth=share_claude_auth,
        ports=tuple(ports),
        ssh_port=ssh_port,
        no_default_ports=no_default_ports,
    )
    try:
        launcher = select_and_build(
            opts, settings, dry_run=dry_run, no_exec=no_exec
        )
        if launcher is not None:
            chain_into(launcher)
    except (UserCancelled, KeyboardInterrupt):
        click.echo('Cancelled.')
        sys.exit(0)
    except Exception as ex:
        _fail(ex)


def select_and_build(
    opts: CollectorOptions,
    settings: SelectorSettings,
    *,
    dry_run: bool = False,
    no_exec: bool = False,
    prompter: Prompter | None = None,
) -> Path | None:
    """Run everything up to the launcher; returns it when it should be started."""
    source = resolve_source(settings)
    home = Path.home()

    if is_direct_mode(opts):
        record = collect_direct(opts, settings, home=home)
        prompter = None
    else:
        prompter = prompter or Prompter()
        click.echo('Interactive VM configuration (press Enter on an empty prompt to cancel)')
        record = collect_interactive(prompter, settings, home=home)

    confirm_port_advisories(record.ports, prompter)
    confirm_resources(record, prompter)

    click.echo()
    click.echo(render_summary(record))
    click.echo(f'Building from flake: {source.ref}')
    click.echo()

    if dry_run:
        click.echo(nix_expression(record, source))
        return None

    vm_dir = resolve_vm_dir(source, settings)
    confirm_disk_space(vm_dir, record.storage_gib, prompter)
    if record.claude_auth_shared:
        sync_claude_settings(home)

    BuildInvoker(record, source, vm_dir).run()

    ctx = LauncherContext.from_record(
        record, source, vm_dir, guest_user=settings.guest_user
    )
    launcher = write_launcher(ctx, vm_dir, prompter=prompter)
    link_into_cwd(launcher)
    click.echo()
    click.echo(restart_hint(launcher))
    if no_exec:
        return None
    click.echo()
    click.echo('Starting VM now...')
    return launcher


def _fail(ex: BaseException) -> NoReturn:
    print(f'ERROR: {ex}', file=sys.stderr)
    log.error('vm-selector failed: {}', ex)
    sys.exit(1)


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    logger.remove()
    effective_verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = 'WARNING'
    if effective_verbosity == 1:
        level = 'INFO'
    elif effective_verbosity >= 2:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (effective_verbosity={}, colorize={})',
        level,
        effective_verbosity,
        colorize,
    )
