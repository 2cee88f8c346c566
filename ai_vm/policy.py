"""Security policy deciding which host directories may be shared into the guest."""

from __future__ import annotations

import enum
import os
from pathlib import Path

from loguru import logger

from .errors import PolicyError, PolicyReason, ValidationError
from .prompt import Prompter
from .util import expand
from .validate import validate_path_chars

log = logger

# Sharing any of these would expose or endanger the whole host.
BLOCKED_DIRS = ('/', '/boot', '/sys', '/proc', '/dev')

SENSITIVE_DIRS = (
    '/root',
    '/etc',
    '/var',
    '/home',
    '/usr',
    '/bin',
    '/sbin',
    '/lib',
    '/lib64',
    '/opt',
)

READ_WRITE = 'read-write'
READ_ONLY = 'read-only'


class DirectoryClass(enum.Enum):
    BLOCKED = 'blocked'
    SENSITIVE = 'sensitive'
    ALLOWED = 'allowed'


def _under(path: str, entry: str) -> bool:
    if path == entry:
        return True
    if entry == '/':
        return False
    return path.startswith(entry + '/')


def _absolute(raw: str | Path) -> str:
    return os.path.abspath(expand(str(raw)))


def canonicalize(raw: str | Path) -> str:
    """Absolute path with every symlink resolved."""
    return os.path.realpath(_absolute(raw))


def _classify_canonical(canonical: str) -> tuple[DirectoryClass, str]:
    # Whole subtrees are blocked, except that "/" only blocks itself.
    for blocked in BLOCKED_DIRS:
        if _under(canonical, blocked):
            return DirectoryClass.BLOCKED, blocked
    for sensitive in SENSITIVE_DIRS:
        if _under(canonical, sensitive):
            return DirectoryClass.SENSITIVE, sensitive
    return DirectoryClass.ALLOWED, ''


def _classify_with_entry(raw: str | Path) -> tuple[DirectoryClass, str, bool]:
    literal = _absolute(raw)
    canonical = os.path.realpath(literal)
    # Classifying the resolved target means a link into a protected tree
    # inherits that tree's class.
    cls, entry = _classify_canonical(canonical)
    via_symlink = canonical != literal
    return cls, entry, via_symlink


def classify(raw: str | Path) -> DirectoryClass:
    cls, _, _ = _classify_with_entry(raw)
    return cls


def _blocked_banner(path: str) -> str:
    return '\n'.join(
        [
            f"SECURITY ERROR: Cannot share '{path}'",
            '',
            'This directory is critical to system operation and is blocked from',
            'being shared for security reasons.',
            '',
            'Safe alternatives:',
            '  - Share specific subdirectories (e.g., ~/projects/foo)',
            '  - Share /tmp for temporary file exchange',
            '  - Create a dedicated directory for VM sharing',
        ]
    )


def _sensitive_banner(path: str, mode: str) -> str:
    lines = [
        f"SECURITY WARNING: Sharing '{path}' ({mode})",
        '',
        'This directory contains sensitive system or user data.',
        '',
    ]
    if mode == READ_WRITE:
        lines += [
            'Sharing as READ-WRITE means the VM can:',
            '  - Modify system configurations',
            '  - Delete or corrupt important files',
            '  - Potentially compromise host system security',
        ]
    else:
        lines += [
            'Sharing as READ-ONLY means the VM can:',
            '  - Read sensitive configuration files',
            '  - Access passwords or secrets (e.g., /etc/shadow, ssh keys)',
            '  - View private user data',
        ]
    lines += [
        '',
        'Safer alternatives:',
        '  - Share only specific subdirectories you need',
        '  - Copy files to a dedicated sharing directory',
        '  - Use /tmp for temporary file exchange',
    ]
    return '\n'.join(lines)


def check_path_string(raw: str, *, prompter: Prompter | None = None) -> None:
    """Apply the character checks to a raw path before it is resolved."""
    try:
        warnings = validate_path_chars(raw)
    except ValidationError as ex:
        raise PolicyError(str(ex), PolicyReason.UNSAFE_PATH) from ex
    for warning in warnings:
        if prompter is None:
            log.warning(warning)
            continue
        prompter.notify(f'Warning: {warning}')
        if not prompter.confirm('Continue anyway?'):
            raise PolicyError(
                f'Path not accepted: {raw}', PolicyReason.DECLINED
            )


def authorize_share(
    raw: str | Path,
    mode: str = READ_WRITE,
    *,
    prompter: Prompter | None = None,
    require_sensitive_confirmation: bool = True,
) -> str:
    """Return the canonical path if ``raw`` may be shared, else raise PolicyError.

    ``prompter`` is the interactive operator; without one (direct mode)
    sensitive directories fail closed.
    """
    text = str(raw)
    check_path_string(text, prompter=prompter)
    canonical = canonicalize(text)
    if not os.path.isdir(canonical):
        raise PolicyError(
            f"Directory '{text}' does not exist or is not accessible",
            PolicyReason.MISSING,
        )
    if canonical != text:
        # The resolved target is what ends up in the Nix expression.
        check_path_string(canonical, prompter=None)

    cls, entry, via_symlink = _classify_with_entry(text)
    if via_symlink and cls is not DirectoryClass.ALLOWED:
        log.warning(
            "'{}' is a symlink to '{}' inside protected directory '{}'",
            text,
            canonical,
            entry,
        )

    if cls is DirectoryClass.BLOCKED:
        print(_blocked_banner(canonical))
        raise PolicyError(
            f"Cannot share '{canonical}': directory '{entry}' is critical to "
            'system operation',
            PolicyReason.SYSTEM_CRITICAL,
        )

    if cls is DirectoryClass.SENSITIVE and require_sensitive_confirmation:
        print(_sensitive_banner(canonical, mode))
        if prompter is None:
            raise PolicyError(
                f"Sharing sensitive directory '{canonical}' requires "
                'interactive confirmation; refusing in direct mode. '
                'Share a more specific directory or run interactively.',
                PolicyReason.NEEDS_CONFIRMATION,
            )
        answer = prompter.text(
            'Are you absolutely sure you want to share this directory? (yes/NO):'
        )
        # Exact, case-sensitive match only.
        if answer != 'yes':
            raise PolicyError(
                'Cancelled. Directory not shared.', PolicyReason.DECLINED
            )
        log.warning(
            'Proceeding with sensitive directory sharing: {}', canonical
        )

    return canonical
