"""Pure validators for scalar inputs: resources, names, ports, resolutions, paths."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config import RESOURCE_LIMITS, PortMapping, Resolution
from .errors import ValidationError

_POSITIVE_INT = re.compile(r'[1-9][0-9]*')
_IDENTIFIER = re.compile(r'[A-Za-z0-9_-]+')
_RESOLUTION = re.compile(r'([1-9][0-9]*)x([1-9][0-9]*)')
_PORT_MAPPING = re.compile(r'([0-9]+):([0-9]+)')
_DIGITS = re.compile(r'[0-9]+')
# Characters that would break out of a Nix string literal.
_FORBIDDEN_PATH_CHARS = set('"$`\\')
_SAFE_PATH = re.compile(r'[A-Za-z0-9/_. -]*')

_UNITS = {'RAM': 'GB', 'CPU': ' cores', 'Storage': 'GB'}
_EXCESS_HINT = {'RAM': '>1024GB', 'CPU': '>128 cores', 'Storage': '>10TB'}

PRIVILEGED_PORT_LIMIT = 1024


@dataclass(frozen=True)
class PortCheck:
    port: int
    privileged: bool = False


def validate_numeric(value: str | int, kind: str) -> int:
    """Accept a positive integer literal within the bound for ``kind``."""
    if kind not in RESOURCE_LIMITS:
        raise ValueError(f'Unknown resource kind: {kind!r}')
    text = str(value).strip()
    if not _POSITIVE_INT.fullmatch(text):
        raise ValidationError(
            f"{kind} must be a positive integer. Got: '{value}'"
        )
    number = int(text)
    if number > RESOURCE_LIMITS[kind]:
        raise ValidationError(
            f'{kind} size seems excessive ({_EXCESS_HINT[kind]}). '
            f'Got: {number}{_UNITS[kind]}'
        )
    return number


def validate_identifier(name: str) -> str:
    if not name or not _IDENTIFIER.fullmatch(name):
        raise ValidationError(
            'VM name must contain only letters, numbers, hyphens, and underscores'
        )
    return name


def validate_port(port: str | int, role: str) -> PortCheck:
    """Check a port number; host ports below 1024 carry an advisory flag."""
    if role not in {'host', 'guest'}:
        raise ValueError(f'Unknown port role: {role!r}')
    text = str(port).strip()
    if not _DIGITS.fullmatch(text):
        raise ValidationError(f"Port must be a number. Got: '{port}'")
    number = int(text)
    if number < 1 or number > 65535:
        raise ValidationError(
            f'Port {number} is out of valid range (1-65535)'
        )
    privileged = role == 'host' and number < PRIVILEGED_PORT_LIMIT
    return PortCheck(number, privileged)


def validate_port_mapping(text: str) -> PortMapping:
    match = _PORT_MAPPING.fullmatch(text.strip())
    if not match:
        raise ValidationError(
            'Port mapping must be in format HOST:GUEST (e.g., 8080:80)'
        )
    host = validate_port(match.group(1), 'host').port
    guest = validate_port(match.group(2), 'guest').port
    return PortMapping(host, guest)


def validate_resolution(text: str) -> Resolution:
    match = _RESOLUTION.fullmatch(text.strip())
    if not match:
        raise ValidationError(
            'Resolution must be in format WIDTHxHEIGHT (e.g., 1920x1080)'
        )
    return Resolution(int(match.group(1)), int(match.group(2)))


def validate_path_chars(raw: str) -> list[str]:
    """Reject path strings that could corrupt the generated Nix expression.

    Returns advisory warnings for characters outside the conservative safe
    set; the caller decides whether those need operator confirmation.
    """
    if '\x00' in raw:
        raise ValidationError(
            'Path contains null bytes - potential security issue'
        )
    if '\n' in raw or '\r' in raw:
        raise ValidationError('Path contains newlines - not allowed')
    bad = sorted(_FORBIDDEN_PATH_CHARS.intersection(raw))
    if bad:
        raise ValidationError(
            'Path contains special characters that could break Nix '
            f'expressions: {" ".join(bad)} (path: {raw})'
        )
    if not _SAFE_PATH.fullmatch(raw):
        return [f'Path contains unusual characters. This may cause issues. Path: {raw}']
    return []
