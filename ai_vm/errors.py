"""Project-specific exception types."""

from __future__ import annotations

import enum


class AIVMError(RuntimeError):
    """Base error for domain-level ai-vm failures."""


class ValidationError(AIVMError):
    """Raised when a scalar input is malformed or out of range."""


class PolicyReason(enum.Enum):
    SYSTEM_CRITICAL = 'system-critical'
    NEEDS_CONFIRMATION = 'needs-confirmation'
    DECLINED = 'declined'
    UNSAFE_PATH = 'unsafe-path'
    MISSING = 'missing'


class PolicyError(AIVMError):
    """Raised when a host directory may not be shared into the guest."""

    def __init__(self, message: str, reason: PolicyReason):
        self.reason = reason
        super().__init__(message)


class ResolutionError(AIVMError):
    """Raised when no flake reference could be resolved."""


class ResourceError(AIVMError):
    """Raised when the host cannot accommodate the requested VM."""


class BuildInvocationError(AIVMError):
    """Raised when the ``nix build`` subprocess itself fails."""

    def __init__(self, message: str, returncode: int, diagnostic: str = ''):
        self.returncode = returncode
        self.diagnostic = diagnostic
        text = message
        if diagnostic:
            text = f'{message}\n{diagnostic}'
        super().__init__(text)


class BuildVerificationError(AIVMError):
    """Raised when the build succeeded but its artifacts are not usable."""


class UserCancelled(Exception):
    """Raised when the operator cancels a prompt or declines a confirmation.

    Not an :class:`AIVMError`; cancellation exits with status 0.
    """
