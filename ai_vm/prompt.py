"""Interactive prompt primitives with an explicit cancellation sentinel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar, Union

import questionary

from .errors import ValidationError

T = TypeVar('T')


@dataclass(frozen=True)
class Selected:
    """The operator picked one of the offered presets."""

    value: str


@dataclass(frozen=True)
class CustomInput:
    """The operator typed a value that is not one of the presets."""

    value: str


class _CancelledType:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'Cancelled'

    def __bool__(self) -> bool:
        return False


Cancelled = _CancelledType()

Choice = Union[Selected, CustomInput, _CancelledType]


class Prompter:
    """Terminal prompts backed by questionary.

    Every method maps "no answer" (empty input, Ctrl-C, EOF) onto either
    :data:`Cancelled` or ``None`` so callers never see questionary's own
    conventions.
    """

    def choose(self, message: str, presets: Sequence[str]) -> Choice:
        """Offer presets while accepting any typed value."""
        raw = questionary.autocomplete(message, choices=list(presets)).ask()
        return _classify_answer(raw, presets)

    def select(self, message: str, options: Sequence[str]) -> Choice:
        raw = questionary.select(message, choices=list(options)).ask()
        if not raw:
            return Cancelled
        return Selected(raw)

    def text(self, message: str, default: str = '') -> str | None:
        raw = questionary.text(message, default=default).ask()
        if raw is None:
            return None
        return raw.strip()

    def confirm(self, message: str, default: bool = False) -> bool:
        return bool(questionary.confirm(message, default=default).ask())

    def notify(self, message: str) -> None:
        print(message)


def _classify_answer(raw: str | None, presets: Sequence[str]) -> Choice:
    if raw is None:
        return Cancelled
    value = raw.strip()
    if not value:
        return Cancelled
    if value in presets:
        return Selected(value)
    return CustomInput(value)


def prompt_until_valid(
    ask: Callable[[], Choice],
    validator: Callable[[str], T],
    *,
    on_error: Callable[[str], None] = print,
) -> Union[T, _CancelledType]:
    """Re-ask until ``validator`` accepts the answer or the operator cancels."""
    while True:
        choice = ask()
        if choice is Cancelled:
            return Cancelled
        try:
            return validator(choice.value)
        except ValidationError as ex:
            on_error(f'Error: {ex}')
