"""Shared fixtures for the ai_vm test-suite."""

from __future__ import annotations

import sys
from collections import deque

import pytest
from loguru import logger

from ai_vm.prompt import Cancelled, Selected, _classify_answer


class FakePrompter:
    """Scripted stand-in for :class:`ai_vm.prompt.Prompter`.

    Answers are consumed in order, one per prompt of any kind. ``None``
    means the operator pressed Enter on an empty prompt or hit Ctrl-C.
    """

    def __init__(self, answers=()):
        self.answers = deque(answers)
        self.asked: list[tuple[str, str]] = []
        self.notes: list[str] = []

    def _next(self, kind: str, message: str):
        self.asked.append((kind, message))
        if not self.answers:
            raise AssertionError(f'Unexpected {kind} prompt: {message!r}')
        return self.answers.popleft()

    def choose(self, message, presets):
        return _classify_answer(self._next('choose', message), presets)

    def select(self, message, options):
        answer = self._next('select', message)
        if answer is None:
            return Cancelled
        if isinstance(answer, int):
            answer = list(options)[answer]
        assert answer in options, f'{answer!r} not in {options!r}'
        return Selected(answer)

    def text(self, message, default=''):
        return self._next('text', message)

    def confirm(self, message, default=False):
        return bool(self._next('confirm', message))

    def notify(self, message):
        self.notes.append(message)


@pytest.fixture
def no_host_probes(monkeypatch):
    """Make the host look roomy and every port free."""
    monkeypatch.setattr('ai_vm.resource_checks.host_mem_total_gib', lambda: 1024)
    monkeypatch.setattr('ai_vm.resource_checks.host_cpu_count', lambda: 128)
    monkeypatch.setattr(
        'ai_vm.resource_checks.host_disk_gib', lambda p: (5000, 10000)
    )
    monkeypatch.setattr(
        'ai_vm.resource_checks.host_port_in_use', lambda port: False
    )
    monkeypatch.setattr('ai_vm.collect.host_port_in_use', lambda port: False)


@pytest.fixture
def fake_home(tmp_path):
    home = tmp_path / 'home'
    home.mkdir()
    return home


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI tests reconfigure loguru against the runner's streams."""
    yield
    logger.remove()
    logger.add(sys.stderr, level='DEBUG')


@pytest.fixture(autouse=True)
def _isolate_xdg(monkeypatch):
    """Per-user directories follow ``HOME`` unless a test sets XDG paths."""
    monkeypatch.delenv('XDG_CONFIG_HOME', raising=False)
    monkeypatch.delenv('XDG_DATA_HOME', raising=False)
