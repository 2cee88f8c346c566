"""Tests for collecting a VM record from flags and prompts."""

from __future__ import annotations

import os

import pytest

from ai_vm.collect import (
    CollectorOptions,
    build_port_mappings,
    collect_direct,
    collect_interactive,
    confirm_disk_space,
    confirm_port_advisories,
    is_direct_mode,
    sync_claude_settings,
)
from ai_vm.config import OverlayMode, PortMapping, Resolution
from ai_vm.errors import (
    PolicyError,
    PolicyReason,
    ResourceError,
    UserCancelled,
    ValidationError,
)

from conftest import FakePrompter


def test_direct_mode_detection() -> None:
    assert not is_direct_mode(CollectorOptions())
    assert is_direct_mode(CollectorOptions(ram='8'))
    assert is_direct_mode(CollectorOptions(audio=True))
    assert is_direct_mode(CollectorOptions(ports=('8080:80',)))
    assert is_direct_mode(CollectorOptions(no_default_ports=True))


def test_direct_basic_record() -> None:
    rec = collect_direct(CollectorOptions(ram='8', cpu='4', storage='100'))
    assert (rec.ram_gib, rec.cpu_cores, rec.storage_gib) == (8, 4, 100)
    assert rec.vm_name == 'ai-vm'
    assert rec.ports == (
        PortMapping(2222, 22),
        PortMapping(3001, 3001),
        PortMapping(9080, 9080),
    )
    assert rec.shared_rw == () and rec.shared_ro == ()
    assert rec.overlay is OverlayMode.PERSISTENT


def test_direct_desktop_record() -> None:
    rec = collect_direct(
        CollectorOptions(
            name='demo',
            ram='16',
            cpu='8',
            storage='200',
            audio=True,
            desktop=True,
            resolution='1920x1080',
        )
    )
    assert rec.vm_name == 'demo'
    assert rec.desktop and rec.audio
    assert rec.resolution == Resolution(1920, 1080)


def test_direct_resolution_without_desktop_is_accepted() -> None:
    rec = collect_direct(
        CollectorOptions(ram='8', cpu='4', storage='50', resolution='1280x720')
    )
    assert not rec.desktop


def test_direct_custom_ports() -> None:
    rec = collect_direct(
        CollectorOptions(
            ram='8',
            cpu='4',
            storage='50',
            ssh_port='2300',
            no_default_ports=True,
            ports=('8080:80',),
        )
    )
    assert rec.ports == (PortMapping(2300, 22), PortMapping(8080, 80))
    assert rec.ssh_port == 2300


def test_direct_missing_share_fails_first(tmp_path) -> None:
    missing = str(tmp_path / 'does-not-exist')
    with pytest.raises(PolicyError, match='does not exist'):
        collect_direct(CollectorOptions(share_rw=(missing,)))
    with pytest.raises(PolicyError, match='does not exist'):
        collect_direct(
            CollectorOptions(ram='8', cpu='4', storage='50', share_rw=(missing,))
        )


def test_direct_requires_resources() -> None:
    with pytest.raises(ValidationError, match='--ram, --cpu, and --storage'):
        collect_direct(CollectorOptions(ram='8', cpu='4'))


def test_direct_sensitive_share_fails_closed() -> None:
    with pytest.raises(PolicyError) as exc:
        collect_direct(
            CollectorOptions(ram='8', cpu='4', storage='50', share_ro=('/etc',))
        )
    assert exc.value.reason is PolicyReason.NEEDS_CONFIRMATION


def test_direct_shares_are_canonical(tmp_path) -> None:
    proj = tmp_path / 'proj'
    proj.mkdir()
    link = tmp_path / 'link'
    link.symlink_to(proj)
    rec = collect_direct(
        CollectorOptions(
            ram='8',
            cpu='4',
            storage='50',
            share_rw=(str(link), str(proj) + '/'),
        )
    )
    assert rec.shared_rw == (os.path.realpath(proj),)


def test_duplicate_host_ports_rejected() -> None:
    with pytest.raises(ValidationError, match='more than once'):
        build_port_mappings(2222, extra=[PortMapping(3001, 80)])
    with pytest.raises(ValidationError):
        collect_direct(
            CollectorOptions(ram='8', cpu='4', storage='50', ports=('2222:80',))
        )


def test_direct_claude_auth(fake_home) -> None:
    opts = CollectorOptions(
        ram='8', cpu='4', storage='50', share_claude_auth=True
    )
    rec = collect_direct(opts, home=fake_home)
    assert not rec.claude_auth_shared
    assert rec.shared_ro == ()

    (fake_home / '.claude').mkdir()
    rec = collect_direct(opts, home=fake_home)
    assert rec.claude_auth_shared
    assert rec.shared_ro == (os.path.realpath(fake_home / '.claude'),)


def test_sync_claude_settings(fake_home) -> None:
    assert sync_claude_settings(fake_home) is None
    (fake_home / '.claude').mkdir()
    (fake_home / '.claude.json').write_text('{"theme": "dark"}')
    dst = sync_claude_settings(fake_home)
    assert dst == fake_home / '.claude' / '.settings.json'
    assert dst.read_text() == '{"theme": "dark"}'


def test_interactive_defaults(fake_home) -> None:
    prompter = FakePrompter(['8', '4', '100', 0, 0, 0, 0, 0, 0])
    rec = collect_interactive(prompter, home=fake_home)
    assert (rec.ram_gib, rec.cpu_cores, rec.storage_gib) == (8, 4, 100)
    assert rec.vm_name == 'ai-vm'
    assert not rec.desktop and not rec.audio
    assert rec.ports[0] == PortMapping(2222, 22)
    assert len(rec.ports) == 3
    assert not prompter.answers
    assert ('select', 'Claude Code auth:') not in prompter.asked


def test_interactive_custom_answers(fake_home, tmp_path) -> None:
    (fake_home / '.claude').mkdir()
    proj = tmp_path / 'proj'
    proj.mkdir()
    prompter = FakePrompter(
        [
            'lots',  # RAM, rejected
            '12',  # RAM, typed custom value
            '2',
            '50',
            1,  # custom name
            'bad name',
            'demo',
            1,  # desktop
            'Custom resolution',
            '2560x1440',
            1,  # audio
            1,  # overlay
            1,  # share claude auth
            1,  # customize ports
            '2300',
            False,  # no default dev ports
            '8080:80',
            '2300:80',  # duplicate host port, rejected
            '',
            1,  # add shared folders
            str(proj),
            '',
            '',
        ]
    )
    rec = collect_interactive(prompter, home=fake_home)
    assert rec.ram_gib == 12
    assert rec.vm_name == 'demo'
    assert rec.desktop and rec.audio
    assert rec.resolution == Resolution(2560, 1440)
    assert rec.overlay is OverlayMode.EPHEMERAL
    assert rec.ports == (PortMapping(2300, 22), PortMapping(8080, 80))
    assert rec.shared_rw == (os.path.realpath(proj),)
    assert rec.shared_ro == (os.path.realpath(fake_home / '.claude'),)
    assert rec.claude_auth_shared
    assert any('positive integer' in n for n in prompter.notes)
    assert any('more than once' in n for n in prompter.notes)
    assert not prompter.answers


def test_interactive_preset_resolution(fake_home) -> None:
    prompter = FakePrompter(
        ['8', '4', '100', 0, 1, '1920x1080 (Full HD)', 0, 0, 0, 0]
    )
    rec = collect_interactive(prompter, home=fake_home)
    assert rec.resolution == Resolution(1920, 1080)


def test_interactive_skips_refused_share(fake_home, tmp_path) -> None:
    prompter = FakePrompter(
        ['8', '4', '100', 0, 0, 0, 0, 0, 1, '/', str(tmp_path / 'nope'), '', '']
    )
    rec = collect_interactive(prompter, home=fake_home)
    assert rec.shared_rw == ()
    assert sum('Skipping directory' in n for n in prompter.notes) == 2


@pytest.mark.parametrize('cancel_at', [0, 3, 4])
def test_interactive_cancellation(fake_home, cancel_at) -> None:
    answers = ['8', '4', '100', 0, 0, 0, 0, 0, 0]
    answers[cancel_at] = None
    with pytest.raises(UserCancelled):
        collect_interactive(FakePrompter(answers), home=fake_home)


def test_port_advisories(monkeypatch) -> None:
    monkeypatch.setattr('ai_vm.collect.host_port_in_use', lambda port: port == 3001)
    ports = build_port_mappings(80)
    with pytest.raises(UserCancelled):
        confirm_port_advisories(ports, FakePrompter([False]))
    prompter = FakePrompter([True, True])
    confirm_port_advisories(ports, prompter)
    assert any('privileged' in n for n in prompter.notes)
    assert any('3001 appears to be in use' in n for n in prompter.notes)
    # Direct mode only logs.
    confirm_port_advisories(ports, None)


def test_disk_space_confirmation(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(
        'ai_vm.resource_checks.host_disk_gib', lambda p: (300, 1000)
    )
    confirm_disk_space(tmp_path, 150, None)
    with pytest.raises(UserCancelled):
        confirm_disk_space(tmp_path, 150, FakePrompter([False]))
    with pytest.raises(ResourceError):
        confirm_disk_space(tmp_path, 290, FakePrompter([True]))
