"""Tests for the host directory sharing policy."""

from __future__ import annotations

import os

import pytest

from ai_vm.errors import PolicyError, PolicyReason
from ai_vm.policy import (
    READ_ONLY,
    READ_WRITE,
    DirectoryClass,
    authorize_share,
    classify,
)

from conftest import FakePrompter


@pytest.mark.parametrize(
    'path,expected',
    [
        ('/', DirectoryClass.BLOCKED),
        ('/boot', DirectoryClass.BLOCKED),
        ('/proc', DirectoryClass.BLOCKED),
        ('/etc', DirectoryClass.SENSITIVE),
        ('/etc/nixos', DirectoryClass.SENSITIVE),
        ('/home/someone/projects', DirectoryClass.SENSITIVE),
        ('/usr/share', DirectoryClass.SENSITIVE),
        ('/srv/data', DirectoryClass.ALLOWED),
        ('/opt-archive', DirectoryClass.ALLOWED),
        ('/etcetera', DirectoryClass.ALLOWED),
    ],
)
def test_classify(path, expected) -> None:
    assert classify(path) is expected


def test_blocked_subtrees_except_root() -> None:
    assert classify('/boot/efi') is DirectoryClass.BLOCKED
    assert classify('/dev/shm') is DirectoryClass.BLOCKED
    assert classify('/srv') is DirectoryClass.ALLOWED


def test_allowed_directory_returns_canonical_path(tmp_path) -> None:
    proj = tmp_path / 'proj'
    proj.mkdir()
    expected = os.path.realpath(proj)
    assert authorize_share(str(proj), READ_WRITE) == expected
    assert authorize_share(str(proj) + '/', READ_WRITE) == expected
    assert authorize_share(str(proj / '.' / '..' / 'proj'), READ_ONLY) == expected


def test_relative_path_is_resolved_against_cwd(tmp_path, monkeypatch) -> None:
    (tmp_path / 'proj').mkdir()
    monkeypatch.chdir(tmp_path)
    assert authorize_share('proj') == os.path.realpath(tmp_path / 'proj')


def test_missing_directory(tmp_path) -> None:
    with pytest.raises(PolicyError, match='does not exist') as exc:
        authorize_share(str(tmp_path / 'nope'))
    assert exc.value.reason is PolicyReason.MISSING


def test_blocked_fails_even_when_operator_agrees() -> None:
    prompter = FakePrompter(['yes'])
    with pytest.raises(PolicyError) as exc:
        authorize_share('/', READ_ONLY, prompter=prompter)
    assert exc.value.reason is PolicyReason.SYSTEM_CRITICAL
    assert prompter.asked == []


def test_sensitive_fails_closed_without_prompter(capsys) -> None:
    with pytest.raises(PolicyError) as exc:
        authorize_share('/etc', READ_ONLY)
    assert exc.value.reason is PolicyReason.NEEDS_CONFIRMATION
    assert 'SECURITY WARNING' in capsys.readouterr().out


def test_sensitive_requires_exact_yes() -> None:
    assert authorize_share('/etc', READ_ONLY, prompter=FakePrompter(['yes'])) == (
        os.path.realpath('/etc')
    )
    for answer in ['YES', 'y', 'Yes', '', None]:
        with pytest.raises(PolicyError) as exc:
            authorize_share('/etc', READ_WRITE, prompter=FakePrompter([answer]))
        assert exc.value.reason is PolicyReason.DECLINED


def test_sensitive_gate_can_be_skipped() -> None:
    got = authorize_share(
        '/etc', READ_ONLY, require_sensitive_confirmation=False
    )
    assert got == os.path.realpath('/etc')


def test_symlink_into_blocked_tree_is_blocked(tmp_path) -> None:
    link = tmp_path / 'innocent'
    link.symlink_to('/proc/self')
    assert classify(link) is DirectoryClass.BLOCKED
    with pytest.raises(PolicyError) as exc:
        authorize_share(str(link), READ_ONLY, prompter=FakePrompter(['yes']))
    assert exc.value.reason is PolicyReason.SYSTEM_CRITICAL


def test_symlink_into_sensitive_tree_needs_confirmation(tmp_path) -> None:
    link = tmp_path / 'config'
    link.symlink_to('/etc')
    assert classify(link) is DirectoryClass.SENSITIVE
    with pytest.raises(PolicyError) as exc:
        authorize_share(str(link), READ_ONLY)
    assert exc.value.reason is PolicyReason.NEEDS_CONFIRMATION


def test_unsafe_characters_are_refused(tmp_path) -> None:
    odd = tmp_path / 'a"b'
    odd.mkdir()
    with pytest.raises(PolicyError) as exc:
        authorize_share(str(odd))
    assert exc.value.reason is PolicyReason.UNSAFE_PATH


def test_unusual_characters_warn_or_confirm(tmp_path) -> None:
    odd = tmp_path / 'proj+1'
    odd.mkdir()
    # Direct mode: logged and accepted.
    assert authorize_share(str(odd)) == os.path.realpath(odd)
    # Interactive: the operator decides.
    prompter = FakePrompter([False])
    with pytest.raises(PolicyError) as exc:
        authorize_share(str(odd), prompter=prompter)
    assert exc.value.reason is PolicyReason.DECLINED
    assert prompter.asked[0][0] == 'confirm'
