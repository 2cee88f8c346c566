"""End-to-end tests for the vm-selector command."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from ai_vm.cli import main
from ai_vm.detect import SourceReference

from conftest import FakePrompter


@pytest.fixture
def runner(tmp_path, monkeypatch, no_host_probes):
    home = tmp_path / 'home'
    home.mkdir()
    work = tmp_path / 'work'
    work.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.chdir(work)
    monkeypatch.setattr(
        'ai_vm.cli.resolve_source',
        lambda settings: SourceReference(
            f'git+file://{work}', 'cwd_flake', work
        ),
    )
    return CliRunner()


def test_help_exits_zero() -> None:
    for flag in ['--help', '-h']:
        result = CliRunner().invoke(main, [flag])
        assert result.exit_code == 0
        assert '--share-claude-auth' in result.output
        assert 'SECURITY NOTES' in result.output
        assert '/boot' in result.output


def test_dry_run_prints_expression(runner) -> None:
    result = runner.invoke(
        main, ['--ram', '8', '--cpu', '4', '--storage', '100', '--dry-run']
    )
    assert result.exit_code == 0, result.output
    assert 'Starting VM: 8GB RAM, 4 CPU cores, 100GB storage' in result.output
    assert 'Ports: 2222→22, 3001→3001, 9080→9080' in result.output
    assert 'makeCustomVM 8 4 100 false' in result.output
    assert not Path('start-ai-vm.sh').exists()


def test_custom_ports_dry_run(runner) -> None:
    result = runner.invoke(
        main,
        [
            '-r', '8', '-c', '4', '-s', '50',
            '--ssh-port', '2300', '--no-default-ports', '-p', '8080:80',
            '--dry-run',
        ],
    )
    assert result.exit_code == 0, result.output
    assert 'Ports: 2300→22, 8080→80' in result.output


def test_missing_share_fails_before_build(runner, tmp_path, monkeypatch) -> None:
    def no_build(*args, **kwargs):
        raise AssertionError('build must not start')

    monkeypatch.setattr('ai_vm.cli.BuildInvoker', no_build)
    result = runner.invoke(main, ['--share-rw', str(tmp_path / 'does-not-exist')])
    assert result.exit_code == 1
    assert 'does not exist' in result.output


def test_sensitive_share_fails_in_direct_mode(runner) -> None:
    result = runner.invoke(
        main, ['-r', '8', '-c', '4', '-s', '50', '--share-ro', '/etc']
    )
    assert result.exit_code == 1
    assert 'requires interactive confirmation' in result.output


def test_invalid_number(runner) -> None:
    result = runner.invoke(main, ['-r', 'lots', '-c', '4', '-s', '50'])
    assert result.exit_code == 1
    assert "RAM must be a positive integer. Got: 'lots'" in result.output


@pytest.mark.parametrize(
    'argv', [['--bogus'], ['--ram'], ['-r', '4', 'stray']]
)
def test_usage_errors_exit_one(runner, argv) -> None:
    result = runner.invoke(main, argv)
    assert result.exit_code == 1
    assert 'Usage:' in result.output


def test_missing_config_file(runner, tmp_path) -> None:
    result = runner.invoke(main, ['--config', str(tmp_path / 'nope.toml')])
    assert result.exit_code == 1
    assert 'Settings file not found' in result.output


def test_interactive_cancel_exits_zero(runner, monkeypatch) -> None:
    monkeypatch.setattr('ai_vm.cli.Prompter', lambda: FakePrompter([None]))
    result = runner.invoke(main, [])
    assert result.exit_code == 0
    assert 'Cancelled.' in result.output


def test_full_run_writes_launcher_and_chains(runner, monkeypatch) -> None:
    built = []
    chained = []

    class FakeInvoker:
        def __init__(self, record, source, vm_dir):
            built.append((record.vm_name, vm_dir))

        def run(self):
            return None

    monkeypatch.setattr('ai_vm.cli.BuildInvoker', FakeInvoker)
    monkeypatch.setattr('ai_vm.cli.chain_into', chained.append)
    result = runner.invoke(
        main, ['-r', '8', '-c', '4', '-s', '50', '--name', 'demo']
    )
    assert result.exit_code == 0, result.output
    launcher = Path.cwd() / 'start-demo.sh'
    assert built == [('demo', Path.cwd())]
    assert launcher.is_file()
    assert 'To restart this VM later, run: ./start-demo.sh' in result.output
    assert chained == [launcher]


def test_no_exec_skips_chaining(runner, monkeypatch) -> None:
    chained = []

    class FakeInvoker:
        def __init__(self, *args):
            pass

        def run(self):
            return None

    monkeypatch.setattr('ai_vm.cli.BuildInvoker', FakeInvoker)
    monkeypatch.setattr('ai_vm.cli.chain_into', chained.append)
    result = runner.invoke(main, ['-r', '8', '-c', '4', '-s', '50', '--no-exec'])
    assert result.exit_code == 0, result.output
    assert chained == []
    assert Path('start-ai-vm.sh').is_file()
