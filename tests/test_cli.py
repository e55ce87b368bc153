# tests/test_cli.py
from datetime import datetime, timedelta, timezone

import pytest
import yaml
from click.testing import CliRunner

from replicator.adapters.interfaces import MetadataRecord
from replicator.adapters.sqlite_catalog import SQLiteCatalogAdapter
from replicator.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def seeded_config(config_file):
    with open(config_file) as f:
        config = yaml.safe_load(f)
    local = SQLiteCatalogAdapter(config['sites'][0]['url'], name='local')
    local.add_record(MetadataRecord(
        id='a',
        modified=datetime.now(timezone.utc) - timedelta(minutes=1),
        attributes={'title': 'a'}
    ))
    return config_file


def test_run(runner, seeded_config):
    result = runner.invoke(cli, ['run', '-c', seeded_config, '--no-progress'])

    assert result.exit_code == 0, result.output
    assert 'local-to-remote: success (pushed 1, failed 0' in result.output
    assert 'remote-to-local' not in result.output


def test_run_unknown_replication(runner, config_file):
    result = runner.invoke(cli, ['run', '-c', config_file, '-n', 'missing', '--no-progress'])

    assert result.exit_code == 1
    assert 'Unknown replication' in result.output


def test_plan(runner, seeded_config):
    result = runner.invoke(cli, ['plan', '-c', seeded_config, '-n', 'local-to-remote'])

    assert result.exit_code == 0, result.output
    assert 'Watermark: none (full sync)' in result.output
    assert 'Filter: <all records>' in result.output


def test_report(runner, seeded_config, tmp_path):
    runner.invoke(cli, ['run', '-c', seeded_config, '--no-progress'])

    result = runner.invoke(cli, ['report', '-c', seeded_config])
    assert result.exit_code == 0, result.output
    assert 'Runs: 1' in result.output

    output = tmp_path / 'report.json'
    result = runner.invoke(cli, ['report', '-c', seeded_config, '-o', str(output)])
    assert result.exit_code == 0
    assert output.exists()


def test_invalid_config(runner, tmp_path):
    path = tmp_path / 'broken.yaml'
    path.write_text('storage: {}\n')

    result = runner.invoke(cli, ['run', '-c', str(path)])

    assert result.exit_code == 1
    assert 'Could not load configuration' in result.output
