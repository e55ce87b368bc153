# tests/test_config.py
import pytest
import yaml

from config.config_loader import ConfigLoader


def _read(path):
    with open(path) as f:
        return yaml.safe_load(f)


def _write(tmp_path, config):
    path = tmp_path / 'custom.yaml'
    with open(path, 'w') as f:
        yaml.safe_dump(config, f)
    return str(path)


def test_default_config_is_valid():
    config = ConfigLoader().load()

    names = [r['name'] for r in config['replications']]
    assert names == ['local-to-remote', 'hadoop-ingest']
    assert {s['type'] for s in config['sites']} == {'sqlite', 'webhdfs'}


def test_load_custom_config(config_file):
    config = ConfigLoader(config_file).load()
    assert config['storage']['path'].endswith('replication.db')
    assert config['replications'][1]['suspended'] is True


def test_env_overrides(config_file, monkeypatch):
    monkeypatch.setenv('REPLICATOR_DB_PATH', '/tmp/other.db')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    monkeypatch.setenv('REPLICATOR_WEB_PORT', '9090')

    config = ConfigLoader(config_file).load()

    assert config['storage']['path'] == '/tmp/other.db'
    assert config['logging']['root']['level'] == 'DEBUG'
    assert config['web']['port'] == 9090


def test_invalid_env_value_is_ignored(config_file, monkeypatch):
    monkeypatch.setenv('REPLICATOR_WEB_PORT', 'not-a-port')
    assert ConfigLoader(config_file).load()['web']['port'] == 8080


def test_missing_section(tmp_path, config_file):
    config = _read(config_file)
    del config['sites']
    with pytest.raises(ValueError, match='sites'):
        ConfigLoader(_write(tmp_path, config)).load()


@pytest.mark.parametrize('change, message', [
    (lambda c: c['replications'][0].update(source='nowhere'), 'unknown source'),
    (lambda c: c['replications'][0].update(destination='local'), 'same site'),
    (lambda c: c['replications'][1].update(name='local-to-remote'), 'Duplicate'),
    (lambda c: c['replications'][0].update(failure_retry_count=0), 'failure_retry_count'),
    (lambda c: c['sites'][0].update(type='ftp'), 'Unknown type'),
    (lambda c: c['sites'][0].pop('url'), 'url'),
])
def test_invalid_replications(tmp_path, config_file, change, message):
    config = _read(config_file)
    change(config)
    with pytest.raises(ValueError, match=message):
        ConfigLoader(_write(tmp_path, config)).load()
