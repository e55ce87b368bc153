# tests/test_runner.py
import pytest
from datetime import datetime, timedelta, timezone

from config.config_loader import ConfigLoader
from replicator.adapters.exceptions import AdapterError
from replicator.adapters.factory import create_adapter
from replicator.adapters.interfaces import MetadataRecord
from replicator.sync.runner import ReplicationRunner
from replicator.sync.status import Status


class ClosingFactory:
    """Wraps the site factory and remembers every adapter it created"""

    def __init__(self):
        self.adapters = []

    def __call__(self, site):
        adapter = create_adapter(site)
        adapter.closed = False
        original_close = adapter.close

        def close():
            adapter.closed = True
            original_close()

        adapter.close = close
        self.adapters.append(adapter)
        return adapter


@pytest.fixture
def config(config_file):
    return ConfigLoader(config_file).load()


@pytest.fixture
def factory():
    return ClosingFactory()


@pytest.fixture
def runner(config, item_store, run_history, factory):
    return ReplicationRunner(config, item_store, run_history, adapter_factory=factory)


def _seed(config, *ids):
    local = create_adapter(config['sites'][0])
    for record_id in ids:
        local.add_record(MetadataRecord(
            id=record_id,
            modified=datetime.now(timezone.utc) - timedelta(minutes=1),
            attributes={'title': record_id}
        ))


def test_run_all_skips_suspended(runner, config, factory):
    _seed(config, 'a', 'b')

    results = runner.run_all()

    assert list(results) == ['local-to-remote']
    assert results['local-to-remote'].status is Status.SUCCESS
    assert results['local-to-remote'].push_count == 2
    assert all(adapter.closed for adapter in factory.adapters)
    assert runner.status('local-to-remote') is results['local-to-remote']
    assert not runner.is_running('local-to-remote')


def test_run_named_replication(runner, config):
    results = runner.run_all(['remote-to-local'])
    assert list(results) == ['remote-to-local']
    assert results['remote-to-local'].status is Status.SUCCESS


def test_unknown_replication(runner):
    with pytest.raises(KeyError):
        runner.run_all(['missing'])
    with pytest.raises(KeyError):
        runner.plan('missing')


def test_cancel_without_run(runner):
    assert not runner.cancel('local-to-remote')
    assert runner.status('local-to-remote') is None


def test_plan(runner, config, item_store):
    plan = runner.plan('local-to-remote')
    assert plan == {
        'replication': 'local-to-remote',
        'watermark': None,
        'failed_ids': [],
        'filter': '<all records>'
    }

    _seed(config, 'a')
    runner.run_all()
    plan = runner.plan('local-to-remote')
    assert plan['watermark'] is not None
    assert plan['filter'].startswith('modified > ')


def test_cancel_running_replication(runner, config):
    _seed(config, 'a', 'b')
    replication = runner.get_replication('local-to-remote')
    original = runner.item_store.save_item
    calls = []

    def save_and_cancel(item):
        calls.append(item.metadata_id)
        original(item)
        assert runner.is_running('local-to-remote')
        assert runner.cancel('local-to-remote')

    runner.item_store.save_item = save_and_cancel
    status = runner.run(replication)

    assert status.status is Status.CANCELED
    assert calls == ['a']


def test_fatal_error_is_reported_as_stopped(config, item_store, run_history, factory):
    config['replications'][0]['filter'] = "no_such_column = 1"
    runner = ReplicationRunner(config, item_store, run_history, adapter_factory=factory)

    with pytest.raises(AdapterError):
        runner.run(runner.get_replication('local-to-remote'))

    status = runner.status('local-to-remote')
    assert status.status is Status.ERROR
    assert not runner.is_running('local-to-remote')
    assert all(adapter.closed for adapter in factory.adapters)
    assert run_history.get_run_outcomes('local-to-remote') == []
