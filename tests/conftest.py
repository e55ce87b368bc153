# tests/conftest.py
import pytest
import yaml
from unittest.mock import Mock

from replicator.adapters.interfaces import NodeAdapter, QueryResponse
from replicator.adapters.sqlite_catalog import SQLiteCatalogAdapter
from replicator.storage.base import ItemStore, RunHistory
from replicator.storage.sqlite_storage import SQLiteItemStore, SQLiteRunHistory
from replicator.sync.models import ReplicationConfig


@pytest.fixture
def temp_db_path(tmp_path):
    return str(tmp_path / 'replication.db')


@pytest.fixture
def item_store(temp_db_path):
    store = SQLiteItemStore(temp_db_path)
    yield store
    store.cleanup()


@pytest.fixture
def run_history(temp_db_path):
    return SQLiteRunHistory(temp_db_path)


@pytest.fixture
def source_catalog(tmp_path):
    return SQLiteCatalogAdapter(str(tmp_path / 'source.db'), name='local')


@pytest.fixture
def destination_catalog(tmp_path):
    return SQLiteCatalogAdapter(str(tmp_path / 'destination.db'), name='remote')


@pytest.fixture
def replication_config():
    return ReplicationConfig(
        id='1234',
        name='test',
        source='local',
        destination='remote',
        filter="title like '%'",
        failure_retry_count=5
    )


@pytest.fixture
def source():
    adapter = Mock(spec=NodeAdapter)
    adapter.get_system_name.return_value = 'local'
    adapter.is_available.return_value = True
    adapter.query.return_value = QueryResponse([])
    return adapter


@pytest.fixture
def destination():
    adapter = Mock(spec=NodeAdapter)
    adapter.get_system_name.return_value = 'remote'
    adapter.is_available.return_value = True
    adapter.exists.return_value = True
    return adapter


@pytest.fixture
def persistent_store():
    store = Mock(spec=ItemStore)
    store.get_failure_list.return_value = []
    store.get_item.return_value = None
    return store


@pytest.fixture
def history():
    mock_history = Mock(spec=RunHistory)
    mock_history.get_run_outcomes.return_value = []
    return mock_history


@pytest.fixture
def config_file(tmp_path):
    """A complete configuration with two catalog sites inside tmp_path"""
    config = {
        'storage': {'path': str(tmp_path / 'replication.db')},
        'sites': [
            {'name': 'local', 'type': 'sqlite', 'url': str(tmp_path / 'local.db')},
            {'name': 'remote', 'type': 'sqlite', 'url': str(tmp_path / 'remote.db')},
        ],
        'replications': [
            {'id': '1', 'name': 'local-to-remote', 'source': 'local', 'destination': 'remote'},
            {'id': '2', 'name': 'remote-to-local', 'source': 'remote', 'destination': 'local',
             'suspended': True},
        ],
        'web': {'host': '127.0.0.1', 'port': 8080},
        'logging': {
            'version': 1,
            'disable_existing_loggers': False,
            'handlers': {'console': {'class': 'logging.StreamHandler', 'level': 'WARNING'}},
            'root': {'level': 'INFO', 'handlers': ['console']},
        },
    }
    path = tmp_path / 'config.yaml'
    with open(path, 'w') as f:
        yaml.safe_dump(config, f)
    return str(path)
