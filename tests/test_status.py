# tests/test_status.py
import pytest
from datetime import datetime, timezone

from replicator.sync.models import ReplicationConfig, ReplicationItem, RunOutcome
from replicator.sync.status import ReplicationStatus, Status


def test_status_lifecycle():
    status = ReplicationStatus('test')
    assert status.status is Status.PENDING
    assert status.duration == 0.0

    status.start()
    assert status.is_running
    status.record_push(10)
    status.record_push()
    status.record_push_failure()
    status.finish(Status.ITEM_FAILURES_PRESENT)

    assert status.status is Status.ITEM_FAILURES_PRESENT
    assert status.push_count == 2
    assert status.push_bytes == 10
    assert status.push_fail_count == 1
    assert status.end_time >= status.start_time
    assert not status.is_running


def test_terminal_status_is_set_once():
    status = ReplicationStatus('test')
    status.start()
    status.finish(Status.CANCELED)

    with pytest.raises(ValueError):
        status.finish(Status.SUCCESS)
    with pytest.raises(ValueError):
        status.start()


def test_finish_requires_terminal_status():
    status = ReplicationStatus('test')
    status.start()
    with pytest.raises(ValueError):
        status.finish(Status.RUNNING)


def test_status_to_dict():
    status = ReplicationStatus('test')
    status.start()
    status.finish(Status.SUCCESS)

    data = status.to_dict()
    assert data['replication'] == 'test'
    assert data['status'] == 'success'
    assert data['end_time'] is not None


def test_run_outcome_requires_finished_run(replication_config):
    status = ReplicationStatus('test')
    status.start()
    with pytest.raises(ValueError):
        RunOutcome.from_status(replication_config, status)

    status.record_push(4)
    status.finish(Status.SUCCESS)
    outcome = RunOutcome.from_status(replication_config, status)
    assert outcome.config_id == '1234'
    assert outcome.push_bytes == 4
    assert outcome.end_time == status.end_time


def test_item_failure_counting():
    item = ReplicationItem('1', 'a', 'local', 'remote')
    assert item.failed().failed().failure_count == 2
    assert item.failed().failed().failed(restart_count=True).failure_count == 1
    assert item.failed().succeeded(None, None).failure_count == 0


def test_replication_config_from_dict():
    config = ReplicationConfig.from_dict({
        'id': 7, 'name': 'nightly', 'source': 'local', 'destination': 'remote',
        'metadata_only': True
    })
    assert config.id == '7'
    assert config.failure_retry_count == 5
    assert config.filter == ""
    assert config.metadata_only

    with pytest.raises(ValueError):
        ReplicationConfig.from_dict({'id': '1', 'name': 'x', 'source': 'local'})
    with pytest.raises(ValueError):
        ReplicationConfig.from_dict({
            'id': '1', 'name': 'x', 'source': 'a', 'destination': 'b', 'failure_retry_count': 0
        })


def test_succeeded_and_failed_clear_updated_at():
    stamped = datetime(2020, 1, 1, tzinfo=timezone.utc)
    item = ReplicationItem('1', 'a', 'local', 'remote', updated_at=stamped)

    assert item.failed().updated_at is None
    assert item.succeeded(stamped, None).updated_at is None


def test_failed_run_is_not_a_completed_run(replication_config):
    status = ReplicationStatus('test')
    status.start()
    status.fail(RuntimeError("disk full"))

    assert status.status is Status.ERROR
    assert not status.is_running
    assert status.to_dict()['error'] == "disk full"
    with pytest.raises(ValueError):
        RunOutcome.from_status(replication_config, status)
    with pytest.raises(ValueError):
        status.fail(RuntimeError("again"))


def test_finish_rejects_error_status():
    status = ReplicationStatus('test')
    status.start()
    with pytest.raises(ValueError):
        status.finish(Status.ERROR)
