# tests/test_reporting.py
import json
from datetime import datetime, timedelta, timezone

import pytest

from replicator.reporting.history_report import HistoryReporter
from replicator.sync.models import RunOutcome
from replicator.sync.status import Status

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def populated_history(run_history):
    runs = [
        ('nightly', Status.SUCCESS, 10, 0, 1000, 60),
        ('nightly', Status.ITEM_FAILURES_PRESENT, 4, 2, 400, 120),
        ('nightly', Status.CONNECTION_LOST, 1, 0, 0, 30),
        ('ingest', Status.CANCELED, 0, 0, 0, 5),
    ]
    for i, (name, status, pushed, failed, num_bytes, seconds) in enumerate(runs):
        start = START + timedelta(hours=i)
        run_history.add_run_outcome(RunOutcome(
            config_id=name, config_name=name, start_time=start,
            end_time=start + timedelta(seconds=seconds), status=status,
            push_count=pushed, push_fail_count=failed, push_bytes=num_bytes
        ))
    return run_history


def test_generate_report(populated_history, temp_db_path):
    report = HistoryReporter(temp_db_path).generate_report()

    stats = report['statistics']
    assert stats['total_runs'] == 4
    assert stats['replications'] == 2
    assert stats['records_pushed'] == 15
    assert stats['push_failures'] == 2
    assert stats['bytes_pushed'] == 1400
    assert stats['average_duration'] == pytest.approx(53.75)
    assert report['status_distribution'] == {
        'success': 1, 'item_failures_present': 1, 'connection_lost': 1, 'canceled': 1
    }

    ingest, nightly = report['replications']
    assert ingest['replication'] == 'ingest'
    assert ingest['last_success'] is None
    assert nightly['runs'] == 3
    assert nightly['last_status'] == 'connection_lost'
    assert nightly['last_success'] == (START + timedelta(hours=1, seconds=120)).isoformat()
    assert nightly['success_rate'] == pytest.approx(1 / 3)


def test_empty_history(run_history, temp_db_path):
    report = HistoryReporter(temp_db_path).generate_report()
    assert report['statistics']['total_runs'] == 0
    assert report['statistics']['average_duration'] == 0.0
    assert report['replications'] == []


def test_save_report(populated_history, temp_db_path, tmp_path):
    reporter = HistoryReporter(temp_db_path)
    report = reporter.generate_report()

    json_path = tmp_path / 'report.json'
    reporter.save_report(report, str(json_path))
    assert json.loads(json_path.read_text())['statistics']['total_runs'] == 4

    text_path = tmp_path / 'report.txt'
    reporter.save_report(report, str(text_path))
    text = text_path.read_text()
    assert 'Replication History Report' in text
    assert 'nightly: 3 runs, last status: connection_lost' in text
    assert 'ingest: 1 runs, last status: canceled, last success: never' in text
