# replicator/web/app.py
from flask import Flask, jsonify, request
import threading
import logging

from ..sync.models import SyncContext
from ..sync.runner import ReplicationRunner

logger = logging.getLogger(__name__)

app = Flask(__name__)


def init_app(runner: ReplicationRunner) -> Flask:
    """Attach the runner whose replications the API exposes"""
    app.runner = runner
    app.run_threads = {}
    app.start_lock = threading.Lock()
    return app


def _run_in_background(runner: ReplicationRunner, name: str, context: SyncContext) -> None:
    try:
        runner.run(runner.get_replication(name), context)
    except Exception as e:
        logger.error(f"Replication {name} failed: {str(e)}")


@app.route('/replications')
def list_replications():
    """List configured replications with their latest status"""
    runner = app.runner
    result = []
    for replication in runner.replications:
        status = runner.status(replication.name)
        result.append({
            'name': replication.name,
            'source': replication.source,
            'destination': replication.destination,
            'suspended': replication.suspended,
            'running': runner.is_running(replication.name),
            'status': status.to_dict() if status else None
        })
    return jsonify(result)


@app.route('/replications/<name>/status')
def replication_status(name):
    """Progress of a running replication, or the result of its last run"""
    try:
        app.runner.get_replication(name)
    except KeyError:
        return jsonify({'error': f"Unknown replication: {name}"}), 404

    status = app.runner.status(name)
    if status is None:
        return jsonify({'replication': name, 'status': None})
    return jsonify(status.to_dict())


@app.route('/replications/<name>/sync', methods=['POST'])
def start_sync(name):
    """Start a replication run in a background thread"""
    runner = app.runner
    try:
        runner.get_replication(name)
    except KeyError:
        return jsonify({'error': f"Unknown replication: {name}"}), 404

    subject = (request.get_json(silent=True) or {}).get('subject') or request.remote_addr or 'anonymous'
    # at most one live run thread per replication
    with app.start_lock:
        thread = app.run_threads.get(name)
        if runner.is_running(name) or (thread is not None and thread.is_alive()):
            return jsonify({'error': f"Replication {name} is already running"}), 409

        thread = threading.Thread(
            target=_run_in_background,
            args=(runner, name, SyncContext(subject=subject)),
            name=f"replication-{name}",
            daemon=True
        )
        app.run_threads[name] = thread
        thread.start()
    logger.info(f"Started replication {name} for {subject}")
    return jsonify({'replication': name, 'started': True}), 202


@app.route('/replications/<name>/cancel', methods=['POST'])
def cancel_sync(name):
    """Ask a running replication to stop"""
    if not app.runner.cancel(name):
        return jsonify({'replication': name, 'canceled': False}), 409
    return jsonify({'replication': name, 'canceled': True})
