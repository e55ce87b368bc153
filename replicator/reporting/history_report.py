from datetime import datetime, timezone
import sqlite3
from typing import Dict, Any, List
import json
import logging

import numpy as np
import pandas as pd

from ..sync.status import Status, WATERMARK_STATUSES

logger = logging.getLogger(__name__)


class HistoryReporter:
    """Generates reports from the recorded replication runs"""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def generate_report(self) -> Dict[str, Any]:
        """Generate a summary of every replication's run history"""
        with sqlite3.connect(self.db_path) as conn:
            runs = self._load_runs(conn)

        return {
            'generated_at': datetime.now(timezone.utc).isoformat(),
            'statistics': self._get_overall_statistics(runs),
            'status_distribution': self._get_status_distribution(runs),
            'replications': self._get_replication_summaries(runs)
        }

    def _load_runs(self, conn: sqlite3.Connection) -> pd.DataFrame:
        try:
            df = pd.read_sql_query('''
                SELECT config_name, start_time, end_time, status,
                       push_count, push_fail_count, push_bytes
                FROM run_history
                ORDER BY id
            ''', conn)
        except Exception as e:
            logger.error(f"Could not read run history from {self.db_path}: {str(e)}")
            raise

        df['start_time'] = pd.to_datetime(df['start_time'], utc=True, format='ISO8601')
        df['end_time'] = pd.to_datetime(df['end_time'], utc=True, format='ISO8601')
        df['duration'] = (df['end_time'] - df['start_time']).dt.total_seconds()
        return df

    def _get_overall_statistics(self, runs: pd.DataFrame) -> Dict[str, Any]:
        durations = runs['duration'].to_numpy()
        return {
            'total_runs': int(len(runs)),
            'replications': int(runs['config_name'].nunique()),
            'records_pushed': int(runs['push_count'].sum()),
            'push_failures': int(runs['push_fail_count'].sum()),
            'bytes_pushed': int(runs['push_bytes'].sum()),
            'average_duration': float(np.mean(durations)) if len(durations) else 0.0,
            'p95_duration': float(np.percentile(durations, 95)) if len(durations) else 0.0
        }

    def _get_status_distribution(self, runs: pd.DataFrame) -> Dict[str, int]:
        return {status: int(count) for status, count in runs['status'].value_counts().items()}

    def _get_replication_summaries(self, runs: pd.DataFrame) -> List[Dict[str, Any]]:
        summaries = []
        for name, group in runs.groupby('config_name', sort=True):
            completed = group[group['status'].isin([s.value for s in WATERMARK_STATUSES])]
            last_success = completed['end_time'].max() if len(completed) else None
            summaries.append({
                'replication': name,
                'runs': int(len(group)),
                'last_status': group['status'].iloc[-1],
                'last_success': last_success.isoformat() if last_success is not None else None,
                'records_pushed': int(group['push_count'].sum()),
                'push_failures': int(group['push_fail_count'].sum()),
                'bytes_pushed': int(group['push_bytes'].sum()),
                'success_rate': float(np.mean(group['status'] == Status.SUCCESS.value)),
                'average_duration': float(np.mean(group['duration']))
            })
        return summaries

    def save_report(self, report: Dict[str, Any], output_path: str) -> None:
        """Save report to file"""
        with open(output_path, 'w') as f:
            if output_path.endswith('.json'):
                json.dump(report, f, indent=2)
            else:
                f.write(self.format_report(report))

    def format_report(self, report: Dict[str, Any]) -> str:
        """Format report as readable text"""
        stats = report['statistics']
        lines = [
            "Replication History Report",
            f"Generated: {report['generated_at']}",
            "\nOverall Statistics:",
            f"  Runs: {stats['total_runs']}",
            f"  Replications: {stats['replications']}",
            f"  Records Pushed: {stats['records_pushed']}",
            f"  Push Failures: {stats['push_failures']}",
            f"  Bytes Pushed: {stats['bytes_pushed']}",
            f"  Average Duration: {stats['average_duration']:.2f} seconds",
            "\nStatus Distribution:"
        ]

        for status, count in report['status_distribution'].items():
            lines.append(f"  {status}: {count}")

        lines.append("\nReplications:")
        for summary in report['replications']:
            lines.append(
                f"  {summary['replication']}: "
                f"{summary['runs']} runs, "
                f"last status: {summary['last_status']}, "
                f"last success: {summary['last_success'] or 'never'}, "
                f"success rate: {summary['success_rate']:.0%}"
            )

        return "\n".join(lines)
