# errors.py - HZREFRESH Error Taxonomy and Cleanup Sink
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Collects non-fatal failures, closes remote sessions and writes the error report

import csv
import datetime
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import rpfunctions as rpf

logger = logging.getLogger(__name__)

#==============================================================================
# EXCEPTIONS
#==============================================================================

class RefreshError(Exception):
    """Base class for every failure the pool refresh knows how to classify"""


class ConnectivityError(RefreshError):
    """Endpoint unreachable - retried by asking for a new endpoint"""


class SessionExpiredError(ConnectivityError):
    """The remote side no longer accepts an established session"""


class AuthenticationError(RefreshError):
    """Credentials rejected - retried by asking for new credentials"""


class NotFoundError(RefreshError):
    """A required remote object does not exist"""


class NoCandidatesError(NotFoundError):
    """A selection step found nothing to choose from"""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f'No {category} found')


class OperationError(RefreshError):
    """A specific remote call failed"""


class UnexpectedError(RefreshError):
    """Anything uncategorized - always fatal"""


class PollTimeoutError(RefreshError):
    """A bounded poll gave up before its condition was met"""


class WorkflowAborted(RefreshError):
    """The operator declined to continue - a controlled stop, not a failure"""

#==============================================================================
# ERROR RECORDS
#==============================================================================

REPORT_FIELDS = ['Phase', 'Detail', 'Timestamp']


@dataclass(frozen=True)
class ErrorRecord:
    phase: str
    detail: str
    timestamp: datetime.datetime = field(default_factory=datetime.datetime.now)

    def as_row(self) -> dict:
        return {
            'Phase': self.phase,
            'Detail': self.detail,
            'Timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }


class ErrorSink:
    """
    Append-only accumulator for failures recorded during a run.

    finalize() closes both remote sessions and surfaces the records. It is
    safe to call from every exit path; only the first call does anything.
    """

    def __init__(self, report_path: Optional[str] = None, write_output=None):
        self.records: List[ErrorRecord] = []
        self.report_path = report_path or rpf.error_report
        self.finalized = False
        self._write = write_output or rpf.write_output

    def __len__(self):
        return len(self.records)

    def record(self, phase: str, detail) -> ErrorRecord:
        """Append a failure and warn the operator immediately"""
        entry = ErrorRecord(phase, str(detail))
        self.records.append(entry)
        self._write(f'WARNING: [{phase}] {entry.detail}')
        return entry

    def extend(self, records: List[ErrorRecord]):
        """Merge records produced elsewhere (already reported to the operator)"""
        self.records.extend(records)

    def finalize(self, *sessions) -> bool:
        """
        Close every session passed in and report accumulated errors

        :param sessions: RemoteSession objects (None for ones never established)
        :return: True if the run finished without recorded errors
        """
        if self.finalized:
            return not self.records
        self.finalized = True

        for session in sessions:
            if session is None:
                continue
            try:
                session.close()
            except Exception as e:
                # A failed logout must not hide the errors collected so far
                logger.debug(f'Error closing {session.system} session: {e}')
                self._write(f'WARNING: could not close {session.system} session to {session.endpoint}: {e}')

        if not self.records:
            self._write('Pool refresh finished with no recorded errors')
            return True

        self._write(f'Pool refresh recorded {len(self.records)} error(s):')
        for entry in self.records:
            self._write(f'  {entry.phase}: {entry.detail}')
        try:
            self.write_report()
            self._write(f'Error report written to {self.report_path}')
        except OSError as e:
            self._write(f'WARNING: could not write error report {self.report_path}: {e}')
        return False

    def write_report(self):
        with open(self.report_path, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
            writer.writeheader()
            for entry in self.records:
                writer.writerow(entry.as_row())
