# workflow.py - HZREFRESH Pool Refresh Workflow
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Rebuilds every desktop of a Horizon manual pool from a vCenter template

"""
Pool Refresh Workflow

Phases, in order:
  1. Connect vCenter
  2. Connect Horizon
  3. Select pool (single pool still needs a Y/N confirmation)
  4. Disable pool                       - fatal on failure
  5. Capture placement, delete machines - recorded, operator verifies
  6. Gather clone parameters
  7. Clone desktops                     - per machine, recorded
  8. Wait for guest customization       - last clone only
  9. Add desktops to pool               - recorded, operator adds manually
 10. Wait for Horizon check-in
 11. Shut down for reconfiguration      - per machine, recorded
 12. Set disks independent-nonpersistent - per machine, recorded
 13. Power on                           - per machine, recorded
 14. Enable pool                        - recorded
 15. Cleanup                            - always

The run is not idempotent. Running it twice against the same pool builds
two batches of desktops, and a failed run has to be reconciled by hand.
"""

import random
import string
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import rpfunctions as rpf
from Tools.choices import Candidate, confirm, pause, resolve
from Tools.errors import (ConnectivityError, ErrorRecord, ErrorSink, NotFoundError,
                          OperationError, RefreshError, UnexpectedError, WorkflowAborted)
from Tools.horizon import AVAILABLE_STATE
from Tools.polling import POLL_INTERVAL, poll_until
from Tools.sessions import Credential, RemoteSession, SessionManager
from Tools.vcenter import POWERED_OFF

logger = logging.getLogger(__name__)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

DEFAULT_PREFIX = 'HZ-'
NAME_SUFFIX_LENGTH = 7
NAME_ALPHABET = string.ascii_uppercase + string.digits
MAX_SUGGESTED_COUNT = 20
MAX_HOSTNAME_LENGTH = 15  # Windows NetBIOS limit applied by guest customization

PHASE_CONNECT_COMPUTE = 'ConnectCompute'
PHASE_CONNECT_BROKER = 'ConnectBroker'
PHASE_SELECT_POOL = 'SelectPool'
PHASE_DISABLE_POOL = 'DisablePool'
PHASE_DELETE_EXISTING = 'CaptureAndDeleteExisting'
PHASE_GATHER = 'GatherCloneParameters'
PHASE_CLONE = 'CloneDesktops'
PHASE_WAIT_CUSTOMIZATION = 'WaitForCustomization'
PHASE_ADD_TO_POOL = 'AddToPool'
PHASE_WAIT_CHECKIN = 'WaitForCheckIn'
PHASE_SHUTDOWN = 'ShutdownForReconfig'
PHASE_DISK_MODE = 'SetDiskPersistence'
PHASE_POWER_ON = 'PowerOn'
PHASE_ENABLE_POOL = 'EnablePool'
PHASE_CLEANUP = 'Cleanup'

# Failures a per-machine step records and moves past
ITEM_ERRORS = (OperationError, ConnectivityError, NotFoundError)

# Returned for a poll check that could not reach the remote system
_CHECK_FAILED = object()

#==============================================================================
# DATA TYPES
#==============================================================================

@dataclass
class RefreshSettings:
    vcenter: str = ''
    vcenter_credential: Optional[Credential] = None
    horizon: str = ''
    horizon_credential: Optional[Credential] = None
    name_prefix: str = DEFAULT_PREFIX
    machine_count: int = 0  # 0 = ask the operator
    poll_interval: float = POLL_INTERVAL
    max_poll_minutes: int = 0  # 0 = wait indefinitely
    report_path: Optional[str] = None
    dry_run: bool = False

    @classmethod
    def from_config(cls, **overrides) -> 'RefreshSettings':
        """Build settings from rpfunctions.config, then apply non-empty overrides"""
        settings = cls(
            vcenter=rpf.get_config_value('VCENTER', 'server'),
            horizon=rpf.get_config_value('HORIZON', 'server'),
            name_prefix=rpf.get_config_value('REFRESH', 'name_prefix', DEFAULT_PREFIX),
            machine_count=rpf.get_config_int('REFRESH', 'machine_count', 0),
            poll_interval=rpf.get_config_int('REFRESH', 'poll_interval', POLL_INTERVAL),
            max_poll_minutes=rpf.get_config_int('REFRESH', 'max_poll_minutes', 0),
            report_path=rpf.error_report,
        )
        for key, value in overrides.items():
            if value not in (None, ''):
                setattr(settings, key, value)
        settings.check_name_length()
        return settings

    def check_name_length(self) -> bool:
        """Warn when generated names are longer than a Windows hostname may be"""
        length = len(self.name_prefix) + NAME_SUFFIX_LENGTH
        if length <= MAX_HOSTNAME_LENGTH:
            return True
        rpf.write_output(f'WARNING: name prefix {self.name_prefix} gives {length}-character names; '
                         f'guest hostnames will be cut to {MAX_HOSTNAME_LENGTH} characters')
        return False


@dataclass
class WorkflowState:
    pool: Optional[Candidate] = None
    template: Optional[Candidate] = None
    customization_spec: Optional[Candidate] = None
    folder: Optional[Candidate] = None
    cluster: Optional[Candidate] = None
    datastore: Optional[Candidate] = None
    original_folder: Optional[Candidate] = None
    original_datastore: Optional[Candidate] = None
    machine_count: int = 0
    deleted_machines: List[str] = field(default_factory=list)
    new_machines: List[str] = field(default_factory=list)
    errors: ErrorSink = field(default_factory=ErrorSink)


@dataclass
class BatchResult:
    succeeded: list = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)


def fold_batch(phase: str, items: Iterable, action: Callable, write_output=None) -> BatchResult:
    """
    Apply action to each item, collecting successes and per-item failures

    A failing item is recorded and skipped; the rest of the batch still runs.

    :param phase: Phase name stamped on each ErrorRecord
    :param items: Machine names (or anything action accepts)
    :param action: Called once per item; its return value is kept for successes
    :return: BatchResult of (item, return value) pairs and ErrorRecords
    """
    write_output = write_output or rpf.write_output
    result = BatchResult()
    for item in items:
        try:
            value = action(item)
        except ITEM_ERRORS as e:
            entry = ErrorRecord(phase, f'{item}: {e}')
            write_output(f'WARNING: [{phase}] {entry.detail}')
            result.errors.append(entry)
            continue
        result.succeeded.append((item, value))
    return result


def generate_machine_name(prefix: str = DEFAULT_PREFIX, rng: random.Random = None) -> str:
    """Prefix plus seven random characters from A-Z and 0-9 (collisions are not checked)"""
    rng = rng or random.SystemRandom()
    return prefix + ''.join(rng.choice(NAME_ALPHABET) for _ in range(NAME_SUFFIX_LENGTH))

#==============================================================================
# WORKFLOW
#==============================================================================

class PoolRefreshWorkflow:
    """Drives one refresh of one pool from connect to cleanup"""

    def __init__(self, sessions: SessionManager, settings: RefreshSettings,
                 ask=None, write_output=None, sleep=time.sleep,
                 name_factory: Callable[[str], str] = generate_machine_name):
        self.sessions = sessions
        self.settings = settings
        self.ask = ask or rpf.ask
        self.write_output = write_output or rpf.write_output
        self.sleep = sleep
        self.name_factory = name_factory
        self.state = WorkflowState(errors=ErrorSink(settings.report_path, self.write_output))
        self.compute_session: Optional[RemoteSession] = None
        self.broker_session: Optional[RemoteSession] = None
        self.phase = PHASE_CONNECT_COMPUTE

    #--------------------------------------------------------------------------
    # Helpers
    #--------------------------------------------------------------------------

    @property
    def errors(self) -> ErrorSink:
        return self.state.errors

    def _enter(self, phase: str, message: str):
        self.phase = phase
        self.write_output(f'TASK: {message}')

    def _compute(self):
        """vCenter client, reconnecting first if the session expired"""
        return self.sessions.ensure_live(self.compute_session).client

    def _broker(self):
        """Horizon client, reconnecting first if the session expired"""
        return self.sessions.ensure_live(self.broker_session).client

    def _confirm(self, question: str) -> bool:
        return confirm(question, ask=self.ask, write_output=self.write_output)

    def _pause(self, message: str):
        pause(message, ask=self.ask)

    def _resolve(self, candidates, category, label=None) -> Candidate:
        return resolve(candidates, category, label=label, ask=self.ask, write_output=self.write_output)

    def _poll(self, fetch, predicate, description):
        """
        Wait for predicate(fetch()), treating a lost or expired session as "not yet"

        The next check goes through _compute()/_broker() again, which reconnects.
        """
        max_seconds = self.settings.max_poll_minutes * 60 or None

        def checked_fetch():
            try:
                return fetch()
            except ConnectivityError as e:
                self.write_output(f'WARNING: check of {description} failed, retrying: {e}')
                return _CHECK_FAILED

        return poll_until(checked_fetch,
                          lambda result: result is not _CHECK_FAILED and predicate(result),
                          interval=self.settings.poll_interval,
                          max_seconds=max_seconds,
                          description=description,
                          write_output=self.write_output,
                          sleep=self.sleep)

    #--------------------------------------------------------------------------
    # Entry point
    #--------------------------------------------------------------------------

    def run(self) -> int:
        """
        Run every phase, then cleanup

        :return: 0 on success or controlled abort, 1 on fatal failure
        """
        exit_code = 0
        try:
            self.connect_compute()
            self.connect_broker()
            self.select_pool()
            if self.settings.dry_run:
                self.plan_only()
                return exit_code
            self.disable_pool()
            self.capture_and_delete_existing()
            self.gather_clone_parameters()
            self.clone_desktops()
            self.wait_for_customization()
            self.add_to_pool()
            self.wait_for_checkin()
            self.shutdown_for_reconfig()
            self.set_disk_persistence()
            self.power_on()
            self.enable_pool()
        except WorkflowAborted as e:
            self.write_output(f'Pool refresh stopped: {e}')
        except RefreshError as e:
            self.errors.record(self.phase, f'{type(e).__name__}: {e}')
            self.write_output(f'FATAL: {self.phase} failed - the refresh cannot continue')
            exit_code = 1
        except Exception as e:
            logger.exception(f'Unexpected failure in {self.phase}')
            error = UnexpectedError(f'{type(e).__name__}: {e}')
            self.errors.record(self.phase, f'{type(error).__name__}: {error}')
            self.write_output(f'FATAL: unexpected failure during {self.phase}')
            exit_code = 1
        finally:
            self.cleanup()
        return exit_code

    #--------------------------------------------------------------------------
    # Phases
    #--------------------------------------------------------------------------

    def connect_compute(self):
        self._enter(PHASE_CONNECT_COMPUTE, f'Connecting to vCenter {self.settings.vcenter}')
        self.compute_session = self.sessions.connect(
            'vcenter', self.settings.vcenter, self.settings.vcenter_credential)

    def connect_broker(self):
        self._enter(PHASE_CONNECT_BROKER, f'Connecting to Horizon {self.settings.horizon}')
        self.broker_session = self.sessions.connect(
            'horizon', self.settings.horizon, self.settings.horizon_credential)

    def select_pool(self):
        self._enter(PHASE_SELECT_POOL, 'Selecting the desktop pool to refresh')
        pools = self._broker().list_pools()
        label = lambda c: f'{c.label} ({c.detail})' if c.detail else c.label
        if len(pools) == 1:
            self.write_output(f'Only one manual desktop pool found: {label(pools[0])}')
            if not self._confirm(f'Refresh every desktop in {pools[0].label}?'):
                raise WorkflowAborted('operator declined to refresh the only pool')
            self.state.pool = pools[0]
        else:
            self.state.pool = self._resolve(pools, 'desktop pools', label)
        self.write_output(f'Refreshing pool {self.state.pool.label}')

    def disable_pool(self):
        self._enter(PHASE_DISABLE_POOL, f'Disabling pool {self.state.pool.label}')
        self._broker().disable_pool(self.state.pool.id)
        self.write_output(f'Pool {self.state.pool.label} disabled')

    def _capture_placement(self, machines) -> bool:
        """Remember where the old desktops live; must run before they are deleted"""
        if not machines:
            self.write_output('The pool has no machines - placement will have to be chosen')
            return False
        representative = machines[0]['name']
        try:
            folder, datastore = self._compute().get_placement(representative)
        except ITEM_ERRORS as e:
            self.errors.record(self.phase, f'Could not read placement of {representative}: {e}')
            return False
        self.state.original_folder = folder
        self.state.original_datastore = datastore
        self.write_output(f'Existing desktops live in folder {folder.detail or folder.label}'
                          + (f' on datastore {datastore.label}' if datastore else ''))
        return True

    def capture_and_delete_existing(self):
        self._enter(PHASE_DELETE_EXISTING, 'Removing the existing desktops')
        try:
            machines = self._broker().list_machines(self.state.pool.id)
            self._capture_placement(machines)
            if not machines:
                return
            names = [m['name'] for m in machines]
            self.write_output(f'Deleting {len(names)} machine(s) from disk: {", ".join(names)}')
            self._broker().delete_machines([m['id'] for m in machines], delete_from_disk=True)
        except ITEM_ERRORS as e:
            self.errors.record(self.phase, f'Deleting existing machines failed: {e}')
            self.write_output('WARNING: verify the old desktops are gone and remove any that remain manually')
            self._pause('Remove the remaining desktops')
            return
        self.state.deleted_machines = names

    def _ask_count(self) -> int:
        if self.settings.machine_count > 0:
            self.write_output(f'Creating {self.settings.machine_count} desktop(s) as configured')
            return self.settings.machine_count
        while True:
            answer = self.ask(f'How many desktops should be created? (1-{MAX_SUGGESTED_COUNT})')
            if answer.isdigit() and int(answer) > 0:
                count = int(answer)
                if count > MAX_SUGGESTED_COUNT:
                    self.write_output(f'WARNING: {count} is more than the suggested {MAX_SUGGESTED_COUNT}')
                return count
            self.write_output('Please enter a whole number greater than zero')

    def _choose_with_default(self, default: Optional[Candidate], kind: str, fetch, label) -> Candidate:
        """Keep the captured placement unless the operator asks for another"""
        if default is not None:
            self.write_output(f'New desktops will use {kind} {label(default)}')
            if not self._confirm(f'Choose a different {kind}?'):
                return default
        return self._resolve(fetch(), f'{kind}s', label)

    def gather_clone_parameters(self):
        self._enter(PHASE_GATHER, 'Gathering clone parameters')
        compute = self._compute()
        state = self.state
        state.machine_count = self._ask_count()
        state.template = self._resolve(compute.list_templates(), 'templates')
        state.customization_spec = self._resolve(
            compute.list_customization_specs(), 'customization specifications',
            lambda c: f'{c.label} ({c.detail})' if c.detail else c.label)
        state.folder = self._choose_with_default(
            state.original_folder, 'folder', compute.list_folders,
            lambda c: c.detail or c.label)
        state.cluster = self._resolve(compute.list_clusters(), 'clusters')
        # Cluster/datastore compatibility is not validated here
        state.datastore = self._choose_with_default(
            state.original_datastore, 'datastore', compute.list_datastores,
            lambda c: f'{c.label} ({c.detail})' if c.detail else c.label)

    def plan_only(self):
        """Dry run: report what a real run would do without changing anything"""
        self._enter(PHASE_GATHER, 'Dry run - no changes will be made')
        machines = self._broker().list_machines(self.state.pool.id)
        self._capture_placement(machines)
        self.gather_clone_parameters()
        state = self.state
        self.write_output(f'Would disable pool {state.pool.label}')
        self.write_output(f'Would delete {len(machines)} machine(s): '
                          f'{", ".join(m["name"] for m in machines) or "none"}')
        self.write_output(f'Would create {state.machine_count} desktop(s) named '
                          f'{self.settings.name_prefix}XXXXXXX from {state.template.label}')
        self.write_output(f'  folder {state.folder.detail or state.folder.label}, cluster {state.cluster.label}, '
                          f'datastore {state.datastore.label}, customization {state.customization_spec.label}')

    def clone_desktops(self):
        self._enter(PHASE_CLONE, f'Creating {self.state.machine_count} desktop(s) from {self.state.template.label}')
        state = self.state
        compute = self._compute()
        names = [self.name_factory(self.settings.name_prefix) for _ in range(state.machine_count)]

        def create(name):
            self.write_output(f'Creating {name}')
            compute.clone_from_template(name, state.template.id, state.folder.id,
                                        state.cluster.id, state.datastore.id,
                                        state.customization_spec.id)
            # A clone that will not boot still belongs to the batch
            try:
                compute.power_on(name)
            except ITEM_ERRORS as e:
                self.errors.record(self.phase, f'{name}: {e}')
                return False
            return True

        batch = fold_batch(self.phase, names, create, self.write_output)
        self.errors.extend(batch.errors)
        created = [name for name, _ in batch.succeeded]
        if not created:
            self.write_output(f'No desktops were created - pool {state.pool.label} is still disabled')
            raise OperationError('every clone from template failed')
        state.new_machines = created

        powered = sum(1 for _, running in batch.succeeded if running)
        self.write_output(f'{len(created)} desktop(s) created, {powered} powered on')

    def _fold(self, items, action) -> List:
        """Run a per-machine step, merge its failures, return the items that succeeded"""
        batch = fold_batch(self.phase, items, action, self.write_output)
        self.errors.extend(batch.errors)
        return [item for item, _ in batch.succeeded]

    def wait_for_customization(self):
        # Only the last clone is watched; it stands in for the whole batch
        last = self.state.new_machines[-1]
        self._enter(PHASE_WAIT_CUSTOMIZATION, f'Waiting for guest customization of {last}')
        expected = last.upper()[:MAX_HOSTNAME_LENGTH]
        self._poll(lambda: self._compute().guest_hostname(last),
                   lambda hostname: bool(hostname) and hostname.upper().startswith(expected),
                   f'{last} to report its new hostname')
        self.write_output('Guest customization complete')

    def add_to_pool(self):
        state = self.state
        self._enter(PHASE_ADD_TO_POOL, f'Adding desktops to pool {state.pool.label}')
        try:
            # Everything in the target folder stands in for the new batch
            names = self._compute().vms_in_folder(state.folder.id)
            self.write_output(f'Adding {len(names)} machine(s): {", ".join(names)}')
            self._broker().add_machines(state.pool.id, names)
        except ITEM_ERRORS as e:
            self.errors.record(self.phase, f'Adding machines to {state.pool.label} failed: {e}')
            self.write_output('WARNING: the desktops could not be added - you will have to add them manually')
            self._pause(f'Add the new desktops to {state.pool.label}')

    def wait_for_checkin(self):
        pool = self.state.pool
        self._enter(PHASE_WAIT_CHECKIN, f'Waiting for desktops to check in with pool {pool.label}')

        def all_available(machines):
            pending = [m['name'] for m in machines
                       if str(m.get('state', '')).upper() != AVAILABLE_STATE]
            if pending:
                logger.debug(f'Not yet available: {pending}')
            return not pending

        self._poll(lambda: self._broker().list_machines(pool.id), all_available,
                   f'pool {pool.label} machines to become available')
        self.write_output('All pool machines report Available')

    def shutdown_for_reconfig(self):
        self._enter(PHASE_SHUTDOWN, 'Shutting desktops down for disk reconfiguration')
        batch = self.state.new_machines
        self._fold(batch, lambda name: self._compute().shutdown_guest(name))

        def all_off(states):
            return all(s == POWERED_OFF for s in states)

        self._poll(lambda: [self._compute().power_state(name) for name in batch], all_off,
                   f'{len(batch)} desktop(s) to power off')
        self.write_output('All desktops powered off')

    def set_disk_persistence(self):
        self._enter(PHASE_DISK_MODE, 'Setting desktop disks to independent-nonpersistent')
        changed = self._fold(self.state.new_machines, lambda name: self._compute().set_disks_nonpersistent(name))
        if len(changed) < len(self.state.new_machines):
            self.write_output('WARNING: fix the disk mode of the desktops listed above manually')

    def power_on(self):
        self._enter(PHASE_POWER_ON, 'Powering desktops back on')
        self._fold(self.state.new_machines, lambda name: self._compute().power_on(name))

    def enable_pool(self):
        pool = self.state.pool
        self._enter(PHASE_ENABLE_POOL, f'Enabling pool {pool.label}')
        try:
            self._broker().enable_pool(pool.id)
        except ITEM_ERRORS as e:
            self.errors.record(self.phase, f'Enabling {pool.label} failed: {e}')
            self.write_output(f'WARNING: enable pool {pool.label} manually')
            return
        self.write_output(f'Pool {pool.label} enabled')

    def cleanup(self):
        self.phase = PHASE_CLEANUP
        self.write_output('TASK: Cleaning up')
        self.errors.finalize(self.compute_session, self.broker_session)
