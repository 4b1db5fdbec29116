#!/usr/bin/env python3
# conftest.py - HZREFRESH Pytest Configuration and Fixtures
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Shared fixtures and in-memory vCenter/Horizon fakes for all test modules

import pytest
import os
import sys
import tempfile
from configparser import ConfigParser

# Add parent directory to path for imports
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import rpfunctions as rpf
from Tools.choices import Candidate
from Tools.errors import OperationError
from Tools.sessions import Credential, SessionManager
from Tools.workflow import RefreshSettings

#==============================================================================
# FAKE REMOTE SYSTEMS
#==============================================================================

class FakeCompute:
    """In-memory stand-in for VCenterClient"""

    def __init__(self, templates=1, clusters=1, datastores=1, specs=1, folders=1,
                 fail_clone_at=(), customize=True):
        self.templates = [Candidate(f'vm-t{i}', f'Win11-Template-{i}', 'Windows 11') for i in range(1, templates + 1)]
        self.clusters = [Candidate(f'domain-c{i}', f'Cluster-{i}', '2 host(s)') for i in range(1, clusters + 1)]
        self.datastores = [Candidate(f'datastore-{i}', f'vsanDatastore-{i}', '500 GB free') for i in range(1, datastores + 1)]
        self.specs = [Candidate(f'Win11-Spec-{i}', f'Win11-Spec-{i}', 'Windows') for i in range(1, specs + 1)]
        self.folders = [Candidate(f'group-v{i}', f'Desktops-{i}', f'vm/Desktops-{i}') for i in range(1, folders + 1)]
        self.vms = {}
        self.fail_clone_at = set(fail_clone_at)
        self.customize = customize
        self.clone_calls = []
        self.power_on_calls = []
        self.shutdown_calls = []
        self.disk_calls = []
        self.events = []
        self.alive = True
        self.disconnects = 0

    def add_vm(self, name, folder_id='group-v1', datastore_id='datastore-1', power='poweredOn'):
        self.vms[name] = {'folder': folder_id, 'datastore': datastore_id, 'power': power,
                          'hostname': name, 'disk_mode': 'persistent'}

    def is_alive(self):
        return self.alive

    def disconnect(self):
        self.disconnects += 1

    def list_templates(self):
        return list(self.templates)

    def list_clusters(self):
        return list(self.clusters)

    def list_datastores(self):
        return list(self.datastores)

    def list_folders(self):
        return list(self.folders)

    def list_customization_specs(self):
        return list(self.specs)

    def get_placement(self, name):
        vm = self.vms[name]
        folder = next(f for f in self.folders if f.id == vm['folder'])
        datastore = next(d for d in self.datastores if d.id == vm['datastore'])
        return folder, datastore

    def vms_in_folder(self, folder_id):
        return [name for name, vm in self.vms.items() if vm['folder'] == folder_id]

    def clone_from_template(self, name, template_id, folder_id, cluster_id, datastore_id, spec_name):
        self.clone_calls.append((name, template_id, folder_id, cluster_id, datastore_id, spec_name))
        self.events.append(('clone', name))
        if len(self.clone_calls) in self.fail_clone_at:
            raise OperationError(f'Clone from template failed: simulated failure for {name}')
        self.add_vm(name, folder_id, datastore_id, power='poweredOff')
        # Windows guest customization cuts the hostname to 15 characters
        self.vms[name]['hostname'] = name[:15]
        if not self.customize:
            self.vms[name]['hostname'] = 'WIN-TEMPLATE'

    def power_on(self, name):
        self.power_on_calls.append(name)
        self.events.append(('power_on', name))
        self.vms[name]['power'] = 'poweredOn'

    def shutdown_guest(self, name):
        self.shutdown_calls.append(name)
        self.vms[name]['power'] = 'poweredOff'

    def power_state(self, name):
        return self.vms[name]['power']

    def guest_hostname(self, name):
        return self.vms[name]['hostname']

    def set_disks_nonpersistent(self, name):
        self.disk_calls.append(name)
        self.vms[name]['disk_mode'] = 'independent_nonpersistent'
        return 1


class FakeBroker:
    """In-memory stand-in for HorizonClient, deleting from FakeCompute like delete-from-disk"""

    def __init__(self, compute, pools=1):
        self.compute = compute
        self.pools = [{'id': f'pool-{i}', 'name': f'desktops-{i}', 'display_name': f'Desktops {i}',
                       'type': 'MANUAL', 'enabled': True} for i in range(1, pools + 1)]
        self.machines = {p['id']: [] for p in self.pools}
        self.deleted = []
        self.added = []
        self.disable_calls = []
        self.enable_calls = []
        self.fail_disable = False
        self.fail_add = False
        self.fail_enable = False
        self.alive = True
        self.disconnects = 0

    def add_existing(self, pool_id, names, state='AVAILABLE'):
        for name in names:
            self.compute.add_vm(name)
            self.machines[pool_id].append({'id': f'machine-{name}', 'name': name, 'state': state})

    def is_alive(self):
        return self.alive

    def disconnect(self):
        self.disconnects += 1

    def list_pools(self):
        return [Candidate(p['id'], p['display_name'], 'enabled' if p['enabled'] else 'disabled', p)
                for p in self.pools]

    def disable_pool(self, pool_id):
        self.disable_calls.append(pool_id)
        if self.fail_disable:
            raise OperationError('Disabling pool failed: HTTP 500 simulated')

    def enable_pool(self, pool_id):
        self.enable_calls.append(pool_id)
        if self.fail_enable:
            raise OperationError('Enabling pool failed: HTTP 500 simulated')

    def list_machines(self, pool_id):
        return [dict(m) for m in self.machines[pool_id]]

    def delete_machines(self, machine_ids, delete_from_disk=True):
        for pool_machines in self.machines.values():
            for machine in list(pool_machines):
                if machine['id'] in machine_ids:
                    pool_machines.remove(machine)
                    self.deleted.append(machine['name'])
                    if delete_from_disk:
                        self.compute.vms.pop(machine['name'], None)

    def add_machines(self, pool_id, names):
        if self.fail_add:
            raise OperationError('Adding machines to pool failed: HTTP 400 simulated')
        self.added.append(list(names))
        for name in names:
            self.machines[pool_id].append({'id': f'machine-{name}', 'name': name, 'state': 'AVAILABLE'})


class ScriptedPrompt:
    """Answers operator prompts from a list, remembering every question"""

    def __init__(self, answers=()):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        if not self.answers:
            raise AssertionError(f'Unexpected prompt: {question}')
        return self.answers.pop(0)

#==============================================================================
# FIXTURES - Output and configuration
#==============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(autouse=True)
def quiet_output(temp_dir, monkeypatch):
    """Keep log and report files out of the source tree and off the console"""
    monkeypatch.setattr(rpf, 'logfiles', [os.path.join(temp_dir, 'poolrefresh.log')])
    monkeypatch.setattr(rpf, 'console_output', False)
    monkeypatch.setattr(rpf, 'error_report', os.path.join(temp_dir, 'poolrefresh-errors.csv'))


@pytest.fixture
def output():
    """Collects operator output lines"""
    return []


@pytest.fixture
def mock_config(monkeypatch):
    """Install a ConfigParser with test values as rpfunctions.config"""
    config = ConfigParser()

    config.add_section('VCENTER')
    config.set('VCENTER', 'server', 'vcsa-01a.corp.local')
    config.set('VCENTER', 'user', 'administrator@vsphere.local')

    config.add_section('HORIZON')
    config.set('HORIZON', 'server', 'cs-01a.corp.local')
    config.set('HORIZON', 'user', 'hzadmin')
    config.set('HORIZON', 'domain', 'CORP')

    config.add_section('REFRESH')
    config.set('REFRESH', 'name_prefix', 'LAB-')
    config.set('REFRESH', 'machine_count', '#4')
    config.set('REFRESH', 'poll_interval', '15')

    monkeypatch.setattr(rpf, 'config', config)
    return config

#==============================================================================
# FIXTURES - Fake remote systems
#==============================================================================

@pytest.fixture
def compute():
    return FakeCompute()


@pytest.fixture
def broker(compute):
    return FakeBroker(compute)


@pytest.fixture
def session_manager(compute, broker):
    """SessionManager whose connectors hand back the fakes"""
    return SessionManager({
        'vcenter': lambda endpoint, credential: compute,
        'horizon': lambda endpoint, credential: broker,
    }, write_output=lambda msg: None)


@pytest.fixture
def settings(temp_dir):
    return RefreshSettings(
        vcenter='vcsa-01a.corp.local',
        vcenter_credential=Credential('administrator@vsphere.local', 'MOCK_PW_CHECK_VALUE'),
        horizon='cs-01a.corp.local',
        horizon_credential=Credential('hzadmin', 'MOCK_PW_CHECK_VALUE', 'CORP'),
        poll_interval=0,
        report_path=os.path.join(temp_dir, 'poolrefresh-errors.csv'),
    )

#==============================================================================
# MARKERS
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
