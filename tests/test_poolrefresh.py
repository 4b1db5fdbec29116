#!/usr/bin/env python3
# test_poolrefresh.py - HZREFRESH poolrefresh.py Unit Tests
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team

import pytest
import os
import sys
from unittest.mock import MagicMock, patch

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import poolrefresh
import rpfunctions as rpf


class TestParseArgs:
    """Test parse_args"""

    def test_defaults(self):
        args = poolrefresh.parse_args([])

        assert args.count is None
        assert args.prefix is None
        assert args.max_poll_minutes is None
        assert args.dry_run is False
        assert args.verbose is False

    def test_all_options(self):
        args = poolrefresh.parse_args(['--count', '5', '--prefix', 'LAB-', '--max-poll-minutes', '90',
                                       '--dry-run', '-v', '--config', '/tmp/lab.ini'])

        assert args.count == 5
        assert args.prefix == 'LAB-'
        assert args.max_poll_minutes == 90
        assert args.dry_run is True
        assert args.verbose is True
        assert args.config == '/tmp/lab.ini'


class TestBuildSettings:
    """Test build_settings and build_credential"""

    def test_configured_values(self, mock_config, monkeypatch):
        monkeypatch.setattr(rpf, 'get_password', lambda: 'MOCK_PW_CHECK_VALUE')
        args = poolrefresh.parse_args(['--count', '4'])

        settings = poolrefresh.build_settings(args)

        assert settings.vcenter == 'vcsa-01a.corp.local'
        assert settings.machine_count == 4
        assert settings.name_prefix == 'LAB-'
        assert settings.vcenter_credential.username == 'administrator@vsphere.local'
        assert settings.vcenter_credential.domain == ''
        assert settings.horizon_credential.domain == 'CORP'
        assert settings.horizon_credential.password == 'MOCK_PW_CHECK_VALUE'

    def test_missing_values_are_prompted(self, monkeypatch):
        from configparser import ConfigParser
        monkeypatch.setattr(rpf, 'config', ConfigParser())
        monkeypatch.setattr(rpf, 'get_password', lambda: '')
        answers = iter(['vcsa-01a.corp.local', 'administrator@vsphere.local',
                        'cs-01a.corp.local', 'hzadmin', 'CORP'])
        monkeypatch.setattr(rpf, 'ask', lambda prompt: next(answers))
        monkeypatch.setattr(rpf, 'ask_secret', lambda prompt: 'TYPED_PW_VALUE')

        settings = poolrefresh.build_settings(poolrefresh.parse_args([]))

        assert settings.horizon == 'cs-01a.corp.local'
        assert settings.horizon_credential.username == 'hzadmin'
        assert settings.horizon_credential.domain == 'CORP'
        assert settings.vcenter_credential.password == 'TYPED_PW_VALUE'
        assert settings.name_prefix == 'HZ-'
        assert settings.machine_count == 0


class TestMain:
    """Test main wiring"""

    def test_main_returns_workflow_exit_code(self, monkeypatch):
        monkeypatch.setattr(rpf, 'init', MagicMock())
        monkeypatch.setattr(poolrefresh, 'build_settings', MagicMock())
        with patch.object(poolrefresh, 'PoolRefreshWorkflow') as workflow:
            workflow.return_value.run.return_value = 1
            assert poolrefresh.main(['--dry-run']) == 1

        sessions = workflow.call_args[0][0]
        assert set(sessions.connectors) == {'vcenter', 'horizon'}
