#!/usr/bin/env python3
# poolrefresh.py - HZREFRESH Main Pool Refresh Orchestrator
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Deletes and rebuilds every desktop of a Horizon manual pool

"""
Horizon Manual Pool Refresh

Usage:
    python3 poolrefresh.py                     # Full refresh, prompts as needed
    python3 poolrefresh.py --count 5           # Build five desktops
    python3 poolrefresh.py --dry-run           # Show the plan without changing anything
    python3 poolrefresh.py --config lab.ini    # Use another configuration file

Configuration (config.ini beside this script):
    [VCENTER]   server, user
    [HORIZON]   server, user, domain
    [REFRESH]   name_prefix, machine_count, poll_interval, max_poll_minutes, error_report

The password is read from creds.txt beside this script when present,
otherwise it is prompted for each system.
"""

import sys
import logging
import argparse

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format='[%(asctime)s] %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# Import core functions
import rpfunctions as rpf
from Tools.horizon import HorizonClient
from Tools.sessions import Credential, SessionManager
from Tools.vcenter import VCenterClient
from Tools.workflow import PoolRefreshWorkflow, RefreshSettings

SCRIPT_NAME = 'poolrefresh'
SCRIPT_VERSION = '1.0'
SCRIPT_DESCRIPTION = 'HZREFRESH Horizon Manual Pool Refresh'


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description=SCRIPT_DESCRIPTION)
    parser.add_argument('--config', default=None,
                        help=f'Configuration file (default: {rpf.configini})')
    parser.add_argument('--count', type=int, default=None,
                        help='Number of desktops to create (skips the prompt)')
    parser.add_argument('--prefix', default=None,
                        help='Desktop name prefix (default: HZ-)')
    parser.add_argument('--max-poll-minutes', type=int, default=None,
                        help='Give up on any single wait after this many minutes (default: wait forever)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Dry run - select and report, no actual changes')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    return parser.parse_args(argv)


def build_credential(section: str, system: str, use_domain: bool = False) -> Credential:
    """Credential from config.ini and creds.txt, prompting for whatever is missing"""
    username = rpf.get_config_value(section, 'user') or rpf.ask(f'{system} username:')
    password = rpf.get_password() or rpf.ask_secret(f'{system} password for {username}:')
    domain = ''
    if use_domain:
        domain = rpf.get_config_value(section, 'domain') or rpf.ask(f'{system} domain:')
    return Credential(username, password, domain)


def build_settings(args) -> RefreshSettings:
    settings = RefreshSettings.from_config(
        name_prefix=args.prefix,
        machine_count=args.count,
        max_poll_minutes=args.max_poll_minutes,
        dry_run=args.dry_run,
    )
    if not settings.vcenter:
        settings.vcenter = rpf.ask('vCenter server address:')
    settings.vcenter_credential = build_credential('VCENTER', 'vCenter')
    if not settings.horizon:
        settings.horizon = rpf.ask('Horizon Connection Server address:')
    settings.horizon_credential = build_credential('HORIZON', 'Horizon', use_domain=True)
    return settings


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    rpf.init(args.config, verbose=args.verbose)
    rpf.write_output(f'{SCRIPT_DESCRIPTION} v{SCRIPT_VERSION} starting')
    if args.dry_run:
        rpf.write_output('DRY RUN - no changes will be made')

    settings = build_settings(args)
    sessions = SessionManager({
        'vcenter': VCenterClient.connect,
        'horizon': HorizonClient.login,
    })
    workflow = PoolRefreshWorkflow(sessions, settings)
    exit_code = workflow.run()

    rpf.write_output(f'Pool refresh finished - runtime was {rpf.runtime_minutes()} minutes')
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
