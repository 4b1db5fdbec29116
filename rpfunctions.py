# rpfunctions.py - HZREFRESH Core Functions Library
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Shared configuration, output and operator prompt helpers for the pool refresh

import os
import datetime
import getpass
import logging
import urllib3
from configparser import ConfigParser

# Default logging level is WARNING (other levels are DEBUG, INFO, ERROR and CRITICAL)
logging.basicConfig(level=logging.WARNING)
# Connection Servers and vCenters commonly run with self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

#==============================================================================
# STATIC VARIABLES
#==============================================================================

script_dir = os.path.dirname(os.path.abspath(__file__))

configname = 'config.ini'
configini = os.path.join(script_dir, configname)
creds = os.path.join(script_dir, 'creds.txt')

# Log file name
logfile = 'poolrefresh.log'
logfiles = [os.path.join(script_dir, logfile)]

# Error report written when a run records failures
error_report = os.path.join(script_dir, 'poolrefresh-errors.csv')

start_time = datetime.datetime.now()

# Config parser
config = ConfigParser()

# Password variable - stores the password read from creds.txt
_password = None

# Console output flag
console_output = True

#==============================================================================
# INITIALIZATION
#==============================================================================

def init(config_path=None, **kwargs):
    """
    Initialize the rpfunctions module

    :param config_path: Path to config.ini (defaults to the copy beside this script)
    :param kwargs:
        verbose - enable DEBUG logging
        console - write output to the console (True/False)
    """
    global configini, console_output, error_report

    if config_path:
        configini = config_path

    if kwargs.get('verbose', False):
        logging.getLogger().setLevel(logging.DEBUG)

    console_output = kwargs.get('console', console_output)

    if os.path.isfile(configini):
        config.read(configini)
        write_output(f'Read configuration from {configini}')
    else:
        write_output(f'No configuration file at {configini} - values will be prompted')

    report = get_config_value('REFRESH', 'error_report')
    if report:
        error_report = report if os.path.isabs(report) else os.path.join(script_dir, report)

#==============================================================================
# CONFIG HELPER FUNCTIONS
#==============================================================================

def get_config_value(section: str, option: str, fallback: str = '') -> str:
    """
    Get a config option value, returning fallback if commented out.

    If the value itself starts with '#' or ';', it's treated as if
    the option doesn't exist (returns fallback).

    :param section: Config section name
    :param option: Config option name
    :param fallback: Default value if option doesn't exist or is commented
    :return: Config value or fallback
    """
    if not config.has_option(section, option):
        return fallback

    value = config.get(section, option).strip()

    if not value or value.startswith('#') or value.startswith(';'):
        return fallback

    return value


def get_config_int(section: str, option: str, fallback: int = 0) -> int:
    """Get a config option as an int, falling back on unset or malformed values"""
    value = get_config_value(section, option)
    if not value:
        return fallback
    try:
        return int(value)
    except ValueError:
        write_output(f'WARNING: [{section}] {option} = {value} is not a number, using {fallback}')
        return fallback

#==============================================================================
# PASSWORD FUNCTIONS
#==============================================================================

def get_password() -> str:
    """
    Get the password from creds.txt.

    The password is cached in _password after first read.

    :return: Password string, or empty string if not found
    """
    global _password
    if _password is None:
        if os.path.isfile(creds):
            with open(creds, 'r') as f:
                _password = f.read().strip()
    return _password if _password else ''

#==============================================================================
# OUTPUT AND LOGGING
#==============================================================================

def write_output(msg, **kwargs):
    """
    Write output to log files and optionally to console

    :param msg: Message to write
    :param kwargs:
        logfile - specific logfile path
        console - override console output setting (True/False)
    """
    timestamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    formatted_msg = f'[{timestamp}] {msg}'

    lfile = kwargs.get('logfile', None)
    print_to_console = kwargs.get('console', console_output)

    for lf in ([lfile] if lfile else logfiles):
        try:
            with open(lf, 'a') as f:
                f.write(formatted_msg + '\n')
        except OSError as e:
            logging.getLogger(__name__).debug(f'Error writing to {lf}: {e}')

    if print_to_console:
        print(formatted_msg)


def runtime_minutes() -> str:
    """Minutes elapsed since the module was loaded, formatted for output"""
    delta = datetime.datetime.now() - start_time
    return "{0:.2f}".format(delta.total_seconds() / 60)

#==============================================================================
# OPERATOR PROMPTS
#==============================================================================

def ask(prompt: str) -> str:
    """Prompt the operator and return the stripped answer"""
    return input(f'{prompt} ').strip()


def ask_secret(prompt: str) -> str:
    """Prompt the operator without echoing the answer"""
    return getpass.getpass(f'{prompt} ')
