# sessions.py - HZREFRESH Session Manager
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Connects to vCenter and the Horizon Connection Server until the operator gets it right

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

import rpfunctions as rpf
from Tools.errors import AuthenticationError, ConnectivityError

logger = logging.getLogger(__name__)

#==============================================================================
# DATA TYPES
#==============================================================================

@dataclass(frozen=True)
class Credential:
    username: str
    password: str = field(repr=False)
    domain: str = ''


@dataclass
class RemoteSession:
    """
    Authenticated handle to one remote system.

    client is the adapter returned by the system's connector
    (VCenterClient or HorizonClient). It must provide is_alive()
    and disconnect().
    """
    system: str
    endpoint: str
    credential: Credential
    client: Any = None
    closed: bool = False

    @property
    def live(self) -> bool:
        if self.client is None or self.closed:
            return False
        return self.client.is_alive()

    def close(self):
        """Disconnect once; later calls are no-ops"""
        if self.closed or self.client is None:
            self.closed = True
            return
        self.closed = True
        self.client.disconnect()
        rpf.write_output(f'Disconnected from {self.system} {self.endpoint}')

#==============================================================================
# OPERATOR RE-PROMPTS
#==============================================================================

def prompt_endpoint(system: str, current: str) -> str:
    """Ask for a replacement endpoint after a connectivity failure"""
    answer = rpf.ask(f'Unable to reach {system} at {current}. Enter the {system} server address [{current}]:')
    return answer or current


def prompt_credential(system: str, current: Credential) -> Credential:
    """Ask for replacement credentials after an authentication failure"""
    username = rpf.ask(f'Login to {system} failed. Username [{current.username}]:') or current.username
    password = rpf.ask_secret(f'Password for {username}:')
    domain = current.domain
    if domain:
        domain = rpf.ask(f'Domain [{domain}]:') or domain
    return Credential(username, password, domain)

#==============================================================================
# SESSION MANAGER
#==============================================================================

class SessionManager:
    """
    Owns the connect-until-success loop for each remote system.

    Connectivity failures re-prompt for the endpoint and keep the credential;
    authentication failures re-prompt for the credential and keep the endpoint.
    Any other exception propagates to the caller as fatal.
    """

    def __init__(self, connectors: Dict[str, Callable[[str, Credential], Any]],
                 ask_endpoint: Callable[[str, str], str] = prompt_endpoint,
                 ask_credential: Callable[[str, Credential], Credential] = prompt_credential,
                 write_output=None):
        self.connectors = connectors
        self.ask_endpoint = ask_endpoint
        self.ask_credential = ask_credential
        self._write = write_output or rpf.write_output

    def _open(self, system: str, endpoint: str, credential: Credential):
        connector = self.connectors[system]
        attempt = 0
        while True:
            attempt += 1
            self._write(f'Connecting to {system} {endpoint} as {credential.username} (attempt {attempt})...')
            try:
                client = connector(endpoint, credential)
            except ConnectivityError as e:
                self._write(f'Unable to connect to {system} {endpoint}: {e}')
                endpoint = self.ask_endpoint(system, endpoint)
                continue
            except AuthenticationError as e:
                self._write(f'Authentication to {system} {endpoint} failed: {e}')
                credential = self.ask_credential(system, credential)
                continue
            self._write(f'Connected to {system} {endpoint}')
            return client, endpoint, credential

    def connect(self, system: str, endpoint: str, credential: Credential) -> RemoteSession:
        """
        Connect to a remote system, retrying until it succeeds

        :param system: Key into the connectors mapping ('vcenter', 'horizon')
        :param endpoint: Server address
        :param credential: Login credential
        :return: RemoteSession
        """
        client, endpoint, credential = self._open(system, endpoint, credential)
        return RemoteSession(system, endpoint, credential, client)

    def ensure_live(self, session: RemoteSession) -> RemoteSession:
        """
        Reconnect a session whose remote side has expired it

        The same RemoteSession object is refreshed in place so that every
        holder sees the new client. The stale client is logged out first.
        """
        if session.live:
            return session
        self._write(f'{session.system} session to {session.endpoint} is no longer valid - reconnecting')
        if session.client is not None and not session.closed:
            try:
                session.client.disconnect()
            except Exception as e:
                # The remote side usually rejects a logout of an expired session
                logger.debug(f'Logout of stale {session.system} session failed: {e}')
        client, endpoint, credential = self._open(session.system, session.endpoint, session.credential)
        session.client = client
        session.endpoint = endpoint
        session.credential = credential
        session.closed = False
        return session
