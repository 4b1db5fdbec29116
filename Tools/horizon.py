# horizon.py - HZREFRESH Horizon Connection Server Operations
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# Horizon REST API adapter for the broker side of the refresh

"""
Horizon REST API Integration Module

Endpoints used:
  POST   /rest/login                                          - access/refresh tokens
  POST   /rest/logout                                         - invalidate refresh token
  GET    /rest/monitor/v1/connection-servers                  - session liveness check
  GET    /rest/inventory/v1/desktop-pools                     - pool list
  GET    /rest/inventory/v1/desktop-pools/{id}                - pool detail
  PUT    /rest/inventory/v1/desktop-pools/{id}                - enable/disable
  GET    /rest/inventory/v1/machines?filter=...               - machines of a pool
  DELETE /rest/inventory/v1/machines                          - remove machines (and disks)
  GET    /rest/external/v1/virtual-machines?vcenter_id=...    - vCenter VMs known to Horizon
  POST   /rest/inventory/v1/desktop-pools/{id}/action/add-machines
"""

import json
import logging
from typing import Dict, List

import requests

from Tools.choices import Candidate
from Tools.errors import AuthenticationError, ConnectivityError, OperationError, SessionExpiredError

logger = logging.getLogger(__name__)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

SSL_VERIFY = False
REQUEST_TIMEOUT = 60  # seconds for API requests

MANUAL_POOL_TYPE = 'MANUAL'
AVAILABLE_STATE = 'AVAILABLE'

#==============================================================================
# CLIENT
#==============================================================================

class HorizonClient:
    """Token-authenticated session against one Connection Server"""

    def __init__(self, host: str, access_token: str, refresh_token: str,
                 verify: bool = SSL_VERIFY, session: requests.Session = None):
        self.host = host
        self.base_url = f'https://{host}/rest'
        self.refresh_token = refresh_token
        self.verify = verify
        self.http = session or requests.Session()
        self.http.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'Authorization': f'Bearer {access_token}',
        })

    @classmethod
    def login(cls, host: str, credential, verify: bool = SSL_VERIFY,
              session: requests.Session = None) -> 'HorizonClient':
        """
        Authenticate against the Connection Server

        :param host: Connection Server FQDN
        :param credential: Credential (username, password, domain)
        :return: HorizonClient
        :raises AuthenticationError: credentials rejected
        :raises ConnectivityError: server unreachable
        :raises OperationError: any other HTTP failure
        """
        http = session or requests.Session()
        payload = {
            'domain': credential.domain,
            'username': credential.username,
            'password': credential.password,
        }
        try:
            response = http.post(f'https://{host}/rest/login', json=payload,
                                 verify=verify, timeout=REQUEST_TIMEOUT)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ConnectivityError(str(e)) from e

        if response.status_code in (400, 401, 403):
            raise AuthenticationError(_error_detail(response))
        if not response.ok:
            raise OperationError(f'Login returned HTTP {response.status_code}: {_error_detail(response)}')

        tokens = response.json()
        logger.debug(f'Logged in to Horizon {host}')
        return cls(host, tokens['access_token'], tokens['refresh_token'], verify, http)

    #--------------------------------------------------------------------------
    # API helpers
    #--------------------------------------------------------------------------

    def _request(self, method: str, path: str, action: str, **kwargs):
        """
        Make an authenticated API request

        :param method: HTTP method
        :param path: Path below /rest
        :param action: Description used in error messages
        :return: Parsed JSON body, or None for empty responses
        :raises ConnectivityError: server unreachable
        :raises SessionExpiredError: the access token was rejected (HTTP 401)
        :raises OperationError: any other non-2xx response
        """
        url = f'{self.base_url}{path}'
        logger.debug(f'{method} {url}')
        try:
            response = self.http.request(method, url, verify=self.verify,
                                         timeout=REQUEST_TIMEOUT, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f'Connection Error: {e}')
            raise ConnectivityError(f'{action} failed: {e}') from e

        if not response.ok:
            detail = _error_detail(response)
            logger.error(f'HTTP {response.status_code} from {method} {path}: {detail}')
            if response.status_code == 401:
                raise SessionExpiredError(f'{action} failed: Horizon session expired ({detail})')
            raise OperationError(f'{action} failed: HTTP {response.status_code} {detail}')

        return response.json() if response.text else None

    def is_alive(self) -> bool:
        """True while the access token is still accepted"""
        try:
            response = self.http.get(f'{self.base_url}/monitor/v1/connection-servers',
                                     verify=self.verify, timeout=REQUEST_TIMEOUT)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.debug(f'Horizon session check failed: {e}')
            return False
        return response.ok

    def disconnect(self):
        self._request('POST', '/logout', 'Logout', json={'refresh_token': self.refresh_token})

    #--------------------------------------------------------------------------
    # Desktop pools
    #--------------------------------------------------------------------------

    def list_pools(self) -> List[Candidate]:
        """Manual desktop pools, the only kind this refresh rebuilds"""
        pools = self._request('GET', '/inventory/v1/desktop-pools', 'Listing desktop pools') or []
        return [Candidate(p['id'], p.get('display_name') or p['name'],
                          'enabled' if p.get('enabled') else 'disabled', p)
                for p in pools if p.get('type') == MANUAL_POOL_TYPE]

    def _set_pool_enabled(self, pool_id: str, enabled: bool):
        verb = 'Enabling' if enabled else 'Disabling'
        pool = self._request('GET', f'/inventory/v1/desktop-pools/{pool_id}', f'{verb} pool')
        pool['enabled'] = enabled
        self._request('PUT', f'/inventory/v1/desktop-pools/{pool_id}', f'{verb} pool', json=pool)

    def disable_pool(self, pool_id: str):
        self._set_pool_enabled(pool_id, False)

    def enable_pool(self, pool_id: str):
        self._set_pool_enabled(pool_id, True)

    #--------------------------------------------------------------------------
    # Machines
    #--------------------------------------------------------------------------

    def list_machines(self, pool_id: str) -> List[Dict]:
        """Machines of a pool as dicts with at least id, name and state"""
        query = json.dumps({'type': 'Equals', 'name': 'desktop_pool_id', 'value': pool_id})
        return self._request('GET', '/inventory/v1/machines', 'Listing pool machines',
                             params={'filter': query}) or []

    def delete_machines(self, machine_ids: List[str], delete_from_disk: bool = True):
        payload = {
            'machine_ids': list(machine_ids),
            'machine_delete_data': {
                'delete_from_disk': delete_from_disk,
                'archive_persistent_disk': False,
                'force_logoff_session': True,
            },
        }
        return self._request('DELETE', '/inventory/v1/machines', 'Deleting machines', json=payload)

    def add_machines(self, pool_id: str, names: List[str]):
        """
        Add vCenter VMs to a manual pool by name

        Horizon expects its own ids for the VMs, looked up through the
        vCenter the pool is bound to.

        :raises OperationError: a name is unknown to Horizon or the add fails
        """
        pool = self._request('GET', f'/inventory/v1/desktop-pools/{pool_id}', 'Reading pool')
        vms = self._request('GET', '/external/v1/virtual-machines', 'Listing vCenter VMs',
                            params={'vcenter_id': pool.get('vcenter_id')}) or []
        ids_by_name = {vm['name']: vm['id'] for vm in vms}
        missing = [name for name in names if name not in ids_by_name]
        if missing:
            raise OperationError(f'Horizon does not see {", ".join(missing)} in vCenter yet')
        return self._request('POST', f'/inventory/v1/desktop-pools/{pool_id}/action/add-machines',
                             'Adding machines to pool', json=[ids_by_name[name] for name in names])


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return body.get('error_message') or body.get('message') or json.dumps(body)
    return json.dumps(body)
