# vcenter.py - HZREFRESH vCenter Operations
# Version 1.0 - October 2026
# Author - HZREFRESH Core Team
# pyVmomi adapter for the compute side of the refresh: inventory, clone, power, disks

import functools
import logging
from typing import List, Optional, Tuple

from pyVim import connect
from pyVim.task import WaitForTask
from pyVmomi import vim, vmodl

import rpfunctions as rpf
from Tools.choices import Candidate
from Tools.errors import (AuthenticationError, ConnectivityError, NotFoundError, OperationError,
                          SessionExpiredError)

logger = logging.getLogger(__name__)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

VCENTER_PORT = 443
NONPERSISTENT_MODE = 'independent_nonpersistent'
POWERED_OFF = 'poweredOff'
POWERED_ON = 'poweredOn'


def translate_faults(action):
    """Re-raise pyVmomi and socket failures as OperationError/ConnectivityError/SessionExpiredError"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except vim.fault.NotAuthenticated as e:
                raise SessionExpiredError(f'{action} failed: vCenter session expired') from e
            except vmodl.MethodFault as e:
                detail = getattr(e, 'msg', None) or str(e)
                raise OperationError(f'{action} failed: {detail}') from e
            except OSError as e:
                raise ConnectivityError(f'{action} failed: lost connection to vCenter: {e}') from e
        return wrapper
    return decorator

#==============================================================================
# CLIENT
#==============================================================================

class VCenterClient:
    """Holds one vCenter ServiceInstance and the calls the refresh makes against it"""

    def __init__(self, si, host: str):
        self.si = si
        self.host = host

    @classmethod
    def connect(cls, host: str, credential, port: int = VCENTER_PORT) -> 'VCenterClient':
        """
        Connect to vCenter

        :param host: vCenter hostname
        :param credential: Credential (username, password)
        :return: VCenterClient
        :raises AuthenticationError: login rejected
        :raises ConnectivityError: host unreachable
        """
        try:
            si = connect.SmartConnect(
                host=host,
                user=credential.username,
                pwd=credential.password,
                port=port,
                disableSslCertValidation=True
            )
        except (vim.fault.InvalidLogin, vim.fault.NoPermission) as e:
            raise AuthenticationError(getattr(e, 'msg', None) or 'invalid user name or password') from e
        except vim.fault.HostConnectFault as e:
            raise ConnectivityError(getattr(e, 'msg', None) or str(e)) from e
        except OSError as e:
            raise ConnectivityError(str(e)) from e
        logger.debug(f'Connected to vCenter {host}')
        return cls(si, host)

    @property
    def content(self):
        return self.si.content

    def is_alive(self) -> bool:
        """True while vCenter still recognises this session"""
        try:
            return self.content.sessionManager.currentSession is not None
        except (vim.fault.NotAuthenticated, OSError) as e:
            logger.debug(f'vCenter session check failed: {e}')
            return False

    def disconnect(self):
        connect.Disconnect(self.si)

    #--------------------------------------------------------------------------
    # Inventory
    #--------------------------------------------------------------------------

    def _get_all_objs(self, vimtype) -> list:
        """Every managed object of the given types below the root folder"""
        container = self.content.viewManager.CreateContainerView(self.content.rootFolder, vimtype, True)
        try:
            return list(container.view)
        finally:
            container.Destroy()

    def _bind(self, vimtype, moid: str):
        """Re-bind a managed object id to the current session"""
        return vimtype(moid, self.si._stub)

    def _get_vm(self, name: str):
        for vm in self._get_all_objs([vim.VirtualMachine]):
            if vm.name == name:
                return vm
        raise NotFoundError(f'Virtual machine {name} not found on {self.host}')

    @staticmethod
    def _folder_path(folder) -> str:
        parts = []
        entity = folder
        while entity is not None and not isinstance(entity, vim.Datacenter):
            parts.append(entity.name)
            entity = getattr(entity, 'parent', None)
        return '/'.join(reversed(parts))

    @translate_faults('Listing templates')
    def list_templates(self) -> List[Candidate]:
        return [Candidate(vm._moId, vm.name, vm.config.guestFullName or '', vm)
                for vm in self._get_all_objs([vim.VirtualMachine])
                if vm.config is not None and vm.config.template]

    @translate_faults('Listing clusters')
    def list_clusters(self) -> List[Candidate]:
        return [Candidate(c._moId, c.name, f'{len(c.host)} host(s)', c)
                for c in self._get_all_objs([vim.ClusterComputeResource])]

    @translate_faults('Listing datastores')
    def list_datastores(self) -> List[Candidate]:
        return [self._datastore_candidate(ds) for ds in self._get_all_objs([vim.Datastore])]

    @translate_faults('Listing folders')
    def list_folders(self) -> List[Candidate]:
        return [self._folder_candidate(f) for f in self._get_all_objs([vim.Folder])
                if 'VirtualMachine' in f.childType]

    @translate_faults('Listing customization specifications')
    def list_customization_specs(self) -> List[Candidate]:
        return [Candidate(info.name, info.name, info.type or '', info)
                for info in self.content.customizationSpecManager.info]

    def _datastore_candidate(self, ds) -> Candidate:
        free_gb = ds.summary.freeSpace // (1024 ** 3)
        return Candidate(ds._moId, ds.name, f'{free_gb} GB free', ds)

    def _folder_candidate(self, folder) -> Candidate:
        return Candidate(folder._moId, folder.name, self._folder_path(folder), folder)

    @translate_faults('Reading placement')
    def get_placement(self, name: str) -> Tuple[Candidate, Optional[Candidate]]:
        """
        Folder and first datastore of an existing VM

        :param name: VM name
        :return: (folder Candidate, datastore Candidate or None)
        """
        vm = self._get_vm(name)
        folder = self._folder_candidate(vm.parent)
        datastore = self._datastore_candidate(vm.datastore[0]) if vm.datastore else None
        return folder, datastore

    @translate_faults('Listing folder contents')
    def vms_in_folder(self, folder_id: str) -> List[str]:
        """Names of the (non-template) VMs directly inside a folder"""
        folder = self._bind(vim.Folder, folder_id)
        return [child.name for child in folder.childEntity
                if isinstance(child, vim.VirtualMachine)
                and not (child.config is not None and child.config.template)]

    #--------------------------------------------------------------------------
    # Lifecycle
    #--------------------------------------------------------------------------

    @translate_faults('Clone from template')
    def clone_from_template(self, name: str, template_id: str, folder_id: str,
                            cluster_id: str, datastore_id: str, spec_name: str):
        """
        Create a VM from a template and wait for the clone task

        :param name: New VM name
        :param template_id: Template managed object id
        :param folder_id: Destination folder id
        :param cluster_id: Destination cluster id (its root resource pool is used)
        :param datastore_id: Destination datastore id
        :param spec_name: Guest customization specification name
        :return: The new vim.VirtualMachine
        """
        template = self._bind(vim.VirtualMachine, template_id)
        folder = self._bind(vim.Folder, folder_id)
        cluster = self._bind(vim.ClusterComputeResource, cluster_id)
        datastore = self._bind(vim.Datastore, datastore_id)
        customization = self.content.customizationSpecManager.GetCustomizationSpec(name=spec_name)

        relocate_spec = vim.vm.RelocateSpec(pool=cluster.resourcePool, datastore=datastore)
        clone_spec = vim.vm.CloneSpec(
            location=relocate_spec,
            customization=customization.spec,
            powerOn=False,
            template=False
        )
        logger.debug(f'Cloning {name} from {template_id} into {folder_id}')
        task = template.Clone(folder=folder, name=name, spec=clone_spec)
        WaitForTask(task)
        return task.info.result

    @translate_faults('Power on')
    def power_on(self, name: str):
        vm = self._get_vm(name)
        if vm.runtime.powerState == POWERED_ON:
            return
        WaitForTask(vm.PowerOnVM_Task())

    @translate_faults('Guest shutdown')
    def shutdown_guest(self, name: str):
        vm = self._get_vm(name)
        if vm.runtime.powerState == POWERED_OFF:
            return
        vm.ShutdownGuest()

    @translate_faults('Reading power state')
    def power_state(self, name: str) -> str:
        return str(self._get_vm(name).runtime.powerState)

    @translate_faults('Reading guest hostname')
    def guest_hostname(self, name: str) -> str:
        vm = self._get_vm(name)
        return (vm.guest.hostName if vm.guest else None) or ''

    @translate_faults('Setting disk mode')
    def set_disks_nonpersistent(self, name: str) -> int:
        """
        Switch every virtual disk of a VM to independent-nonpersistent

        :param name: VM name
        :return: Number of disks reconfigured
        """
        vm = self._get_vm(name)
        changes = []
        for device in vm.config.hardware.device:
            if not isinstance(device, vim.vm.device.VirtualDisk):
                continue
            device.backing.diskMode = NONPERSISTENT_MODE
            changes.append(vim.vm.device.VirtualDeviceSpec(
                operation=vim.vm.device.VirtualDeviceSpec.Operation.edit,
                device=device
            ))
        if not changes:
            raise OperationError(f'{name} has no virtual disks')
        WaitForTask(vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=changes)))
        rpf.write_output(f'  {name}: {len(changes)} disk(s) set to {NONPERSISTENT_MODE}')
        return len(changes)
