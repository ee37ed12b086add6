"""Core functionality"""
from .ssh_manager import SSHManager, RemoteResult
from .rsync import Rsync, RsyncResult, itemized
from .healthchecks import HealthcheckClient

__all__ = [
    "SSHManager", "RemoteResult",
    "Rsync", "RsyncResult", "itemized",
    "HealthcheckClient",
]
