"""Persistent rollout state: the lock and the deploy file."""

from .deploy_file import DeployFileStore, default_deploy_file
from .lock import LockManager
from .models import DeployRecord, Holder, LockRecord

__all__ = [
    "DeployFileStore",
    "DeployRecord",
    "Holder",
    "LockManager",
    "LockRecord",
    "default_deploy_file",
]
