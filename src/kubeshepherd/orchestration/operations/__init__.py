from .base import OperationDriver
from .deploy import DeployOperation
from .etcd import BackupOperation, RestoreOperation
from .remove import RemoveOperation
from .renew import RenewOperation
from .upgrade import UpgradeOperation

__all__ = [
    "BackupOperation",
    "DeployOperation",
    "OperationDriver",
    "RemoveOperation",
    "RenewOperation",
    "RestoreOperation",
    "UpgradeOperation",
]
