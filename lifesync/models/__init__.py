from lifesync.models.base import Base
from lifesync.models.connections import ConnectionRow
from lifesync.models.secrets import StoredSecretRow
from lifesync.models.sync_policies import SyncPolicyRow
from lifesync.models.runs import SyncRunRow

__all__ = [
    "Base",
    "ConnectionRow",
    "StoredSecretRow",
    "SyncPolicyRow",
    "SyncRunRow",
]
