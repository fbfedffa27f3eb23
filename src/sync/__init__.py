"""
Save synchronization with a private cloud app folder.

Modules:
- session_gate: relays sign-in state to the controller
- locator / provisioner: find or create the single remote save file
- controller: session-scoped state machine driving reads and writes
- conflict: the remote-vs-local tie-break rule
"""

from .conflict import ConflictPolicy, Resolution
from .controller import (
    SAVE_FILENAME,
    Idle,
    Provisioning,
    Ready,
    Resolving,
    SyncController,
    SyncState,
    Unbound,
)
from .locator import RemoteFileLocator, RemoteTransport
from .provisioner import RemoteFileProvisioner
from .session_gate import SessionGate

__all__ = [
    "ConflictPolicy",
    "Resolution",
    "SAVE_FILENAME",
    "Idle",
    "Provisioning",
    "Ready",
    "Resolving",
    "SyncController",
    "SyncState",
    "Unbound",
    "RemoteFileLocator",
    "RemoteTransport",
    "RemoteFileProvisioner",
    "SessionGate",
]
