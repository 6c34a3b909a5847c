"""Deployment module.

This module handles:
- Copying a built artifact to the remote device
- Launching it there inside a managed SSH session
"""

from crossdeploy.deploy.launcher import (
    RemoteSession,
    compose_remote_command,
    deployment_target_from_settings,
    remote_session,
    run,
)
from crossdeploy.deploy.transport import compose_scp_command, transfer

__all__ = [
    "RemoteSession",
    "compose_remote_command",
    "compose_scp_command",
    "deployment_target_from_settings",
    "remote_session",
    "run",
    "transfer",
]
