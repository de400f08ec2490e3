# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""SSH key discovery and Ignition first-boot configuration."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path

import sh

from fleet_manager import logger
from fleet_manager.constants import (
    CORE_ACCOUNT,
    IGNITION_VERSION,
    SSH_ADD_AGENT_UNREACHABLE,
    SSH_ADD_NO_IDENTITIES,
    SSH_AUTH_SOCK_ENV,
    SSH_KEY_GLOB,
)
from fleet_manager.errors import DiscoveryError, StorageError
from fleet_manager.utils import error_output


# ============================================================================
# Key discovery
# ============================================================================

def _key_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def agent_keys(env: Mapping[str, str] | None = None) -> list[str]:
    """List public keys held by the SSH agent.

    Args:
        env: Environment to read ``SSH_AUTH_SOCK`` from (defaults to os.environ).

    Returns:
        Key lines in agent order; empty when no agent is configured or the
        agent holds no identities.

    Raises:
        DiscoveryError: If ``SSH_AUTH_SOCK`` is set but the agent cannot be reached.
    """
    env = os.environ if env is None else env
    sock = env.get(SSH_AUTH_SOCK_ENV)
    if not sock:
        logger.debug("%s not set; skipping agent keys", SSH_AUTH_SOCK_ENV)
        return []
    if not Path(sock).exists():
        raise DiscoveryError(f"SSH agent socket {sock} does not exist")

    try:
        result = sh.Command("ssh-add")(
            "-L", _env=dict(env), _ok_code=[0, SSH_ADD_NO_IDENTITIES], _return_cmd=True,
        )
    except sh.CommandNotFound as err:
        raise DiscoveryError("ssh-add not found; cannot query the SSH agent") from err
    except sh.ErrorReturnCode as err:
        if err.exit_code == SSH_ADD_AGENT_UNREACHABLE:
            raise DiscoveryError(f"Could not connect to SSH agent at {sock}") from err
        raise DiscoveryError(f"ssh-add failed: {error_output(err)}") from err

    if result.exit_code == SSH_ADD_NO_IDENTITIES:
        return []
    return _key_lines(str(result))


def file_keys(home: Path) -> list[str]:
    """Read the default public key files (``~/.ssh/id_*.pub``) in name order.

    Files that vanish or cannot be read are skipped.
    """
    keys: list[str] = []
    for path in sorted((home / ".ssh").glob(SSH_KEY_GLOB)):
        try:
            keys.extend(_key_lines(path.read_text()))
        except OSError as err:
            logger.warning("Skipping %s: %s", path, err)
    return keys


def discover_keys(home: Path, env: Mapping[str, str] | None = None) -> list[str]:
    """Collect public keys from the agent, then from key files.

    Duplicates keep their first position.
    """
    ordered: dict[str, None] = {}
    for key in [*agent_keys(env), *file_keys(home)]:
        ordered.setdefault(key, None)
    logger.info("Discovered %d SSH public key(s)", len(ordered))
    return list(ordered)


# ============================================================================
# Ignition document
# ============================================================================

def synthesize(keys: Iterable[str]) -> dict:
    """Build the Ignition document authorizing ``keys`` for the core user.

    Args:
        keys: Public key lines, in the order they should appear.

    Returns:
        Ignition config as a dictionary ready for JSON serialization.
    """
    return {
        "ignition": {"version": IGNITION_VERSION},
        "passwd": {
            "users": [
                {"name": CORE_ACCOUNT, "sshAuthorizedKeys": list(keys)},
            ],
        },
    }


def write_userdata(path: Path, keys: Iterable[str]) -> Path:
    """Serialize the Ignition document for ``keys`` to ``path``.

    Raises:
        StorageError: If the file or its directory cannot be written.
    """
    document = synthesize(keys)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, indent=2) + "\n")
    except OSError as err:
        raise StorageError(f"Cannot write first-boot config {path}: {err}") from err
    logger.info("Wrote %s (%d key(s))", path, len(document["passwd"]["users"][0]["sshAuthorizedKeys"]))
    return path
