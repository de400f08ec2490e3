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

"""Utility functions for command checks and external tool errors."""

from __future__ import annotations

import sh

from fleet_manager.errors import FleetError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name or path of the CLI command to check.

    Raises:
        FleetError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise FleetError(f"Required command '{cmd}' not found. Please install it first.") from err


def require_commands(cmds: tuple[str, ...] | list[str]) -> None:
    for cmd in cmds:
        require_command(cmd)


def error_output(err: sh.ErrorReturnCode, limit: int = 200) -> str:
    """Extract a short, printable message from a failed command.

    Args:
        err: The exception raised by ``sh``.
        limit: Maximum number of characters to keep.

    Returns:
        Trimmed stderr, falling back to stdout and then the exit code.
    """
    for stream in (err.stderr, err.stdout):
        text = (stream or b"").decode(errors="replace").strip()
        if text:
            return text[:limit]
    return f"exit status {err.exit_code}"
