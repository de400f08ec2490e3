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

"""Execution context: process privilege and the invoking operator."""

from __future__ import annotations

import os
import pwd
from dataclasses import dataclass
from pathlib import Path

from fleet_manager.constants import SUDO_USER_ENV
from fleet_manager.errors import PrivilegeError


@dataclass(frozen=True)
class ExecutionContext:
    """Who is running the tool and with which privilege.

    Attributes:
        elevated: Whether the process runs as root.
        invoking_user: The operator behind ``sudo``, or the current user.
        operator_home: Home directory of ``invoking_user``.
    """

    elevated: bool
    invoking_user: str | None
    operator_home: Path | None

    def require_elevated(self, verb: str) -> None:
        if not self.elevated:
            raise PrivilegeError(f"'{verb}' must be run as root (try: sudo fleet-manager {verb})")

    def require_unprivileged(self, verb: str) -> None:
        if self.elevated:
            raise PrivilegeError(
                f"'{verb}' must not be run as root; SSH keys are read from the operator's session"
            )

    def require_operator(self) -> tuple[str, Path]:
        """Return the non-root operator that elevated verbs act on behalf of.

        Raises:
            PrivilegeError: If the tool was not started through ``sudo``.
        """
        if not self.invoking_user or self.invoking_user == "root" or self.operator_home is None:
            raise PrivilegeError(
                f"cannot determine the invoking user; run through sudo so {SUDO_USER_ENV} is set"
            )
        return self.invoking_user, self.operator_home


def _home_of(user: str) -> Path | None:
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return None


def current_context() -> ExecutionContext:
    """Inspect the running process."""
    if os.geteuid() == 0:
        user = os.environ.get(SUDO_USER_ENV)
        return ExecutionContext(True, user, _home_of(user) if user else None)
    return ExecutionContext(False, pwd.getpwuid(os.getuid()).pw_name, Path.home())
