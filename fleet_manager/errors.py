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

"""Exception hierarchy for fleet operations."""

from __future__ import annotations


class FleetError(Exception):
    """Base error; the CLI reports it and exits non-zero."""


class PrivilegeError(FleetError):
    """The command was invoked in the wrong execution context."""


class AcquisitionError(FleetError):
    """Downloading the base image or its signature failed."""


class VerificationError(FleetError):
    """The base image signature is missing or invalid."""


class StorageError(FleetError):
    """A directory, disk or file could not be created or removed."""


class BackingImageMissing(FleetError):
    """A node disk was requested before the base image was ready."""


class DiscoveryError(FleetError):
    """A configured SSH agent could not be reached."""


class ControlPlaneError(FleetError):
    """One or more virtualization commands failed.

    Attributes:
        failures: (node, message) pairs in registry order.
    """

    def __init__(self, message: str, failures: list[tuple[str, str]] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []

    @classmethod
    def aggregate(cls, verb: str, failures: list[tuple[str, str]]) -> ControlPlaneError:
        detail = "; ".join(f"{node}: {msg}" for node, msg in failures)
        nodes = "node" if len(failures) == 1 else "nodes"
        return cls(f"{verb} failed on {len(failures)} {nodes}: {detail}", failures)
