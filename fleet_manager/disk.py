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

"""Per-node copy-on-write disks layered on the base image."""

from __future__ import annotations

from pathlib import Path

import sh

from fleet_manager import console, logger
from fleet_manager.constants import DISK_FORMAT
from fleet_manager.errors import BackingImageMissing, StorageError
from fleet_manager.utils import error_output


def ensure_derived_disk(disk: Path, base_path: Path, backing_format: str = DISK_FORMAT) -> Path:
    """Create the node's qcow2 overlay unless it already exists.

    An existing disk is returned untouched, whatever its content. The new
    overlay has no explicit size and inherits the backing image's.

    Args:
        disk: Path of the node disk, as named by the registry.
        base_path: Raw base image used as the backing file.
        backing_format: Format of ``base_path``.

    Returns:
        Path of the derived disk.

    Raises:
        BackingImageMissing: If ``base_path`` does not exist.
        StorageError: If ``qemu-img`` fails.
    """
    if disk.exists():
        logger.info("Disk %s exists; leaving it as is", disk)
        return disk
    if not base_path.exists():
        raise BackingImageMissing(
            f"Base image {base_path} not found; run 'fleet-manager init' first"
        )

    try:
        sh.Command("qemu-img")(
            "create", "-f", DISK_FORMAT,
            "-F", backing_format,
            "-b", str(base_path),
            str(disk),
        )
    except sh.CommandNotFound as err:
        raise StorageError("qemu-img not found; cannot create node disks") from err
    except sh.ErrorReturnCode as err:
        raise StorageError(f"Failed to create disk {disk}: {error_output(err)}") from err
    console.print(f"[green]  \u2713 Created disk {disk.name}[/green]")
    return disk
