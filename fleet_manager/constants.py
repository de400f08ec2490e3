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

"""Constants and the packaged fleet defaults."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Packaged defaults (defaults.yaml) --
DEFAULTS_FILE = Path(__file__).resolve().parent / "defaults.yaml"

with open(DEFAULTS_FILE) as f:
    _defaults = yaml.safe_load(f)

IMAGE_DEFAULTS: dict[str, Any] = _defaults["image"]
CLUSTER_DEFAULTS: dict[str, Any] = _defaults["cluster"]

# -- Ignition --
IGNITION_VERSION = "2.0.0"
CORE_ACCOUNT = "core"
USERDATA_SUFFIX = ".ign"

# -- Credential discovery --
SSH_AUTH_SOCK_ENV = "SSH_AUTH_SOCK"
SSH_KEY_GLOB = "id_*.pub"
SSH_ADD_NO_IDENTITIES = 1
SSH_ADD_AGENT_UNREACHABLE = 2

# -- Base image --
SIGNATURE_SUFFIX = ".sig"
COMPRESSED_SUFFIX = ".bz2"
GPG_ENV = "GPG"
DEFAULT_GPG = "gpg"
DOWNLOAD_CHUNK_SIZE = 1 << 20
DOWNLOAD_TIMEOUT_SECONDS = 60.0

# -- Disks --
DISK_FORMAT = "qcow2"
DISK_SUFFIX = ".qcow2"

# -- Domain definition --
DOMAIN_TYPE_KVM = "kvm"
QEMU_NAMESPACE_PREFIX = "qemu"
QEMU_NAMESPACE_URI = "http://libvirt.org/schemas/domain/qemu/1.0"
FW_CFG_ARG = "-fw_cfg"
FW_CFG_CONFIG_KEY = "opt/com.coreos/config"

# -- Privilege --
SUDO_USER_ENV = "SUDO_USER"

# -- Required host tools --
INIT_TOOLS = ("bunzip2",)
CREATE_TOOLS = ("virsh", "virt-install", "qemu-img", "sudo", "bunzip2")
LIFECYCLE_TOOLS = ("virsh",)

# -- Exit codes --
EXIT_FAILURE = 1
EXIT_USAGE = 2
