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

"""Rewriting generated libvirt domain XML to pass Ignition via fw_cfg."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

from fleet_manager.constants import (
    DOMAIN_TYPE_KVM,
    FW_CFG_ARG,
    FW_CFG_CONFIG_KEY,
    QEMU_NAMESPACE_PREFIX,
    QEMU_NAMESPACE_URI,
)
from fleet_manager.errors import ControlPlaneError

ET.register_namespace(QEMU_NAMESPACE_PREFIX, QEMU_NAMESPACE_URI)


def _qemu(tag: str) -> str:
    return f"{{{QEMU_NAMESPACE_URI}}}{tag}"


def fw_cfg_value(config_path: Path) -> str:
    return f"name={FW_CFG_CONFIG_KEY},file={config_path}"


def with_firmware_config(xml: str, config_path: Path) -> str:
    """Adjust a generated domain definition for Ignition boot.

    The domain type is switched to ``kvm`` and a ``qemu:commandline`` block
    passing ``-fw_cfg name=opt/com.coreos/config,file=<config_path>`` is
    placed where the devices section closes. Any existing command line block
    is replaced so the result does not depend on how often it is applied.

    Args:
        xml: Domain XML as printed by ``virt-install --print-xml``.
        config_path: Ignition file readable by the hypervisor.

    Returns:
        The rewritten domain XML.

    Raises:
        ControlPlaneError: If the XML cannot be parsed or has no devices.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as err:
        raise ControlPlaneError(f"Generated domain definition is not valid XML: {err}") from err

    devices = root.find("devices")
    if root.tag != "domain" or devices is None:
        raise ControlPlaneError("Generated domain definition has no <devices> section")

    root.set("type", DOMAIN_TYPE_KVM)
    for stale in root.findall(_qemu("commandline")):
        root.remove(stale)

    commandline = ET.Element(_qemu("commandline"))
    ET.SubElement(commandline, _qemu("arg"), value=FW_CFG_ARG)
    ET.SubElement(commandline, _qemu("arg"), value=fw_cfg_value(config_path))
    root.insert(list(root).index(devices) + 1, commandline)

    return ET.tostring(root, encoding="unicode")
