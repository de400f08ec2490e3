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

"""Virtualization control plane: virsh adapter and in-memory fake."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path
from typing import Protocol

import sh

from fleet_manager import logger
from fleet_manager.config import ClusterConfig
from fleet_manager.constants import DISK_FORMAT
from fleet_manager.errors import ControlPlaneError
from fleet_manager.registry import Node
from fleet_manager.utils import error_output

DOMAIN_NOT_FOUND_MARKERS = ("failed to get domain", "domain not found")


class DomainState(str, Enum):
    """Domain states as reported by ``virsh domstate``."""

    RUNNING = "running"
    PAUSED = "paused"
    SHUT_OFF = "shut off"
    OTHER = "other"

    @classmethod
    def parse(cls, text: str) -> DomainState:
        text = text.strip().lower()
        for state in cls:
            if state.value == text:
                return state
        return cls.OTHER

    @property
    def active(self) -> bool:
        return self in (DomainState.RUNNING, DomainState.PAUSED)


class ControlPlane(Protocol):
    """The narrow set of hypervisor operations the fleet relies on."""

    def domain_state(self, name: str) -> DomainState | None:
        """Return the domain's state, or None if it is not defined."""

    def render_definition(self, node: Node) -> str:
        """Return the default domain XML for a node's disk."""

    def define_domain(self, xml: str) -> None: ...

    def start_domain(self, name: str) -> None: ...

    def reboot_domain(self, name: str) -> None: ...

    def shutdown_domain(self, name: str) -> None: ...

    def destroy_domain(self, name: str) -> None:
        """Force-stop a running domain; its definition is kept."""

    def undefine_domain(self, name: str) -> None: ...

    def refresh_pool(self) -> None: ...

    def delete_volume(self, volume: str) -> None: ...


# ============================================================================
# virsh / virt-install adapter
# ============================================================================

class VirshControlPlane:
    """Control plane backed by the ``virsh`` and ``virt-install`` CLIs.

    Every call blocks until the tool exits; a non-zero exit raises
    ControlPlaneError carrying the tool's stderr.
    """

    def __init__(self, cluster_cfg: ClusterConfig) -> None:
        self.cfg = cluster_cfg

    def _run(self, tool: str, *args: str, stdin: str | None = None, label: str | None = None) -> str:
        try:
            cmd = sh.Command(tool)
        except sh.CommandNotFound as err:
            raise ControlPlaneError(f"Required command '{tool}' not found") from err
        logger.debug("%s %s", tool, " ".join(args))
        try:
            return str(cmd(*args, _in=stdin))
        except sh.ErrorReturnCode as err:
            raise ControlPlaneError(f"{label or tool} failed: {error_output(err)}") from err

    def _virsh(self, verb: str, *args: str, stdin: str | None = None) -> str:
        return self._run(
            "virsh", "--connect", self.cfg.connect, verb, *args, stdin=stdin, label=f"virsh {verb}",
        )

    def domain_state(self, name: str) -> DomainState | None:
        try:
            return DomainState.parse(self._virsh("domstate", name))
        except ControlPlaneError as err:
            if any(marker in str(err).lower() for marker in DOMAIN_NOT_FOUND_MARKERS):
                return None
            raise

    def render_definition(self, node: Node) -> str:
        return self._run(
            "virt-install",
            "--connect", self.cfg.connect,
            "--import",
            "--name", node.domain,
            "--ram", str(self.cfg.memory_mb),
            "--vcpus", str(self.cfg.vcpus),
            "--os-variant", self.cfg.os_variant,
            "--disk", f"path={node.disk_path},format={DISK_FORMAT},bus=virtio",
            "--network", f"network={self.cfg.network},model=virtio",
            "--graphics", "vnc",
            "--noautoconsole",
            "--print-xml",
        )

    def define_domain(self, xml: str) -> None:
        self._virsh("define", "/dev/stdin", stdin=xml)

    def start_domain(self, name: str) -> None:
        self._virsh("start", name)

    def reboot_domain(self, name: str) -> None:
        self._virsh("reboot", name)

    def shutdown_domain(self, name: str) -> None:
        self._virsh("shutdown", name)

    def destroy_domain(self, name: str) -> None:
        self._virsh("destroy", name)

    def undefine_domain(self, name: str) -> None:
        self._virsh("undefine", name)

    def refresh_pool(self) -> None:
        self._virsh("pool-refresh", self.cfg.pool)

    def delete_volume(self, volume: str) -> None:
        self._virsh("vol-delete", "--pool", self.cfg.pool, volume)


# ============================================================================
# In-memory fake
# ============================================================================

DEFINITION_TEMPLATE = """<domain type='qemu'>
  <name>{name}</name>
  <memory unit='KiB'>1048576</memory>
  <vcpu>1</vcpu>
  <os><type arch='x86_64'>hvm</type></os>
  <devices>
    <disk type='file' device='disk'>
      <driver name='qemu' type='qcow2'/>
      <source file='{disk}'/>
      <target dev='vda' bus='virtio'/>
    </disk>
  </devices>
</domain>"""


class InMemoryControlPlane:
    """Deterministic stand-in for a hypervisor.

    Domains follow virsh semantics: starting an active domain, stopping an
    inactive one, or touching an undefined one raises ControlPlaneError.
    Volumes mirror the files in ``pool_dir`` as of the last refresh.

    Attributes:
        definitions: Domain name to the last XML it was defined with.
        states: Domain name to its current state.
        calls: Every operation issued, as (operation, argument) pairs.
        failures: (operation, argument) pairs that should fail.
    """

    def __init__(self, pool_dir: Path | None = None) -> None:
        self.pool_dir = pool_dir
        self.definitions: dict[str, str] = {}
        self.states: dict[str, DomainState] = {}
        self.volumes: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.failures: set[tuple[str, str]] = set()

    def _record(self, op: str, arg: str) -> None:
        self.calls.append((op, arg))
        if (op, arg) in self.failures:
            raise ControlPlaneError(f"{op} {arg} failed: injected failure")

    def _require(self, name: str) -> DomainState:
        if name not in self.states:
            raise ControlPlaneError(f"failed to get domain '{name}'")
        return self.states[name]

    def calls_for(self, op: str) -> list[str]:
        return [arg for call_op, arg in self.calls if call_op == op]

    def domain_state(self, name: str) -> DomainState | None:
        self._record("domstate", name)
        return self.states.get(name)

    def render_definition(self, node: Node) -> str:
        self._record("render", node.name)
        return DEFINITION_TEMPLATE.format(name=node.domain, disk=node.disk_path)

    def define_domain(self, xml: str) -> None:
        name = ET.fromstring(xml).findtext("name")
        if not name:
            raise ControlPlaneError("domain definition has no <name>")
        self._record("define", name)
        self.definitions[name] = xml
        self.states.setdefault(name, DomainState.SHUT_OFF)

    def start_domain(self, name: str) -> None:
        self._record("start", name)
        if self._require(name).active:
            raise ControlPlaneError(f"domain '{name}' is already active")
        self.states[name] = DomainState.RUNNING

    def reboot_domain(self, name: str) -> None:
        self._record("reboot", name)
        if self._require(name) is not DomainState.RUNNING:
            raise ControlPlaneError(f"domain '{name}' is not running")

    def shutdown_domain(self, name: str) -> None:
        self._record("shutdown", name)
        if not self._require(name).active:
            raise ControlPlaneError(f"domain '{name}' is not running")
        self.states[name] = DomainState.SHUT_OFF

    def destroy_domain(self, name: str) -> None:
        self._record("destroy", name)
        if not self._require(name).active:
            raise ControlPlaneError(f"domain '{name}' is not running")
        self.states[name] = DomainState.SHUT_OFF

    def undefine_domain(self, name: str) -> None:
        self._record("undefine", name)
        self._require(name)
        del self.states[name]
        self.definitions.pop(name, None)

    def refresh_pool(self) -> None:
        self._record("pool-refresh", "")
        if self.pool_dir is not None:
            self.volumes = {p.name for p in self.pool_dir.iterdir() if p.is_file()}

    def delete_volume(self, volume: str) -> None:
        self._record("vol-delete", volume)
        if volume not in self.volumes:
            raise ControlPlaneError(f"failed to get vol '{volume}'")
        self.volumes.discard(volume)
        if self.pool_dir is not None:
            (self.pool_dir / volume).unlink(missing_ok=True)
