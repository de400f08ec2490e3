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

"""Node lifecycle orchestration over the control plane."""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import sh
from rich.panel import Panel

from fleet_manager import console, logger
from fleet_manager.config import ClusterConfig, ImageConfig
from fleet_manager.constants import SSH_AUTH_SOCK_ENV
from fleet_manager.control_plane import ControlPlane, DomainState
from fleet_manager.disk import ensure_derived_disk
from fleet_manager.domain import with_firmware_config
from fleet_manager.errors import ControlPlaneError, FleetError, StorageError
from fleet_manager.image import ensure_ready
from fleet_manager.privilege import ExecutionContext
from fleet_manager.registry import Node, NodeRegistry
from fleet_manager.utils import error_output

UserdataSource = Callable[[Node], Path]


# ============================================================================
# First-boot config as the invoking operator
# ============================================================================

class OperatorUserdata:
    """Produce a node's first-boot config by re-running the tool as the operator.

    Key discovery needs the operator's SSH agent and home directory, so the
    ``userdata`` verb is executed through ``sudo -u <operator>`` and the
    resulting file is read from the operator's working directory.
    """

    def __init__(self, context: ExecutionContext, cluster_cfg: ClusterConfig) -> None:
        self.context = context
        self.workdir = cluster_cfg.workdir

    def __call__(self, node: Node) -> Path:
        user, home = self.context.require_operator()
        env_args = []
        if os.environ.get(SSH_AUTH_SOCK_ENV):
            env_args.append(f"--preserve-env={SSH_AUTH_SOCK_ENV}")
        try:
            sh.sudo(
                "-u", user, "-H", *env_args,
                sys.executable, "-m", "fleet_manager", "userdata", "--node", node.name,
            )
        except sh.ErrorReturnCode as err:
            raise FleetError(
                f"Generating first-boot config for {node.name} as {user} failed: "
                f"{error_output(err)}"
            ) from err
        return node.working_config_path(home, self.workdir)


# ============================================================================
# Orchestrator
# ============================================================================

@dataclass(frozen=True)
class NodeStatus:
    name: str
    state: DomainState | None
    disk_exists: bool
    config_exists: bool


@dataclass
class Orchestrator:
    """Drives every registry node through the lifecycle verbs.

    Nodes are processed one at a time in registry order. Domain state is
    always read from the control plane, never remembered between calls.

    Attributes:
        registry: Ordered, immutable node set.
        control_plane: Hypervisor capability.
        image_cfg: Base image the node disks are layered on.
        userdata_source: Returns the operator-side first-boot config of a node.
        prepare_image: Makes the base image ready and returns its raw path.
        provision_disk: Creates a node's derived disk if missing.
    """

    registry: NodeRegistry
    control_plane: ControlPlane
    image_cfg: ImageConfig
    userdata_source: UserdataSource
    prepare_image: Callable[[ImageConfig], Path] = ensure_ready
    provision_disk: Callable[..., Path] = ensure_derived_disk

    # -- create ---------------------------------------------------------------

    def create(self) -> None:
        """Provision, define and start every node.

        Safe to repeat: existing disks are kept, defined domains are not
        redefined and running domains are not restarted. The first failing
        node stops the run; later nodes are not attempted.
        """
        base = self.prepare_image(self.image_cfg)
        for node in self.registry:
            console.print(Panel.fit(f"Creating {node.name}", style="bold blue"))
            self._create_node(node, base)
        console.print(f"[green]\u2705 {len(self.registry)} node(s) created[/green]")

    def _create_node(self, node: Node, base: Path) -> None:
        self.provision_disk(node.disk_path, base, self.image_cfg.backing_format)

        working_copy = self.userdata_source(node)
        try:
            shutil.copyfile(working_copy, node.config_path)
        except OSError as err:
            raise StorageError(f"Cannot install {working_copy} as {node.config_path}: {err}") from err
        logger.info("Installed first-boot config %s", node.config_path)

        state = self.control_plane.domain_state(node.domain)
        if state is None:
            definition = self.control_plane.render_definition(node)
            self.control_plane.define_domain(with_firmware_config(definition, node.config_path))
            console.print(f"[green]  \u2713 Defined domain {node.domain}[/green]")
            state = DomainState.SHUT_OFF
        else:
            logger.info("Domain %s already defined (%s); keeping its definition", node.domain, state.value)

        if state is DomainState.SHUT_OFF:
            self.control_plane.start_domain(node.domain)
            console.print(f"[green]  \u2713 Started {node.domain}[/green]")
        else:
            console.print(f"[yellow]  {node.domain} is {state.value}; not starting[/yellow]")

    # -- per-node verbs -------------------------------------------------------

    def _each(self, verb: str, action: Callable[[str], None]) -> None:
        """Apply ``action`` to every domain, collecting failures.

        Raises:
            ControlPlaneError: Listing every node that failed, after all
                nodes have been attempted.
        """
        failures: list[tuple[str, str]] = []
        for node in self.registry:
            try:
                action(node.domain)
            except FleetError as err:
                console.print(f"[red]  \u2717 {verb} {node.domain}: {err}[/red]")
                failures.append((node.name, str(err)))
            else:
                console.print(f"[green]  \u2713 {verb} {node.domain}[/green]")
        if failures:
            raise ControlPlaneError.aggregate(verb, failures)

    def start(self) -> None:
        self._each("start", self.control_plane.start_domain)

    def reboot(self) -> None:
        self._each("reboot", self.control_plane.reboot_domain)

    def shutdown(self) -> None:
        self._each("shutdown", self.control_plane.shutdown_domain)

    def poweroff(self) -> None:
        self._each("poweroff", self.control_plane.destroy_domain)

    # -- destroy --------------------------------------------------------------

    def destroy(self) -> None:
        """Tear down every node in phases.

        All domains are force-stopped before any is undefined, and storage is
        only deleted once no domain references it. Nodes that are already
        stopped, undefined or missing volumes are skipped. A node whose
        domain could not be inspected, stopped or undefined keeps its volumes.
        Failures are reported together at the end.
        """
        failures: list[tuple[str, str]] = []

        def record(node: Node, what: str, err: FleetError) -> None:
            console.print(f"[red]  \u2717 {what}: {err}[/red]")
            failures.append((node.name, str(err)))

        def attempt(node: Node, what: str, fn: Callable[[], None]) -> None:
            try:
                fn()
            except FleetError as err:
                record(node, what, err)
            else:
                console.print(f"[green]  \u2713 {what}[/green]")

        def defined() -> Iterator[tuple[Node, DomainState]]:
            """Yield defined domains; nodes whose state cannot be read are recorded and skipped."""
            for node in self.registry:
                try:
                    state = self.control_plane.domain_state(node.domain)
                except FleetError as err:
                    record(node, f"state of {node.domain}", err)
                    continue
                if state is not None:
                    yield node, state

        console.print(Panel.fit("Stopping domains", style="bold blue"))
        for node, state in defined():
            if state.active:
                attempt(node, f"stop {node.domain}",
                        lambda n=node: self.control_plane.destroy_domain(n.domain))

        console.print(Panel.fit("Undefining domains", style="bold blue"))
        for node, _ in defined():
            attempt(node, f"undefine {node.domain}",
                    lambda n=node: self.control_plane.undefine_domain(n.domain))

        # Volumes of a node that failed above may still back a defined domain.
        keep = {name for name, _ in failures}

        console.print(Panel.fit("Deleting volumes", style="bold blue"))
        try:
            self.control_plane.refresh_pool()
        except FleetError as err:
            failures.append(("pool", str(err)))
            raise ControlPlaneError.aggregate("destroy", failures) from err
        for node in self.registry:
            if node.name in keep:
                logger.warning("Keeping volumes of %s; its domain was not removed", node.name)
                continue
            for volume, path in ((node.disk_volume, node.disk_path), (node.config_volume, node.config_path)):
                if not path.exists():
                    logger.info("Volume %s already gone", volume)
                    continue
                attempt(node, f"delete {volume}",
                        lambda v=volume: self.control_plane.delete_volume(v))

        if failures:
            raise ControlPlaneError.aggregate("destroy", failures)
        console.print(f"[green]\u2705 {len(self.registry)} node(s) destroyed[/green]")

    # -- status ---------------------------------------------------------------

    def status(self) -> list[NodeStatus]:
        return [
            NodeStatus(
                name=node.name,
                state=self.control_plane.domain_state(node.domain),
                disk_exists=node.disk_path.exists(),
                config_exists=node.config_path.exists(),
            )
            for node in self.registry
        ]
