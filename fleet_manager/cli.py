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

"""
cli.py - Provision and operate a fixed fleet of Container Linux VMs.

Commands:
    init       Download, verify and decompress the base image (root)
    userdata   Write first-boot configs from your SSH keys (non-root)
    create     Provision disks and configs, define and start every node (root)
    start      Start every node (root)
    reboot     Reboot every node (root)
    shutdown   Gracefully shut down every node (root)
    poweroff   Force off every node (root)
    destroy    Stop, undefine and delete every node (root)
    status     Show node and base image state (root)

Examples:
    # One-time base image preparation
    sudo fleet-manager init

    # Bring the fleet up
    sudo fleet-manager create

    # Tear everything down
    sudo fleet-manager destroy

Environment Variables:
    - GPG: signature verification tool (default: gpg)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.table import Table

from fleet_manager import console
from fleet_manager.config import ClusterConfig, ImageConfig, display_config, resolve_config
from fleet_manager.constants import CREATE_TOOLS, EXIT_FAILURE, INIT_TOOLS, LIFECYCLE_TOOLS
from fleet_manager.control_plane import VirshControlPlane
from fleet_manager.errors import FleetError
from fleet_manager.image import describe, ensure_ready
from fleet_manager.orchestrator import OperatorUserdata, Orchestrator
from fleet_manager.privilege import ExecutionContext, current_context
from fleet_manager.registry import NodeRegistry
from fleet_manager.userdata import discover_keys, write_userdata
from fleet_manager.utils import require_commands

app = typer.Typer(
    help="Provision and operate a fixed fleet of Container Linux VMs.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging and the execution context for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    if ctx.obj is None:
        ctx.obj = current_context()


@contextmanager
def _reported() -> Iterator[None]:
    """Turn fleet errors into a red message and a non-zero exit."""
    try:
        yield
    except FleetError as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise typer.Exit(EXIT_FAILURE) from err


def _elevated(ctx: typer.Context) -> ExecutionContext:
    context: ExecutionContext = ctx.obj
    with _reported():
        context.require_elevated(ctx.info_name or "command")
    return context


def build_orchestrator(
    context: ExecutionContext,
    image_cfg: ImageConfig,
    cluster_cfg: ClusterConfig,
) -> Orchestrator:
    """Wire the production orchestrator for the configured fleet."""
    return Orchestrator(
        registry=NodeRegistry.from_config(cluster_cfg),
        control_plane=VirshControlPlane(cluster_cfg),
        image_cfg=image_cfg,
        userdata_source=OperatorUserdata(context, cluster_cfg),
    )


def _lifecycle(ctx: typer.Context, verb: str) -> None:
    context = _elevated(ctx)
    with _reported():
        image_cfg, cluster_cfg = resolve_config()
        require_commands(LIFECYCLE_TOOLS)
        getattr(build_orchestrator(context, image_cfg, cluster_cfg), verb)()


# ============================================================================
# Commands
# ============================================================================

@app.command()
def init(ctx: typer.Context) -> None:
    """Download, verify and decompress the shared base image."""
    _elevated(ctx)
    with _reported():
        image_cfg, cluster_cfg = resolve_config()
        display_config(image_cfg, cluster_cfg)
        require_commands((*INIT_TOOLS, image_cfg.gpg))
        ensure_ready(image_cfg)


@app.command()
def userdata(
    ctx: typer.Context,
    node: list[str] | None = typer.Option(
        None, "--node", help="Node to write a config for (repeatable; default: all)"),
) -> None:
    """Write first-boot configs authorizing your SSH keys."""
    context: ExecutionContext = ctx.obj
    with _reported():
        context.require_unprivileged("userdata")
        _, cluster_cfg = resolve_config()
        registry = NodeRegistry.from_config(cluster_cfg)
        try:
            targets = [registry.get(name) for name in node] if node else list(registry)
        except KeyError as err:
            raise typer.BadParameter(err.args[0], param_hint="--node") from err
        home = context.operator_home
        keys = discover_keys(home, os.environ)
        if not keys:
            console.print("[yellow]\u26a0\ufe0f  No SSH public keys found; nodes will have no authorized keys[/yellow]")
        for target in targets:
            path = write_userdata(target.working_config_path(home, cluster_cfg.workdir), keys)
            console.print(f"[green]\u2713 {target.name}: {path}[/green]")


@app.command()
def create(ctx: typer.Context) -> None:
    """Provision disks and configs, then define and start every node."""
    context = _elevated(ctx)
    with _reported():
        context.require_operator()
        image_cfg, cluster_cfg = resolve_config()
        display_config(image_cfg, cluster_cfg)
        require_commands((*CREATE_TOOLS, image_cfg.gpg))
        build_orchestrator(context, image_cfg, cluster_cfg).create()


@app.command()
def start(ctx: typer.Context) -> None:
    """Start every node."""
    _lifecycle(ctx, "start")


@app.command()
def reboot(ctx: typer.Context) -> None:
    """Reboot every node."""
    _lifecycle(ctx, "reboot")


@app.command()
def shutdown(ctx: typer.Context) -> None:
    """Gracefully shut down every node."""
    _lifecycle(ctx, "shutdown")


@app.command()
def poweroff(ctx: typer.Context) -> None:
    """Force off every node."""
    _lifecycle(ctx, "poweroff")


@app.command()
def destroy(ctx: typer.Context) -> None:
    """Stop and undefine every node, then delete its disk and config."""
    _lifecycle(ctx, "destroy")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show each node's domain state and storage, and the base image state."""
    context = _elevated(ctx)
    with _reported():
        image_cfg, cluster_cfg = resolve_config()
        require_commands(LIFECYCLE_TOOLS)
        rows = build_orchestrator(context, image_cfg, cluster_cfg).status()

    table = Table(title="Fleet")
    table.add_column("Node")
    table.add_column("Domain")
    table.add_column("Disk")
    table.add_column("Config")
    for row in rows:
        table.add_row(
            row.name,
            row.state.value if row.state else "undefined",
            "\u2713" if row.disk_exists else "-",
            "\u2713" if row.config_exists else "-",
        )
    console.print(table)
    image = describe(image_cfg)
    console.print(f"Base image {image.channel}/{image.version}: {image.status.value} ({image.raw_path})")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
