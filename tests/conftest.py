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

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
import sh

from fleet_manager.config import ClusterConfig, ImageConfig
from fleet_manager.control_plane import InMemoryControlPlane
from fleet_manager.orchestrator import Orchestrator
from fleet_manager.registry import Node, NodeRegistry
from fleet_manager.userdata import write_userdata

TEST_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITestKey operator@host"


class FakeResult(str):
    """Command output that also carries an exit status."""

    exit_code = 0


class FakeTool:
    """Records invocations of an external command and replays canned results."""

    def __init__(self, name: str, output: str = "", fail: dict[str, tuple[int, str]] | None = None,
                 effect=None, exit_code: int = 0) -> None:
        self.name = name
        self.output = output
        self.exit_code = exit_code
        self.fail = fail or {}
        self.effect = effect
        self.calls: list[tuple[tuple[str, ...], dict]] = []

    def __call__(self, *args: str, **kwargs):
        self.calls.append((args, kwargs))
        for marker, (code, stderr) in self.fail.items():
            if marker in args:
                raise getattr(sh, f"ErrorReturnCode_{code}")(
                    f"{self.name} {' '.join(args)}", b"", stderr.encode())
        if self.effect is not None:
            self.effect(*args)
        result = FakeResult(self.output)
        result.exit_code = self.exit_code
        return result


def fake_sh(tools: dict[str, FakeTool]) -> SimpleNamespace:
    """A stand-in for the ``sh`` module exposing only the given tools."""

    def command(name: str) -> FakeTool:
        if name not in tools:
            raise sh.CommandNotFound(name)
        return tools[name]

    return SimpleNamespace(
        Command=command,
        CommandNotFound=sh.CommandNotFound,
        ErrorReturnCode=sh.ErrorReturnCode,
        **{name.replace("-", "_"): tool for name, tool in tools.items()},
    )


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    path = tmp_path / "images"
    path.mkdir()
    return path


@pytest.fixture
def image_cfg(image_dir: Path) -> ImageConfig:
    return ImageConfig(
        channel="stable",
        version="1010.5.0",
        base_url="https://images.example.test/{channel}/{version}",
        artifact="coreos_production_qemu_image.img.bz2",
        image_dir=image_dir,
    )


@pytest.fixture
def cluster_cfg(image_dir: Path) -> ClusterConfig:
    return ClusterConfig(image_dir=image_dir, nodes=("n1", "n2"))


@pytest.fixture
def registry(cluster_cfg: ClusterConfig) -> NodeRegistry:
    return NodeRegistry.from_config(cluster_cfg)


@pytest.fixture
def control_plane(image_dir: Path) -> InMemoryControlPlane:
    return InMemoryControlPlane(pool_dir=image_dir)


@pytest.fixture
def operator_home(tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def orchestrator(registry, control_plane, image_cfg, operator_home) -> Orchestrator:
    """Orchestrator wired to the in-memory control plane and local files only."""

    def prepare_image(cfg: ImageConfig) -> Path:
        cfg.raw_path.write_bytes(b"base")
        return cfg.raw_path

    def provision_disk(disk: Path, base: Path, backing_format: str) -> Path:
        if not disk.exists():
            disk.write_bytes(b"overlay:" + base.name.encode())
        return disk

    def userdata_source(node: Node) -> Path:
        return write_userdata(node.working_config_path(operator_home, ".fleet-manager"), [TEST_KEY])

    return Orchestrator(
        registry=registry,
        control_plane=control_plane,
        image_cfg=image_cfg,
        userdata_source=userdata_source,
        prepare_image=prepare_image,
        provision_disk=provision_disk,
    )
