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

"""Fixed node registry and per-node resource naming."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from fleet_manager.config import ClusterConfig
from fleet_manager.constants import DISK_SUFFIX, USERDATA_SUFFIX


@dataclass(frozen=True)
class Node:
    """A fleet member and the resources derived from its name.

    Attributes:
        name: Node name, also used as the libvirt domain name.
        image_dir: Shared directory holding the node's disk and config.
    """

    name: str
    image_dir: Path

    @property
    def domain(self) -> str:
        return self.name

    @property
    def disk_volume(self) -> str:
        return f"{self.name}{DISK_SUFFIX}"

    @property
    def config_volume(self) -> str:
        return f"{self.name}{USERDATA_SUFFIX}"

    @property
    def disk_path(self) -> Path:
        return self.image_dir / self.disk_volume

    @property
    def config_path(self) -> Path:
        return self.image_dir / self.config_volume

    def working_config_path(self, home: Path, workdir: str) -> Path:
        """Where the operator-side copy of the first-boot config lives."""
        return home / workdir / self.config_volume


@dataclass(frozen=True)
class NodeRegistry:
    """Immutable, ordered set of fleet nodes."""

    nodes: tuple[Node, ...]

    @classmethod
    def from_names(cls, names: tuple[str, ...] | list[str], image_dir: Path) -> NodeRegistry:
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise ValueError(f"duplicate node name '{name}'")
            seen.add(name)
        return cls(tuple(Node(name, Path(image_dir)) for name in names))

    @classmethod
    def from_config(cls, cluster_cfg: ClusterConfig) -> NodeRegistry:
        return cls.from_names(cluster_cfg.nodes, cluster_cfg.image_dir)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def names(self) -> list[str]:
        return [node.name for node in self.nodes]

    def get(self, name: str) -> Node:
        """Look up a node by name.

        Raises:
            KeyError: If the node is not part of the registry.
        """
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(f"unknown node '{name}' (known: {', '.join(self.names)})")
