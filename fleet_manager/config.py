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

"""Configuration classes, config resolution and display."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from fleet_manager import console
from fleet_manager.constants import (
    CLUSTER_DEFAULTS,
    COMPRESSED_SUFFIX,
    DEFAULT_GPG,
    GPG_ENV,
    IMAGE_DEFAULTS,
    SIGNATURE_SUFFIX,
)


# ============================================================================
# Configuration classes
# ============================================================================

class ToolConfig(BaseSettings):
    """External tool overrides, loaded from the environment.

    Attributes:
        gpg: Signature verification binary (``GPG`` env var).
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    gpg: str = Field(default=DEFAULT_GPG, validation_alias=GPG_ENV, min_length=1)


class ImageConfig(BaseModel):
    """Shared base image parameters.

    Attributes:
        channel: Release channel (e.g. ``stable``).
        version: Release version on the channel.
        base_url: URL template with ``{channel}`` and ``{version}`` fields.
        artifact: Remote file name of the compressed image.
        backing_format: Disk format of the decompressed image.
        image_dir: Shared, privilege-restricted image directory.
        gpg: Signature verification binary.
        keyring: Optional keyring file passed to the verifier.
    """

    model_config = ConfigDict(frozen=True)

    channel: str = Field(default=IMAGE_DEFAULTS["channel"], pattern=r"^[a-z]+$")
    version: str = Field(default=IMAGE_DEFAULTS["version"], pattern=r"^[\w.]+$")
    base_url: str = IMAGE_DEFAULTS["base_url"]
    artifact: str = IMAGE_DEFAULTS["artifact"]
    backing_format: str = IMAGE_DEFAULTS["backing_format"]
    image_dir: Path = Path(CLUSTER_DEFAULTS["image_dir"])
    gpg: str = DEFAULT_GPG
    keyring: Path | None = IMAGE_DEFAULTS.get("keyring")

    @property
    def artifact_url(self) -> str:
        base = self.base_url.format(channel=self.channel, version=self.version)
        return f"{base.rstrip('/')}/{self.artifact}"

    @property
    def signature_url(self) -> str:
        return f"{self.artifact_url}{SIGNATURE_SUFFIX}"

    @property
    def compressed_path(self) -> Path:
        """Local artifact path, unique per (channel, version)."""
        return self.image_dir / f"{self.channel}-{self.version}-{self.artifact}"

    @property
    def signature_path(self) -> Path:
        return self.compressed_path.with_name(self.compressed_path.name + SIGNATURE_SUFFIX)

    @property
    def raw_path(self) -> Path:
        name = self.compressed_path.name
        if name.endswith(COMPRESSED_SUFFIX):
            name = name[: -len(COMPRESSED_SUFFIX)]
        return self.compressed_path.with_name(name)


class ClusterConfig(BaseModel):
    """Fleet layout and domain sizing.

    Attributes:
        connect: libvirt connection URI.
        pool: Storage pool backing ``image_dir``.
        image_dir: Directory holding node disks and first-boot configs.
        workdir: Per-operator working directory name, relative to home.
        memory_mb: Memory per domain in MiB.
        vcpus: Virtual CPUs per domain.
        os_variant: ``virt-install`` OS variant.
        network: libvirt network the domains attach to.
        nodes: Ordered node names.
    """

    model_config = ConfigDict(frozen=True)

    connect: str = CLUSTER_DEFAULTS["connect"]
    pool: str = CLUSTER_DEFAULTS["pool"]
    image_dir: Path = Path(CLUSTER_DEFAULTS["image_dir"])
    workdir: str = CLUSTER_DEFAULTS["workdir"]
    memory_mb: int = Field(default=CLUSTER_DEFAULTS["memory_mb"], ge=128)
    vcpus: int = Field(default=CLUSTER_DEFAULTS["vcpus"], ge=1, le=64)
    os_variant: str = CLUSTER_DEFAULTS["os_variant"]
    network: str = CLUSTER_DEFAULTS["network"]
    nodes: tuple[str, ...] = tuple(CLUSTER_DEFAULTS["nodes"])

    @field_validator("nodes")
    @classmethod
    def _unique_node_names(cls, nodes: tuple[str, ...]) -> tuple[str, ...]:
        if not nodes:
            raise ValueError("at least one node is required")
        if len(set(nodes)) != len(nodes):
            raise ValueError(f"node names must be unique: {list(nodes)}")
        return nodes


# ============================================================================
# Config resolution and display
# ============================================================================

def resolve_config() -> tuple[ImageConfig, ClusterConfig]:
    """Build the image and cluster configuration from compiled-in defaults.

    Returns:
        Tuple of (image_config, cluster_config).
    """
    tools = ToolConfig()
    return ImageConfig(gpg=tools.gpg), ClusterConfig()


def display_config(image_cfg: ImageConfig, cluster_cfg: ClusterConfig) -> None:
    """Print the resolved configuration in a panel."""
    lines = [
        f"Channel:    {image_cfg.channel}",
        f"Version:    {image_cfg.version}",
        f"Image:      {image_cfg.raw_path}",
        f"Verifier:   {image_cfg.gpg}",
        f"Connection: {cluster_cfg.connect}",
        f"Pool:       {cluster_cfg.pool}",
        f"Nodes:      {', '.join(cluster_cfg.nodes)}",
    ]
    console.print(Panel("\n".join(lines), title="Configuration", style="blue"))
