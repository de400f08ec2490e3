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

"""Shared base image download, signature verification, and decompression."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import httpx
import sh
from rich.panel import Panel
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn

from fleet_manager import console, logger
from fleet_manager.config import ImageConfig
from fleet_manager.constants import DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT_SECONDS
from fleet_manager.errors import AcquisitionError, StorageError, VerificationError
from fleet_manager.utils import error_output


class ImageStatus(str, Enum):
    """Where a base image is in its one-way acquisition pipeline."""

    ABSENT = "absent"
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    FAILED = "failed"
    DECOMPRESSED = "decompressed"


@dataclass(frozen=True)
class BaseImage:
    """A (channel, version) base image and its local artifacts."""

    channel: str
    version: str
    artifact_url: str
    signature_url: str
    compressed_path: Path
    signature_path: Path
    raw_path: Path
    status: ImageStatus

    @property
    def ready(self) -> bool:
        return self.status is ImageStatus.DECOMPRESSED


def describe(image_cfg: ImageConfig, status: ImageStatus | None = None) -> BaseImage:
    """Report the base image as currently found on disk.

    Args:
        image_cfg: Base image configuration.
        status: Explicit status to report instead of inspecting the disk.

    Returns:
        A BaseImage snapshot; no files are touched.
    """
    if status is None:
        if image_cfg.raw_path.exists():
            status = ImageStatus.DECOMPRESSED
        elif image_cfg.compressed_path.exists():
            status = ImageStatus.UNVERIFIED
        else:
            status = ImageStatus.ABSENT
    return BaseImage(
        channel=image_cfg.channel,
        version=image_cfg.version,
        artifact_url=image_cfg.artifact_url,
        signature_url=image_cfg.signature_url,
        compressed_path=image_cfg.compressed_path,
        signature_path=image_cfg.signature_path,
        raw_path=image_cfg.raw_path,
        status=status,
    )


# ============================================================================
# Pipeline steps
# ============================================================================

def download(url: str, dest: Path, client: httpx.Client | None = None) -> None:
    """Stream a URL to a file, showing a progress bar.

    The body is written to ``<dest>.part`` and renamed on completion so an
    interrupted transfer never leaves a truncated file at ``dest``.

    Args:
        url: Source URL.
        dest: Target file path.
        client: Optional httpx client; a short-lived one is created if omitted.

    Raises:
        AcquisitionError: On connection errors or non-2xx responses.
        StorageError: If the target file cannot be written.
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True)
    partial = dest.with_name(dest.name + ".part")
    logger.info("Downloading %s -> %s", url, dest)
    try:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length", 0)) or None
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(), DownloadColumn(), TransferSpeedColumn(),
                console=console, transient=True,
            ) as progress, open(partial, "wb") as out:
                task = progress.add_task(f"[cyan]{dest.name}", total=total)
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    out.write(chunk)
                    progress.advance(task, len(chunk))
        partial.replace(dest)
    except httpx.HTTPError as err:
        partial.unlink(missing_ok=True)
        raise AcquisitionError(f"Failed to download {url}: {err}") from err
    except OSError as err:
        partial.unlink(missing_ok=True)
        raise StorageError(f"Failed to write {dest}: {err}") from err
    finally:
        if owns_client:
            client.close()


def verify_signature(image_cfg: ImageConfig) -> None:
    """Check the detached signature over the compressed artifact.

    Raises:
        VerificationError: If the signature is missing, the verifier is not
            installed, or the signature does not verify.
    """
    signature, artifact = image_cfg.signature_path, image_cfg.compressed_path
    if not signature.exists():
        raise VerificationError(f"Signature {signature} is missing")

    args: list[str] = []
    if image_cfg.keyring is not None:
        args += ["--no-default-keyring", "--keyring", str(image_cfg.keyring)]
    args += ["--verify", str(signature), str(artifact)]
    try:
        gpg = sh.Command(image_cfg.gpg)
    except sh.CommandNotFound as err:
        raise VerificationError(f"Signature verifier '{image_cfg.gpg}' not found (set GPG)") from err
    try:
        gpg(*args)
    except sh.ErrorReturnCode as err:
        raise VerificationError(
            f"Signature check failed for {artifact.name}: {error_output(err)}"
        ) from err


def decompress(path: Path) -> None:
    """Decompress a ``.bz2`` file in place, replacing it with the raw file.

    Raises:
        StorageError: If ``bunzip2`` fails.
    """
    try:
        sh.bunzip2(str(path))
    except sh.ErrorReturnCode as err:
        raise StorageError(f"Failed to decompress {path}: {error_output(err)}") from err


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as err:
            logger.warning("Could not remove %s: %s", path, err)


# ============================================================================
# Public API
# ============================================================================

def ensure_ready(image_cfg: ImageConfig, client: httpx.Client | None = None) -> Path:
    """Make the decompressed base image available and return its path.

    A raw image that already exists is trusted as-is; it is neither
    re-downloaded nor re-verified.

    Args:
        image_cfg: Base image configuration.
        client: Optional httpx client used for both downloads.

    Returns:
        Path of the raw (decompressed) base image.

    Raises:
        StorageError: If the image directory cannot be created.
        AcquisitionError: If the artifact download fails.
        VerificationError: If the signature cannot be fetched or does not
            verify; the unverified artifact is removed.
    """
    try:
        image_cfg.image_dir.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise StorageError(f"Cannot create image directory {image_cfg.image_dir}: {err}") from err

    raw = image_cfg.raw_path
    if raw.exists():
        console.print(f"[green]\u2713 Base image {image_cfg.channel}/{image_cfg.version} ready[/green]")
        logger.debug("Using existing base image %s", raw)
        return raw

    console.print(Panel.fit(
        f"Fetching base image {image_cfg.channel}/{image_cfg.version}", style="bold blue"))
    download(image_cfg.artifact_url, image_cfg.compressed_path, client)
    try:
        download(image_cfg.signature_url, image_cfg.signature_path, client)
    except AcquisitionError as err:
        _discard(image_cfg.compressed_path)
        raise VerificationError(f"Signature for {image_cfg.artifact} is unavailable: {err}") from err

    console.print("[yellow]\u2139\ufe0f  Verifying signature...[/yellow]")
    try:
        verify_signature(image_cfg)
    except VerificationError:
        logger.error("Base image %s/%s %s", image_cfg.channel, image_cfg.version, ImageStatus.FAILED.value)
        _discard(image_cfg.compressed_path, image_cfg.signature_path)
        console.print("[red]\u2717 Signature verification failed; unverified image removed[/red]")
        raise
    logger.info("Base image %s/%s %s", image_cfg.channel, image_cfg.version, ImageStatus.VERIFIED.value)
    console.print("[green]  \u2713 Signature verified[/green]")

    console.print("[yellow]\u2139\ufe0f  Decompressing...[/yellow]")
    decompress(image_cfg.compressed_path)
    _discard(image_cfg.signature_path)
    if not raw.exists():
        raise StorageError(f"Decompression did not produce {raw}")
    console.print(f"[green]\u2705 Base image ready at {raw}[/green]")
    return raw
