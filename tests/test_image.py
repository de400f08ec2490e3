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

"""Unit tests for base image acquisition, verification and decompression."""

from __future__ import annotations

import httpx
import pytest

import fleet_manager.image as image
from fleet_manager.errors import AcquisitionError, StorageError, VerificationError
from tests.conftest import FakeTool, fake_sh


def _client(routes: dict[str, bytes], seen: list[str] | None = None) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(str(request.url))
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.Client(transport=httpx.MockTransport(handler))


def _fake_bunzip2(path):
    raw = path.with_name(path.name.removesuffix(".bz2"))
    raw.write_bytes(b"RAW:" + path.read_bytes())
    path.unlink()


@pytest.fixture
def routes(image_cfg):
    return {
        image_cfg.artifact_url: b"compressed-image",
        image_cfg.signature_url: b"signature",
    }


def test_image_paths_are_derived_from_channel_and_version(image_cfg, image_dir):
    assert image_cfg.artifact_url == (
        "https://images.example.test/stable/1010.5.0/coreos_production_qemu_image.img.bz2"
    )
    assert image_cfg.signature_url == image_cfg.artifact_url + ".sig"
    assert image_cfg.compressed_path == image_dir / "stable-1010.5.0-coreos_production_qemu_image.img.bz2"
    assert image_cfg.signature_path.name == "stable-1010.5.0-coreos_production_qemu_image.img.bz2.sig"
    assert image_cfg.raw_path == image_dir / "stable-1010.5.0-coreos_production_qemu_image.img"


def test_download_writes_file(tmp_path):
    dest = tmp_path / "file.bin"
    with _client({"https://x.test/file": b"payload"}) as client:
        image.download("https://x.test/file", dest, client)
    assert dest.read_bytes() == b"payload"
    assert not (tmp_path / "file.bin.part").exists()


def test_download_http_error_raises_acquisition_error(tmp_path):
    dest = tmp_path / "file.bin"
    with _client({}) as client, pytest.raises(AcquisitionError, match="404"):
        image.download("https://x.test/missing", dest, client)
    assert not dest.exists()
    assert not (tmp_path / "file.bin.part").exists()


def test_ensure_ready_downloads_verifies_and_decompresses(image_cfg, routes, monkeypatch):
    verified = []
    monkeypatch.setattr(image, "verify_signature", lambda cfg: verified.append(cfg.compressed_path.exists()))
    monkeypatch.setattr(image, "decompress", _fake_bunzip2)

    with _client(routes) as client:
        raw = image.ensure_ready(image_cfg, client)

    assert raw == image_cfg.raw_path
    assert raw.read_bytes() == b"RAW:compressed-image"
    assert verified == [True]
    assert not image_cfg.compressed_path.exists()
    assert not image_cfg.signature_path.exists()
    assert image.describe(image_cfg).ready


def test_failed_verification_never_produces_raw_image(image_cfg, routes, monkeypatch):
    def reject(cfg):
        raise VerificationError("BAD signature")

    decompressed = []
    monkeypatch.setattr(image, "verify_signature", reject)
    monkeypatch.setattr(image, "decompress", lambda path: decompressed.append(path))

    with _client(routes) as client, pytest.raises(VerificationError):
        image.ensure_ready(image_cfg, client)

    assert decompressed == []
    assert not image_cfg.raw_path.exists()
    assert not image_cfg.compressed_path.exists()
    assert not image_cfg.signature_path.exists()


def test_existing_raw_image_is_not_downloaded_again(image_cfg):
    image_cfg.raw_path.write_bytes(b"already here")
    seen: list[str] = []

    with _client({}, seen) as client:
        assert image.ensure_ready(image_cfg, client) == image_cfg.raw_path

    assert seen == []
    assert image_cfg.raw_path.read_bytes() == b"already here"


def test_missing_artifact_raises_acquisition_error(image_cfg, monkeypatch):
    monkeypatch.setattr(image, "verify_signature", lambda cfg: pytest.fail("must not verify"))

    with _client({}) as client, pytest.raises(AcquisitionError):
        image.ensure_ready(image_cfg, client)
    assert not image_cfg.raw_path.exists()


def test_missing_signature_download_discards_artifact(image_cfg, monkeypatch):
    monkeypatch.setattr(image, "verify_signature", lambda cfg: pytest.fail("must not verify"))
    decompressed = []
    monkeypatch.setattr(image, "decompress", lambda path: decompressed.append(path))

    with _client({image_cfg.artifact_url: b"compressed-image"}) as client, \
            pytest.raises(VerificationError, match="404"):
        image.ensure_ready(image_cfg, client)

    assert decompressed == []
    assert not image_cfg.compressed_path.exists()
    assert not image_cfg.signature_path.exists()
    assert not image_cfg.raw_path.exists()


def test_uncreatable_image_dir_raises_storage_error(image_cfg, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cfg = image_cfg.model_copy(update={"image_dir": blocker / "images"})

    with pytest.raises(StorageError):
        image.ensure_ready(cfg)


def test_verify_signature_requires_signature_file(image_cfg):
    image_cfg.compressed_path.write_bytes(b"data")
    with pytest.raises(VerificationError, match="missing"):
        image.verify_signature(image_cfg)


def test_verify_signature_runs_configured_gpg_with_keyring(image_cfg, tmp_path, monkeypatch):
    image_cfg.compressed_path.write_bytes(b"data")
    image_cfg.signature_path.write_bytes(b"sig")
    keyring = tmp_path / "release.gpg"
    cfg = image_cfg.model_copy(update={"gpg": "gpg2", "keyring": keyring})
    gpg2 = FakeTool("gpg2")
    monkeypatch.setattr(image, "sh", fake_sh({"gpg2": gpg2}))

    image.verify_signature(cfg)

    args, _ = gpg2.calls[0]
    assert args == (
        "--no-default-keyring", "--keyring", str(keyring),
        "--verify", str(cfg.signature_path), str(cfg.compressed_path),
    )


def test_verify_signature_failure_raises(image_cfg, monkeypatch):
    image_cfg.compressed_path.write_bytes(b"data")
    image_cfg.signature_path.write_bytes(b"sig")
    gpg = FakeTool("gpg", fail={"--verify": (1, "gpg: BAD signature")})
    monkeypatch.setattr(image, "sh", fake_sh({"gpg": gpg}))

    with pytest.raises(VerificationError, match="BAD signature"):
        image.verify_signature(image_cfg)


def test_verify_signature_with_missing_tool_raises(image_cfg, monkeypatch):
    image_cfg.compressed_path.write_bytes(b"data")
    image_cfg.signature_path.write_bytes(b"sig")
    monkeypatch.setattr(image, "sh", fake_sh({}))

    with pytest.raises(VerificationError, match="not found"):
        image.verify_signature(image_cfg)


def test_decompress_runs_bunzip2(tmp_path, monkeypatch):
    bunzip2 = FakeTool("bunzip2")
    monkeypatch.setattr(image, "sh", fake_sh({"bunzip2": bunzip2}))

    image.decompress(tmp_path / "x.img.bz2")

    assert bunzip2.calls[0][0] == (str(tmp_path / "x.img.bz2"),)


def test_describe_reports_state_on_disk(image_cfg):
    assert image.describe(image_cfg).status is image.ImageStatus.ABSENT
    image_cfg.compressed_path.write_bytes(b"data")
    assert image.describe(image_cfg).status is image.ImageStatus.UNVERIFIED
    image_cfg.raw_path.write_bytes(b"raw")
    assert image.describe(image_cfg).status is image.ImageStatus.DECOMPRESSED
