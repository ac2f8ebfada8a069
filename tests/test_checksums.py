"""Tests for checksum utilities."""

from pathlib import Path

import pytest

from tilepipe.checksums import compute_sha256, same_content


pytestmark = pytest.mark.unit


@pytest.fixture(scope="function")
def payload_fp(tmp_path: Path) -> Path:
    """Create a deterministic payload for checksum tests."""
    fp = tmp_path / "payload.bin"
    fp.write_bytes(b"tilepipe-test")
    return fp


def test_compute_sha256_returns_hex_digest(payload_fp: Path):
    """Verify digest format for a known payload."""
    digest = compute_sha256(payload_fp)
    assert isinstance(digest, str)
    assert len(digest) == 64
    assert digest == compute_sha256(str(payload_fp))


@pytest.mark.parametrize(
    "other_bytes, expected_match",
    [
        pytest.param(b"tilepipe-test", True, id="identical"),
        pytest.param(b"tilepipe-tesT", False, id="same_size_different_bytes"),
        pytest.param(b"tilepipe", False, id="different_size"),
    ],
)
def test_same_content(payload_fp: Path, tmp_path: Path, other_bytes: bytes, expected_match: bool):
    other_fp = tmp_path / "other.bin"
    other_fp.write_bytes(other_bytes)
    assert same_content(payload_fp, other_fp) is expected_match


def test_same_content_missing_file(payload_fp: Path, tmp_path: Path):
    assert not same_content(payload_fp, tmp_path / "missing.bin")
