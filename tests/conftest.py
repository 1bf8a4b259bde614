"""Shared test fixtures for skvault."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from skvault.cipher import SALT_MAGIC, CipherBackend
from skvault.errors import CipherError
from skvault.keygen import generate_key_pair
from skvault.models import VaultConfig


class FakeBackend(CipherBackend):
    """Byte-shuffling stand-in for a real cipher backend.

    Records every call and fails on demand. The fake payload ciphertext
    carries the mode it was written with so mismatches can be detected.
    """

    name = "fake"

    def __init__(self, version_text: str = "OpenSSL 3.0.2 15 Mar 2022") -> None:
        self.version_text = version_text
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _step(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise CipherError(f"{op} failed (exit 1)")

    def version(self) -> str:
        self.calls.append("version")
        return self.version_text

    def encrypt_key(self, plaintext: bytes, public_key: Path, output: Path) -> None:
        self._step("encrypt_key")
        Path(output).write_bytes(b"K" + plaintext[::-1])

    def decrypt_key(self, ciphertext: Path, private_key: Path, output: Path) -> None:
        self._step("decrypt_key")
        Path(output).write_bytes(Path(ciphertext).read_bytes()[1:][::-1])

    def encrypt_payload(self, source, output, secret, mode) -> None:
        if "encrypt_payload" in self.fail_on:
            Path(output).write_bytes(b"partial")
        self._step("encrypt_payload")
        header = SALT_MAGIC + b"\0" * 8 + mode.value.encode().ljust(16)
        Path(output).write_bytes(header + Path(source).read_bytes())

    def decrypt_payload(self, source, output, secret_file, mode) -> None:
        if "decrypt_payload" in self.fail_on:
            Path(output).write_bytes(b"garbage")
        self._step("decrypt_payload")
        data = Path(source).read_bytes()
        if data[16:32].strip().decode() != mode.value:
            Path(output).write_bytes(b"garbage")
            raise CipherError("bad decrypt")
        Path(output).write_bytes(data[32:])


@pytest.fixture(autouse=True)
def _allow_any_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test runners are often root; the root refusal has its own tests."""
    monkeypatch.setattr("skvault.backup.check_privileges", lambda: None)


@pytest.fixture(scope="session")
def rsa_keys(tmp_path_factory: pytest.TempPathFactory) -> tuple[Path, Path]:
    """One 2048-bit key pair for the whole session: (private, public)."""
    key_dir = tmp_path_factory.mktemp("keys")
    return generate_key_pair(key_dir / "backups-rsa-key", bits=2048)


@pytest.fixture(scope="session")
def other_rsa_keys(tmp_path_factory: pytest.TempPathFactory) -> tuple[Path, Path]:
    """A second, unrelated key pair."""
    key_dir = tmp_path_factory.mktemp("other-keys")
    return generate_key_pair(key_dir / "other-rsa-key", bits=2048)


def _install_public_key(source: Path, dest: Path, mode: int = 0o400) -> Path:
    """Copy a public key into a vault root with the given mode."""
    shutil.copyfile(source, dest)
    os.chmod(dest, mode)
    return dest


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    """An empty vault root with a repository directory."""
    root = tmp_path / "backup"
    (root / "repository").mkdir(parents=True)
    return root


@pytest.fixture
def config(vault_root: Path, rsa_keys: tuple[Path, Path]) -> VaultConfig:
    """Config for a vault whose public key is installed and valid."""
    private_key, public_key = rsa_keys
    _install_public_key(public_key, vault_root / "backups-rsa-key.pub")
    return VaultConfig(root=vault_root, private_key=private_key)


@pytest.fixture
def payload(config: VaultConfig) -> Path:
    """A plaintext payload where the dump step would leave it."""
    data = b"dump-data\n" * 5000 + os.urandom(777)
    config.payload.write_bytes(data)
    return config.payload


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()

