"""CLI tests for the skvault commands via CliRunner."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from skvault.cli import main
from skvault.models import VaultConfig


@pytest.fixture(autouse=True)
def _no_signal_handlers(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the test process's SIGTERM handler untouched."""
    monkeypatch.setattr("skvault.cli.backup.exit_on_sigterm", lambda: None)


@pytest.fixture
def vault(config: VaultConfig, payload: Path) -> Path:
    """A vault root with a config file naming the private key."""
    (config.root / "skvault.yaml").write_text(
        yaml.safe_dump({"private_key": str(config.private_key), "retention_days": 30})
    )
    return config.root


def _run(*args: str):
    return CliRunner().invoke(main, list(args))


class TestHelp:
    """Every command is registered and documented."""

    @pytest.mark.parametrize("command", ["backup", "restore", "list", "prune", "init", "check-key"])
    def test_command_help(self, command: str) -> None:
        result = _run(command, "--help")
        assert result.exit_code == 0
        assert "Examples" in result.output

    def test_version(self) -> None:
        result = _run("--version")
        assert result.exit_code == 0
        assert "skvault" in result.output


class TestRootSelection:
    """--root beats the config file's root, which beats SKVAULT_ROOT."""

    def _vault_with_backup(self, root: Path, backup_id: str) -> Path:
        repo = root / "repository"
        repo.mkdir(parents=True)
        (repo / f"backup.{backup_id}.tar.e").write_bytes(b"x")
        (repo / f"backup.{backup_id}.aes.key.e").write_bytes(b"k")
        return root

    def test_config_file_root_used(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        other = self._vault_with_backup(tmp_path / "other", "2020-01-01-000000")
        self._vault_with_backup(tmp_path / "env-root", "1999-09-09-000000")
        cfg = tmp_path / "custom.yaml"
        cfg.write_text(yaml.safe_dump({"root": str(other)}))
        monkeypatch.setattr("skvault.config.VAULT_ROOT", str(tmp_path / "env-root"))

        result = _run("--config", str(cfg), "list")

        assert result.exit_code == 0, result.output
        assert "2020-01-01-000000" in result.output
        assert "1999-09-09-000000" not in result.output

    def test_explicit_root_beats_config_file(self, tmp_path: Path) -> None:
        other = self._vault_with_backup(tmp_path / "other", "2020-01-01-000000")
        explicit = tmp_path / "explicit"
        explicit.mkdir()
        cfg = tmp_path / "custom.yaml"
        cfg.write_text(yaml.safe_dump({"root": str(other)}))

        result = _run("--root", str(explicit), "--config", str(cfg), "list")

        assert result.exit_code == 0, result.output
        assert "No backups found" in result.output

    def test_env_default_without_options(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        env_root = self._vault_with_backup(tmp_path / "env-root", "2021-02-03-040506")
        monkeypatch.setattr("skvault.config.VAULT_ROOT", str(env_root))

        result = _run("list")

        assert result.exit_code == 0, result.output
        assert "2021-02-03-040506" in result.output


class TestBackupCommand:
    """Tests for `skvault backup`."""

    def test_backup_succeeds(self, vault: Path) -> None:
        result = _run("--root", str(vault), "backup")
        assert result.exit_code == 0, result.output
        assert "Backup sealed" in result.output
        assert len(list((vault / "repository").glob("*.tar.e"))) == 1
        assert not (vault / "skvault.lock").exists()

    def test_backup_locked_exits_1(self, vault: Path) -> None:
        (vault / "skvault.lock").touch()
        result = _run("--root", str(vault), "backup")
        assert result.exit_code == 1
        assert "already running" in result.output
        assert (vault / "current_backup.tar").exists()

    def test_backup_bad_key_mode_exits_1(self, vault: Path) -> None:
        os.chmod(vault / "backups-rsa-key.pub", 0o644)
        result = _run("--root", str(vault), "backup")
        assert result.exit_code == 1
        assert "should be 400" in result.output
        assert list((vault / "repository").iterdir()) == []

    def test_backup_missing_payload_exits_1(self, vault: Path) -> None:
        (vault / "current_backup.tar").unlink()
        result = _run("--root", str(vault), "backup")
        assert result.exit_code == 1
        assert not (vault / "skvault.lock").exists()

    def test_invalid_config_exits_1(self, vault: Path) -> None:
        (vault / "skvault.yaml").write_text("retention_days: -3\n")
        result = _run("--root", str(vault), "backup")
        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestRestoreCommand:
    """Tests for `skvault restore`."""

    def test_restore_roundtrip(self, vault: Path, payload: Path, tmp_path: Path) -> None:
        data = payload.read_bytes()
        assert _run("--root", str(vault), "backup").exit_code == 0
        [sealed] = (vault / "repository").glob("*.tar.e")
        output = tmp_path / "restored.tar"

        result = _run("--root", str(vault), "restore", str(sealed), "-o", str(output))

        assert result.exit_code == 0, result.output
        assert "Restore complete" in result.output
        assert output.read_bytes() == data

    def test_restore_requires_output(self, vault: Path) -> None:
        result = _run("--root", str(vault), "restore", "whatever.tar.e")
        assert result.exit_code == 2

    def test_restore_missing_companion(self, vault: Path, tmp_path: Path) -> None:
        lonely = tmp_path / "backup.x.tar.e"
        lonely.write_bytes(b"Salted__" + b"0" * 24)
        result = _run("--root", str(vault), "restore", str(lonely), "-o", str(tmp_path / "o"))
        assert result.exit_code == 1
        assert "symmetric key file" in result.output

    def test_restore_refuses_existing_output(self, vault: Path, tmp_path: Path) -> None:
        assert _run("--root", str(vault), "backup").exit_code == 0
        [sealed] = (vault / "repository").glob("*.tar.e")
        output = tmp_path / "exists.tar"
        output.write_text("keep")

        result = _run("--root", str(vault), "restore", str(sealed), "-o", str(output))

        assert result.exit_code == 1
        assert output.read_text() == "keep"


class TestRepoCommands:
    """Tests for `skvault list` and `skvault prune`."""

    def test_list_empty(self, vault: Path) -> None:
        result = _run("--root", str(vault), "list")
        assert result.exit_code == 0
        assert "No backups found" in result.output

    def test_list_after_backup(self, vault: Path) -> None:
        assert _run("--root", str(vault), "backup").exit_code == 0
        (vault / "repository" / "backup.1999-01-01-000000.tar.e").write_bytes(b"x")

        result = _run("--root", str(vault), "list")

        assert result.exit_code == 0
        assert "2 backup(s)" in result.output
        assert "incomplete" in result.output
        assert "complete" in result.output

    def test_prune(self, vault: Path) -> None:
        old = vault / "repository" / "backup.1999-01-01-000000.tar.e"
        old.write_bytes(b"x")
        os.utime(old, (0, 0))

        result = _run("--root", str(vault), "prune", "--days", "7")

        assert result.exit_code == 0
        assert "Pruned 1 file(s)" in result.output
        assert not old.exists()

    def test_prune_negative_days_rejected(self, vault: Path) -> None:
        assert _run("--root", str(vault), "prune", "--days", "-1").exit_code == 2


class TestKeyCommands:
    """Tests for `skvault init` and `skvault check-key`."""

    def test_check_key_ok(self, vault: Path) -> None:
        result = _run("--root", str(vault), "check-key")
        assert result.exit_code == 0
        assert "OK" in result.output

    def test_check_key_bad_mode(self, vault: Path) -> None:
        os.chmod(vault / "backups-rsa-key.pub", 0o600)
        result = _run("--root", str(vault), "check-key")
        assert result.exit_code == 1
        assert "should be 400" in result.output

    def test_init_creates_pair(self, tmp_path: Path) -> None:
        root = tmp_path / "fresh"
        root.mkdir()

        result = _run("--root", str(root), "init", "--bits", "2048")

        assert result.exit_code == 0, result.output
        assert "Key pair generated" in result.output
        assert (root / "backups-rsa-key").stat().st_mode & 0o777 == 0o600
        assert (root / "backups-rsa-key.pub").stat().st_mode & 0o777 == 0o400
        assert _run("--root", str(root), "check-key").exit_code == 0

    def test_init_refuses_overwrite(self, vault: Path) -> None:
        result = _run("--root", str(vault), "init", "--bits", "2048")
        assert result.exit_code == 1
        assert "Refusing to overwrite" in result.output

    def test_init_rejects_small_keys(self, tmp_path: Path) -> None:
        assert _run("--root", str(tmp_path), "init", "--bits", "1024").exit_code == 2
