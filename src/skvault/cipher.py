"""
Envelope cipher — one AES key per run, sealed with RSA.

Encrypt:
    1. 32 random bytes, base64 encoded: the run's secret.
    2. secret -> RSA (PKCS#1 v1.5) under the public key -> key ciphertext.
    3. payload -> AES-256-CBC, salted, PBKDF2 (or legacy) -> payload ciphertext.
    4. plaintext payload deleted only once its ciphertext exists.

Decrypt reverses this through a 0600 temporary secret file that is
removed whether or not the payload step succeeds.

On-disk formats match the openssl CLI so artifacts stay recoverable by
hand with nothing but a private key:

    openssl pkeyutl -decrypt -inkey backups-rsa-key -in key.e -out key.bin
    openssl enc -d -aes-256-cbc -pbkdf2 -in data.tar.e -out data.tar -pass file:key.bin

The key ciphertext's plaintext is ``<secret>\\n<mode>\\n``. openssl only
reads the first line of a pass file, so the mode line rides along for
free and lets decrypt pick the right derivation.

Backends:
    NativeBackend   in-process, built on ``cryptography``.
    OpenSSLBackend  shells out to the ``openssl`` binary.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import re
import secrets
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import CipherError, MissingExecutableError
from .models import BackendName, CipherMode, CipherModeSetting, EncryptedPayload

logger = logging.getLogger("skvault.cipher")

SECRET_BYTES = 32
SALT_MAGIC = b"Salted__"
SALT_LEN = 8
AES_KEY_LEN = 32
AES_IV_LEN = 16
AES_BLOCK = 16
PBKDF2_ITERATIONS = 10000
CHUNK_SIZE = 1024 * 1024

# First library version whose `openssl enc` understands -pbkdf2.
PBKDF2_MIN_VERSION = (1, 1, 1)

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


# ---------------------------------------------------------------------------
# Mode selection
# ---------------------------------------------------------------------------


def parse_library_version(text: str) -> tuple[int, int, int]:
    """Extract a numeric version from e.g. ``OpenSSL 1.1.1w  11 Sep 2023``.

    Raises:
        CipherError: If no version number is present.
    """
    match = _VERSION_RE.search(text or "")
    if not match:
        raise CipherError(f"Can't determine cipher library version from {text!r}")
    return tuple(int(part) for part in match.groups())  # type: ignore[return-value]


def select_cipher_mode(version_text: str) -> CipherMode:
    """Pick the symmetric mode a given cipher library supports.

    Versions are compared numerically, so ``1.1.10`` ranks above ``1.1.9``.
    """
    if parse_library_version(version_text) >= PBKDF2_MIN_VERSION:
        return CipherMode.PBKDF2
    return CipherMode.LEGACY


def resolve_mode(setting: CipherModeSetting, backend: "CipherBackend") -> CipherMode:
    """Turn the configured mode into a concrete one."""
    if setting == CipherModeSetting.AUTO:
        version = backend.version()
        mode = select_cipher_mode(version)
        logger.debug("Cipher library %r -> %s mode", version, mode.value)
        return mode
    return CipherMode(setting.value)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class CipherBackend(ABC):
    """The narrow seam between the pipeline and actual cryptography.

    Every method works on files and raises CipherError on failure.
    """

    name: str = "abstract"

    def preflight(self) -> None:
        """Check that the backend can run at all."""

    @abstractmethod
    def version(self) -> str:
        """Version string of the underlying cipher library."""

    @abstractmethod
    def encrypt_key(self, plaintext: bytes, public_key: Path, output: Path) -> None:
        """RSA-encrypt ``plaintext`` under ``public_key`` into ``output``."""

    @abstractmethod
    def decrypt_key(self, ciphertext: Path, private_key: Path, output: Path) -> None:
        """RSA-decrypt ``ciphertext`` with ``private_key`` into ``output``."""

    @abstractmethod
    def encrypt_payload(
        self, source: Path, output: Path, secret: str, mode: CipherMode
    ) -> None:
        """AES-encrypt ``source`` into ``output`` with ``secret`` as password."""

    @abstractmethod
    def decrypt_payload(
        self, source: Path, output: Path, secret_file: Path, mode: CipherMode
    ) -> None:
        """AES-decrypt ``source`` into ``output``; the password is the
        first line of ``secret_file``."""


def _derive_key_iv(password: bytes, salt: bytes, mode: CipherMode) -> tuple[bytes, bytes]:
    """Derive AES key and IV exactly as ``openssl enc`` does.

    PBKDF2: PBKDF2-HMAC-SHA256, 10000 iterations, 48 bytes.
    LEGACY: EVP_BytesToKey with MD5 and a single iteration.
    LEGACY_SHA256: the same with SHA-256.
    """
    if mode == CipherMode.PBKDF2:
        from cryptography.hazmat.primitives import hashes
        from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=AES_KEY_LEN + AES_IV_LEN,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        material = kdf.derive(password)
    else:
        digest = hashlib.sha256 if mode == CipherMode.LEGACY_SHA256 else hashlib.md5
        material = b""
        block = b""
        while len(material) < AES_KEY_LEN + AES_IV_LEN:
            block = digest(block + password + salt).digest()
            material += block
    return material[:AES_KEY_LEN], material[AES_KEY_LEN:AES_KEY_LEN + AES_IV_LEN]


def _read_password(secret_file: Path) -> bytes:
    """First line of a pass file, like ``openssl -pass file:``."""
    with open(secret_file, "rb") as f:
        return f.readline().rstrip(b"\r\n")


class NativeBackend(CipherBackend):
    """In-process backend on top of ``cryptography``.

    Produces the same bytes layout as the openssl CLI:
    ``Salted__`` + 8-byte salt + AES-256-CBC ciphertext with PKCS#7 padding.
    """

    name = BackendName.NATIVE.value

    def version(self) -> str:
        from cryptography.hazmat.backends.openssl.backend import backend

        return backend.openssl_version_text()

    def encrypt_key(self, plaintext: bytes, public_key: Path, output: Path) -> None:
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import padding, rsa

        try:
            key = serialization.load_pem_public_key(Path(public_key).read_bytes())
        except (OSError, ValueError) as exc:
            raise CipherError(f"Can't load public key '{public_key}': {exc}") from exc
        if not isinstance(key, rsa.RSAPublicKey):
            raise CipherError(f"Public key '{public_key}' is not an RSA key")

        try:
            ciphertext = key.encrypt(plaintext, padding.PKCS1v15())
        except ValueError as exc:
            raise CipherError(f"RSA encryption failed: {exc}") from exc

        with open(output, "wb") as f:
            f.write(ciphertext)

    def decrypt_key(self, ciphertext: Path, private_key: Path, output: Path) -> None:
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import padding, rsa

        try:
            key = serialization.load_pem_private_key(
                Path(private_key).read_bytes(), password=None
            )
        except TypeError as exc:
            raise CipherError(
                f"Private key '{private_key}' is passphrase protected; "
                "decrypt it first or use the openssl backend"
            ) from exc
        except (OSError, ValueError) as exc:
            raise CipherError(f"Can't load private key '{private_key}': {exc}") from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise CipherError(f"Private key '{private_key}' is not an RSA key")

        try:
            plaintext = key.decrypt(Path(ciphertext).read_bytes(), padding.PKCS1v15())
        except ValueError as exc:
            raise CipherError(
                f"Can't decrypt key file '{ciphertext}'; wrong private key?"
            ) from exc

        with open(output, "wb") as f:
            f.write(plaintext)

    def encrypt_payload(
        self, source: Path, output: Path, secret: str, mode: CipherMode
    ) -> None:
        from cryptography.hazmat.primitives import padding
        from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

        salt = os.urandom(SALT_LEN)
        key, iv = _derive_key_iv(secret.encode("utf-8"), salt, mode)
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        padder = padding.PKCS7(AES_BLOCK * 8).padder()

        with open(source, "rb") as fin, open(output, "wb") as fout:
            fout.write(SALT_MAGIC + salt)
            for chunk in iter(lambda: fin.read(CHUNK_SIZE), b""):
                fout.write(encryptor.update(padder.update(chunk)))
            fout.write(encryptor.update(padder.finalize()) + encryptor.finalize())

    def decrypt_payload(
        self, source: Path, output: Path, secret_file: Path, mode: CipherMode
    ) -> None:
        from cryptography.hazmat.primitives import padding
        from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

        password = _read_password(secret_file)

        with open(source, "rb") as fin:
            header = fin.read(len(SALT_MAGIC) + SALT_LEN)
            if len(header) < len(SALT_MAGIC) + SALT_LEN or not header.startswith(SALT_MAGIC):
                raise CipherError(f"'{source}' is not a salted ciphertext")
            salt = header[len(SALT_MAGIC):]

            key, iv = _derive_key_iv(password, salt, mode)
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            unpadder = padding.PKCS7(AES_BLOCK * 8).unpadder()

            try:
                with open(output, "wb") as fout:
                    for chunk in iter(lambda: fin.read(CHUNK_SIZE), b""):
                        fout.write(unpadder.update(decryptor.update(chunk)))
                    fout.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
            except ValueError as exc:
                raise CipherError(
                    f"Bad decrypt of '{source}': wrong key, wrong cipher mode, "
                    "or corrupt ciphertext"
                ) from exc


class OpenSSLBackend(CipherBackend):
    """Backend that drives the ``openssl`` command line tool.

    Passwords go through stdin or a pass file, never argv, so they do
    not show up in the process list.

    Args:
        executable: openssl binary name or path.
    """

    name = BackendName.OPENSSL.value

    def __init__(self, executable: str = "openssl") -> None:
        self.executable = executable

    def preflight(self) -> None:
        if shutil.which(self.executable) is None:
            raise MissingExecutableError(f"'{self.executable}' not found or not executable")

    def _run(
        self, args: list[str], what: str, stdin: Optional[bytes] = None
    ) -> subprocess.CompletedProcess:
        cmd = [self.executable, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, input=stdin, capture_output=True, check=False)
        except OSError as exc:
            raise CipherError(f"{what}: can't run {self.executable}: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise CipherError(f"{what} failed (exit {proc.returncode}): {stderr}")
        return proc

    @staticmethod
    def _mode_args(mode: CipherMode) -> list[str]:
        if mode == CipherMode.PBKDF2:
            return ["-pbkdf2", "-iter", str(PBKDF2_ITERATIONS)]
        if mode == CipherMode.LEGACY_SHA256:
            return ["-md", "sha256"]
        return ["-md", "md5"]

    def version(self) -> str:
        proc = self._run(["version"], "openssl version")
        return (proc.stdout or b"").decode("utf-8", errors="replace").strip()

    def encrypt_key(self, plaintext: bytes, public_key: Path, output: Path) -> None:
        self._run(
            ["pkeyutl", "-encrypt", "-pubin", "-inkey", str(public_key), "-out", str(output)],
            "Key encryption",
            stdin=plaintext,
        )

    def decrypt_key(self, ciphertext: Path, private_key: Path, output: Path) -> None:
        self._run(
            ["pkeyutl", "-decrypt", "-inkey", str(private_key),
             "-in", str(ciphertext), "-out", str(output)],
            "Key decryption",
        )

    def encrypt_payload(
        self, source: Path, output: Path, secret: str, mode: CipherMode
    ) -> None:
        self._run(
            ["enc", "-aes-256-cbc", "-salt", *self._mode_args(mode),
             "-in", str(source), "-out", str(output), "-pass", "stdin"],
            "Payload encryption",
            stdin=(secret + "\n").encode("utf-8"),
        )

    def decrypt_payload(
        self, source: Path, output: Path, secret_file: Path, mode: CipherMode
    ) -> None:
        self._run(
            ["enc", "-d", "-aes-256-cbc", *self._mode_args(mode),
             "-in", str(source), "-out", str(output), "-pass", f"file:{secret_file}"],
            "Payload decryption",
        )


def get_backend(name: BackendName | str) -> CipherBackend:
    """Instantiate a backend by name."""
    backend = BackendName(name)
    if backend == BackendName.OPENSSL:
        return OpenSSLBackend()
    return NativeBackend()


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _create_private_file(path: Path) -> None:
    """Create an empty 0600 file; fails if it already exists."""
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    os.close(fd)


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Could not remove temporary file %s: %s", path, exc)


def _key_plaintext(secret: str, mode: CipherMode) -> bytes:
    return f"{secret}\n{mode.value}\n".encode("ascii")


def _parse_secret_file(path: Path) -> tuple[str, Optional[CipherMode]]:
    """Read back a decrypted key file.

    Returns:
        The secret and the recorded mode (None for key files that carry
        only the secret).

    Raises:
        CipherError: If the content is not a well-formed secret, which
            usually means the wrong private key.
    """
    try:
        lines = path.read_text(encoding="ascii").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise CipherError("Decrypted key is not a valid secret; wrong private key?") from exc

    secret = lines[0].strip() if lines else ""
    try:
        raw = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CipherError("Decrypted key is not a valid secret; wrong private key?") from exc
    if len(raw) != SECRET_BYTES:
        raise CipherError("Decrypted key is not a valid secret; wrong private key?")

    recorded = None
    if len(lines) > 1 and lines[1].strip():
        try:
            recorded = CipherMode(lines[1].strip())
        except ValueError as exc:
            raise CipherError(f"Unknown cipher mode {lines[1].strip()!r} in key file") from exc
    return secret, recorded


def _select_decrypt_mode(
    recorded: Optional[CipherMode],
    requested: Optional[CipherMode],
    default: CipherMode,
) -> CipherMode:
    if recorded is not None and requested is not None and recorded != requested:
        raise CipherError(
            f"Artifact was encrypted in {recorded.value} mode but "
            f"{requested.value} mode was requested"
        )
    return recorded or requested or default


class EnvelopeCipher:
    """Hybrid encryption of a payload file.

    Args:
        backend: Cipher backend doing the actual work.
        work_dir: Directory for temporary files (the vault root).
        mode: Symmetric mode for new artifacts and the decrypt fallback.
    """

    def __init__(
        self,
        backend: CipherBackend,
        work_dir: Path,
        mode: CipherMode = CipherMode.PBKDF2,
    ) -> None:
        self.backend = backend
        self.work_dir = Path(work_dir)
        self.mode = mode

    def _temp_path(self, suffix: str) -> Path:
        token = secrets.token_hex(6)
        return self.work_dir / f".skvault-{os.getpid()}-{token}{suffix}"

    def encrypt(self, payload: Path, public_key: Path) -> EncryptedPayload:
        """Encrypt ``payload`` into a temporary ciphertext pair.

        The plaintext payload is deleted once both ciphertexts exist.
        On failure the temporary ciphertexts are removed and the
        plaintext is left where it was.

        Raises:
            CipherError: Missing inputs or a failed cipher step.
        """
        payload = Path(payload)
        public_key = Path(public_key)

        if not os.access(public_key, os.R_OK):
            raise CipherError(f"Can't read public key '{public_key}'")
        if not payload.is_file():
            raise CipherError(f"Payload '{payload}' not found; did the dump step fail?")

        raw = bytearray(secrets.token_bytes(SECRET_BYTES))
        secret = base64.b64encode(raw).decode("ascii")
        key_cipher = self._temp_path(".aes.key.e")
        payload_cipher = self._temp_path(".tar.e")

        try:
            _create_private_file(key_cipher)
            self.backend.encrypt_key(_key_plaintext(secret, self.mode), public_key, key_cipher)
            os.chmod(key_cipher, 0o600)

            _create_private_file(payload_cipher)
            self.backend.encrypt_payload(payload, payload_cipher, secret, self.mode)
            os.chmod(payload_cipher, 0o600)

            self._confirm(key_cipher, 1)
            self._confirm(payload_cipher, len(SALT_MAGIC) + SALT_LEN + AES_BLOCK)
        except OSError as exc:
            _discard(key_cipher, payload_cipher)
            raise CipherError(f"Encryption failed: {exc}") from exc
        except BaseException:
            _discard(key_cipher, payload_cipher)
            raise
        finally:
            # str copies can't be wiped; drop the reference and zero the bytes.
            raw[:] = bytes(len(raw))
            del secret

        try:
            payload.unlink()
        except OSError as exc:
            logger.error("Encrypted %s but could not delete the plaintext: %s", payload, exc)

        logger.info("Encrypted %s (%s mode)", payload, self.mode.value)
        return EncryptedPayload(
            payload_cipher=payload_cipher, key_cipher=key_cipher, mode=self.mode
        )

    @staticmethod
    def _confirm(path: Path, min_size: int) -> None:
        if not path.is_file() or path.stat().st_size < min_size:
            raise CipherError(f"Cipher step produced no usable output at '{path}'")

    def decrypt(
        self,
        payload_cipher: Path,
        key_cipher: Path,
        private_key: Path,
        output: Path,
        mode: Optional[CipherMode] = None,
    ) -> CipherMode:
        """Decrypt an artifact pair into ``output``.

        Args:
            payload_cipher: Payload ciphertext.
            key_cipher: Key ciphertext belonging to the same run.
            private_key: RSA private key.
            output: Plaintext destination; must not exist.
            mode: Force a cipher mode. Must match the mode recorded in
                the key file, when there is one.

        Returns:
            The cipher mode that was used.

        Raises:
            CipherError: Unreadable inputs, existing output, mode mismatch,
                or a failed cipher step.
        """
        output = Path(output)
        for label, path in (
            ("payload", payload_cipher),
            ("key file", key_cipher),
            ("private key", private_key),
        ):
            if not os.access(path, os.R_OK):
                raise CipherError(f"Can't read {label} '{path}'")
        if output.exists():
            raise CipherError(f"Refusing to overwrite existing output '{output}'")

        secret_file = self._temp_path(".key")
        try:
            _create_private_file(secret_file)
            self.backend.decrypt_key(Path(key_cipher), Path(private_key), secret_file)
            _, recorded = _parse_secret_file(secret_file)
            chosen = _select_decrypt_mode(recorded, mode, self.mode)
            candidates = [chosen]
            if recorded is None and mode is None and chosen == CipherMode.LEGACY:
                # Bare `enc` on 1.1.0 digests with SHA-256, not MD5.
                candidates.append(CipherMode.LEGACY_SHA256)

            try:
                _create_private_file(output)
            except FileExistsError as exc:
                raise CipherError(f"Refusing to overwrite existing output '{output}'") from exc
            try:
                chosen = self._decrypt_payload(Path(payload_cipher), output, secret_file, candidates)
            except BaseException:
                _discard(output)
                raise
        except OSError as exc:
            raise CipherError(f"Decryption failed: {exc}") from exc
        finally:
            _discard(secret_file)

        logger.info("Decrypted %s into %s (%s mode)", payload_cipher, output, chosen.value)
        return chosen

    def _decrypt_payload(
        self,
        source: Path,
        output: Path,
        secret_file: Path,
        candidates: list[CipherMode],
    ) -> CipherMode:
        """Try each mode in turn; the last failure propagates."""
        for attempt, candidate in enumerate(candidates, start=1):
            try:
                self.backend.decrypt_payload(source, output, secret_file, candidate)
            except CipherError as exc:
                if attempt == len(candidates):
                    raise
                logger.warning(
                    "Decrypt in %s mode failed (%s), retrying", candidate.value, exc
                )
                continue
            return candidate
        raise CipherError("No cipher mode to try")
