"""RSA key pair generation for new vaults.

Writes the private key (0600) and ``<name>.pub`` (0400) side by side.
The private key is only generated here for convenience: move it off the
backup host, into a password manager or an offline medium, before the
first backup runs. If it stays, plain backups would be just as safe.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import PreflightError

logger = logging.getLogger("skvault.keygen")

DEFAULT_KEY_BITS = 4096
MIN_KEY_BITS = 2048


def generate_key_pair(private_key_path: Path, bits: int = DEFAULT_KEY_BITS) -> tuple[Path, Path]:
    """Generate an RSA key pair.

    Args:
        private_key_path: Where the private key goes. The public key is
            written next to it with a ``.pub`` extension.
        bits: Modulus size, at least 2048.

    Returns:
        (private_key_path, public_key_path)

    Raises:
        ValueError: If ``bits`` is below 2048.
        PreflightError: If either file already exists.
    """
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    if bits < MIN_KEY_BITS:
        raise ValueError(f"RSA keys must be at least {MIN_KEY_BITS} bits, got {bits}")

    private_path = Path(private_key_path).expanduser()
    public_path = private_path.with_name(private_path.name + ".pub")
    for path in (private_path, public_path):
        if path.exists():
            raise PreflightError(f"Refusing to overwrite existing key '{path}'")

    private_path.parent.mkdir(parents=True, exist_ok=True)

    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    _write_exclusive(private_path, private_pem, 0o600)
    _write_exclusive(public_path, public_pem, 0o600)
    os.chmod(public_path, 0o400)

    logger.info("Generated %d-bit RSA key pair at %s", bits, private_path)
    return private_path, public_path


def _write_exclusive(path: Path, data: bytes, mode: int) -> None:
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
