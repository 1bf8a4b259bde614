"""
SKVault — sealed backups for hosts that must not read them.

Packs a payload, encrypts it with a single-use AES key, and seals that
key with an RSA public key. The private key lives offline. The host can
write backups but never read them back.

A smilinTux Open Source Project.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

VAULT_ROOT = os.environ.get("SKVAULT_ROOT", "/opt/backup")
