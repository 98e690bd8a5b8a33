"""
Utility modules for the MCU auto-updater.

Pure helpers shared by the pipeline stages and the CLI.
"""

from .crypto import (
    Decryptor,
    OpenSSLDecryptor,
    load_key,
    openssl_decrypt,
    openssl_encrypt,
)
from .logging import setup_logging

__all__ = [
    "Decryptor",
    "OpenSSLDecryptor",
    "load_key",
    "openssl_decrypt",
    "openssl_encrypt",
    "setup_logging",
]
