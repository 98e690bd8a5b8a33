"""
OpenSSL-compatible symmetric decryption for distribution artifacts.

Artifacts are produced with:

    openssl enc -aes-256-cbc -salt -in <plain> -out <enc> -pass file:<keyfile>

Layout: b"Salted__" | salt (8 bytes) | AES-256-CBC ciphertext (PKCS#7).
Key and IV come from EVP_BytesToKey with a single iteration. OpenSSL 1.1.0
and later hash with SHA-256; older releases used MD5.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..core.errors import DecryptError, KeyUnavailable

SALT_MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE = 16

_DIGESTS = {
    "sha256": hashes.SHA256,
    "md5": hashes.MD5,
}


class Decryptor(Protocol):
    """Narrow decryption capability: ciphertext in, plaintext out."""

    def decrypt(self, data: bytes) -> bytes:
        """Return plaintext or raise DecryptError."""
        ...


def load_key(path: str | Path) -> bytes:
    """
    Read the passphrase the way ``-pass file:`` does: first line, no newline.

    Raises:
        KeyUnavailable: If the file is missing, unreadable or empty.
    """
    key_path = Path(path)
    try:
        raw = key_path.read_bytes()
    except OSError as e:
        raise KeyUnavailable(f"Cannot read key file {key_path}: {e}")

    first_line = raw.split(b"\n", 1)[0].rstrip(b"\r")
    if not first_line:
        raise KeyUnavailable(f"Key file {key_path} is empty")
    return first_line


def evp_bytes_to_key(password: bytes, salt: bytes, digest: str = "sha256") -> tuple[bytes, bytes]:
    """Derive (key, iv) for AES-256-CBC exactly as OpenSSL's EVP_BytesToKey."""
    try:
        algorithm = _DIGESTS[digest]
    except KeyError:
        raise ValueError(f"Unsupported digest '{digest}'. Use one of: {', '.join(_DIGESTS)}")

    derived = b""
    block = b""
    while len(derived) < KEY_SIZE + IV_SIZE:
        h = hashes.Hash(algorithm())
        h.update(block + password + salt)
        block = h.finalize()
        derived += block
    return derived[:KEY_SIZE], derived[KEY_SIZE:KEY_SIZE + IV_SIZE]


def openssl_decrypt(data: bytes, password: bytes, digest: str = "sha256") -> bytes:
    """
    Decrypt an ``openssl enc -aes-256-cbc -salt`` blob.

    Raises:
        DecryptError: On bad header, truncated ciphertext or bad padding
            (the usual symptom of a wrong key).
    """
    if not data.startswith(SALT_MAGIC):
        raise DecryptError("Missing 'Salted__' header")

    salt = data[len(SALT_MAGIC):len(SALT_MAGIC) + SALT_SIZE]
    body = data[len(SALT_MAGIC) + SALT_SIZE:]
    if len(salt) != SALT_SIZE:
        raise DecryptError("Truncated salt")
    if not body or len(body) % BLOCK_SIZE:
        raise DecryptError(f"Ciphertext length {len(body)} is not a multiple of {BLOCK_SIZE}")

    key, iv = evp_bytes_to_key(password, salt, digest)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()

    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise DecryptError("Bad padding (wrong key or corrupt data)")


def openssl_encrypt(
    data: bytes,
    password: bytes,
    digest: str = "sha256",
    salt: bytes | None = None,
) -> bytes:
    """Inverse of openssl_decrypt, for producing release artifacts."""
    if salt is None:
        salt = os.urandom(SALT_SIZE)
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")

    key, iv = evp_bytes_to_key(password, salt, digest)
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return SALT_MAGIC + salt + encryptor.update(padded) + encryptor.finalize()


class OpenSSLDecryptor:
    """Decryptor bound to a key file, loaded lazily on first use."""

    def __init__(self, key_file: str | Path, digest: str = "sha256"):
        if digest not in _DIGESTS:
            raise ValueError(f"Unsupported digest '{digest}'. Use one of: {', '.join(_DIGESTS)}")
        self.key_file = Path(key_file)
        self.digest = digest
        self._password: bytes | None = None

    def decrypt(self, data: bytes) -> bytes:
        if self._password is None:
            self._password = load_key(self.key_file)
        return openssl_decrypt(data, self._password, self.digest)
