"""Streaming AES-256-CTR encryption for archives sent to the remote.

Encrypted payloads are laid out as ``[salt:16][nonce:16][ciphertext]``; the
key is derived from the passphrase and the salt with PBKDF2-HMAC-SHA256.
"""
from __future__ import annotations

import os
from typing import BinaryIO, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

SALT_SIZE = 16
NONCE_SIZE = 16
HEADER_SIZE = SALT_SIZE + NONCE_SIZE
KEY_SIZE = 32
KDF_ITERATIONS = 100_000
ZIP_MAGIC = b"PK\x03\x04"

_CHUNK_SIZE = 1024 * 1024


def derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=KDF_ITERATIONS)
    return kdf.derive(passphrase.encode("utf-8"))


def _cipher(passphrase: str, salt: bytes, nonce: bytes) -> Cipher:
    return Cipher(algorithms.AES(derive_key(passphrase, salt)), modes.CTR(nonce))


def encrypt_stream(src: BinaryIO, dst: BinaryIO, passphrase: str) -> int:
    """Encrypt *src* into *dst*; returns the number of bytes written including the header."""

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    encryptor = _cipher(passphrase, salt, nonce).encryptor()
    dst.write(salt)
    dst.write(nonce)
    written = HEADER_SIZE
    for chunk in iter(lambda: src.read(_CHUNK_SIZE), b""):
        data = encryptor.update(chunk)
        dst.write(data)
        written += len(data)
    tail = encryptor.finalize()
    if tail:
        dst.write(tail)
        written += len(tail)
    return written


def decrypt_stream(src: BinaryIO, dst: BinaryIO, passphrase: str, header: Optional[bytes] = None) -> int:
    """Decrypt *src* into *dst*. *header* is passed when the caller already consumed it.

    A wrong passphrase produces garbage output rather than an error.
    """

    if header is None:
        header = src.read(HEADER_SIZE)
    if len(header) != HEADER_SIZE:
        raise ValueError("encrypted payload is shorter than its header")
    decryptor = _cipher(passphrase, header[:SALT_SIZE], header[SALT_SIZE:]).decryptor()
    written = 0
    for chunk in iter(lambda: src.read(_CHUNK_SIZE), b""):
        data = decryptor.update(chunk)
        dst.write(data)
        written += len(data)
    tail = decryptor.finalize()
    if tail:
        dst.write(tail)
        written += len(tail)
    return written


def looks_like_archive(header: bytes) -> bool:
    """True when *header* starts with the zip local-file signature."""

    return header[: len(ZIP_MAGIC)] == ZIP_MAGIC


__all__ = [
    "HEADER_SIZE",
    "KDF_ITERATIONS",
    "NONCE_SIZE",
    "SALT_SIZE",
    "ZIP_MAGIC",
    "decrypt_stream",
    "derive_key",
    "encrypt_stream",
    "looks_like_archive",
]
