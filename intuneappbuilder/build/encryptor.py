# Copyright 2025 Roger Cibrian
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

"""Encrypted container encoding for .intunewin content.

An encrypted container is laid out as:

    [0:32)    HMAC-SHA256 over bytes [32:end), keyed by the MAC key
    [32:48)   AES-CBC initialization vector
    [48:end)  AES-256-CBC ciphertext of the source, PKCS7 padded

Keys and IV are freshly generated for every encode. The plaintext SHA-256 is
recorded in the envelope as fileDigest so the service can check the
decrypted result.

Because PKCS7 always adds 1..16 bytes, the container size is fully
determined by the plaintext size (see expected_encrypted_size). A mismatch
means the encode is corrupted and is reported as IntegrityError.

Example:
    Encrypting into a temporary file:
        ```python
        import tempfile
        from intuneappbuilder.build.encryptor import encrypt_file

        with tempfile.TemporaryFile() as out:
            envelope = encrypt_file("Setup.msi", out)
        ```
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import constant_time, hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from intuneappbuilder.exceptions import (
    IntegrityError,
    PackagingError,
    SourceNotFoundError,
)
from intuneappbuilder.models import (
    ENCRYPTION_KEY_SIZE,
    HEADER_SIZE,
    IV_SIZE,
    MAC_KEY_SIZE,
    MAC_SIZE,
    EncryptionEnvelope,
)

# Read size while streaming through the cipher (1 MiB)
DEFAULT_CHUNK = 1024 * 1024

AES_BLOCK_SIZE = 16


def expected_encrypted_size(plaintext_size: int) -> int:
    """Return the container size for a plaintext of the given size.

    Args:
        plaintext_size: Source size in bytes (>= 0).

    Returns:
        Header size plus the PKCS7-padded ciphertext size.
    """
    if plaintext_size < 0:
        raise ValueError(f"plaintext_size must be >= 0, got {plaintext_size}")
    return HEADER_SIZE + AES_BLOCK_SIZE * (plaintext_size // AES_BLOCK_SIZE + 1)


def check_encrypted_size(plaintext_size: int, encrypted_size: int) -> None:
    """Raise IntegrityError unless encrypted_size matches plaintext_size."""
    expected = expected_encrypted_size(plaintext_size)
    if encrypted_size != expected:
        raise IntegrityError(
            f"Encrypted size {encrypted_size} does not match expected size "
            f"{expected} for {plaintext_size} plaintext bytes"
        )


def _stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    size = stream.seek(0, os.SEEK_END)
    stream.seek(position)
    return size


def _compute_mac(stream: BinaryIO, mac_key: bytes, chunk_size: int) -> bytes:
    """HMAC-SHA256 over everything after the MAC slot (IV + ciphertext)."""
    h = hmac.HMAC(mac_key, hashes.SHA256())
    stream.seek(MAC_SIZE)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        h.update(chunk)
    return h.finalize()


def encrypt_file(
    source_path: str | Path,
    output: BinaryIO,
    *,
    chunk_size: int = DEFAULT_CHUNK,
) -> EncryptionEnvelope:
    """Encrypt a source file into an encrypted container.

    The container is written to the start of output (which must be seekable
    and readable) and the stream is rewound to position 0 on return.

    Args:
        source_path: File to encrypt.
        output: Seekable binary stream receiving the container bytes.
        chunk_size: Read size while streaming through the cipher.

    Returns:
        The envelope with the keys, IV, MAC and plaintext digest.

    Raises:
        SourceNotFoundError: If the source is missing or cannot be opened.
        PackagingError: If an I/O error occurs while encrypting. The output
            stream is truncated so no partial container is left behind.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    p = Path(source_path)
    if not p.is_file():
        raise SourceNotFoundError(p)

    try:
        source = p.open("rb")
    except OSError as err:
        raise SourceNotFoundError(p, f"Could not read source file {p}: {err}") from err

    encryption_key = os.urandom(ENCRYPTION_KEY_SIZE)
    mac_key = os.urandom(MAC_KEY_SIZE)
    iv = os.urandom(IV_SIZE)

    logger.verbose("ENCRYPT", f"Encrypting {p.name}")

    try:
        with source:
            output.seek(0)
            output.truncate()
            # Placeholder header, filled in once the ciphertext is written
            output.write(b"\x00" * HEADER_SIZE)

            encryptor = Cipher(algorithms.AES(encryption_key), modes.CBC(iv)).encryptor()
            padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
            digest = hashes.Hash(hashes.SHA256())
            plaintext_size = 0

            for chunk in iter(lambda: source.read(chunk_size), b""):
                plaintext_size += len(chunk)
                digest.update(chunk)
                output.write(encryptor.update(padder.update(chunk)))
            output.write(encryptor.update(padder.finalize()) + encryptor.finalize())

            output.seek(MAC_SIZE)
            output.write(iv)
            mac = _compute_mac(output, mac_key, chunk_size)
            output.seek(0)
            output.write(mac)
            output.flush()
            output.seek(0)
    except OSError as err:
        output.seek(0)
        output.truncate()
        raise PackagingError(f"Failed to encrypt {p}: {err}") from err

    logger.debug(
        "ENCRYPT",
        f"{plaintext_size} plaintext bytes -> "
        f"{expected_encrypted_size(plaintext_size)} container bytes",
    )

    return EncryptionEnvelope(
        encryption_key=encryption_key,
        mac_key=mac_key,
        initialization_vector=iv,
        mac=mac,
        file_digest=digest.finalize(),
    )


def verify_container(
    stream: BinaryIO,
    envelope: EncryptionEnvelope,
    *,
    chunk_size: int = DEFAULT_CHUNK,
) -> None:
    """Check a container's layout and MAC against its envelope.

    The stream is rewound to position 0 afterwards.

    Raises:
        IntegrityError: If the container is truncated, misaligned, carries a
            different IV, or fails HMAC verification.
    """
    size = _stream_size(stream)
    if size < HEADER_SIZE + AES_BLOCK_SIZE or (size - HEADER_SIZE) % AES_BLOCK_SIZE:
        raise IntegrityError(f"Container size {size} is not a valid encrypted size")

    stream.seek(0)
    stored_mac = stream.read(MAC_SIZE)
    stored_iv = stream.read(IV_SIZE)
    if not constant_time.bytes_eq(stored_iv, envelope.initialization_vector):
        stream.seek(0)
        raise IntegrityError("Container IV does not match the encryption envelope")

    h = hmac.HMAC(envelope.mac_key, hashes.SHA256())
    stream.seek(MAC_SIZE)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        h.update(chunk)
    stream.seek(0)
    try:
        h.verify(stored_mac)
    except InvalidSignature as err:
        raise IntegrityError("Container HMAC verification failed") from err
    if not constant_time.bytes_eq(stored_mac, envelope.mac):
        raise IntegrityError("Container MAC does not match the encryption envelope")


def decrypt_container(
    stream: BinaryIO,
    envelope: EncryptionEnvelope,
    output: BinaryIO,
    *,
    chunk_size: int = DEFAULT_CHUNK,
) -> int:
    """Verify and decrypt a container, writing the plaintext to output.

    Args:
        stream: Seekable stream holding the container.
        envelope: Envelope the container was produced with.
        output: Stream receiving the plaintext.
        chunk_size: Read size while streaming through the cipher.

    Returns:
        Number of plaintext bytes written.

    Raises:
        IntegrityError: If verification, unpadding or the plaintext digest
            check fails.
    """
    verify_container(stream, envelope, chunk_size=chunk_size)

    decryptor = Cipher(
        algorithms.AES(envelope.encryption_key),
        modes.CBC(envelope.initialization_vector),
    ).decryptor()
    unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
    digest = hashes.Hash(hashes.SHA256())
    written = 0

    def _emit(data: bytes) -> None:
        nonlocal written
        if data:
            digest.update(data)
            output.write(data)
            written += len(data)

    stream.seek(HEADER_SIZE)
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        _emit(unpadder.update(decryptor.update(chunk)))
    try:
        _emit(unpadder.update(decryptor.finalize()) + unpadder.finalize())
    except ValueError as err:
        raise IntegrityError(f"Invalid padding in container: {err}") from err
    finally:
        stream.seek(0)

    if not constant_time.bytes_eq(digest.finalize(), envelope.file_digest):
        raise IntegrityError("Decrypted content does not match the file digest")
    return written
