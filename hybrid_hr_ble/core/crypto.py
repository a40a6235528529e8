from __future__ import annotations

import logging
import secrets
from typing import Final

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import InvalidKeyFormatError

_LOGGER = logging.getLogger(__name__)

# Hybrid HR uses AES-128 throughout
KEY_SIZE: Final = 16
BLOCK_SIZE: Final = 16
RANDOM_SIZE: Final = 8
ZERO_IV: Final = bytes(BLOCK_SIZE)


def generate_random_bytes(length: int = RANDOM_SIZE) -> bytes:
    """Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate.

    Returns:
        The random bytes.
    """
    return secrets.token_bytes(length)


def load_secret_key(secret_key: bytes | str) -> bytes:
    """Load the 16-byte device secret key.

    Args:
        secret_key: Raw key bytes, or 32 hex characters. Spaces and a
            leading ``0x`` are tolerated in the hex form.

    Returns:
        The 16 key bytes.
    """
    if isinstance(secret_key, str):
        cleaned = secret_key.strip().replace(" ", "")
        if cleaned.lower().startswith("0x"):
            cleaned = cleaned[2:]
        try:
            key = bytes.fromhex(cleaned)
        except ValueError as err:
            raise InvalidKeyFormatError(f"Secret key is not valid hex: {err}") from err
    else:
        key = bytes(secret_key)

    if len(key) != KEY_SIZE:
        raise InvalidKeyFormatError(f"Invalid secret key size: {len(key)}")

    return key


def aes_cbc_encrypt(key: bytes, data: bytes) -> bytes:
    """Encrypt data using AES-128-CBC with a zero IV and no padding.

    Args:
        key: 16 byte AES key.
        data: Plaintext, a multiple of the block size.

    Returns:
        The ciphertext.
    """
    encryptor = Cipher(algorithms.AES(key), modes.CBC(ZERO_IV)).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def aes_cbc_decrypt(key: bytes, data: bytes) -> bytes:
    """Decrypt data using AES-128-CBC with a zero IV and no padding.

    Args:
        key: 16 byte AES key.
        data: Ciphertext, a multiple of the block size.

    Returns:
        The plaintext.
    """
    decryptor = Cipher(algorithms.AES(key), modes.CBC(ZERO_IV)).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def aes_ctr_crypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """Encrypt or decrypt data using AES-128-CTR.

    The whole 16-byte IV is the initial counter block and is incremented as
    a 128-bit big-endian integer.

    Args:
        key: 16 byte AES key.
        iv: 16 byte initial counter block.
        data: Input data of any length.

    Returns:
        The transformed data.
    """
    cipher = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return cipher.update(data) + cipher.finalize()


def build_file_iv(phone_random: bytes, watch_random: bytes) -> bytes:
    """Build the initial AES-CTR IV for an encrypted file read.

    Args:
        phone_random: The 8-byte random sent during the handshake.
        watch_random: The 8-byte random received during the handshake.

    Returns:
        The 16-byte IV.
    """
    iv = bytearray(BLOCK_SIZE)
    iv[2:8] = phone_random[:6]
    iv[9:16] = watch_random[:7]
    iv[7] = (iv[7] + 1) & 0xFF
    _LOGGER.debug("Built file IV: %s", iv.hex())
    return bytes(iv)


def increment_iv(iv: bytes, amount: int) -> bytes:
    """Add an amount to an IV treated as a 128-bit big-endian integer.

    Args:
        iv: The 16-byte IV.
        amount: Value to add; overflow past 128 bits is discarded.

    Returns:
        The new IV.
    """
    value = (int.from_bytes(iv, "big") + amount) % (1 << (BLOCK_SIZE * 8))
    return value.to_bytes(BLOCK_SIZE, "big")
