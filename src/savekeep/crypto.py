from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CorruptionError, InvalidArgumentError

logger = logging.getLogger(__name__)

SALT_SIZE = 16
KEY_SIZE = 32  # AES-256
IV_SIZE = 16  # one AES block
ITERATIONS = 10_000


def derive_key_iv(passphrase: str, salt: bytes) -> Tuple[bytes, bytes]:
    """Derive a 256-bit key and 128-bit IV from a passphrase and salt.

    PBKDF2-HMAC-SHA1 is used so the first 32 derived bytes form the key and the
    next 16 the IV, matching files written by the Rfc2898DeriveBytes-based format.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=KEY_SIZE + IV_SIZE,
        salt=salt,
        iterations=ITERATIONS,
    )
    material = kdf.derive(passphrase.encode("utf-8"))
    return material[:KEY_SIZE], material[KEY_SIZE:]


def encrypt(plaintext: bytes, passphrase: str) -> bytes:
    """Encrypt a payload with AES-256-CBC/PKCS7 under a fresh random salt.

    Returns base64 text (as ASCII bytes) of ``salt || ciphertext``.
    """
    if not plaintext:
        raise InvalidArgumentError("Cannot encrypt an empty payload")
    if not passphrase:
        raise InvalidArgumentError("Encryption passphrase must be a non-empty string")

    salt = os.urandom(SALT_SIZE)
    key, iv = derive_key_iv(passphrase, salt)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return base64.b64encode(salt + ciphertext)


def decrypt(ciphertext: bytes, passphrase: str) -> bytes:
    """Reverse :func:`encrypt`.

    Raises CorruptionError for undecodable input, a truncated payload, or a padding
    failure. A wrong passphrase is indistinguishable from corrupted data.
    """
    if not ciphertext:
        raise InvalidArgumentError("Cannot decrypt an empty payload")
    if not passphrase:
        raise InvalidArgumentError("Encryption passphrase must be a non-empty string")

    try:
        raw = base64.b64decode(ciphertext.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CorruptionError(f"Encrypted payload is not valid base64: {e}") from e

    body = raw[SALT_SIZE:]
    if len(raw) <= SALT_SIZE or len(body) % IV_SIZE != 0:
        raise CorruptionError(f"Encrypted payload has invalid length ({len(raw)} bytes)")

    key, iv = derive_key_iv(passphrase, raw[:SALT_SIZE])
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        logger.debug("PKCS7 unpadding failed", exc_info=True)
        raise CorruptionError("Decryption failed: wrong passphrase or corrupted data") from e
