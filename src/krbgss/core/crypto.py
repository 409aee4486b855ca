"""
krbgss Cryptographic Operations

Wrapper around the cryptography library for Kerberos-style keyed
operations. Uses established libraries - NO custom cryptographic primitives.

Every operation is bound to a key usage number. The usage and a purpose
constant are mixed into the base key to produce the actual encryption,
integrity and checksum keys, following the structure of RFC 3961
(simplified: HMAC-SHA256 stands in for the DK/n-fold construction).

Ciphertext layout: IV (16) || AES-CBC(Ke, PKCS7(plaintext)) || HMAC-SHA1-96(Ki)

Security:
- Integrity is verified before any decryption is attempted
- Uses constant-time comparisons for all MAC checks
- Key material is never logged
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from krbgss.core.types import EncryptionType, Key
from krbgss.core.exceptions import CryptoError


BLOCK_SIZE = 16
MAC_SIZE = 12
SEQUENCE_NUMBER_MASK = 0x3FFFFFFF

# RFC 3961 section 5.3 well-known constants
_PURPOSE_CHECKSUM = 0x99
_PURPOSE_ENCRYPT = 0xAA
_PURPOSE_INTEGRITY = 0x55


# =============================================================================
# KEY DERIVATION
# =============================================================================


def derive_key_from_password(
    password: str,
    salt: bytes,
    enctype: EncryptionType = EncryptionType.AES256_CTS_HMAC_SHA1_96,
    iterations: int = 4096,
) -> Key:
    """
    Derive a long-term key from a password using PBKDF2.

    This is a simplified version. Real Kerberos uses string2key
    which varies by encryption type.

    Args:
        password: Principal password
        salt: Salt for key derivation (typically realm + principal name)
        enctype: Target encryption type
        iterations: PBKDF2 iteration count

    Returns:
        Derived key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=enctype.key_size,
        salt=salt,
        iterations=iterations,
    )

    return Key(enctype=enctype, material=kdf.derive(password.encode("utf-8")))


def derive_usage_key(key: Key, usage: int, purpose: int) -> bytes:
    """
    Derive the key material for one (usage, purpose) pair.

    Args:
        key: Base key
        usage: Key usage number
        purpose: One of the RFC 3961 purpose constants

    Returns:
        Derived key material, same length as the base key
    """
    constant = usage.to_bytes(4, "big") + bytes([purpose])
    digest = hmac.new(key.material, constant, hashlib.sha256).digest()
    return digest[: key.enctype.key_size]


def generate_sequence_number() -> int:
    """
    Generate a random initial sequence number.

    Kept to 30 bits so peers that treat the field as signed never see a
    negative value.
    """
    return secrets.randbits(32) & SEQUENCE_NUMBER_MASK


# =============================================================================
# CHECKSUMS
# =============================================================================


def compute_checksum(key: Key, usage: int, data: bytes) -> bytes:
    """
    Compute a keyed checksum (HMAC-SHA1-96) over data.

    Args:
        key: Base key
        usage: Key usage number
        data: Data to checksum

    Returns:
        12-byte checksum
    """
    kc = derive_usage_key(key, usage, _PURPOSE_CHECKSUM)
    return hmac.new(kc, data, hashlib.sha1).digest()[:MAC_SIZE]


def verify_checksum(key: Key, usage: int, data: bytes, checksum: bytes) -> bool:
    """
    Verify a keyed checksum using constant-time comparison.

    Returns:
        True if checksum is valid
    """
    expected = compute_checksum(key, usage, data)
    return hmac.compare_digest(expected, checksum)


# =============================================================================
# ENCRYPTION / DECRYPTION
# =============================================================================


def encrypt(key: Key, usage: int, plaintext: bytes) -> bytes:
    """
    Encrypt and authenticate plaintext.

    Args:
        key: Base key
        usage: Key usage number
        plaintext: Data to encrypt

    Returns:
        IV || ciphertext || MAC
    """
    ke = derive_usage_key(key, usage, _PURPOSE_ENCRYPT)
    ki = derive_usage_key(key, usage, _PURPOSE_INTEGRITY)
    iv = secrets.token_bytes(BLOCK_SIZE)

    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded_data = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(algorithms.AES(ke), modes.CBC(iv)).encryptor()
    ciphertext = iv + encryptor.update(padded_data) + encryptor.finalize()

    mac = hmac.new(ki, ciphertext, hashlib.sha1).digest()[:MAC_SIZE]
    return ciphertext + mac


def decrypt(key: Key, usage: int, ciphertext: bytes) -> bytes:
    """
    Verify and decrypt data produced by encrypt().

    Args:
        key: Base key
        usage: Key usage number the data was encrypted under
        ciphertext: IV || ciphertext || MAC

    Returns:
        Decrypted plaintext

    Raises:
        CryptoError: If the blob is truncated, the MAC does not verify,
            or unpadding fails
    """
    if len(ciphertext) < 2 * BLOCK_SIZE + MAC_SIZE:
        raise CryptoError("Ciphertext too short")

    body, mac = ciphertext[:-MAC_SIZE], ciphertext[-MAC_SIZE:]
    if (len(body) - BLOCK_SIZE) % BLOCK_SIZE:
        raise CryptoError("Ciphertext is not a whole number of blocks")

    ki = derive_usage_key(key, usage, _PURPOSE_INTEGRITY)
    expected = hmac.new(ki, body, hashlib.sha1).digest()[:MAC_SIZE]
    if not hmac.compare_digest(expected, mac):
        raise CryptoError("Integrity check failed")

    ke = derive_usage_key(key, usage, _PURPOSE_ENCRYPT)
    iv, data = body[:BLOCK_SIZE], body[BLOCK_SIZE:]

    try:
        decryptor = Cipher(algorithms.AES(ke), modes.CBC(iv)).decryptor()
        padded_data = decryptor.update(data) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        return unpadder.update(padded_data) + unpadder.finalize()
    except ValueError as e:
        raise CryptoError(f"Decryption failed: {e}") from e
