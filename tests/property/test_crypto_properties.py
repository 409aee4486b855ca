"""
Property-based tests for cryptographic operations.

Uses Hypothesis to test invariants across many random inputs.
"""

import pytest
from hypothesis import given, strategies as st, assume, settings

from krbgss.core.crypto import (
    MAC_SIZE,
    SEQUENCE_NUMBER_MASK,
    compute_checksum,
    decrypt,
    derive_key_from_password,
    encrypt,
    generate_sequence_number,
    verify_checksum,
)
from krbgss.core.exceptions import CryptoError
from krbgss.core.types import EncryptionType, Key, KeyUsage


# =============================================================================
# STRATEGIES
# =============================================================================

# Strategy for valid passwords (printable characters, reasonable length)
password_strategy = st.text(
    alphabet=st.characters(whitelist_categories=('L', 'N', 'P', 'S')),
    min_size=1,
    max_size=64,
)

salt_strategy = st.binary(min_size=1, max_size=64)

plaintext_strategy = st.binary(max_size=1024)

enctype_strategy = st.sampled_from(list(EncryptionType))

key_strategy = enctype_strategy.flatmap(
    lambda enctype: st.binary(min_size=enctype.key_size, max_size=enctype.key_size).map(
        lambda material: Key(enctype=enctype, material=material)
    )
)

usage_strategy = st.sampled_from(list(KeyUsage))


# =============================================================================
# KEY DERIVATION PROPERTIES
# =============================================================================


class TestKeyDerivationProperties:
    """Property-based tests for password key derivation."""

    @given(password=password_strategy, salt=salt_strategy, enctype=enctype_strategy)
    @settings(max_examples=25)
    def test_derivation_deterministic(self, password: str, salt: bytes, enctype):
        """Property: Same input always produces same key."""
        key1 = derive_key_from_password(password, salt, enctype, iterations=16)
        key2 = derive_key_from_password(password, salt, enctype, iterations=16)
        assert key1 == key2
        assert len(key1.material) == enctype.key_size

    @given(password=password_strategy, salt1=salt_strategy, salt2=salt_strategy)
    @settings(max_examples=25)
    def test_salt_changes_key(self, password: str, salt1: bytes, salt2: bytes):
        """Property: Different salts produce different keys."""
        assume(salt1 != salt2)
        key1 = derive_key_from_password(password, salt1, iterations=16)
        key2 = derive_key_from_password(password, salt2, iterations=16)
        assert key1.material != key2.material


# =============================================================================
# ENCRYPTION PROPERTIES
# =============================================================================


class TestEncryptionProperties:
    """Property-based tests for encrypt/decrypt."""

    @given(key=key_strategy, usage=usage_strategy, plaintext=plaintext_strategy)
    def test_decrypt_recovers_plaintext(self, key: Key, usage: KeyUsage, plaintext: bytes):
        """Property: decrypt(encrypt(p)) == p under the same key and usage."""
        assert decrypt(key, usage, encrypt(key, usage, plaintext)) == plaintext

    @given(key=key_strategy, plaintext=plaintext_strategy)
    def test_wrong_usage_rejected(self, key: Key, plaintext: bytes):
        """Property: data sealed for one usage never opens under another."""
        ciphertext = encrypt(key, KeyUsage.AP_REQ_AUTHENTICATOR, plaintext)
        with pytest.raises(CryptoError):
            decrypt(key, KeyUsage.AP_REP_ENCPART, ciphertext)

    @given(key=key_strategy, plaintext=plaintext_strategy, data=st.data())
    def test_bit_flip_detected(self, key: Key, plaintext: bytes, data):
        """Property: flipping any single bit makes decryption fail."""
        ciphertext = bytearray(encrypt(key, KeyUsage.KDC_REP_TICKET, plaintext))
        position = data.draw(st.integers(min_value=0, max_value=len(ciphertext) * 8 - 1))
        ciphertext[position // 8] ^= 1 << (position % 8)
        with pytest.raises(CryptoError):
            decrypt(key, KeyUsage.KDC_REP_TICKET, bytes(ciphertext))

    @given(key=key_strategy, plaintext=plaintext_strategy)
    def test_ciphertexts_are_randomised(self, key: Key, plaintext: bytes):
        """Property: encrypting twice gives different ciphertexts."""
        assert encrypt(key, KeyUsage.KDC_REP_TICKET, plaintext) != encrypt(key, KeyUsage.KDC_REP_TICKET, plaintext)


# =============================================================================
# CHECKSUM PROPERTIES
# =============================================================================


class TestChecksumProperties:
    """Property-based tests for keyed checksums."""

    @given(key=key_strategy, usage=usage_strategy, data=plaintext_strategy)
    def test_checksum_verifies(self, key: Key, usage: KeyUsage, data: bytes):
        checksum = compute_checksum(key, usage, data)
        assert len(checksum) == MAC_SIZE
        assert verify_checksum(key, usage, data, checksum)

    @given(key=key_strategy, data=plaintext_strategy, other=plaintext_strategy)
    def test_checksum_bound_to_data(self, key: Key, data: bytes, other: bytes):
        """Property: a checksum does not verify over different data."""
        assume(data != other)
        checksum = compute_checksum(key, KeyUsage.INITIATOR_SIGN, data)
        assert not verify_checksum(key, KeyUsage.INITIATOR_SIGN, other, checksum)

    @given(key=key_strategy, data=plaintext_strategy)
    def test_sign_usages_distinct(self, key: Key, data: bytes):
        """Property: initiator and acceptor signatures never coincide."""
        assert compute_checksum(key, KeyUsage.INITIATOR_SIGN, data) != compute_checksum(
            key, KeyUsage.ACCEPTOR_SIGN, data
        )


class TestSequenceNumberProperties:
    """Property-based tests for initial sequence numbers."""

    @given(st.integers(min_value=0, max_value=50))
    @settings(max_examples=10)
    def test_thirty_bits(self, _):
        """Property: initial sequence numbers fit in 30 bits."""
        assert 0 <= generate_sequence_number() <= SEQUENCE_NUMBER_MASK
