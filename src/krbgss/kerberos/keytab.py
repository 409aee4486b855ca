"""
MIT keytab files (format version 0x0502).

File layout (all integers big-endian):

    0x05 0x02
    repeated:
        int32 record size (negative = deleted hole of that many bytes)
        uint16 component count
        counted string realm
        counted string component * count
        uint32 name type
        uint32 timestamp
        uint8  kvno
        uint16 enctype, counted string key
        [uint32 kvno]   -- present when the record has room; overrides kvno8
"""

from __future__ import annotations

import struct
from datetime import datetime, timezone
from typing import List, Optional

import attrs
import structlog

from krbgss.core.crypto import derive_key_from_password
from krbgss.core.exceptions import KeytabError
from krbgss.core.types import EncryptionType, Key, NameType, Principal

logger = structlog.get_logger()

KEYTAB_VERSION = b"\x05\x02"


@attrs.define(frozen=True, slots=True)
class KeytabEntry:
    """One long-term key for one principal."""

    principal: Principal
    kvno: int
    key: Key
    timestamp: datetime = attrs.field(
        factory=lambda: datetime.now(timezone.utc).replace(microsecond=0)
    )


class _Reader:
    """Cursor over a keytab record."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self.remaining < size:
            raise KeytabError("Keytab record truncated")
        (value,) = struct.unpack_from(fmt, self._data, self._offset)
        self._offset += size
        return value

    def counted(self) -> bytes:
        length = self.take(">H")
        if self.remaining < length:
            raise KeytabError("Keytab record truncated")
        value = self._data[self._offset : self._offset + length]
        self._offset += length
        return value


def _counted(value: bytes) -> bytes:
    return struct.pack(">H", len(value)) + value


@attrs.define
class Keytab:
    """
    In-memory keytab.

    Example:
        keytab = Keytab.load(open("/etc/krb5.keytab", "rb").read())
        key = keytab.get_key(Principal.from_string("HTTP/web@EXAMPLE.COM"))
    """

    entries: List[KeytabEntry] = attrs.Factory(list)

    @classmethod
    def load(cls, data: bytes) -> Keytab:
        """
        Parse keytab file contents.

        Records with an unsupported enctype are skipped.

        Raises:
            KeytabError: on a bad version or truncated data
        """
        if data[:2] != KEYTAB_VERSION:
            raise KeytabError(f"Unsupported keytab version {data[:2].hex()}")

        entries = []
        offset = 2
        while offset < len(data):
            if len(data) - offset < 4:
                raise KeytabError("Keytab record length truncated")
            (size,) = struct.unpack_from(">i", data, offset)
            offset += 4
            if size < 0:
                offset += -size
                continue
            if size == 0:
                break

            entry = cls._parse_record(data[offset : offset + size])
            if entry is not None:
                entries.append(entry)
            offset += size

        return cls(entries=entries)

    @staticmethod
    def _parse_record(record: bytes) -> Optional[KeytabEntry]:
        reader = _Reader(record)
        count = reader.take(">H")
        realm = reader.counted().decode("utf-8")
        components = [reader.counted().decode("utf-8") for _ in range(count)]
        name_type = reader.take(">I")
        timestamp = reader.take(">I")
        kvno = reader.take(">B")
        enctype = reader.take(">H")
        material = reader.counted()
        if reader.remaining >= 4:
            kvno32 = reader.take(">I")
            if kvno32:
                kvno = kvno32

        try:
            etype = EncryptionType(enctype)
        except ValueError:
            logger.debug("keytab_entry_skipped", enctype=enctype)
            return None

        try:
            name_type = NameType(name_type)
        except ValueError:
            name_type = NameType.UNKNOWN

        try:
            key = Key(enctype=etype, material=material)
        except ValueError as e:
            raise KeytabError(str(e)) from e

        return KeytabEntry(
            principal=Principal.from_components(components, realm, name_type),
            kvno=kvno,
            key=key,
            timestamp=datetime.fromtimestamp(timestamp, timezone.utc),
        )

    def dump(self) -> bytes:
        """Serialize to keytab file contents."""
        out = [KEYTAB_VERSION]
        for entry in self.entries:
            principal = entry.principal
            record = b"".join(
                [
                    struct.pack(">H", len(principal.components)),
                    _counted(principal.realm.name.encode("utf-8")),
                    b"".join(_counted(c.encode("utf-8")) for c in principal.components),
                    struct.pack(">I", int(principal.name_type)),
                    struct.pack(">I", int(entry.timestamp.timestamp())),
                    struct.pack(">B", entry.kvno & 0xFF),
                    struct.pack(">H", entry.key.enctype.value),
                    _counted(entry.key.material),
                    struct.pack(">I", entry.kvno),
                ]
            )
            out.append(struct.pack(">i", len(record)) + record)
        return b"".join(out)

    def add(self, principal: Principal, key: Key, kvno: int = 1) -> None:
        self.entries.append(KeytabEntry(principal=principal, kvno=kvno, key=key))

    def add_password(
        self,
        principal: Principal,
        password: str,
        kvno: int = 1,
        enctype: EncryptionType = EncryptionType.AES256_CTS_HMAC_SHA1_96,
    ) -> Key:
        """
        Add an entry whose key is derived from a password.

        The salt is the default Kerberos salt: the realm followed by the
        name components.
        """
        salt = (principal.realm.name + "".join(principal.components)).encode("utf-8")
        key = derive_key_from_password(password, salt, enctype)
        self.add(principal, key, kvno=kvno)
        return key

    def get_key(
        self,
        principal: Principal,
        kvno: Optional[int] = None,
        enctype: Optional[EncryptionType] = None,
    ) -> Key:
        """
        Find the key for a principal.

        Without a kvno the highest version wins.

        Raises:
            KeytabError: no matching entry
        """
        return self.get_entry(principal, kvno, enctype).key

    def get_entry(
        self,
        principal: Principal,
        kvno: Optional[int] = None,
        enctype: Optional[EncryptionType] = None,
    ) -> KeytabEntry:
        candidates = [
            entry
            for entry in self.entries
            if entry.principal == principal
            and (kvno is None or entry.kvno == kvno)
            and (enctype is None or entry.key.enctype is enctype)
        ]
        if not candidates:
            raise KeytabError(f"No key for {principal} in keytab")

        return max(candidates, key=lambda entry: entry.kvno)

    def principals(self) -> List[Principal]:
        """Distinct principals in file order."""
        seen: List[Principal] = []
        for entry in self.entries:
            if entry.principal not in seen:
                seen.append(entry.principal)
        return seen
