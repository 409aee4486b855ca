"""
Kerberos V5 ASN.1 structures (RFC 4120 section 5) used by the AP exchange.

Only the messages the GSS handshake needs are declared: tickets, the
authenticator, AP-REQ/AP-REP and KRB-ERROR.
"""

from asn1crypto import core

APPLICATION = 1
CONTEXT = 2

PVNO = 5


class Microseconds(core.Integer):
    """Microseconds ::= INTEGER (0..999999)"""


class krb5int32(core.Integer):
    """krb5int32 ::= INTEGER (-2147483648..2147483647)"""


class krb5uint32(core.Integer):
    """krb5uint32 ::= INTEGER (0..4294967295)"""


class KerberosString(core.GeneralString):
    """KerberosString ::= GeneralString (IA5String)"""


class SequenceOfKerberosString(core.SequenceOf):
    _child_spec = KerberosString


class Realm(KerberosString):
    """Realm ::= KerberosString"""


class PrincipalName(core.Sequence):
    _fields = [
        ('name-type', krb5int32, {'explicit': 0}),
        ('name-string', SequenceOfKerberosString, {'explicit': 1}),
    ]


class KerberosTime(core.GeneralizedTime):
    """KerberosTime ::= GeneralizedTime"""


class HostAddress(core.Sequence):
    _fields = [
        ('addr-type', krb5int32, {'explicit': 0}),
        ('address', core.OctetString, {'explicit': 1}),
    ]


class HostAddresses(core.SequenceOf):
    _child_spec = HostAddress


class AuthorizationDataElement(core.Sequence):
    _fields = [
        ('ad-type', krb5int32, {'explicit': 0}),
        ('ad-data', core.OctetString, {'explicit': 1}),
    ]


class AuthorizationData(core.SequenceOf):
    _child_spec = AuthorizationDataElement


class APOptions(core.BitString):
    _map = {
        0: 'reserved',
        1: 'use-session-key',
        2: 'mutual-required',
    }


class TicketFlags(core.BitString):
    _map = {
        0: 'reserved',
        1: 'forwardable',
        2: 'forwarded',
        3: 'proxiable',
        4: 'proxy',
        5: 'may-postdate',
        6: 'postdated',
        7: 'invalid',
        8: 'renewable',
        9: 'initial',
        10: 'pre-authent',
        11: 'hw-authent',
        12: 'transited-policy-checked',
        13: 'ok-as-delegate',
    }


class EncryptedData(core.Sequence):
    _fields = [
        ('etype', krb5int32, {'explicit': 0}),
        ('kvno', krb5uint32, {'explicit': 1, 'optional': True}),
        ('cipher', core.OctetString, {'explicit': 2}),
    ]


class EncryptionKey(core.Sequence):
    _fields = [
        ('keytype', krb5int32, {'explicit': 0}),
        ('keyvalue', core.OctetString, {'explicit': 1}),
    ]


class Checksum(core.Sequence):
    _fields = [
        ('cksumtype', krb5int32, {'explicit': 0}),
        ('checksum', core.OctetString, {'explicit': 1}),
    ]


class TransitedEncoding(core.Sequence):
    _fields = [
        ('tr-type', krb5int32, {'explicit': 0}),
        ('contents', core.OctetString, {'explicit': 1}),
    ]


class Ticket(core.Sequence):
    explicit = (APPLICATION, 1)

    _fields = [
        ('tkt-vno', krb5int32, {'explicit': 0}),
        ('realm', Realm, {'explicit': 1}),
        ('sname', PrincipalName, {'explicit': 2}),
        ('enc-part', EncryptedData, {'explicit': 3}),
    ]


class EncTicketPart(core.Sequence):
    explicit = (APPLICATION, 3)

    _fields = [
        ('flags', TicketFlags, {'explicit': 0}),
        ('key', EncryptionKey, {'explicit': 1}),
        ('crealm', Realm, {'explicit': 2}),
        ('cname', PrincipalName, {'explicit': 3}),
        ('transited', TransitedEncoding, {'explicit': 4}),
        ('authtime', KerberosTime, {'explicit': 5}),
        ('starttime', KerberosTime, {'explicit': 6, 'optional': True}),
        ('endtime', KerberosTime, {'explicit': 7}),
        ('renew-till', KerberosTime, {'explicit': 8, 'optional': True}),
        ('caddr', HostAddresses, {'explicit': 9, 'optional': True}),
        ('authorization-data', AuthorizationData, {'explicit': 10, 'optional': True}),
    ]


class Authenticator(core.Sequence):
    explicit = (APPLICATION, 2)

    _fields = [
        ('authenticator-vno', krb5int32, {'explicit': 0}),
        ('crealm', Realm, {'explicit': 1}),
        ('cname', PrincipalName, {'explicit': 2}),
        ('cksum', Checksum, {'explicit': 3, 'optional': True}),
        ('cusec', Microseconds, {'explicit': 4}),
        ('ctime', KerberosTime, {'explicit': 5}),
        ('subkey', EncryptionKey, {'explicit': 6, 'optional': True}),
        ('seq-number', krb5uint32, {'explicit': 7, 'optional': True}),
        ('authorization-data', AuthorizationData, {'explicit': 8, 'optional': True}),
    ]


class AP_REQ(core.Sequence):
    explicit = (APPLICATION, 14)

    _fields = [
        ('pvno', krb5int32, {'explicit': 0}),
        ('msg-type', krb5int32, {'explicit': 1}),
        ('ap-options', APOptions, {'explicit': 2}),
        ('ticket', Ticket, {'explicit': 3}),
        ('authenticator', EncryptedData, {'explicit': 4}),
    ]


class AP_REP(core.Sequence):
    explicit = (APPLICATION, 15)

    _fields = [
        ('pvno', krb5int32, {'explicit': 0}),
        ('msg-type', krb5int32, {'explicit': 1}),
        ('enc-part', EncryptedData, {'explicit': 2}),
    ]


class EncAPRepPart(core.Sequence):
    explicit = (APPLICATION, 27)

    _fields = [
        ('ctime', KerberosTime, {'explicit': 0}),
        ('cusec', Microseconds, {'explicit': 1}),
        ('subkey', EncryptionKey, {'explicit': 2, 'optional': True}),
        ('seq-number', krb5uint32, {'explicit': 3, 'optional': True}),
    ]


class KRB_ERROR(core.Sequence):
    explicit = (APPLICATION, 30)

    _fields = [
        ('pvno', krb5int32, {'explicit': 0}),
        ('msg-type', krb5int32, {'explicit': 1}),
        ('ctime', KerberosTime, {'explicit': 2, 'optional': True}),
        ('cusec', Microseconds, {'explicit': 3, 'optional': True}),
        ('stime', KerberosTime, {'explicit': 4}),
        ('susec', Microseconds, {'explicit': 5}),
        ('error-code', krb5int32, {'explicit': 6}),
        ('crealm', Realm, {'explicit': 7, 'optional': True}),
        ('cname', PrincipalName, {'explicit': 8, 'optional': True}),
        ('realm', Realm, {'explicit': 9}),
        ('sname', PrincipalName, {'explicit': 10}),
        ('e-text', KerberosString, {'explicit': 11, 'optional': True}),
        ('e-data', core.OctetString, {'explicit': 12, 'optional': True}),
    ]
