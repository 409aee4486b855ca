#!/usr/bin/env python3
"""
Mutual Authentication and Message Integrity Example

Demonstrates a complete GSSAPI Kerberos exchange between an initiator
and an acceptor running in the same process:

1. A simulated KDC issuing a service ticket
2. The acceptor loading its service key from a keytab file
3. The two-leg mutual authentication handshake
4. MIC tokens in both directions
5. Replay detection and the handshake trace
"""

import os
import tempfile

from krbgss import (
    Acceptor,
    AcceptorConfig,
    ContextFlag,
    CredentialFailure,
    DuplicateToken,
    Initiator,
    Keytab,
    Principal,
    SimulatedKDC,
)


def main():
    """Run one handshake and exchange a few signed messages."""

    print("=" * 70)
    print("krbgss - Mutual Authentication and Message Integrity")
    print("=" * 70)
    print()

    SERVICE = "HTTP@web.example.com"
    SERVICE_PRINCIPAL = Principal.from_string("HTTP/web.example.com@EXAMPLE.COM")
    CLIENT_PRINCIPAL = Principal.from_string("alice@EXAMPLE.COM")
    FLAGS = {
        ContextFlag.MUTUAL,
        ContextFlag.REPLAY,
        ContextFlag.SEQUENCE,
        ContextFlag.INTEGRITY,
    }

    # ==========================================================================
    # EXAMPLE 1: Service key and keytab
    # ==========================================================================
    print("1. Service Key and Keytab")
    print("-" * 40)

    keytab = Keytab()
    keytab.add_password(SERVICE_PRINCIPAL, "http-service-password", kvno=1)

    fd, keytab_path = tempfile.mkstemp(suffix=".keytab")
    with os.fdopen(fd, "wb") as f:
        f.write(keytab.dump())

    print(f"   Service Principal: {SERVICE_PRINCIPAL}")
    print(f"   Keytab: {keytab_path}")
    print()

    try:
        # ======================================================================
        # EXAMPLE 2: Handshake
        # ======================================================================
        print("2. Mutual Authentication Handshake")
        print("-" * 40)

        kdc = SimulatedKDC(client=CLIENT_PRINCIPAL, service_keys=keytab)
        initiator = Initiator(credentials=kdc)
        acceptor = Acceptor(
            config=AcceptorConfig(service_principal=SERVICE_PRINCIPAL, keytab_path=keytab_path)
        )

        request, more = initiator.initiate(SERVICE, FLAGS)
        print(f"   AP-REQ token: {len(request)} bytes (continue needed: {more})")

        try:
            reply, _ = acceptor.accept(request)
        except CredentialFailure as e:
            print(f"   Rejected with error {e.code}; KRB-ERROR is {len(e.token)} bytes")
            return

        print(f"   AP-REP token: {len(reply)} bytes")
        initiator.initiate(SERVICE, FLAGS, reply)

        print(f"   Initiator state: {initiator.state.name}, peer {initiator.peer_name}")
        print(f"   Acceptor state: {acceptor.state.name}, peer {acceptor.peer_name}")
        print(f"   Flags: {sorted(flag.name for flag in initiator.flags)}")
        print()

        # ======================================================================
        # EXAMPLE 3: Message integrity
        # ======================================================================
        print("3. MIC Tokens")
        print("-" * 40)

        for message in (b"GET /index.html", b"GET /style.css"):
            mic = initiator.make_signature(message)
            acceptor.verify_signature(message, mic)
            print(f"   initiator -> acceptor: {message!r} verified ({mic[:8].hex()}...)")

        answer = b"200 OK"
        acceptor_mic = acceptor.make_signature(answer)
        initiator.verify_signature(answer, acceptor_mic)
        print(f"   acceptor -> initiator: {answer!r} verified")
        print()

        # ======================================================================
        # EXAMPLE 4: Replay detection
        # ======================================================================
        print("4. Replay Detection")
        print("-" * 40)

        try:
            initiator.verify_signature(answer, acceptor_mic)
        except DuplicateToken as e:
            print(f"   Replayed token refused: {e}")
        print()

        # ======================================================================
        # EXAMPLE 5: Trace export
        # ======================================================================
        print("5. Acceptor Trace")
        print("-" * 40)
        print(acceptor.export_trace_json())
        print()

    finally:
        os.unlink(keytab_path)

    print("=" * 70)
    print("Done")
    print("=" * 70)


if __name__ == "__main__":
    main()
