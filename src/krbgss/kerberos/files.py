"""
Credential file lookup.

Kerberos tools locate their files through environment variables with
well-known fallbacks. Filesystem access goes through a FileSystem object
passed in by the caller so lookups can run against an in-memory tree.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence

import structlog

from krbgss.core.exceptions import ConfigurationError
from krbgss.kerberos.keytab import Keytab

logger = structlog.get_logger()

FILE_PREFIX = "FILE:"
KRB5_KTNAME = "KRB5_KTNAME"
DEFAULT_KEYTAB = "/etc/krb5.keytab"


class FileSystem(ABC):
    """Minimal filesystem capability."""

    @abstractmethod
    def stat(self, path: str) -> os.stat_result:
        """Stat a path. Raises FileNotFoundError or another OSError."""
        ...

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        ...


class OsFileSystem(FileSystem):
    """The real filesystem."""

    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()


def find_file(
    env: str,
    candidates: Sequence[str],
    fs: FileSystem,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Locate a file named by an environment variable or a list of defaults.

    When the variable is set it is authoritative (a "FILE:" prefix is
    stripped) and the candidates are not consulted. Otherwise the first
    candidate that exists wins; a stat error other than "not found" stops
    the search.

    Raises:
        ConfigurationError: listing every failure encountered
    """
    if environ is None:
        environ = os.environ

    logger.debug("looking_for_file", env=env, paths=list(candidates))

    path = environ.get(env)
    if path is not None:
        if path.startswith(FILE_PREFIX):
            path = path[len(FILE_PREFIX) :]
        try:
            fs.stat(path)
        except OSError as e:
            raise ConfigurationError(f"{env}: {path}: {e.strerror or e}") from e
        return path

    errors = [f"{env}: not found"]
    for candidate in candidates:
        try:
            fs.stat(candidate)
        except FileNotFoundError as e:
            errors.append(f"{candidate}: {e.strerror or 'not found'}")
            continue
        except OSError as e:
            errors.append(f"{candidate}: {e.strerror or e}")
            break
        return candidate

    raise ConfigurationError("; ".join(errors))


def locate_keytab(fs: FileSystem, environ: Optional[Mapping[str, str]] = None) -> str:
    """Path of the acceptor keytab: $KRB5_KTNAME, then /etc/krb5.keytab."""
    return find_file(KRB5_KTNAME, [DEFAULT_KEYTAB], fs, environ)


def load_keytab(
    fs: FileSystem,
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Keytab:
    """Read a keytab, locating it first when no path is given."""
    if path is None:
        path = locate_keytab(fs, environ)

    try:
        data = fs.read_bytes(path)
    except OSError as e:
        raise ConfigurationError(f"{path}: {e.strerror or e}") from e

    keytab = Keytab.load(data)
    logger.info("keytab_loaded", path=path, entries=len(keytab.entries))
    return keytab
