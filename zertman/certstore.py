import base64
import binascii
import logging
import posixpath
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Set, Tuple

import yaml
from cryptography.x509 import Certificate as X509Certificate

from zertman.certs import (
    android_hash_name,
    describe_certificate,
    load_certificate,
    load_certificate_bytes,
)
from zertman.shell import RootShell, ShellError, ShellResult, quote

logger = logging.getLogger(__name__)

USER_CERTIFICATES_DIR = "/data/misc/keychain/cacerts-added"
SYSTEM_CERTIFICATES_DIR = "/system/etc/security/cacerts"
SYSTEM_MOUNT_POINT = "/system"

# rw-r--r--
CERTIFICATE_MODE = "644"

UNKNOWN_SUMMARY = "Unknown certificate"


class CertStoreConfig:
    def __init__(self, config_path: Optional[str] = None):
        """
        This class is used to configure the CertificateStore.
        Args:
            config_path str: The path to a YAML configuration file. Without one
                the Android defaults are used.
        """
        self.config = {}
        if config_path:
            with open(config_path, "r") as f:
                self.config = yaml.safe_load(f) or {}

    @property
    def user_dir(self) -> str:
        return self.config.get("user_dir", USER_CERTIFICATES_DIR)

    @property
    def system_dir(self) -> str:
        return self.config.get("system_dir", SYSTEM_CERTIFICATES_DIR)

    @property
    def system_mount_point(self) -> str:
        return self.config.get("system_mount_point", SYSTEM_MOUNT_POINT)

    @property
    def su_binary(self) -> str:
        return self.config.get("su_binary", "su")

    @property
    def command_timeout(self) -> Optional[float]:
        return self.config.get("command_timeout", None)

    @property
    def retries(self) -> int:
        return int(self.config.get("retries", 1))


def create_cert_store(config: CertStoreConfig) -> "CertificateStore":
    """Create certificate store based on config"""
    runner = RootShell(
        su_binary=config.su_binary,
        timeout=config.command_timeout,
        retries=config.retries,
    )
    return CertificateStore(
        runner,
        user_dir=config.user_dir,
        system_dir=config.system_dir,
        system_mount_point=config.system_mount_point,
    )


def is_valid_filename(filename: str) -> bool:
    """True for a plain name that stays inside a store directory"""
    return (
        bool(filename)
        and "/" not in filename
        and "\0" not in filename
        and filename not in (".", "..")
    )


@dataclass(frozen=True)
class Certificate:
    """A certificate file in either the user or the system store."""

    filename: str
    is_system: bool

    def __post_init__(self):
        if not is_valid_filename(self.filename):
            raise ValueError(f"Invalid certificate filename: {self.filename!r}")


class CertificateStore:
    """
    Lists, adds, deletes and promotes certificates in the user and system
    trust directories of a rooted device.

    Every command goes through an injected runner exposing
    ``run(command) -> ShellResult``. Mutations are serialized per instance and
    the system partition is returned to read-only after each system write.
    """

    def __init__(
        self,
        runner,
        user_dir: str = USER_CERTIFICATES_DIR,
        system_dir: str = SYSTEM_CERTIFICATES_DIR,
        system_mount_point: str = SYSTEM_MOUNT_POINT,
    ):
        self.runner = runner
        self.user_dir = user_dir
        self.system_dir = system_dir
        self.system_mount_point = system_mount_point
        self._listener: Optional[Callable[[], None]] = None
        self._lock = threading.RLock()

    def set_on_certificate_changed_listener(
        self, listener: Optional[Callable[[], None]]
    ) -> None:
        """Register the callback fired after each successful mutation, replacing any previous one"""
        self._listener = listener

    def path_of(self, cert: Certificate) -> str:
        directory = self.system_dir if cert.is_system else self.user_dir
        return posixpath.join(directory, cert.filename)

    def list_certificates(self, system_store: bool) -> Set[Certificate]:
        """
        Enumerate the certificates in one store.
        Args:
            system_store bool: True for the system store, False for the user store.
        Returns:
            set: Certificates found; empty if the directory cannot be listed.
        """
        directory = self.system_dir if system_store else self.user_dir
        result = self.runner.run(quote("ls", directory))
        if not result.ok:
            logger.warning("Could not list %s: %s", directory, result.stderr.strip())
            return set()
        return {
            Certificate(name.strip(), system_store)
            for name in result.lines
            if is_valid_filename(name.strip())
        }

    def delete_certificate(self, cert: Certificate) -> bool:
        """
        Remove the file backing a certificate.
        Returns:
            bool: True if the file was removed, False if it did not exist or a
            command failed.
        """
        path = self.path_of(cert)
        try:
            with self._lock:
                self._require_exists(path)
                if cert.is_system:
                    with self.system_read_write():
                        self._check(quote("rm", path))
                else:
                    self._check(quote("rm", path))
        except ShellError as e:
            logger.warning("Deleting %s failed: %s", path, e)
            return False

        logger.info("Deleted %s", path)
        self._notify()
        return True

    def move_certificate_to_system(self, cert: Certificate) -> Optional[Certificate]:
        """
        Promote a user certificate into the system store.
        Args:
            cert Certificate: A user store certificate.
        Returns:
            Certificate: The new system store certificate, or None if any
            step failed. No copy is left in the system store on failure.
        """
        if cert.is_system:
            logger.warning("%s is already a system certificate", cert.filename)
            return None

        moved = Certificate(cert.filename, True)
        source = self.path_of(cert)
        destination = self.path_of(moved)
        try:
            with self._lock:
                self._require_exists(source)
                if self.runner.run(quote("test", "-e", destination)).ok:
                    logger.warning("%s already exists", destination)
                    return None
                with self.system_read_write():
                    try:
                        self._check(quote("cp", source, destination))
                        self._check(quote("chmod", CERTIFICATE_MODE, destination))
                        self._check(quote("rm", source))
                    except ShellError:
                        self._discard(destination)
                        raise
        except ShellError as e:
            logger.warning("Moving %s to system failed: %s", source, e)
            return None

        logger.info("Moved %s to %s", source, destination)
        self._notify()
        return moved

    def add_certificate(
        self, source_path: str, name: Optional[str] = None
    ) -> Optional[Certificate]:
        """
        Install a local certificate file into the user store.
        Args:
            source_path str: Path of a PEM or DER certificate on the device.
            name str: Target filename. Defaults to Android's hash based name.
        Returns:
            Certificate: The added user certificate, or None on failure.
        """
        if name is None:
            try:
                name = android_hash_name(load_certificate(source_path))
            except (OSError, ValueError) as e:
                logger.warning("Cannot read certificate %s: %s", source_path, e)
                return None

        if not is_valid_filename(name):
            logger.warning("Refusing certificate name %r", name)
            return None

        cert = Certificate(name, False)
        destination = self.path_of(cert)
        try:
            with self._lock:
                if self.runner.run(quote("test", "-e", destination)).ok:
                    logger.warning("%s already exists", destination)
                    return None
                try:
                    self._check(quote("cp", source_path, destination))
                    self._check(quote("chmod", CERTIFICATE_MODE, destination))
                except ShellError:
                    self._discard(destination)
                    raise
        except ShellError as e:
            logger.warning("Adding %s failed: %s", source_path, e)
            return None

        logger.info("Added %s", destination)
        self._notify()
        return cert

    def read_bytes(self, cert: Certificate) -> Optional[bytes]:
        """
        Raw content of a stored certificate, None if it cannot be read.
        The file travels base64 encoded so DER survives the text channel.
        """
        result = self.runner.run(quote("base64", self.path_of(cert)))
        if not result.ok:
            return None
        try:
            return base64.b64decode("".join(result.lines), validate=True)
        except binascii.Error as e:
            logger.warning("Bad base64 output for %s: %s", cert.filename, e)
            return None

    def load_x509(self, cert: Certificate) -> Optional[X509Certificate]:
        """Read and parse a stored certificate, None if missing or unparsable"""
        data = self.read_bytes(cert)
        if data is None:
            return None
        try:
            return load_certificate_bytes(data)
        except ValueError as e:
            logger.debug("%s is not a certificate: %s", cert.filename, e)
            return None

    def get_description(self, cert: Certificate) -> Tuple[str, str]:
        """
        Human readable labels for a certificate.
        Returns:
            tuple: (summary, detail), never empty and never equal. A placeholder
            pair is returned when the file is missing or unreadable.
        """
        parsed = self.load_x509(cert)
        if parsed is None:
            return UNKNOWN_SUMMARY, f"{cert.filename} could not be read"
        return describe_certificate(parsed)

    def is_system_read_only(self) -> bool:
        """Check the mount table for a read-only system partition"""
        result = self.runner.run("mount")
        for line in result.lines:
            tokens = line.split()
            if self.system_mount_point not in tokens:
                continue
            for token in tokens:
                options = token.strip("()").split(",")
                if "ro" in options:
                    return True
                if "rw" in options:
                    return False
        return False

    @contextmanager
    def system_read_write(self) -> Iterator[None]:
        """
        Remount the system partition read-write for the duration of the block.
        The read-only remount runs on every exit path.
        Raises:
            ShellError: If the read-write remount fails.
        """
        try:
            self._check(quote("mount", "-o", "remount,rw", self.system_mount_point))
            yield
        finally:
            restore = self.runner.run(
                quote("mount", "-o", "remount,ro", self.system_mount_point)
            )
            if not restore.ok:
                logger.critical(
                    "%s could not be remounted read-only and may still be writable: %s",
                    self.system_mount_point,
                    restore.stderr.strip(),
                )

    def _check(self, command: str) -> ShellResult:
        result = self.runner.run(command)
        if not result.ok:
            raise ShellError(result)
        return result

    def _require_exists(self, path: str) -> None:
        self._check(quote("test", "-e", path))

    def _discard(self, path: str) -> None:
        result = self.runner.run(quote("rm", "-f", path))
        if not result.ok:
            logger.error("Could not clean up %s", path)

    def _notify(self) -> None:
        if self._listener is not None:
            self._listener()
