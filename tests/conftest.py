# conftest.py
import base64
import os
import shlex
import shutil
import threading
from datetime import datetime, timedelta, timezone

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from zertman.certstore import Certificate, CertificateStore
from zertman.shell import ShellResult

TEST_CERTIFICATE_NAME = "test_certificate"


class FakeRootShell:
    """
    Executes the store's command vocabulary against local directories and
    tracks the mount state of the fake system partition.
    """

    def __init__(self, system_dir, mount_point="/system"):
        self.system_dir = str(system_dir)
        self.mount_point = mount_point
        self.read_only = True
        self.commands = []
        self.fail_on = []
        self.fail_restore = False
        self._lock = threading.Lock()

    def run(self, command):
        with self._lock:
            self.commands.append(command)
            if any(command.startswith(prefix) for prefix in self.fail_on):
                return ShellResult(command, 1, stderr="injected failure")
            args = shlex.split(command)
            handler = getattr(self, f"_{args[0]}", None)
            if handler is None:
                return ShellResult(command, 127, stderr=f"{args[0]}: not found")
            return handler(command, args[1:])

    def _ok(self, command, lines=None):
        return ShellResult(command, 0, lines=lines or [])

    def _fail(self, command, message):
        return ShellResult(command, 1, stderr=message)

    def _writable(self, path):
        return not (self.read_only and path.startswith(self.system_dir + os.sep))

    def _id(self, command, args):
        return self._ok(command, ["uid=0(root) gid=0(root)"])

    def _ls(self, command, args):
        if not os.path.isdir(args[0]):
            return self._fail(command, f"ls: {args[0]}: No such file or directory")
        return self._ok(command, sorted(os.listdir(args[0])))

    def _test(self, command, args):
        return self._ok(command) if os.path.exists(args[1]) else self._fail(command, "")

    def _base64(self, command, args):
        if not os.path.isfile(args[0]):
            return self._fail(command, f"base64: {args[0]}: No such file or directory")
        with open(args[0], "rb") as f:
            encoded = base64.encodebytes(f.read()).decode("ascii")
        return self._ok(command, encoded.splitlines())

    def _cp(self, command, args):
        source, destination = args
        if not os.path.isfile(source):
            return self._fail(command, f"cp: {source}: No such file or directory")
        if not self._writable(destination):
            return self._fail(command, "cp: Read-only file system")
        shutil.copy(source, destination)
        return self._ok(command)

    def _chmod(self, command, args):
        mode, path = args
        if not os.path.exists(path):
            return self._fail(command, f"chmod: {path}: No such file or directory")
        if not self._writable(path):
            return self._fail(command, "chmod: Read-only file system")
        os.chmod(path, int(mode, 8))
        return self._ok(command)

    def _rm(self, command, args):
        force = args[0] == "-f"
        path = args[-1]
        if not os.path.exists(path):
            if force:
                return self._ok(command)
            return self._fail(command, f"rm: {path}: No such file or directory")
        if not self._writable(path):
            return self._fail(command, "rm: Read-only file system")
        os.remove(path)
        return self._ok(command)

    def _mount(self, command, args):
        if not args:
            mode = "ro" if self.read_only else "rw"
            return self._ok(
                command,
                [
                    "rootfs / rootfs ro,seclabel,relatime 0 0",
                    f"/dev/block/dm-0 {self.mount_point} ext4 {mode},seclabel,relatime 0 0",
                ],
            )
        options, target = args[1], args[2]
        if target != self.mount_point:
            return self._fail(command, f"mount: '{target}' not in /proc/mounts")
        if options == "remount,ro" and self.fail_restore:
            return self._fail(command, "mount: device busy")
        self.read_only = options == "remount,ro"
        return self._ok(command)


def make_certificate(common_name="Zertman Test CA", organization="Zertman"):
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    attributes = [x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, organization)]
    if common_name is not None:
        attributes.insert(0, x509.NameAttribute(x509.NameOID.COMMON_NAME, common_name))
    subject = x509.Name(attributes)
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(private_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def test_certificate():
    return make_certificate()


@pytest.fixture(scope="session")
def pem_bytes(test_certificate):
    return test_certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def der_bytes(test_certificate):
    return test_certificate.public_bytes(serialization.Encoding.DER)


@pytest.fixture
def user_dir(tmp_path):
    path = tmp_path / "cacerts-added"
    path.mkdir()
    return path


@pytest.fixture
def system_dir(tmp_path):
    path = tmp_path / "cacerts"
    path.mkdir()
    return path


@pytest.fixture
def root_shell(system_dir):
    return FakeRootShell(system_dir)


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def cert_store(root_shell, user_dir, system_dir, notifications):
    """Fixture to provide a CertificateStore over the fake root shell"""
    store = CertificateStore(
        root_shell, user_dir=str(user_dir), system_dir=str(system_dir)
    )
    store.set_on_certificate_changed_listener(lambda: notifications.append(1))
    return store


@pytest.fixture
def copy_certificate(user_dir, pem_bytes, cert_store):
    """Place the test certificate straight into the user store"""

    def _copy(is_system=False, name=TEST_CERTIFICATE_NAME):
        path = user_dir / name
        path.write_bytes(pem_bytes)
        os.chmod(path, 0o600)
        cert = Certificate(name, False)
        if is_system:
            return cert_store.move_certificate_to_system(cert)
        return cert

    return _copy


@pytest.fixture
def mock_config(tmp_path, user_dir, system_dir):
    """Fixture to provide a test config file"""
    config_content = {
        "user_dir": str(user_dir),
        "system_dir": str(system_dir),
        "system_mount_point": "/system",
        "su_binary": "/sbin/su",
        "command_timeout": 15,
        "retries": 2,
    }

    config_path = tmp_path / "zertman.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config_content, f)

    return str(config_path)
