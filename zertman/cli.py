from typing import Optional
from cryptography.x509 import Certificate as X509Certificate
import argparse
import logging
import sys

from zertman.certs import android_hash_name, get_cert_info
from zertman.certstore import (
    Certificate,
    CertificateStore,
    CertStoreConfig,
    create_cert_store,
)
from zertman.options import parse_args


class CertificateManager:
    def __init__(self, args, cert_store: CertificateStore):
        """
        Handles the command line operations against a certificate store.
        Args:
            args Namespace: Parsed command-line arguments.
            cert_store CertificateStore: The store the commands operate on.
        """
        self.args = args
        self.cert_store = cert_store

    def _target(self) -> Certificate:
        return Certificate(self.args.name, bool(self.args.system))

    def list_certs(self) -> bool:
        """
        Handle list command
        """
        store_name = "System" if self.args.system else "User"
        certs = self.cert_store.list_certificates(bool(self.args.system))
        print(f"\n{store_name} certificates:")
        print("----------------------")
        for cert in sorted(certs, key=lambda c: c.filename):
            summary, detail = self.cert_store.get_description(cert)
            print(f"{cert.filename}  {summary} ({detail})")
        return True

    def add_cert(self) -> bool:
        """
        Handle add command
        """
        cert = self.cert_store.add_certificate(self.args.input, self.args.name)
        if cert is None:
            print(f"Could not add certificate from {self.args.input}")
            return False
        print(f"Added {cert.filename} to user certificates")
        return True

    def delete_cert(self) -> bool:
        """
        Handle delete command
        """
        cert = self._target()
        if not self.cert_store.delete_certificate(cert):
            print(f"Could not delete certificate: {cert.filename}")
            return False
        print(f"Deleted certificate: {cert.filename}")
        return True

    def move_cert(self) -> bool:
        """
        Handle move command
        Returns:
            bool: True if the user certificate now lives in the system store.
        """
        moved = self.cert_store.move_certificate_to_system(
            Certificate(self.args.name, False)
        )
        if moved is None:
            print(f"Could not move certificate to system: {self.args.name}")
            return False
        print(f"Moved {moved.filename} to {self.cert_store.path_of(moved)}")
        return True

    def show_info(self) -> bool:
        """
        Handle info command
        """
        cert = self._target()
        parsed = self.cert_store.load_x509(cert)
        if parsed is None:
            print(f"Certificate '{cert.filename}' not found or unreadable")
            return False
        self._display_cert_info(parsed)
        return True

    def _display_cert_info(self, cert: X509Certificate) -> None:
        info = get_cert_info(cert)
        print(f"\nCertificate details for: {self.args.name}")
        print("-" * 40)
        print("Subject:")
        for key, value in info["subject"].items():
            print(f"  {key}: {value}")
        print("Issuer:")
        for key, value in info["issuer"].items():
            print(f"  {key}: {value}")
        print(f"Serial Number: {info['serial_number']}")
        print(f"Valid From: {info['not_valid_before']}")
        print(f"Valid Until: {info['not_valid_after']}")
        print(f"SHA256 Fingerprint: {info['fingerprint']}")
        print(f"Is CA: {info['is_ca']}")
        print(f"Android name: {android_hash_name(cert)}")


def _main(
    args: argparse.Namespace, cert_store: Optional[CertificateStore] = None
) -> int:
    if cert_store is None:
        cert_store = create_cert_store(CertStoreConfig(args.config))

    manager = CertificateManager(args, cert_store)

    # Command dispatch dictionary
    commands = {
        "list": manager.list_certs,
        "add": manager.add_cert,
        "delete": manager.delete_cert,
        "move": manager.move_cert,
        "info": manager.show_info,
    }

    if args.command not in commands:
        print("Invalid command")
        return 1
    return 0 if commands[args.command]() else 1


def main():
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(_main(args))


if __name__ == "__main__":
    main()
