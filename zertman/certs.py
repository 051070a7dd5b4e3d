from typing import Dict, Any, Tuple
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes
from cryptography.x509 import Certificate, Name
import re

PEM_BLOCK = re.compile(
    rb"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----", re.DOTALL
)


def load_certificate_bytes(data: bytes) -> Certificate:
    """
    Parse certificate content as found in an Android cacerts directory.
    Args:
        data bytes: PEM (optionally surrounded by an openssl text dump) or DER.
    Returns:
        Certificate: The parsed certificate.
    Raises:
        ValueError: If the content is not a recognizable certificate.
    """
    match = PEM_BLOCK.search(data)
    if match:
        return x509.load_pem_x509_certificate(match.group(0))
    return x509.load_der_x509_certificate(data)


def load_certificate(cert_path: str) -> Certificate:
    """Load a certificate from a local file"""
    with open(cert_path, "rb") as f:
        return load_certificate_bytes(f.read())


def _display_name(name: Name) -> str:
    for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATION_NAME):
        attributes = name.get_attributes_for_oid(oid)
        if attributes and attributes[0].value:
            return str(attributes[0].value)
    return name.rfc4514_string() or "(empty name)"


def describe_certificate(cert: Certificate) -> Tuple[str, str]:
    """
    Derive the two labels shown for a certificate.
    Returns:
        tuple: (summary, detail), the subject name and the issuer line.
    """
    return _display_name(cert.subject), f"Issued by {_display_name(cert.issuer)}"


def get_cert_info(cert: Certificate) -> Dict[str, Any]:
    """Extract readable information from certificate"""
    info: Dict[str, Any] = {
        "subject": {attr.oid._name: attr.value for attr in cert.subject},
        "issuer": {attr.oid._name: attr.value for attr in cert.issuer},
        "serial_number": cert.serial_number,
        "not_valid_before": cert.not_valid_before_utc,
        "not_valid_after": cert.not_valid_after_utc,
        "fingerprint": cert.fingerprint(hashes.SHA256()).hex(),
        "is_ca": False,
    }

    try:
        basic_constraints = cert.extensions.get_extension_for_oid(
            x509.oid.ExtensionOID.BASIC_CONSTRAINTS
        )
        info["is_ca"] = basic_constraints.value.ca
    except x509.extensions.ExtensionNotFound:
        pass

    return info


def android_hash_name(cert: Certificate) -> str:
    """
    Filename Android uses for a certificate in its cacerts directories
    (openssl's subject_hash_old followed by '.0').
    """
    digest = hashes.Hash(hashes.MD5())
    digest.update(cert.subject.public_bytes())
    value = int.from_bytes(digest.finalize()[:4], "little")
    return f"{value:08x}.0"
