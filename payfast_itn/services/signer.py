"""
Canonical field-set serialization and Payfast signatures.

Payfast signs a field set by URL-encoding it into a parameter string,
optionally salting it with the merchant passphrase and taking the MD5
digest. The same primitive signs outbound payment requests and verifies
inbound ITNs, with a different field-inclusion rule on each side.
"""

import hashlib
import hmac
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote_plus


# Decides whether a (key, value) pair takes part in the canonical string
InclusionRule = Callable[[str, Any], bool]


def include_non_empty(key: str, value: Any) -> bool:
    """Outbound rule: drop fields whose value is None or the empty string."""
    return value is not None and value != ''


def include_all_but_signature(key: str, value: Any) -> bool:
    """Inbound rule: keep every field except the signature, empty ones too."""
    return key != 'signature'


def _to_str(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


def encode_value(value: Any) -> str:
    """URL-encode a trimmed value the way the gateway does (spaces as '+')."""
    return quote_plus(_to_str(value).strip())


def canonical_string(
    fields: Mapping[str, Any],
    include: InclusionRule = include_non_empty,
    passphrase: Optional[str] = None
) -> str:
    """
    Build the canonical parameter string for a field set.

    Fields are emitted in mapping order; the string is not sorted.

    Args:
        fields: Ordered field set
        include: Inclusion rule for (key, value) pairs
        passphrase: Optional passphrase appended as a final term

    Returns:
        The canonical string
    """
    parts = [
        f"{key}={encode_value(value)}"
        for key, value in fields.items()
        if include(key, value)
    ]
    output = '&'.join(parts)

    if passphrase is not None:
        output += f"&passphrase={encode_value(passphrase)}"

    return output


def md5_digest(data: str) -> str:
    """Hex MD5 digest; MD5 is what the gateway verifies against."""
    return hashlib.md5(data.encode('utf-8')).hexdigest()


def generate_signature(
    fields: Mapping[str, Any],
    passphrase: Optional[str] = None
) -> str:
    """
    Sign an outbound field set.

    Args:
        fields: Ordered request fields
        passphrase: Optional merchant passphrase

    Returns:
        Hex-encoded MD5 signature
    """
    return md5_digest(canonical_string(fields, include_non_empty, passphrase))


class Signer:
    """
    Signs and verifies field sets with one merchant passphrase.

    Usage:
        signer = Signer(passphrase='salt')
        fields['signature'] = signer.sign(fields)
    """

    def __init__(self, passphrase: Optional[str] = None):
        self.passphrase = passphrase

    def canonical(
        self,
        fields: Mapping[str, Any],
        include: InclusionRule = include_non_empty,
        keyed: bool = True
    ) -> str:
        """Canonical string, with the passphrase term when keyed."""
        passphrase = self.passphrase if keyed else None
        return canonical_string(fields, include, passphrase)

    @staticmethod
    def digest(canonical: str) -> str:
        return md5_digest(canonical)

    def sign(self, fields: Mapping[str, Any]) -> str:
        """Signature for an outbound request."""
        return self.digest(self.canonical(fields, include_non_empty))

    def expected_signature(self, fields: Mapping[str, Any]) -> str:
        """Signature a received notification should carry."""
        return self.digest(self.canonical(fields, include_all_but_signature))

    def verify(self, fields: Mapping[str, Any], signature: Optional[str]) -> bool:
        """
        Verify the signature of a received field set.

        Args:
            fields: Received fields, in received order
            signature: Claimed signature

        Returns:
            True if the signature matches
        """
        if not signature:
            return False

        expected = self.expected_signature(fields)
        return hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8'))


def sign_fields(
    fields: Dict[str, Any],
    passphrase: Optional[str] = None
) -> Dict[str, Any]:
    """
    Return a copy of the outbound fields without empty values, with the
    signature appended as the last field.
    """
    signed = {k: v for k, v in fields.items() if include_non_empty(k, v)}
    signed['signature'] = generate_signature(signed, passphrase)
    return signed
