"""
MD5 helpers for Content-MD5 headers and ETag verification
"""

import base64
import binascii
import hashlib
import re
from typing import NamedTuple, Optional

from .error import ContractViolationException

_MULTIPART_ETAG = re.compile(r"-\d+$")


class Digest(NamedTuple):
    """MD5 of a payload as hex and as base64 of the raw digest."""
    hex: str
    base64: str


def digest(data: bytes) -> Digest:
    """Return the MD5 of ``data`` in both transport forms."""
    md5 = hashlib.md5(data)
    return Digest(md5.hexdigest(), base64.b64encode(md5.digest()).decode("ascii"))


def digest_file(path, block_size: int = 65536) -> str:
    """Return the hex MD5 of a file, reading it block by block."""
    md5 = hashlib.md5()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(block_size), b""):
            md5.update(block)
    return md5.hexdigest()


def hex_to_base64(md5_hex: str) -> str:
    """Convert a hex MD5 (as found in an ETag) into a Content-MD5 value."""
    try:
        raw = binascii.unhexlify(md5_hex)
    except (binascii.Error, ValueError) as ex:
        raise ContractViolationException(f"'{md5_hex}' is not a hex MD5 digest.") from ex
    if len(raw) != 16:
        raise ContractViolationException(f"'{md5_hex}' is not a hex MD5 digest.")
    return base64.b64encode(raw).decode("ascii")


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip the double quotes S3 puts around ETag values."""
    if etag is None:
        return None
    return etag.strip().strip('"')


def is_multipart_etag(etag: Optional[str]) -> bool:
    """
    Multipart uploads produce ETags of the form ``<hex>-<part count>``,
    which are not an MD5 of the object content.
    """
    if not etag:
        return False
    return bool(_MULTIPART_ETAG.search(normalize_etag(etag)))
