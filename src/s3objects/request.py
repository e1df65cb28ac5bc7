"""
Request construction for object operations
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from email.utils import format_datetime
from enum import Enum
from typing import Dict, Optional, Sequence, Union
from urllib.parse import quote

from . import checksum
from .error import ContractViolationException
from .models import CannedAcl, ObjectMetadata, RestoreTier, StorageClass, coerce_enum
from .reader import ChunkedFileReader

S3_XMLNS = "http://s3.amazonaws.com/doc/2006-03-01/"

Body = Union[bytes, ChunkedFileReader]


class Operation(Enum):
    PUT_OBJECT = "PutObject"
    GET_OBJECT = "GetObject"
    HEAD_OBJECT = "HeadObject"
    DELETE_OBJECT = "DeleteObject"
    RESTORE_OBJECT = "RestoreObject"
    INITIATE_MULTIPART = "CreateMultipartUpload"
    PUT_PART = "UploadPart"
    COMPLETE_MULTIPART = "CompleteMultipartUpload"
    ABORT_MULTIPART = "AbortMultipartUpload"

    @property
    def method(self) -> str:
        return _METHODS[self]

    @property
    def requires_body(self) -> bool:
        return self in _BODY_OPERATIONS


_METHODS = {
    Operation.PUT_OBJECT: "PUT",
    Operation.GET_OBJECT: "GET",
    Operation.HEAD_OBJECT: "HEAD",
    Operation.DELETE_OBJECT: "DELETE",
    Operation.RESTORE_OBJECT: "POST",
    Operation.INITIATE_MULTIPART: "POST",
    Operation.PUT_PART: "PUT",
    Operation.COMPLETE_MULTIPART: "POST",
    Operation.ABORT_MULTIPART: "DELETE",
}

_BODY_OPERATIONS = frozenset({
    Operation.PUT_OBJECT,
    Operation.RESTORE_OBJECT,
    Operation.PUT_PART,
    Operation.COMPLETE_MULTIPART,
})


@dataclass
class RequestDescriptor:
    """Everything the transport needs to send one request."""
    operation: Operation
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Body] = None

    @property
    def method(self) -> str:
        return self.operation.method


class AclHeaderPolicy:
    """Adds ``x-amz-acl`` when a canned ACL is set."""

    header = "x-amz-acl"

    def apply(self, headers: Dict[str, str], acl: Optional[CannedAcl]) -> None:
        if acl:
            headers[self.header] = coerce_enum(CannedAcl, acl, "canned ACL").value


class EncryptionHeaderPolicy:
    """Adds ``x-amz-server-side-encryption`` when an algorithm is set."""

    header = "x-amz-server-side-encryption"

    def apply(self, headers: Dict[str, str], encryption: Optional[str]) -> None:
        if encryption:
            headers[self.header] = encryption


def _quote_segment(segment: str) -> str:
    # dot-only segments would be removed by URL normalization
    if segment and segment.strip(".") == "":
        return "%2E" * len(segment)
    return quote(segment, safe="~")


def object_path(bucket_name: str, object_name: str) -> str:
    """
    Path-style request path with the key percent-encoded and ``/`` kept.
    ``.`` and ``..`` segments are encoded so the key reaches the server
    unchanged.
    """
    if not bucket_name:
        raise ContractViolationException("Bucket name is required.")
    if not object_name:
        raise ContractViolationException("Object key is required.")
    key = "/".join(_quote_segment(segment) for segment in object_name.split("/"))
    return f"/{bucket_name}/{key}"


def _xml(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="utf-8", method="xml")


class RequestBuilder:
    """
    Translates (bucket, key, metadata, operation) into request descriptors.

    Upload headers follow PutObject: Content-Type, Content-Length and
    Content-MD5 are always present, every other header only when the
    corresponding metadata field is set.
    """

    def __init__(
        self,
        bucket_name: str,
        object_name: str,
        acl_policy: Optional[AclHeaderPolicy] = None,
        encryption_policy: Optional[EncryptionHeaderPolicy] = None,
    ):
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.path = object_path(bucket_name, object_name)
        self.acl_policy = acl_policy or AclHeaderPolicy()
        self.encryption_policy = encryption_policy or EncryptionHeaderPolicy()

    def _descriptor(
        self,
        operation: Operation,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Body] = None,
        query: Optional[Dict[str, str]] = None,
    ) -> RequestDescriptor:
        if operation.requires_body and body is None:
            raise ContractViolationException(
                f"{operation.name} for '{self.object_name}' requires a body."
            )
        return RequestDescriptor(
            operation=operation,
            path=self.path,
            query=dict(query or {}),
            headers=dict(headers or {}),
            body=body,
        )

    def upload_headers(self, metadata: ObjectMetadata, size: int, md5_hex: str) -> Dict[str, str]:
        headers = {
            "Content-MD5": checksum.hex_to_base64(md5_hex),
            "Content-Length": str(size),
            "Content-Type": metadata.content_type,
        }

        if metadata.expires:
            headers["Expires"] = format_datetime(metadata.expires, usegmt=True)
        if metadata.content_encoding:
            headers["Content-Encoding"] = metadata.content_encoding
        if metadata.content_disposition:
            headers["Content-Disposition"] = metadata.content_disposition
        if metadata.cache_control:
            headers["Cache-Control"] = metadata.cache_control
        if metadata.storage_class and metadata.storage_class != StorageClass.STANDARD:
            headers["x-amz-storage-class"] = metadata.storage_class.header_value
        if metadata.website_redirect_location:
            headers["x-amz-website-redirect-location"] = metadata.website_redirect_location
        for key, value in metadata.user_metadata.items():
            headers[f"x-amz-meta-{key.lower()}"] = value

        self.acl_policy.apply(headers, metadata.acl_short)
        self.encryption_policy.apply(headers, metadata.encryption)
        return headers

    def put_object(self, metadata: ObjectMetadata, body: Optional[Body], size: int, md5_hex: str) -> RequestDescriptor:
        return self._descriptor(
            Operation.PUT_OBJECT,
            headers=self.upload_headers(metadata, size, md5_hex),
            body=body,
        )

    def get_object(self) -> RequestDescriptor:
        return self._descriptor(Operation.GET_OBJECT)

    def head_object(self) -> RequestDescriptor:
        return self._descriptor(Operation.HEAD_OBJECT)

    def delete_object(self) -> RequestDescriptor:
        return self._descriptor(Operation.DELETE_OBJECT)

    def restore_object(self, days: int, tier: Optional[RestoreTier] = None) -> RequestDescriptor:
        if days is None or int(days) < 1:
            raise ContractViolationException(f"Restore requires a positive number of days, got {days}.")

        root = ET.Element("RestoreRequest", xmlns=S3_XMLNS)
        ET.SubElement(root, "Days").text = str(int(days))
        if tier:
            params = ET.SubElement(root, "GlacierJobParameters")
            ET.SubElement(params, "Tier").text = coerce_enum(RestoreTier, tier, "restore tier").value
        payload = _xml(root)

        headers = {
            "Content-Type": "application/xml",
            "Content-Length": str(len(payload)),
            "Content-MD5": checksum.digest(payload).base64,
        }
        return self._descriptor(Operation.RESTORE_OBJECT, headers=headers, body=payload, query={"restore": ""})

    def initiate_multipart(
        self,
        metadata: ObjectMetadata,
        headers: Optional[Dict[str, str]] = None,
        acl: Optional[CannedAcl] = None,
    ) -> RequestDescriptor:
        request_headers = dict(headers or {})
        self.acl_policy.apply(request_headers, acl)
        self.encryption_policy.apply(request_headers, metadata.encryption)
        return self._descriptor(Operation.INITIATE_MULTIPART, headers=request_headers, query={"uploads": ""})

    def put_part(
        self,
        upload_id: str,
        part_number: int,
        content: Optional[bytes],
        headers: Optional[Dict[str, str]] = None,
    ) -> RequestDescriptor:
        request_headers = dict(headers or {})
        if content is not None:
            request_headers["Content-Length"] = str(len(content))
        return self._descriptor(
            Operation.PUT_PART,
            headers=request_headers,
            body=content,
            query={"partNumber": str(part_number), "uploadId": upload_id},
        )

    def complete_multipart(
        self,
        upload_id: str,
        part_numbers: Sequence[int],
        etags: Sequence[str],
    ) -> RequestDescriptor:
        if len(part_numbers) != len(etags):
            raise ContractViolationException(
                f"Got {len(part_numbers)} part numbers but {len(etags)} ETags."
            )

        root = ET.Element("CompleteMultipartUpload")
        for part_number, etag in zip(part_numbers, etags):
            part_el = ET.SubElement(root, "Part")
            ET.SubElement(part_el, "PartNumber").text = str(part_number)
            etag_value = checksum.normalize_etag(etag) or ""
            ET.SubElement(part_el, "ETag").text = f'"{etag_value}"'
        payload = _xml(root)

        headers = {
            "Content-Type": "application/xml",
            "Content-Length": str(len(payload)),
        }
        return self._descriptor(
            Operation.COMPLETE_MULTIPART,
            headers=headers,
            body=payload,
            query={"uploadId": upload_id},
        )

    def abort_multipart(self, upload_id: str) -> RequestDescriptor:
        return self._descriptor(Operation.ABORT_MULTIPART, query={"uploadId": upload_id})


def find_xml_text(body: bytes, tag: str) -> Optional[str]:
    """
    Return the text of the first element named ``tag`` in ``body``,
    ignoring namespaces. Raises ``ET.ParseError`` on malformed XML.
    """
    doc = ET.fromstring(body)
    wanted = tag.lower()
    for node in doc.iter():
        if node.tag.split("}")[-1].lower() == wanted and node.text:
            return node.text
    return None


def parse_error_document(body: bytes) -> Optional[Dict[str, str]]:
    """Return Code and Message from an S3 ``<Error>`` document, if ``body`` is one."""
    if not body or not body.strip():
        return None
    try:
        doc = ET.fromstring(body)
    except ET.ParseError:
        return None
    if doc.tag.split("}")[-1] != "Error":
        return None

    result: Dict[str, str] = {}
    for child in list(doc):
        tag = child.tag.split("}")[-1]
        if tag in ("Code", "Message") and child.text:
            result[tag.lower()] = child.text
    return result

