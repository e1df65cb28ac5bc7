"""
Multipart upload state machine
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from . import checksum
from .error import ContractViolationException, ProtocolException, RequestException, UploadException
from .models import CannedAcl, CompleteMultipartUploadResult, MultipartUpload, PartResult
from .request import find_xml_text, parse_error_document

if TYPE_CHECKING:
    from .object import S3Object

logger = logging.getLogger(__name__)


class UploadState(Enum):
    NOT_STARTED = "not_started"
    INITIATED = "initiated"
    PART_UPLOADING = "part_uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class InitiateOptions:
    """
    Optional fields for CreateMultipartUpload.

    headers: sent as-is (e.g. Content-Type, x-amz-meta-*).
    acl: adds x-amz-acl for the assembled object.
    """
    headers: Dict[str, str] = field(default_factory=dict)
    acl: Optional[CannedAcl] = None


@dataclass
class PutPartOptions:
    """
    Optional fields for UploadPart.

    headers: sent as-is; Content-Length is always derived from the content.
    """
    headers: Dict[str, str] = field(default_factory=dict)


class MultipartUploadCoordinator:
    """
    Drives one multipart upload: initiate, put parts, then complete or abort.

    Part numbers are assigned by the caller and are not checked for gaps or
    duplicates. Failed parts are not retried; the caller may put the same
    part number again. An upload that is never completed or aborted leaves
    its parts stored (and billed) on the server.

    Example:
        upload = obj.multipart()
        upload_id = await upload.initiate()
        await upload.put_part(upload_id, 1, first_chunk)
        await upload.put_part(upload_id, 2, second_chunk)
        await upload.complete(upload_id)
    """

    def __init__(self, obj: "S3Object", upload_id: Optional[str] = None):
        self._object = obj
        self.state = UploadState.NOT_STARTED
        self.upload: Optional[MultipartUpload] = None
        if upload_id:
            self.upload = MultipartUpload(upload_id=upload_id)
            self.state = UploadState.INITIATED

    @property
    def upload_id(self) -> Optional[str]:
        return self.upload.upload_id if self.upload else None

    @property
    def parts(self) -> List[PartResult]:
        return list(self.upload.parts) if self.upload else []

    def _check_active(self, upload_id: str) -> None:
        if self.state in (UploadState.COMPLETED, UploadState.ABORTED):
            raise ContractViolationException(
                f"Multipart upload {self.upload_id} is already {self.state.value}."
            )
        if not upload_id:
            raise ContractViolationException("An upload id is required.")
        if self.upload is None:
            self.upload = MultipartUpload(upload_id=upload_id)
            self.state = UploadState.INITIATED
        elif self.upload.upload_id != upload_id:
            raise ContractViolationException(
                f"Upload id {upload_id} does not match the tracked upload {self.upload.upload_id}."
            )

    def _finish(self, state: UploadState) -> None:
        self.state = state
        self.upload = None

    async def initiate(self, options: Optional[InitiateOptions] = None) -> str:
        if self.state != UploadState.NOT_STARTED:
            raise ContractViolationException(
                f"Multipart upload already {self.state.value} with id {self.upload_id}."
            )
        options = options or InitiateOptions()
        obj = self._object

        request = obj.request_builder.initiate_multipart(
            obj.metadata,
            headers=options.headers,
            acl=options.acl,
        )
        response = await obj.client.send(request)
        obj.client.raise_for_status(response, obj.bucket_name, obj.key)

        try:
            upload_id = find_xml_text(response.content, "UploadId") if response.content.strip() else None
        except ET.ParseError as ex:
            raise ProtocolException(
                f"Failed to parse multipart upload initiation response. {ex}",
                status_code=response.status_code,
            ) from ex
        if not upload_id:
            raise ProtocolException(
                "Multipart upload initiation did not return an upload ID.",
                status_code=response.status_code,
            )

        self.upload = MultipartUpload(upload_id=upload_id)
        self.state = UploadState.INITIATED
        logger.info(
            "[S3Objects][Multipart] initiated bucket=%s key=%s uploadId=%s",
            obj.bucket_name,
            obj.key,
            upload_id,
        )
        return upload_id

    async def put_part(
        self,
        upload_id: str,
        part_number: int,
        content: bytes,
        options: Optional[PutPartOptions] = None,
    ) -> PartResult:
        self._check_active(upload_id)
        options = options or PutPartOptions()
        obj = self._object

        request = obj.request_builder.put_part(upload_id, part_number, content, headers=options.headers)
        response = await obj.client.send(request)
        obj.client.raise_for_status(response, obj.bucket_name, obj.key, exc_class=UploadException)

        part = PartResult(
            part_number=int(part_number),
            etag=checksum.normalize_etag(response.header("ETag")) or None,
        )
        self.upload.parts.append(part)
        self.state = UploadState.PART_UPLOADING
        logger.debug(
            "[S3Objects][Multipart] part bucket=%s key=%s uploadId=%s partNumber=%s size=%s",
            obj.bucket_name,
            obj.key,
            upload_id,
            part_number,
            len(content),
        )
        return part

    def _tracked_parts(self):
        parts: Dict[int, PartResult] = {}
        for part in self.upload.parts:
            parts[part.part_number] = part
        ordered = [parts[number] for number in sorted(parts)]
        return [p.part_number for p in ordered], [p.etag or "" for p in ordered]

    async def complete(
        self,
        upload_id: str,
        part_numbers: Optional[Sequence[int]] = None,
        etags: Optional[Sequence[str]] = None,
    ) -> CompleteMultipartUploadResult:
        """
        Assemble the upload from ``part_numbers`` and ``etags``, matched by
        position. When both are omitted, the parts put through this
        coordinator are used in part-number order (the latest put of a
        repeated part number wins).
        """
        if (part_numbers is None) != (etags is None):
            raise ContractViolationException("part_numbers and etags must be given together.")
        if part_numbers is not None and len(part_numbers) != len(etags):
            raise ContractViolationException(
                f"Got {len(part_numbers)} part numbers but {len(etags)} ETags."
            )
        self._check_active(upload_id)
        if part_numbers is None:
            part_numbers, etags = self._tracked_parts()
        if not part_numbers:
            raise ContractViolationException(f"Multipart upload {upload_id} has no parts to complete.")

        obj = self._object
        request = obj.request_builder.complete_multipart(upload_id, list(part_numbers), list(etags))
        response = await obj.client.send(request)
        obj.client.raise_for_status(response, obj.bucket_name, obj.key)

        # CompleteMultipartUpload can fail after a 200 status line
        error = parse_error_document(response.content)
        if error is not None:
            raise RequestException(
                f"Completing multipart upload {upload_id} failed: {error.get('message', '')}",
                status_code=response.status_code,
                error_code=error.get("code"),
                response_text=response.text,
            )

        result = CompleteMultipartUploadResult(
            bucket_name=obj.bucket_name,
            object_name=obj.key,
            upload_id=upload_id,
        )
        if response.content.strip():
            try:
                result.etag = checksum.normalize_etag(find_xml_text(response.content, "ETag"))
                result.location = find_xml_text(response.content, "Location")
            except ET.ParseError:
                logger.warning(
                    "[S3Objects][Multipart] unparseable completion body bucket=%s key=%s uploadId=%s",
                    obj.bucket_name,
                    obj.key,
                    upload_id,
                )
        if not result.etag:
            result.etag = checksum.normalize_etag(response.header("ETag")) or None

        self._finish(UploadState.COMPLETED)
        logger.info(
            "[S3Objects][Multipart] completed bucket=%s key=%s uploadId=%s parts=%s",
            obj.bucket_name,
            obj.key,
            upload_id,
            len(part_numbers),
        )
        return result

    async def abort(self, upload_id: str) -> None:
        """Discard the upload and its parts. Service errors are raised, not hidden."""
        if not upload_id:
            raise ContractViolationException("An upload id is required.")
        if self.upload is not None and self.upload.upload_id != upload_id:
            raise ContractViolationException(
                f"Upload id {upload_id} does not match the tracked upload {self.upload.upload_id}."
            )

        obj = self._object
        request = obj.request_builder.abort_multipart(upload_id)
        response = await obj.client.send(request)
        obj.client.raise_for_status(response, obj.bucket_name, obj.key)

        self._finish(UploadState.ABORTED)
        logger.info(
            "[S3Objects][Multipart] aborted bucket=%s key=%s uploadId=%s",
            obj.bucket_name,
            obj.key,
            upload_id,
        )
