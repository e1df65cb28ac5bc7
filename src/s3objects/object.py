"""
S3Object - operations on a single object in a bucket
"""

import asyncio
import logging
import os
import re
from datetime import datetime, UTC
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Sequence, Union

from . import checksum
from ._http import ChunkSink, HttpResponse
from .error import (
    ContractViolationException,
    CorruptedDownloadException,
    ObjectNotFoundException,
    UploadException,
)
from .models import (
    CompleteMultipartUploadResult,
    ObjectMetadata,
    PartResult,
    PresignedUrlResult,
    PutObjectResult,
    RestoreTier,
    StorageClass,
)
from .multipart import InitiateOptions, MultipartUploadCoordinator, PutPartOptions
from .reader import ChunkedFileReader
from .request import Body, RequestBuilder

if TYPE_CHECKING:
    from .client import S3Client

logger = logging.getLogger(__name__)

USER_METADATA_PREFIX = "x-amz-meta-"
DEFAULT_PART_SIZE = 8 * 1024 * 1024

_METADATA_HEADERS = frozenset({
    "accept-ranges",
    "cache-control",
    "etag",
    "expires",
    "last-modified",
})
_AMZ_METADATA_HEADER = re.compile(r"^x-amz-(?!id-2$)")
_RESTORED = 'ongoing-request="false"'


def is_metadata_header(name: str) -> bool:
    """Whether a response header is reported by ``head()``."""
    header = name.lower()
    if header in _METADATA_HEADERS:
        return True
    if _AMZ_METADATA_HEADER.match(header):
        return True
    return header.startswith("content-")


def format_metadata_name(name: str) -> str:
    """``x-amz-server-side-encryption`` -> ``ServerSideEncryption``, ``etag`` -> ``ETag``."""
    header = name.lower()
    if header.startswith("x-amz-"):
        header = header[len("x-amz-"):]
    metadata_name = "".join(part[:1].upper() + part[1:] for part in header.split("-"))
    if metadata_name == "Etag":
        return "ETag"
    return metadata_name


class S3Object:
    """
    A key in a bucket plus the metadata used when writing it.

    Handles are created with ``S3Client.object``. The bucket and key are
    fixed for the life of the handle. Downloads replace ``user_metadata``
    with the ``x-amz-meta-*`` headers of the response.

    Example:
        obj = client.object("photos", "images/hat.jpg", content_type="image/jpeg")
        await obj.put_from_file("hat.jpg")
        if await obj.exists():
            await obj.get_to_file("hat_backup.jpg")
    """

    def __init__(
        self,
        client: "S3Client",
        bucket_name: str,
        key: str,
        metadata: Optional[ObjectMetadata] = None,
    ):
        self.client = client
        self.request_builder = RequestBuilder(bucket_name, key)
        self._bucket_name = bucket_name
        self._key = key
        self.metadata = metadata or ObjectMetadata()

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    @property
    def key(self) -> str:
        return self._key

    @property
    def etag(self) -> Optional[str]:
        return self.metadata.etag

    @property
    def size(self) -> Optional[int]:
        return self.metadata.size

    @property
    def user_metadata(self) -> Mapping[str, str]:
        return self.metadata.user_metadata

    def __repr__(self) -> str:
        return f"S3Object(bucket_name={self._bucket_name!r}, key={self._key!r})"

    # Reads

    async def exists(self) -> bool:
        """HEAD the object; any unsuccessful response means it does not exist."""
        response = await self.client.send(self.request_builder.head_object())
        if not response.is_success:
            logger.debug(
                "[S3Objects][Exists] bucket=%s key=%s status=%s",
                self._bucket_name,
                self._key,
                response.status_code,
            )
        return response.is_success

    def _load_user_metadata(self, response: HttpResponse) -> None:
        user_metadata: Dict[str, str] = {}
        for name, value in response.headers.multi_items():
            header = name.lower()
            if header.startswith(USER_METADATA_PREFIX):
                user_metadata[header[len(USER_METADATA_PREFIX):]] = value
        self.metadata = self.metadata.with_user_metadata(user_metadata)

    def _expected_etag(self, response: HttpResponse) -> Optional[str]:
        return self.metadata.etag or checksum.normalize_etag(response.header("ETag"))

    def _check_due(self, expected: Optional[str]) -> bool:
        """Multipart ETags are not MD5s of the content and are never checked."""
        if not expected:
            logger.warning(
                "[S3Objects][Verify] no ETag to verify against bucket=%s key=%s",
                self._bucket_name,
                self._key,
            )
            return False
        return not checksum.is_multipart_etag(expected)

    def _verify(self, expected: str, actual: str) -> None:
        if actual != expected:
            raise CorruptedDownloadException(self._bucket_name, self._key, expected, actual)

    async def _get(self) -> HttpResponse:
        response = await self.client.send(self.request_builder.get_object())
        self.client.raise_for_status(response, self._bucket_name, self._key)
        self._load_user_metadata(response)
        expected = self._expected_etag(response)
        if self._check_due(expected):
            self._verify(expected, checksum.digest(response.content).hex)
        return response

    async def get(self) -> bytes:
        """Return the object content as stored, after checking its MD5."""
        return (await self._get()).content

    async def get_decoded(self) -> str:
        """
        Return the content with Content-Encoding and charset decoded. The
        MD5 check runs on the bytes as stored, before decoding.
        """
        return (await self._get()).decoded_text()

    async def get_callback(self, callback: ChunkSink) -> HttpResponse:
        """
        Stream the content to ``callback`` chunk by chunk. No MD5 check is
        made on this path; callers that need one must hash the chunks.
        """
        response = await self.client.send(self.request_builder.get_object(), sink=callback)
        self.client.raise_for_status(response, self._bucket_name, self._key)
        return response

    async def get_to_file(self, filename: Union[str, os.PathLike]) -> HttpResponse:
        """
        Stream the content into ``filename`` and check its MD5. On a
        mismatch the written file is left in place. ``filename`` is not
        touched unless the server answers with success.
        """
        fh = None

        def write(chunk: bytes) -> None:
            nonlocal fh
            if fh is None:
                fh = open(filename, "wb")
            fh.write(chunk)

        try:
            response = await self.client.send(self.request_builder.get_object(), sink=write)
        finally:
            if fh is not None:
                fh.close()
        self.client.raise_for_status(response, self._bucket_name, self._key)
        if fh is None:
            # successful response with an empty body
            with open(filename, "wb"):
                pass

        self._load_user_metadata(response)
        expected = self._expected_etag(response)
        if self._check_due(expected):
            self._verify(expected, await asyncio.to_thread(checksum.digest_file, filename))
        return response

    async def head(self) -> Dict[str, str]:
        """Return the object's metadata headers under canonical names."""
        response = await self.client.send(self.request_builder.head_object())
        self.client.raise_for_status(response, self._bucket_name, self._key)

        metadata: Dict[str, str] = {}
        for name, value in response.headers.multi_items():
            if is_metadata_header(name):
                metadata[format_metadata_name(name)] = value
        return metadata

    async def available(self) -> bool:
        """
        False only for GLACIER objects that have not been fully restored
        (no ``Restore: ongoing-request="false"``).
        """
        metadata = await self.head()
        glacier = metadata.get("StorageClass", "").upper() == StorageClass.GLACIER.header_value
        restored = _RESTORED in metadata.get("Restore", "")
        return not glacier or restored

    # Writes

    async def _put(self, value: Body, size: int, md5_hex: str) -> PutObjectResult:
        request = self.request_builder.put_object(self.metadata, value, size, md5_hex)
        response = await self.client.send(request)
        self.client.raise_for_status(response, self._bucket_name, self._key, exc_class=UploadException)

        logger.info(
            "[S3Objects][Put] bucket=%s key=%s size=%s",
            self._bucket_name,
            self._key,
            size,
        )
        return PutObjectResult(
            bucket_name=self._bucket_name,
            object_name=self._key,
            etag=checksum.normalize_etag(response.header("ETag")) or None,
            version_id=response.header("x-amz-version-id"),
        )

    async def put(self, value: bytes) -> PutObjectResult:
        """Upload ``value`` with the handle's metadata."""
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ContractViolationException(f"put() takes bytes, got {type(value).__name__}.")
        value = bytes(value)
        return await self._put(value, len(value), checksum.digest(value).hex)

    async def put_from_file(self, filename: Union[str, os.PathLike]) -> PutObjectResult:
        """
        Upload a file in blocks. A known ``etag`` in the metadata is used
        as the Content-MD5 instead of hashing the file, and a known
        ``size`` instead of stat'ing it.
        """
        size = self.metadata.size
        if size is None:
            try:
                size = os.stat(filename).st_size
            except FileNotFoundError as ex:
                raise ContractViolationException(f"No {filename}: {ex.strerror}") from ex

        if self.metadata.etag and checksum.is_multipart_etag(self.metadata.etag):
            raise ContractViolationException(
                f"ETag {self.metadata.etag} is from a multipart upload and cannot be used as Content-MD5."
            )
        md5_hex = self.metadata.etag or await asyncio.to_thread(checksum.digest_file, filename)

        with ChunkedFileReader(filename) as reader:
            return await self._put(reader, size, md5_hex)

    async def put_multipart_from_file(
        self,
        filename: Union[str, os.PathLike],
        part_size: int = DEFAULT_PART_SIZE,
        options: Optional[InitiateOptions] = None,
    ) -> CompleteMultipartUploadResult:
        """
        Upload a file as a multipart upload of ``part_size`` parts. S3 needs
        every part but the last to be at least 5 MiB. The upload is aborted
        if any step fails. Empty files are rejected; use ``put_from_file``.
        """
        if part_size < 1:
            raise ContractViolationException(f"Invalid part size {part_size}.")
        if not os.path.isfile(filename):
            raise ContractViolationException(f"No {filename}")
        if os.path.getsize(filename) == 0:
            raise ContractViolationException(f"{filename} is empty; a multipart upload needs at least one part.")

        upload = self.multipart()
        upload_id = await upload.initiate(options)
        try:
            with open(filename, "rb") as fh:
                part_number = 1
                for chunk in iter(lambda: fh.read(part_size), b""):
                    await upload.put_part(upload_id, part_number, chunk)
                    part_number += 1
            return await upload.complete(upload_id)
        except Exception:
            logger.warning(
                "[S3Objects][Multipart] aborting bucket=%s key=%s uploadId=%s",
                self._bucket_name,
                self._key,
                upload_id,
            )
            await upload.abort(upload_id)
            raise

    async def delete(self) -> HttpResponse:
        """Delete the object. A missing object counts as deleted."""
        response = await self.client.send(self.request_builder.delete_object())
        try:
            self.client.raise_for_status(response, self._bucket_name, self._key)
        except ObjectNotFoundException:
            logger.debug("[S3Objects][Delete] already absent bucket=%s key=%s", self._bucket_name, self._key)
            return response

        logger.info("[S3Objects][Delete] bucket=%s key=%s", self._bucket_name, self._key)
        return response

    async def restore(self, days: int, tier: Optional[Union[RestoreTier, str]] = None) -> HttpResponse:
        """
        Ask for an archived object to be restored for ``days`` days. This
        does not wait; poll ``available()`` to see when it is done.
        """
        response = await self.client.send(self.request_builder.restore_object(days, tier))
        self.client.raise_for_status(response, self._bucket_name, self._key)
        logger.info(
            "[S3Objects][Restore] bucket=%s key=%s days=%s tier=%s status=%s",
            self._bucket_name,
            self._key,
            days,
            tier,
            response.status_code,
        )
        return response

    # URIs

    def uri(self) -> str:
        """Path-style URI of the object."""
        return self.client.url_for(
            self.request_builder.get_object(),
            base_url=self.client.public_base_url,
        )

    def query_string_authentication_uri(self, query_form: Optional[Dict[str, str]] = None) -> str:
        """
        Presigned GET URI valid until ``metadata.expires``. ``query_form``
        adds parameters such as ``response-content-disposition``.
        """
        if self.metadata.expires is None:
            raise ContractViolationException(
                f"Object '{self._key}' needs an expires time for query string authentication."
            )
        expires_in = int((self.metadata.expires - datetime.now(UTC)).total_seconds())
        result: PresignedUrlResult = self.client.presigned_url(
            self.request_builder.get_object(),
            expires_in_seconds=expires_in,
            query_params=query_form,
        )
        return result.url

    # Multipart

    def multipart(self, upload_id: Optional[str] = None) -> MultipartUploadCoordinator:
        """Coordinator for a new upload, or for an existing ``upload_id``."""
        return MultipartUploadCoordinator(self, upload_id=upload_id)

    async def initiate_multipart_upload(self, headers: Optional[Dict[str, str]] = None) -> str:
        return await self.multipart().initiate(InitiateOptions(headers=dict(headers or {})))

    async def put_part(
        self,
        upload_id: str,
        part_number: int,
        value: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> PartResult:
        return await self.multipart(upload_id).put_part(
            upload_id, part_number, value, PutPartOptions(headers=dict(headers or {}))
        )

    async def complete_multipart_upload(
        self,
        upload_id: str,
        part_numbers: Sequence[int],
        etags: Sequence[str],
    ) -> CompleteMultipartUploadResult:
        return await self.multipart(upload_id).complete(upload_id, part_numbers, etags)

    async def abort_multipart_upload(self, upload_id: str) -> None:
        await self.multipart(upload_id).abort(upload_id)
