"""
S3Client - transport, signing and configuration shared by object handles
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional, Dict, Type
from urllib.parse import quote

import httpx

from ._http import HttpClient, HttpResponse, ChunkSink
from ._signer import AwsSignatureV4Signer
from .error import (
    S3ObjectsException,
    RequestException,
    ObjectNotFoundException,
    AccessDeniedException,
)
from .models import ObjectMetadata, PresignedUrlResult
from .object import S3Object
from .request import RequestDescriptor, parse_error_document


class S3Client:
    """
    Client for an S3-compatible object store.

    Example:
        async with S3Client(
            endpoint="s3.us-east-1.amazonaws.com",
            access_key="AKIA...",
            secret_key="...",
            use_ssl=True,
        ) as client:
            obj = client.object("photos", "archive/image.jpg", content_type="image/jpeg")
            await obj.put_from_file("image.jpg")
    """

    def __init__(
        self,
        endpoint: str = "localhost:9000",
        access_key: str = "",
        secret_key: str = "",
        region: str = "us-east-1",
        use_ssl: bool = False,
        public_endpoint: Optional[str] = None,
        request_timeout: int = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        signer: Optional[AwsSignatureV4Signer] = None,
    ):
        """
        Initialize S3Client.

        Args:
            endpoint: Server address and port (e.g., "s3.local:9000") or a base URL
            access_key: S3 access key for request signing
            secret_key: S3 secret key for request signing
            region: Region used in the signing scope
            use_ssl: Use HTTPS instead of HTTP
            public_endpoint: Base URL used for object URIs and presigned URLs
            request_timeout: Request timeout in seconds
            max_retries: Maximum number of attempts for connection-level failures
            transport: httpx transport override (e.g. httpx.MockTransport in tests)
            signer: Request signer; defaults to SigV4 with the given credentials
        """
        self.use_ssl = use_ssl
        self.region = region
        self.base_url = self._to_base_url(endpoint)
        self.public_base_url = self._to_base_url(public_endpoint) if public_endpoint else None
        self.host = httpx.URL(self.base_url).netloc.decode("ascii")

        self._http = HttpClient(timeout=request_timeout, max_retries=max_retries, transport=transport)
        self._signer = signer or AwsSignatureV4Signer(access_key, secret_key, region=region)
        self._logger = logging.getLogger(__name__)

    def _to_base_url(self, endpoint: str) -> str:
        """Normalize endpoint value to base URL form."""
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint.rstrip("/")
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{endpoint}".rstrip("/")

    def object(
        self,
        bucket_name: str,
        key: str,
        metadata: Optional[ObjectMetadata] = None,
        **fields,
    ) -> S3Object:
        """
        Return a handle for ``key`` in ``bucket_name``. Metadata is given
        either as an ObjectMetadata or as its fields as keywords.
        """
        if metadata is not None and fields:
            raise TypeError("Pass either metadata or metadata fields, not both.")
        return S3Object(self, bucket_name, key, metadata or ObjectMetadata(**fields))

    @staticmethod
    def _query_string(query: Dict[str, str]) -> str:
        return "&".join(
            f"{quote(k, safe='')}={quote(str(v), safe='')}" for k, v in sorted(query.items())
        )

    def url_for(self, request: RequestDescriptor, base_url: Optional[str] = None) -> str:
        url = f"{base_url or self.base_url}{request.path}"
        if request.query:
            url += f"?{self._query_string(request.query)}"
        return url

    async def send(self, request: RequestDescriptor, sink: Optional[ChunkSink] = None) -> HttpResponse:
        """Sign ``request`` and send it; see HttpClient.send for ``sink``."""
        streamed = request.body is not None and not isinstance(request.body, bytes)
        headers = dict(request.headers)
        headers.update(
            self._signer.sign_request(
                method=request.method,
                host=self.host,
                path=request.path,
                query_params=request.query,
                headers=request.headers,
                body=None if streamed else request.body,
                unsigned_payload=streamed,
            )
        )

        url = self.url_for(request)
        self._logger.debug("[S3Objects][Request] method=%s url=%s", request.method, url)
        response = await self._http.send(
            request.method,
            url,
            headers=headers,
            content=request.body,
            sink=sink,
        )
        self._logger.debug(
            "[S3Objects][Response] method=%s url=%s status=%s",
            request.method,
            url,
            response.status_code,
        )
        return response

    def raise_for_status(
        self,
        response: HttpResponse,
        bucket_name: str,
        object_name: str,
        exc_class: Type[S3ObjectsException] = RequestException,
    ) -> None:
        """Raise ``exc_class`` (or a more specific subclass) for a non-2xx response."""
        if response.is_success:
            return

        error = parse_error_document(response.content) or {}
        error_code = error.get("code")
        message = error.get("message") or f"Request failed with status {response.status_code}"

        if exc_class is RequestException:
            if response.status_code == 404 and error_code in (None, "NoSuchKey"):
                raise ObjectNotFoundException(bucket_name, object_name, response_text=response.as_string())
            if response.status_code == 403:
                raise AccessDeniedException(message, response_text=response.as_string())

        raise exc_class(
            f"{message} ({bucket_name}/{object_name})",
            status_code=response.status_code,
            error_code=error_code,
            response_text=response.as_string(),
        )

    def presigned_url(
        self,
        request: RequestDescriptor,
        expires_in_seconds: int,
        query_params: Optional[Dict[str, str]] = None,
    ) -> PresignedUrlResult:
        """Generate a presigned URL for ``request`` using local SigV4 signing."""
        base_url = self.public_base_url or self.base_url
        parsed_base = httpx.URL(base_url)
        host = parsed_base.netloc.decode("ascii")

        params = dict(request.query)
        params.update(query_params or {})

        url = self._signer.generate_presigned_url(
            method=request.method,
            host=host,
            path=request.path,
            query_params=params,
            expires_in_seconds=expires_in_seconds,
            use_https=(parsed_base.scheme == "https"),
        )

        self._logger.info(
            "[S3Objects][PresignedUrl] host=%s expirySeconds=%s path=%s",
            host,
            expires_in_seconds,
            request.path,
        )
        return PresignedUrlResult(
            url=url,
            expires_at=datetime.now(UTC) + timedelta(seconds=int(expires_in_seconds)),
        )

    async def close(self) -> None:
        """Close the client and cleanup resources."""
        await self._http.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
