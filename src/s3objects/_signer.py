"""
AWS Signature V4 signer for s3objects
"""

import hashlib
import hmac
from datetime import datetime, UTC
from typing import Dict, Optional
from urllib.parse import quote

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
MAX_PRESIGN_EXPIRY = 604800


class AwsSignatureV4Signer:
    """
    Signs requests using AWS Signature Version 4.
    Used for request headers and for presigned URL generation.
    """

    def __init__(self, access_key: str, secret_key: str, region: str = "us-east-1", service: str = "s3"):
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service

    def sign_request(
        self,
        method: str,
        host: str,
        path: str,
        query_params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
        timestamp: Optional[datetime] = None,
        unsigned_payload: bool = False,
    ) -> Dict[str, str]:
        """
        Sign a request and return the headers to add to it.

        Signs ``host``, ``content-md5``, ``content-type`` and every
        ``x-amz-*`` header. Bodies that are streamed rather than held in
        memory are sent with ``unsigned_payload=True``.
        """
        if timestamp is None:
            timestamp = datetime.now(UTC)

        amz_date = timestamp.strftime("%Y%m%dT%H%M%SZ")
        datestamp = timestamp.strftime("%Y%m%d")
        payload_hash = UNSIGNED_PAYLOAD if unsigned_payload else self._hash_payload(body)

        signing_headers = {
            key: value
            for key, value in (headers or {}).items()
            if self._is_signed_header(key)
        }
        signing_headers["host"] = host
        signing_headers["x-amz-date"] = amz_date
        signing_headers["x-amz-content-sha256"] = payload_hash

        # Canonical request
        canonical_headers_dict = self._build_canonical_headers(signing_headers)
        canonical_headers_str = "\n".join(
            f"{k}:{v}" for k, v in sorted(canonical_headers_dict.items())
        ) + "\n"
        signed_headers = ";".join(sorted(canonical_headers_dict.keys()))

        canonical_querystring = self._build_canonical_querystring(query_params or {})

        canonical_request = "\n".join([
            method,
            path,
            canonical_querystring,
            canonical_headers_str.rstrip(),
            "",
            signed_headers,
            payload_hash,
        ])

        # String to sign
        credential_scope = self._credential_scope(datestamp)
        string_to_sign = self._string_to_sign(amz_date, credential_scope, canonical_request)

        # Signature
        signature = self._sign(datestamp, string_to_sign)

        auth_header = (
            f"AWS4-HMAC-SHA256 Credential={self.access_key}/{credential_scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )

        return {
            "Authorization": auth_header,
            "X-Amz-Date": amz_date,
            "X-Amz-Content-SHA256": payload_hash,
        }

    @staticmethod
    def _is_signed_header(name: str) -> bool:
        lowered = name.lower()
        return lowered in ("content-md5", "content-type") or lowered.startswith("x-amz-")

    def _credential_scope(self, datestamp: str) -> str:
        return f"{datestamp}/{self.region}/{self.service}/aws4_request"

    def _string_to_sign(self, amz_date: str, credential_scope: str, canonical_request: str) -> str:
        canonical_request_hash = hashlib.sha256(
            canonical_request.encode()
        ).hexdigest()

        return "\n".join([
            "AWS4-HMAC-SHA256",
            amz_date,
            credential_scope,
            canonical_request_hash,
        ])

    def _sign(self, datestamp: str, string_to_sign: str) -> str:
        signing_key = self._derive_signing_key(datestamp)
        return hmac.new(
            signing_key,
            string_to_sign.encode(),
            hashlib.sha256
        ).hexdigest()

    def _build_canonical_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Build canonical headers for signing."""
        canonical = {}
        for key, value in headers.items():
            canonical[key.lower()] = " ".join(str(value).split())
        return canonical

    def _build_canonical_querystring(self, params: Dict[str, str]) -> str:
        """Build canonical query string for signing."""
        if not params:
            return ""
        sorted_params = sorted(params.items())
        return "&".join(
            f"{quote(k, safe='')}={quote(str(v), safe='')}"
            for k, v in sorted_params
        )

    def _hash_payload(self, body: Optional[bytes]) -> str:
        """Hash the request payload."""
        if body is None:
            return hashlib.sha256(b"").hexdigest()
        return hashlib.sha256(body).hexdigest()

    def _derive_signing_key(self, datestamp: str) -> bytes:
        """Derive the signing key for AWS Signature V4."""
        k_date = hmac.new(
            f"AWS4{self.secret_key}".encode(),
            datestamp.encode(),
            hashlib.sha256
        ).digest()

        k_region = hmac.new(k_date, self.region.encode(), hashlib.sha256).digest()
        k_service = hmac.new(k_region, self.service.encode(), hashlib.sha256).digest()
        k_signing = hmac.new(k_service, "aws4_request".encode(), hashlib.sha256).digest()

        return k_signing

    def generate_presigned_url(
        self,
        method: str,
        host: str,
        path: str,
        query_params: Optional[Dict[str, str]] = None,
        expires_in_seconds: int = 3600,
        use_https: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """
        Generate a presigned URL with AWS Signature V4.
        """
        if expires_in_seconds < 1 or expires_in_seconds > MAX_PRESIGN_EXPIRY:
            raise ValueError(
                "Expiry must be between 1 second and 604800 seconds (7 days) per AWS S3 specification."
            )

        if timestamp is None:
            timestamp = datetime.now(UTC)

        amz_date = timestamp.strftime("%Y%m%dT%H%M%SZ")
        datestamp = timestamp.strftime("%Y%m%d")

        credential_scope = self._credential_scope(datestamp)

        presigned_params = {
            "X-Amz-Algorithm": "AWS4-HMAC-SHA256",
            "X-Amz-Credential": f"{self.access_key}/{credential_scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_in_seconds),
            "X-Amz-SignedHeaders": "host",
        }

        if query_params:
            presigned_params.update(query_params)

        canonical_querystring = self._build_canonical_querystring(presigned_params)

        canonical_request = "\n".join([
            method,
            path,
            canonical_querystring,
            "host:" + host,
            "",
            "host",
            UNSIGNED_PAYLOAD,
        ])

        string_to_sign = self._string_to_sign(amz_date, credential_scope, canonical_request)
        presigned_params["X-Amz-Signature"] = self._sign(datestamp, string_to_sign)

        scheme = "https" if use_https else "http"
        url = f"{scheme}://{host}{path}"
        query_string = self._build_canonical_querystring(presigned_params)
        return f"{url}?{query_string}"
