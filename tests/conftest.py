import base64
import hashlib
import itertools
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from email.utils import format_datetime
from datetime import datetime, UTC
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from s3objects import S3Client


ENDPOINT = "s3.test:9000"
ACCESS_KEY = "AKIATESAFEKEY0000001"
SECRET_KEY = "wJalrXUtnFEMIaKkMDENGbPxRfIcxAmPlEkEyZaB"

STORED_HEADERS = (
    "content-type",
    "content-encoding",
    "content-disposition",
    "cache-control",
    "expires",
    "x-amz-storage-class",
    "x-amz-server-side-encryption",
    "x-amz-website-redirect-location",
)


def _response(status: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    headers = dict(headers or {})
    headers.setdefault("Content-Length", str(len(body)))
    headers.setdefault("x-amz-request-id", "4442587FB7D0A2F9")
    headers.setdefault("x-amz-id-2", "eftixk72aD6Ap51TnqcoF8eFidJG9Z/2mkiDFu8yU9AS1ed4OpIszj7UDNEHGran")
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


def _error(status: int, code: str, message: str = "") -> httpx.Response:
    body = (
        f"<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        f"<Error><Code>{code}</Code><Message>{message or code}</Message></Error>"
    ).encode()
    return _response(status, body, {"Content-Type": "application/xml"})


@dataclass
class StoredObject:
    body: bytes
    etag: str
    headers: Dict[str, str] = field(default_factory=dict)
    last_modified: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PendingUpload:
    path: str
    headers: Dict[str, str]
    parts: Dict[int, bytes] = field(default_factory=dict)


class FakeS3:
    """In-memory S3 object API, used as an httpx.MockTransport handler."""

    def __init__(self):
        self.objects: Dict[str, StoredObject] = {}
        self.uploads: Dict[str, PendingUpload] = {}
        self.requests: List[httpx.Request] = []
        self.failures: List[tuple] = []
        self.overrides: Dict[tuple, httpx.Response] = {}
        self._ids = itertools.count(1)

    # test hooks

    def fail(self, method: str, status: int, code: str, times: int = 1):
        for _ in range(times):
            self.failures.append((method, status, code))

    def raise_on(self, method: str, exc: Exception):
        self.failures.append((method, exc, None))

    def override(self, method: str, flag: str, response: httpx.Response):
        self.overrides[(method, flag)] = response

    def corrupt(self, path: str, body: bytes = b"tampered"):
        self.objects[path].body = body

    def store(self, path: str, body: bytes, etag: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.objects[path] = StoredObject(
            body=body,
            etag=etag or hashlib.md5(body).hexdigest(),
            headers=dict(headers or {}),
        )

    # transport

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.method

        for index, (fail_method, status, code) in enumerate(self.failures):
            if fail_method == method:
                del self.failures[index]
                if isinstance(status, Exception):
                    raise status
                return _error(status, code)

        path = request.url.raw_path.decode("ascii").split("?")[0]
        params = request.url.params

        for flag in ("uploads", "uploadId", "restore"):
            if flag in params and (method, flag) in self.overrides:
                return self.overrides[(method, flag)]

        if method == "POST" and "uploads" in params:
            return self._initiate(path, request)
        if method == "PUT" and "uploadId" in params:
            return self._put_part(request, params["uploadId"], int(params["partNumber"]))
        if method == "POST" and "uploadId" in params:
            return self._complete(path, request, params["uploadId"])
        if method == "DELETE" and "uploadId" in params:
            return self._abort(params["uploadId"])
        if method == "POST" and "restore" in params:
            return self._restore(path, request)
        if method == "PUT":
            return self._put(path, request)
        if method in ("GET", "HEAD"):
            return self._get(path, head=(method == "HEAD"))
        if method == "DELETE":
            self.objects.pop(path, None)
            return _response(204)
        return _error(405, "MethodNotAllowed")

    def _put(self, path: str, request: httpx.Request) -> httpx.Response:
        body = request.content
        expected_md5 = base64.b64encode(hashlib.md5(body).digest()).decode()
        if request.headers.get("Content-MD5") != expected_md5:
            return _error(400, "BadDigest", "The Content-MD5 you specified did not match what we received.")

        headers = {
            name: value
            for name, value in request.headers.items()
            if name in STORED_HEADERS or name.startswith("x-amz-meta-")
        }
        self.store(path, body, headers=headers)
        return _response(200, headers={"ETag": f'"{self.objects[path].etag}"'})

    def _get(self, path: str, head: bool) -> httpx.Response:
        obj = self.objects.get(path)
        if obj is None:
            if head:
                return _response(404)
            return _error(404, "NoSuchKey", "The specified key does not exist.")

        headers = {"Content-Type": "binary/octet-stream"}
        headers.update(obj.headers)
        headers["ETag"] = f'"{obj.etag}"'
        headers["Last-Modified"] = format_datetime(obj.last_modified, usegmt=True)
        headers["Accept-Ranges"] = "bytes"
        headers["Content-Length"] = str(len(obj.body))
        return _response(200, b"" if head else obj.body, headers)

    def _initiate(self, path: str, request: httpx.Request) -> httpx.Response:
        upload_id = f"upload-{next(self._ids)}"
        self.uploads[upload_id] = PendingUpload(path=path, headers=dict(request.headers))
        bucket, _, key = path.lstrip("/").partition("/")
        body = (
            "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
            "<InitiateMultipartUploadResult xmlns=\"http://s3.amazonaws.com/doc/2006-03-01/\">"
            f"<Bucket>{bucket}</Bucket><Key>{key}</Key><UploadId>{upload_id}</UploadId>"
            "</InitiateMultipartUploadResult>"
        ).encode()
        return _response(200, body, {"Content-Type": "application/xml"})

    def _put_part(self, request: httpx.Request, upload_id: str, part_number: int) -> httpx.Response:
        upload = self.uploads.get(upload_id)
        if upload is None:
            return _error(404, "NoSuchUpload")
        upload.parts[part_number] = request.content
        return _response(200, headers={"ETag": f'"{hashlib.md5(request.content).hexdigest()}"'})

    def _complete(self, path: str, request: httpx.Request, upload_id: str) -> httpx.Response:
        upload = self.uploads.get(upload_id)
        if upload is None:
            return _error(404, "NoSuchUpload")

        doc = ET.fromstring(request.content)
        body = b""
        digests = b""
        for part in doc.iter("Part"):
            number = int(part.find("PartNumber").text)
            etag = part.find("ETag").text.strip('"')
            data = upload.parts.get(number)
            if data is None or hashlib.md5(data).hexdigest() != etag:
                return _error(400, "InvalidPart")
            body += data
            digests += hashlib.md5(data).digest()

        count = len(doc.findall("Part"))
        etag = f"{hashlib.md5(digests).hexdigest()}-{count}"
        headers = {
            name: value
            for name, value in upload.headers.items()
            if name in STORED_HEADERS or name.startswith("x-amz-meta-")
        }
        self.store(path, body, etag=etag, headers=headers)
        del self.uploads[upload_id]

        bucket, _, key = path.lstrip("/").partition("/")
        result = (
            "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
            "<CompleteMultipartUploadResult xmlns=\"http://s3.amazonaws.com/doc/2006-03-01/\">"
            f"<Location>http://{ENDPOINT}{path}</Location><Bucket>{bucket}</Bucket><Key>{key}</Key>"
            f"<ETag>\"{etag}\"</ETag></CompleteMultipartUploadResult>"
        ).encode()
        return _response(200, result, {"Content-Type": "application/xml"})

    def _abort(self, upload_id: str) -> httpx.Response:
        if self.uploads.pop(upload_id, None) is None:
            return _error(404, "NoSuchUpload")
        return _response(204)

    def _restore(self, path: str, request: httpx.Request) -> httpx.Response:
        obj = self.objects.get(path)
        if obj is None:
            return _error(404, "NoSuchKey")
        obj.headers["x-amz-restore"] = 'ongoing-request="false", expiry-date="Fri, 21 Dec 2012 00:00:00 GMT"'
        return _response(202)


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest_asyncio.fixture
async def client(fake_s3):
    client = S3Client(
        endpoint=ENDPOINT,
        access_key=ACCESS_KEY,
        secret_key=SECRET_KEY,
        transport=httpx.MockTransport(fake_s3),
        max_retries=1,
    )
    yield client
    await client.close()
