"""REST client implementation of the version store.

Talks to the case portal backend:
- POST   /documents/upload                              create version (multipart)
- GET    /documents/{caseId}/{documentType}/versions    list versions
- GET    /documents/version/{id}                        fetch version
- GET    /documents/version/{id}/download               signed download URL
- DELETE /documents/version/{id}                        soft delete
- POST   /documents/version/{id}/restore                restore
- PUT    /documents/version/{id}/verify                 verify / reject

Expected current state travels in the ``If-Match`` header (and the
``expectedVersion`` form field for uploads); the backend answers 409/412
when it is stale.
"""

import asyncio
import uuid
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import aiohttp
from aiohttp.payload import AsyncIterablePayload

from casedocs.core import get_logger
from casedocs.core.errors import (
    CaseDocsError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UploadTimeoutError,
    ValidationError,
    VersionStoreError,
)
from casedocs.versions.config import StoreConfig
from casedocs.versions.models import (
    Actor,
    DocumentSlot,
    DocumentVersion,
    DownloadLink,
    FileUpload,
    RetentionStatus,
    VerificationStatus,
    parse_timestamp,
)
from casedocs.versions.store import ProgressCallback, VersionStore

logger = get_logger(__name__)

VALIDATION_STATUSES = {400, 413, 415, 422}
PERMISSION_STATUSES = {401, 403}
CONFLICT_STATUSES = {409, 412}
TIMEOUT_STATUSES = {408, 504}


class HttpVersionStore(VersionStore):
    """Version store backed by the case portal REST API."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the REST store.

        Args:
            config: Base URL, timeouts and credentials.
            session: Optional shared session; created lazily otherwise and
                closed by ``close()``.
        """
        self.config = config or StoreConfig()
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HttpVersionStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def create_version(
        self,
        slot: DocumentSlot,
        upload: FileUpload,
        uploader: Actor,
        notes: Optional[str],
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DocumentVersion:
        with aiohttp.MultipartWriter("form-data") as writer:
            fields = {
                "caseId": slot.case_id,
                "documentType": slot.document_type,
                "expectedVersion": str(expected_version),
            }
            if notes:
                fields["notes"] = notes
            for name, value in fields.items():
                part = writer.append(value)
                part.set_content_disposition("form-data", name=name)

            file_part = writer.append_payload(
                AsyncIterablePayload(
                    self._stream(upload, on_progress),
                    content_type=upload.content_type,
                )
            )
            file_part.set_content_disposition("form-data", name="file", filename=upload.filename)

        data = await self._request(
            "POST",
            "/documents/upload",
            operation="create_version",
            data=writer,
            timeout=self.config.upload_timeout or self.config.request_timeout,
        )
        version = DocumentVersion.from_api_item(data)
        logger.debug(
            "version_created",
            slot=slot.key,
            version_id=version.version_id,
            version_number=version.version_number,
            uploader=uploader.user_id,
        )
        return version

    async def list_versions(self, slot: DocumentSlot) -> list[DocumentVersion]:
        data = await self._request(
            "GET",
            f"/documents/{quote(slot.case_id, safe='')}/{quote(slot.document_type, safe='')}/versions",
            operation="list_versions",
        )
        return [DocumentVersion.from_api_item(item) for item in data or []]

    async def get_version(self, version_id: str) -> DocumentVersion:
        data = await self._request(
            "GET",
            self._version_path(version_id),
            operation="get_version",
            version_id=version_id,
        )
        return DocumentVersion.from_api_item(data)

    async def delete_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        data = await self._request(
            "DELETE",
            self._version_path(version_id),
            operation="delete_version",
            version_id=version_id,
            headers={
                "If-Match": expected_status.value,
                "Idempotency-Key": str(uuid.uuid4()),
            },
        )
        return DocumentVersion.from_api_item(data)

    async def restore_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        data = await self._request(
            "POST",
            self._version_path(version_id, "restore"),
            operation="restore_version",
            version_id=version_id,
            headers={"If-Match": expected_status.value},
        )
        return DocumentVersion.from_api_item(data)

    async def set_verification(
        self,
        version_id: str,
        actor: Actor,
        status: VerificationStatus,
        reason: Optional[str],
        expected_status: VerificationStatus,
    ) -> DocumentVersion:
        body: dict[str, Any] = {"verificationStatus": status.value}
        if reason:
            body["rejectionReason"] = reason
        data = await self._request(
            "PUT",
            self._version_path(version_id, "verify"),
            operation="set_verification",
            version_id=version_id,
            json=body,
            headers={"If-Match": expected_status.value},
        )
        return DocumentVersion.from_api_item(data)

    async def get_download_url(self, version_id: str) -> DownloadLink:
        data = await self._request(
            "GET",
            self._version_path(version_id, "download"),
            operation="get_download_url",
            version_id=version_id,
        )
        return DownloadLink(
            version_id=version_id,
            url=data["fileUrl"],
            expires_at=parse_timestamp(data.get("expiresAt")),
        )

    async def _stream(
        self,
        upload: FileUpload,
        on_progress: Optional[ProgressCallback],
    ) -> AsyncIterator[bytes]:
        total = upload.size
        chunk_size = self.config.chunk_size
        for offset in range(0, total, chunk_size):
            chunk = upload.content[offset:offset + chunk_size]
            yield chunk
            if on_progress and total:
                on_progress(round(min(total, offset + len(chunk)) * 100 / total))

    def _version_path(self, version_id: str, action: Optional[str] = None) -> str:
        path = f"/documents/version/{quote(version_id, safe='')}"
        return f"{path}/{action}" if action else path

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        version_id: Optional[str] = None,
        json: Optional[dict] = None,
        data: Any = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = self.config.base_url.rstrip("/") + path
        timeout = timeout or self.config.request_timeout

        try:
            async with self.session.request(
                method,
                url,
                json=json,
                data=data,
                headers=self._headers(headers),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                payload = await self._read_payload(response)
                if response.status >= 400:
                    raise self._error_for(response.status, payload, operation, version_id)
                if isinstance(payload, dict) and "data" in payload:
                    return payload["data"]
                return payload

        except CaseDocsError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("store_request_timeout", operation=operation, url=url, timeout=timeout)
            raise UploadTimeoutError(
                f"{operation} timed out after {timeout}s",
                operation=operation,
                timeout=timeout,
            ) from e
        except aiohttp.ClientError as e:
            logger.error("store_request_failed", operation=operation, url=url, error=str(e))
            raise VersionStoreError(
                f"{operation} failed: {e}",
                operation=operation,
            ) from e

    @staticmethod
    async def _read_payload(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return {"error": await response.text()}

    @staticmethod
    def _error_for(
        status: int,
        payload: Any,
        operation: str,
        version_id: Optional[str],
    ) -> CaseDocsError:
        message = None
        if isinstance(payload, dict):
            message = payload.get("error") or payload.get("message")
        message = message or f"{operation} failed with HTTP {status}"

        logger.warning("store_request_rejected", operation=operation, status=status, error=message)

        if status in VALIDATION_STATUSES:
            return ValidationError(message)
        if status in PERMISSION_STATUSES:
            return PermissionDeniedError(message, operation=operation)
        if status == 404:
            return NotFoundError(message, version_id=version_id)
        if status in CONFLICT_STATUSES:
            return ConflictError(message)
        if status in TIMEOUT_STATUSES:
            return UploadTimeoutError(message, operation=operation)
        return VersionStoreError(message, operation=operation, status_code=status)
