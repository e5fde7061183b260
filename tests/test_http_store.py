"""Tests for the REST version store against an in-process portal backend.

The backend is a small aiohttp application that speaks the portal's
document API on top of InMemoryVersionStore.
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import hdrs, web
from aiohttp.test_utils import TestServer

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
from casedocs.versions.http_store import HttpVersionStore
from casedocs.versions.models import (
    Actor,
    DocumentSlot,
    FileUpload,
    RetentionStatus,
    VerificationStatus,
)
from casedocs.versions.state_machine import VersionStateMachine
from casedocs.versions.store import InMemoryVersionStore
from casedocs.versions.verification import VerificationWorkflow
from tests.factories import make_pdf

CLIENT = Actor(user_id="client-1", role="end_user")
STAFF = Actor(user_id="employee-1", role="employee")
TOKENS = {"client-token": CLIENT, "staff-token": STAFF}

ERROR_STATUSES = {
    ValidationError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
}


class PortalBackend:
    """Fake case portal exposing the documents API."""

    def __init__(self):
        self.store = InMemoryVersionStore(
            authorizer=lambda actor, op: op != "verify" or actor.role in ("admin", "employee"),
        )
        self.requests: list[tuple[str, str, dict]] = []
        self.fail_status = None
        self.fail_body = None
        self.delay = 0.0

        self.app = web.Application(middlewares=[self.middleware])
        self.app.router.add_post("/api/documents/upload", self.upload)
        self.app.router.add_get("/api/documents/version/{id}", self.get_version)
        self.app.router.add_delete("/api/documents/version/{id}", self.delete_version)
        self.app.router.add_get("/api/documents/version/{id}/download", self.download)
        self.app.router.add_post("/api/documents/version/{id}/restore", self.restore)
        self.app.router.add_put("/api/documents/version/{id}/verify", self.verify)
        self.app.router.add_get("/api/documents/{case_id}/{document_type}/versions", self.list_versions)

    @web.middleware
    async def middleware(self, request, handler):
        self.requests.append((request.method, request.path, dict(request.headers)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_status:
            if self.fail_body is not None:
                return web.Response(text=self.fail_body, status=self.fail_status)
            return web.json_response({"error": "forced failure"}, status=self.fail_status)

        token = request.headers.get(hdrs.AUTHORIZATION, "").removeprefix("Bearer ")
        request["actor"] = TOKENS.get(token)
        if request["actor"] is None:
            return web.json_response({"error": "Not authorized"}, status=401)
        try:
            return await handler(request)
        except CaseDocsError as e:
            return web.json_response({"error": e.message}, status=ERROR_STATUSES.get(type(e), 500))

    async def upload(self, request):
        fields = {}
        upload = None
        async for part in await request.multipart():
            if part.name == "file":
                upload = FileUpload(
                    filename=part.filename,
                    content=await part.read(),
                    content_type=part.headers.get(hdrs.CONTENT_TYPE, ""),
                )
            else:
                fields[part.name] = await part.text()

        if upload is None:
            raise ValidationError("No file uploaded", field="file")
        version = await self.store.create_version(
            DocumentSlot(case_id=fields["caseId"], document_type=fields["documentType"]),
            upload,
            request["actor"],
            fields.get("notes"),
            expected_version=int(fields["expectedVersion"]),
        )
        return web.json_response({"data": version.to_api_item()}, status=201)

    async def list_versions(self, request):
        slot = DocumentSlot(
            case_id=request.match_info["case_id"],
            document_type=request.match_info["document_type"],
        )
        versions = await self.store.list_versions(slot)
        return web.json_response({"data": [v.to_api_item() for v in versions]})

    async def get_version(self, request):
        version = await self.store.get_version(request.match_info["id"])
        return web.json_response({"data": version.to_api_item()})

    async def delete_version(self, request):
        version = await self.store.delete_version(
            request.match_info["id"],
            request["actor"],
            expected_status=RetentionStatus(request.headers[hdrs.IF_MATCH]),
        )
        return web.json_response({"data": version.to_api_item()})

    async def restore(self, request):
        version = await self.store.restore_version(
            request.match_info["id"],
            request["actor"],
            expected_status=RetentionStatus(request.headers[hdrs.IF_MATCH]),
        )
        return web.json_response({"data": version.to_api_item()})

    async def verify(self, request):
        body = await request.json()
        version = await self.store.set_verification(
            request.match_info["id"],
            request["actor"],
            VerificationStatus(body["verificationStatus"]),
            body.get("rejectionReason"),
            expected_status=VerificationStatus(request.headers[hdrs.IF_MATCH]),
        )
        return web.json_response({"data": version.to_api_item()})

    async def download(self, request):
        link = await self.store.get_download_url(request.match_info["id"])
        return web.json_response({
            "data": {
                "fileUrl": link.url,
                "expiresAt": link.expires_at.isoformat().replace("+00:00", "Z"),
            }
        })


@pytest.fixture
def backend():
    return PortalBackend()


@pytest_asyncio.fixture
async def server(backend):
    async with TestServer(backend.app) as test_server:
        yield test_server


def _config(server, token="client-token", **overrides):
    return StoreConfig(
        base_url=str(server.make_url("/api")),
        auth_token=token,
        chunk_size=256,
        **overrides,
    )


@pytest_asyncio.fixture
async def http_store(server):
    async with HttpVersionStore(_config(server)) as store:
        yield store


@pytest_asyncio.fixture
async def staff_store(server):
    async with HttpVersionStore(_config(server, token="staff-token")) as store:
        yield store


@pytest.fixture
def slot():
    return DocumentSlot(case_id="case 1", document_type="passport_copy")


class TestHttpVersionStore:
    """Tests for HttpVersionStore requests and responses."""

    @pytest.mark.asyncio
    async def test_create_version_streams_file(self, http_store, backend, slot):
        """Test multipart upload with progress and the data envelope."""
        upload = make_pdf(size=1024)
        seen = []

        version = await http_store.create_version(
            slot, upload, CLIENT, "front page", expected_version=0, on_progress=seen.append
        )

        assert version.version_number == 1
        assert version.slot == slot
        assert version.notes == "front page"
        assert version.uploaded_by == CLIENT
        assert version.metadata.file_size == 1024
        assert seen == [25, 50, 75, 100]
        assert backend.store.get_content(version.version_id) == upload.content

        method, path, headers = backend.requests[-1]
        assert (method, path) == ("POST", "/api/documents/upload")
        assert headers["Authorization"] == "Bearer client-token"

    @pytest.mark.asyncio
    async def test_create_version_stale_expectation(self, http_store, slot):
        await http_store.create_version(slot, make_pdf(), CLIENT, None, expected_version=0)

        with pytest.raises(ConflictError):
            await http_store.create_version(slot, make_pdf(), CLIENT, None, expected_version=0)

    @pytest.mark.asyncio
    async def test_list_and_get(self, http_store, slot):
        v1 = await http_store.create_version(slot, make_pdf("a.pdf"), CLIENT, None, expected_version=0)
        await http_store.create_version(slot, make_pdf("b.pdf"), CLIENT, None, expected_version=1)

        versions = await http_store.list_versions(slot)
        fetched = await http_store.get_version(v1.version_id)

        assert [v.version_number for v in versions] == [1, 2]
        assert fetched.retention_status == RetentionStatus.SUPERSEDED
        assert await http_store.get_verification(v1.version_id) == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_delete_sends_expected_state(self, http_store, backend, slot):
        """Test If-Match and Idempotency-Key on delete."""
        version = await http_store.create_version(slot, make_pdf(), CLIENT, None, expected_version=0)

        with pytest.raises(ConflictError):
            await http_store.delete_version(version.version_id, CLIENT, RetentionStatus.SUPERSEDED)
        deleted = await http_store.delete_version(version.version_id, CLIENT, RetentionStatus.ACTIVE)

        assert deleted.is_deleted
        _, path, headers = backend.requests[-1]
        assert path == f"/api/documents/version/{version.version_id}"
        assert headers["If-Match"] == "active"
        assert headers["Idempotency-Key"]

    @pytest.mark.asyncio
    async def test_restore(self, http_store, slot):
        v1 = await http_store.create_version(slot, make_pdf("a.pdf"), CLIENT, None, expected_version=0)
        v2 = await http_store.create_version(slot, make_pdf("b.pdf"), CLIENT, None, expected_version=1)

        restored = await http_store.restore_version(v1.version_id, CLIENT, RetentionStatus.SUPERSEDED)

        assert restored.is_active
        assert not (await http_store.get_version(v2.version_id)).is_active

    @pytest.mark.asyncio
    async def test_set_verification(self, http_store, staff_store, slot):
        version = await http_store.create_version(slot, make_pdf(), CLIENT, None, expected_version=0)

        with pytest.raises(PermissionDeniedError):
            await http_store.set_verification(
                version.version_id, CLIENT, VerificationStatus.VERIFIED, None, VerificationStatus.PENDING
            )
        rejected = await staff_store.set_verification(
            version.version_id, STAFF, VerificationStatus.REJECTED, "Blurry", VerificationStatus.PENDING
        )

        assert rejected.verification_status == VerificationStatus.REJECTED
        assert rejected.rejection_reason == "Blurry"
        assert rejected.verified_by == STAFF.user_id

    @pytest.mark.asyncio
    async def test_download_url(self, http_store, slot):
        version = await http_store.create_version(slot, make_pdf(), CLIENT, None, expected_version=0)

        link = await http_store.get_download_url(version.version_id)

        assert link.url.startswith("memory://")
        assert link.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_not_found(self, http_store):
        with pytest.raises(NotFoundError) as exc_info:
            await http_store.get_version("missing")

        assert exc_info.value.version_id == "missing"

    @pytest.mark.asyncio
    async def test_missing_token(self, server, slot):
        async with HttpVersionStore(_config(server, token=None)) as store:
            with pytest.raises(PermissionDeniedError):
                await store.list_versions(slot)


class TestStatusMapping:
    """Tests for HTTP status to error mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_type",
        [
            (400, ValidationError),
            (413, ValidationError),
            (415, ValidationError),
            (422, ValidationError),
            (401, PermissionDeniedError),
            (403, PermissionDeniedError),
            (404, NotFoundError),
            (409, ConflictError),
            (412, ConflictError),
            (408, UploadTimeoutError),
            (504, UploadTimeoutError),
            (500, VersionStoreError),
            (503, VersionStoreError),
        ],
    )
    async def test_status_mapping(self, http_store, backend, slot, status, error_type):
        backend.fail_status = status

        with pytest.raises(error_type) as exc_info:
            await http_store.list_versions(slot)

        assert exc_info.value.message == "forced failure"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, http_store, backend, slot):
        backend.fail_status = 502
        backend.fail_body = "Bad Gateway"

        with pytest.raises(VersionStoreError) as exc_info:
            await http_store.list_versions(slot)

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_client_timeout(self, server, backend, slot):
        backend.delay = 0.3

        async with HttpVersionStore(_config(server, request_timeout=0.05)) as store:
            with pytest.raises(UploadTimeoutError) as exc_info:
                await store.list_versions(slot)

        assert exc_info.value.operation == "list_versions"

    @pytest.mark.asyncio
    async def test_connection_failure(self, slot):
        config = StoreConfig(base_url="http://127.0.0.1:9/api", request_timeout=2)

        async with HttpVersionStore(config) as store:
            with pytest.raises(VersionStoreError) as exc_info:
                await store.list_versions(slot)

        assert exc_info.value.operation == "list_versions"


class TestStateMachineOverHttp:
    """The state machine and workflow driving the REST store end to end."""

    @pytest.mark.asyncio
    async def test_upload_review_restore(self, http_store, staff_store, slot):
        client_machine = VersionStateMachine(http_store)
        staff_workflow = VerificationWorkflow(VersionStateMachine(staff_store))

        v1 = await client_machine.record_upload(slot, make_pdf("a.pdf"), CLIENT)
        await staff_workflow.reject(v1.version_id, STAFF, "Expired")
        v2 = await client_machine.record_upload(slot, make_pdf("b.pdf"), CLIENT)
        await staff_workflow.verify(v2.version_id, STAFF)
        restored = await client_machine.restore(v1.version_id, CLIENT)

        history = await client_machine.list_history(slot)
        assert [v.version_number for v in history] == [2, 1]
        assert restored.verification_status == VerificationStatus.REJECTED
        assert (await client_machine.active_version(slot)).version_id == v1.version_id
