"""Pytest configuration and shared fixtures"""

import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import httpx
import pytest

from vaultsync.database import create_local_engine, create_session_factory, init_local_store
from vaultsync.errors import AuthenticationError, BackendError
from vaultsync.schemas.auth import AuthSession, AuthUser
from vaultsync.services.activity_logger import ActivityLogger
from vaultsync.services.activity_service import ActivityService
from vaultsync.services.folder_service import FolderService
from vaultsync.services.local_files import LocalFileSystem
from vaultsync.services.local_store import LocalStore
from vaultsync.services.media_service import MediaService
from vaultsync.services.media_uploader import MediaAssetUploader
from vaultsync.services.member_service import MemberService
from vaultsync.services.note_service import NoteService
from vaultsync.services.project_service import ProjectService
from vaultsync.services.public_profile_service import PublicProfileService
from vaultsync.services.snapshot_merger import SnapshotMerger
from vaultsync.services.storage_service import StorageService
from vaultsync.services.sync_service import SyncService
from vaultsync.services.visibility_sync import VisibilityFanOut
from vaultsync.workers.upload_retry_queue import StorageUploadRetryQueue


USER_ID = "11111111-1111-4111-8111-111111111111"
STORAGE_URL = "https://storage.test"
BUCKET = "media"
START_MS = 1_700_000_000_000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _format(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class InMemoryKeyValueStore:
    """Key-value store kept in a dict"""

    def __init__(self):
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FakeClock:
    """Controllable epoch-millisecond clock"""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Understands the eq/neq/in/is.null filters the services build, generates
    ids and timestamps on insert, and can be told to fail given calls.
    """

    def __init__(self, user: Optional[AuthUser] = None):
        self.tables: Dict[str, List[dict]] = defaultdict(list)
        self.session = AuthSession(access_token="token", user=user) if user else None
        self.session_error: Optional[str] = None
        self.failures: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []

    # Session

    def set_session(self, session: Optional[AuthSession]) -> None:
        self.session = session

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def get_user(self) -> AuthUser:
        if self.session_error:
            raise AuthenticationError(self.session_error)
        if self.session is None:
            raise AuthenticationError("Auth session missing!")
        return self.session.user

    async def require_user(self, action_label: str) -> AuthUser:
        return await self.get_user()

    # Helpers

    def fail(self, method: str, table: str, error: Optional[Exception] = None) -> None:
        self.failures[(method, table)] = error or BackendError(f"{method} {table} failed", status_code=500)

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        error = self.failures.get((method, table))
        if error is not None:
            raise error

    @staticmethod
    def _matches(row: dict, filters) -> bool:
        for column, expression in filters:
            operator, _, operand = expression.partition(".")
            actual = row.get(column)
            if operator == "eq":
                if actual is None or _format(actual) != operand:
                    return False
            elif operator == "neq":
                if actual is None or _format(actual) == operand:
                    return False
            elif operator == "in":
                values = [v.strip().strip('"') for v in operand.strip("()").split(",") if v]
                if actual is None or _format(actual) not in values:
                    return False
            elif operator == "is":
                if actual is not None:
                    return False
        return True

    def rows(self, table: str, **match: Any) -> List[dict]:
        """Rows of a table whose columns equal the given values"""
        return [row for row in self.tables[table] if all(row.get(k) == v for k, v in match.items())]

    def add(self, table: str, **values: Any) -> dict:
        """Seed a row directly"""
        row = {"id": str(uuid.uuid4()), "created_at": _now_iso(), **values}
        if table in ("projects", "notes", "project_members", "project_public_profiles"):
            row.setdefault("updated_at", row["created_at"])
        self.tables[table].append(row)
        return row

    # Table access

    async def select(self, table, columns="*", filters=(), order=None, ascending=True, limit=None):
        self._check("select", table)
        rows = [dict(row) for row in self.tables[table] if self._matches(row, filters)]
        if order:
            rows.sort(key=lambda r: _format(r.get(order)), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(self, table, columns="*", filters=(), order=None, ascending=True):
        rows = await self.select(table, columns, filters, order=order, ascending=ascending, limit=1)
        return rows[0] if rows else None

    async def insert(self, table, rows, returning=True):
        self._check("insert", table)
        created = []
        for values in rows if isinstance(rows, list) else [rows]:
            created.append(dict(self.add(table, **values)))
        return created if returning else []

    async def update(self, table, values, filters, returning=True):
        self._check("update", table)
        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated if returning else []

    async def delete(self, table, filters):
        self._check("delete", table)
        self.tables[table] = [row for row in self.tables[table] if not self._matches(row, filters)]

    async def rpc(self, function, params):
        self._check("rpc", function)
        if function != "create_project":
            raise BackendError(f"Unknown function {function}", status_code=404)
        row = self.add(
            "projects",
            owner_user_id=self.session.user.id,
            organization_id=params.get("p_organization_id"),
            name=params["p_name"],
            client=params.get("p_client"),
            location=params.get("p_location"),
            status="active",
            visibility="private",
            progress=0,
            start_date=params.get("p_start_date"),
            end_date=params.get("p_end_date"),
            budget=params.get("p_budget"),
        )
        return [dict(row)]


class StorageEndpoint:
    """Scripted storage HTTP API recording every upload request"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: List[httpx.Response] = []

    def respond(self, status_code: int, text: str = "") -> None:
        self.responses.append(httpx.Response(status_code, text=text))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={"Key": request.url.path})


@pytest.fixture
def user():
    """Signed-in actor"""
    return AuthUser(id=USER_ID, email="ada@example.com", user_metadata={"full_name": "Ada Builder"})


@pytest.fixture
def backend(user):
    return FakeBackend(user)


@pytest.fixture
def session_factory():
    """Fresh in-memory local store"""
    engine = create_local_engine("sqlite://")
    init_local_store(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def local_store(session_factory):
    return LocalStore(session_factory)


@pytest.fixture
def merger(session_factory):
    return SnapshotMerger(session_factory)


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_queue(kv_store, clock):
    return StorageUploadRetryQueue(
        kv_store,
        key="test/storage-upload-retry",
        base_delay_seconds=15,
        max_delay_seconds=1800,
        max_attempts=12,
        clock=clock,
    )


@pytest.fixture
def storage_endpoint():
    return StorageEndpoint()


@pytest.fixture
def mock_s3_client():
    """Mock boto3 S3 client"""
    return Mock()


@pytest.fixture
def storage(storage_endpoint, mock_s3_client):
    return StorageService(
        bucket=BUCKET,
        storage_url=STORAGE_URL,
        anon_key="anon-key",
        s3_client=mock_s3_client,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(storage_endpoint.handler)),
    )


@pytest.fixture
def uploader(storage, retry_queue, backend):
    return MediaAssetUploader(storage, LocalFileSystem(), retry_queue, backend, max_fallback_bytes=1024)


@pytest.fixture
def sync(backend, merger, uploader):
    return SyncService(backend, merger, uploader, chunk_size=2, activity_limit=100)


@pytest.fixture
def fan_out(backend, local_store):
    return VisibilityFanOut(backend, local_store, insert_chunk_size=2)


@pytest.fixture
def common(local_store, backend, merger, sync):
    """Constructor arguments shared by the mutation services"""
    return dict(
        local_store=local_store,
        backend=backend,
        merger=merger,
        activity=ActivityLogger(backend),
        sync=sync,
    )


@pytest.fixture
def project_service(common, fan_out):
    return ProjectService(fan_out=fan_out, **common)


@pytest.fixture
def public_profile_service(common):
    return PublicProfileService(**common)


@pytest.fixture
def folder_service(common):
    return FolderService(**common)


@pytest.fixture
def media_service(common, uploader, fan_out):
    return MediaService(uploader=uploader, fan_out=fan_out, **common)


@pytest.fixture
def note_service(common):
    return NoteService(**common)


@pytest.fixture
def member_service(common):
    return MemberService(**common)


@pytest.fixture
def activity_service(common):
    return ActivityService(**common)


@pytest.fixture
def local_file(tmp_path):
    """Factory writing a file and returning its file:// URI"""

    def _make(name: str = "photo.jpg", size: int = 16) -> str:
        path = tmp_path / name
        path.write_bytes(b"x" * size)
        return f"file://{path}"

    return _make
