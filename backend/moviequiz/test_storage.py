from __future__ import annotations

import json
from unittest import IsolatedAsyncioTestCase, mock

from azure.core.exceptions import ResourceExistsError

from . import storage
from .models import UserRecord


class _FakeBlobClient:
    def __init__(self, blob_name: str):
        self.blob_name = blob_name
        self.uploaded = []
        self.url = f"https://example.com/{blob_name}"

    def upload_blob(self, content: bytes, overwrite: bool = True, **kwargs):
        self.uploaded.append((content, overwrite, kwargs))


class _FakeContainerClient:
    def __init__(self, *, exists: bool = False):
        self._exists = exists
        self.create_calls = 0
        self._latest_blob_client: _FakeBlobClient | None = None

    def create_container(self):
        self.create_calls += 1
        if self._exists:
            raise ResourceExistsError(message="exists")
        self._exists = True

    def get_blob_client(self, blob_name: str) -> _FakeBlobClient:
        self._latest_blob_client = _FakeBlobClient(blob_name)
        return self._latest_blob_client


class _FakeBlobService:
    def __init__(
        self,
        container_client: _FakeContainerClient,
        *,
        credential: object | None = None,
        user_delegation_key: object | None = None,
    ):
        self._container_client = container_client
        self.account_name = "account-name"
        self.credential = credential if credential is not None else object()
        self._user_delegation_key = user_delegation_key

    def get_container_client(self, container_name: str) -> _FakeContainerClient:
        self.container_name = container_name
        return self._container_client

    def get_user_delegation_key(self, start, expiry):
        self.user_delegation_key_args = (start, expiry)
        if self._user_delegation_key is None:
            raise RuntimeError("user delegation key not configured")
        return self._user_delegation_key


RECORDS = [
    UserRecord(id="1", score=320, nickname="Neil"),
    UserRecord(id="2", score=40),
]


class UploadLedgerSnapshotTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        storage._blob_service_client = None
        storage._container_initialised = False

    async def test_snapshot_is_uploaded_as_json_with_sas_link(self):
        container = _FakeContainerClient()
        credential = object()
        service = _FakeBlobService(container, credential=credential)

        with mock.patch.object(storage, "_get_blob_service", return_value=service), mock.patch.object(
            storage, "generate_blob_sas", return_value="sig"
        ) as mock_generate_sas:
            url = await storage.upload_ledger_snapshot("2026-10", RECORDS)

        blob = container._latest_blob_client
        self.assertEqual(blob.blob_name, "ledger/2026-10.json")
        self.assertEqual(url, f"{blob.url}?sig")
        self.assertEqual(container.create_calls, 1)

        content, overwrite, kwargs = blob.uploaded[0]
        self.assertTrue(overwrite)
        self.assertEqual(kwargs["content_settings"].content_type, "application/json")
        body = json.loads(content)
        self.assertEqual(body["period"], "2026-10")
        self.assertEqual(
            body["users"],
            [{"id": "1", "nickname": "Neil", "score": 320}, {"id": "2", "nickname": None, "score": 40}],
        )

        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["account_name"], service.account_name)
        self.assertEqual(kwargs["container_name"], storage.settings.AZURE_STORAGE_CONTAINER)
        self.assertEqual(kwargs["blob_name"], "ledger/2026-10.json")
        self.assertIs(kwargs["credential"], credential)
        self.assertEqual(str(kwargs["permission"]), str(storage.BlobSasPermissions(read=True)))

    async def test_existing_container_is_reused(self):
        container = _FakeContainerClient(exists=True)
        service = _FakeBlobService(container)

        with mock.patch.object(storage, "_get_blob_service", return_value=service), mock.patch.object(
            storage, "generate_blob_sas", return_value="sig"
        ):
            await storage.upload_ledger_snapshot("2026-10", RECORDS)
            await storage.upload_ledger_snapshot("2026-11", RECORDS)

        self.assertEqual(container.create_calls, 1)
        self.assertEqual(container._latest_blob_client.blob_name, "ledger/2026-11.json")

    async def test_token_credentials_use_user_delegation_key(self):
        class _TokenCredential(storage.TokenCredential):
            def get_token(self, *args, **kwargs):  # pragma: no cover - interface stub
                raise NotImplementedError

        container = _FakeContainerClient()
        delegation_key = object()
        service = _FakeBlobService(
            container,
            credential=_TokenCredential(),
            user_delegation_key=delegation_key,
        )

        with mock.patch.object(storage, "_get_blob_service", return_value=service), mock.patch.object(
            storage, "generate_blob_sas", return_value="sig"
        ) as mock_generate_sas:
            url = await storage.upload_ledger_snapshot("2026-10", RECORDS)

        self.assertTrue(url.endswith("?sig"))
        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["user_delegation_key"], delegation_key)
        start, expiry = service.user_delegation_key_args
        self.assertLess(start, expiry)

    async def test_unconfigured_storage_raises(self):
        with mock.patch.object(storage.settings, "AZURE_STORAGE_CONNECTION_STRING", None):
            self.assertFalse(storage.is_configured())
            with self.assertRaises(RuntimeError):
                await storage.upload_ledger_snapshot("2026-10", RECORDS)
