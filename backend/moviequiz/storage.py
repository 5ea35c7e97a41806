from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import List

from azure.core.credentials import TokenCredential

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from .db import settings
from .models import UserRecord

logger = logging.getLogger(__name__)

_blob_service_client: BlobServiceClient | None = None
_container_initialised = False


def is_configured() -> bool:
    return bool(settings.AZURE_STORAGE_CONNECTION_STRING)


def _get_blob_service() -> BlobServiceClient:
    global _blob_service_client
    if _blob_service_client is None:
        if not settings.AZURE_STORAGE_CONNECTION_STRING:
            raise RuntimeError("Azure Blob Storage is not configured")
        _blob_service_client = BlobServiceClient.from_connection_string(
            settings.AZURE_STORAGE_CONNECTION_STRING
        )
    return _blob_service_client


def snapshot_document(period: str, records: List[UserRecord]) -> bytes:
    payload = {
        "period": period,
        "users": [
            {"id": r.id, "nickname": r.nickname, "score": r.score}
            for r in records
        ],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


async def upload_ledger_snapshot(period: str, records: List[UserRecord]) -> str:
    """Archive the pre-reset ledger for ``period`` and return a readable URL."""

    service = _get_blob_service()
    container_name = settings.AZURE_STORAGE_CONTAINER
    container_client = service.get_container_client(container_name)

    global _container_initialised
    if not _container_initialised:
        # snapshots stay private; readers get a short-lived SAS link
        try:
            await asyncio.to_thread(container_client.create_container)
        except ResourceExistsError:
            pass
        _container_initialised = True

    blob_name = f"ledger/{period}.json"
    blob_client = container_client.get_blob_client(blob_name)

    await asyncio.to_thread(
        blob_client.upload_blob,
        snapshot_document(period, records),
        overwrite=True,
        content_settings=ContentSettings(content_type="application/json"),
    )
    logger.info("archived %d ledger records to %s/%s", len(records), container_name, blob_name)

    return await _build_private_blob_url(service, container_name, blob_name, blob_client.url)


async def _build_private_blob_url(
    service: BlobServiceClient, container_name: str, blob_name: str, base_url: str
) -> str:
    now = datetime.utcnow()
    expiry = now + timedelta(days=7)
    permissions = BlobSasPermissions(read=True)

    credential = getattr(service, "credential", None)

    if isinstance(credential, TokenCredential):
        delegation_key = await asyncio.to_thread(
            service.get_user_delegation_key,
            now,
            expiry,
        )
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            user_delegation_key=delegation_key,
            permission=permissions,
            expiry=expiry,
        )
    elif credential is not None:
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            credential=credential,
            permission=permissions,
            expiry=expiry,
        )
    else:
        raise RuntimeError("Azure Blob Storage credential is required for SAS generation")

    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{sas_token}"
