"""Item API routes: sync, create, backup, destroy.

The sync route is also the version adapter: it maps each wire shape onto
``SyncParams`` and shapes the envelope for the requested API version.
"""

from __future__ import annotations

import uuid as uuid_lib

from fastapi import APIRouter, Depends, Response, status

from itemsync.core.types import ApiVersion
from itemsync.server.api.deps import (
    get_backups,
    get_current_token,
    get_db,
    get_orchestrator,
)
from itemsync.server.api.errors import ApiError, ItemNotFoundError
from itemsync.server.backup import BackupDispatcher
from itemsync.server.database import Database, NotFoundError, NotOwnedError
from itemsync.server.models import Token
from itemsync.server.resolver import ItemResult
from itemsync.server.schemas import (
    BackupRequest,
    ConflictEntry,
    CreateItemRequest,
    CreateItemResponse,
    ErrorTag,
    SyncRequest,
    SyncResponse,
    UnsavedEntry,
    item_to_response,
)
from itemsync.server.sync import SyncOrchestrator, SyncParams, SyncResult

router = APIRouter(prefix="/items", tags=["items"])

_REJECTION_MESSAGES = {
    "uuid_conflict": "The item uuid is already in use by another account.",
    "invalid_item": "The item could not be read.",
}


def sync_params_from_request(request: SyncRequest) -> tuple[ApiVersion, SyncParams]:
    """Map a sync request of any API version onto SyncParams.

    The fallback API predates cursors, so its ``cursor_token`` is ignored.
    A single record sent instead of a list is treated as a batch of one.
    """
    api = ApiVersion.parse(request.api)

    if request.items is None:
        items = []
    elif isinstance(request.items, list):
        items = request.items
    else:
        items = [request.items]

    params = SyncParams(
        sync_token=request.sync_token,
        cursor_token=request.cursor_token if api is ApiVersion.V20190520 else None,
        limit=request.limit,
        content_type=request.content_type,
        items=items,
    )
    return api, params


def _unsaved_entry(result: ItemResult) -> UnsavedEntry:
    tag = result.outcome.value
    return UnsavedEntry(
        item=result.submitted,
        error=ErrorTag(tag=tag, message=_REJECTION_MESSAGES.get(tag)),
    )


def sync_response(api: ApiVersion, result: SyncResult) -> SyncResponse:
    """Shape a SyncResult for the requested API version."""
    response = SyncResponse(
        retrieved_items=[item_to_response(i) for i in result.retrieved],
        saved_items=[item_to_response(i) for i in result.saved_items],
        unsaved=[_unsaved_entry(r) for r in result.conflicts],
        sync_token=result.sync_token,
        cursor_token=result.cursor_token,
    )
    if api is ApiVersion.V20190520:
        response.conflicts = [
            ConflictEntry(type=r.outcome.value, unsaved_item=r.submitted)
            for r in result.conflicts
        ]
    return response


@router.post(
    "/sync",
    response_model=SyncResponse,
    response_model_exclude_unset=True,
)
def sync_items(
    request: SyncRequest | None = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    auth: Token = Depends(get_current_token),
) -> SyncResponse:
    """Save submitted items and return what the client is missing.

    Every response carries ``retrieved_items``, ``saved_items``,
    ``unsaved``, ``sync_token`` and ``cursor_token``; API 20190520 adds
    ``conflicts``.
    """
    api, params = sync_params_from_request(request or SyncRequest())
    result = orchestrator.sync(auth.account_uuid, params)
    return sync_response(api, result)


@router.post("", response_model=CreateItemResponse)
def create_item(
    request: CreateItemRequest,
    db: Database = Depends(get_db),
    auth: Token = Depends(get_current_token),
) -> CreateItemResponse:
    """Create (or overwrite) a single item.

    The server assigns a uuid when the client sends none.
    """
    payload = request.item
    item_uuid = payload.uuid or str(uuid_lib.uuid4())
    try:
        uuid_lib.UUID(item_uuid)
    except ValueError as e:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            _REJECTION_MESSAGES["invalid_item"],
            "invalid_item",
        ) from e

    try:
        item, _created = db.upsert_item(
            auth.account_uuid,
            item_uuid,
            content=payload.content,
            content_type=payload.content_type,
            enc_item_key=payload.enc_item_key,
            auth_hash=payload.auth_hash,
            deleted=bool(payload.deleted),
        )
    except NotOwnedError as e:
        raise ApiError(
            status.HTTP_409_CONFLICT,
            _REJECTION_MESSAGES["uuid_conflict"],
            "uuid_conflict",
        ) from e
    return CreateItemResponse(item=item_to_response(item))


@router.post("/backup", status_code=status.HTTP_204_NO_CONTENT)
def backup_item(
    request: BackupRequest,
    db: Database = Depends(get_db),
    auth: Token = Depends(get_current_token),
    backups: BackupDispatcher = Depends(get_backups),
) -> Response:
    """Schedule an asynchronous backup of an item."""
    try:
        db.get_item(auth.account_uuid, request.uuid)
    except NotFoundError as e:
        raise ItemNotFoundError() from e

    backups.submit(auth.account_uuid, request.uuid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{item_uuid}", status_code=status.HTTP_204_NO_CONTENT)
def destroy_item(
    item_uuid: str,
    db: Database = Depends(get_db),
    auth: Token = Depends(get_current_token),
) -> Response:
    """Permanently delete an item.

    Unlike a sync with ``deleted`` set, the row is removed and other
    devices are not told about it.
    """
    try:
        db.delete_item(auth.account_uuid, item_uuid)
    except (NotFoundError, NotOwnedError) as e:
        raise ItemNotFoundError() from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
