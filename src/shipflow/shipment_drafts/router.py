"""Shipment Drafts API Router - open, navigate, bind rate, book.

Operator identity comes from the X-Company-ID / X-User-ID headers. Domain
exceptions propagate to the handlers registered in main.py, which map them to
HTTP status codes.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..dependencies import get_lifecycle, get_operator, get_store, get_workspaces
from ..observability.logging_config import get_logger
from .lifecycle import DraftLifecycleManager
from .navigator import STEPS
from .rates import normalize_rate
from .schemas import (
    AdvanceRequest,
    BookingAttemptResponse,
    DraftListItem,
    DraftListResponse,
    DraftStatusResponse,
    JumpRequest,
    MarkUnrecoverableRequest,
    NavigationResponse,
    OpenDraftRequest,
    RateBindingRequest,
    WorkspaceResponse,
)
from .sections import SectionName
from .status import DraftStatus
from .exceptions import DraftNotEditableError, DraftStoreError
from .store import DraftStorePort, Owner
from .workspace import DraftWorkspace, WorkspaceRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/shipment-drafts", tags=["shipment_drafts"])


def _workspace_response(workspace: DraftWorkspace) -> WorkspaceResponse:
    return WorkspaceResponse(**workspace.to_dict())


def _navigation_response(workspace: DraftWorkspace, result) -> NavigationResponse:
    return NavigationResponse(
        step_index=result.step_index,
        step=result.step,
        section_persisted=result.section_persisted,
        persist_error=result.persist_error,
        workspace=_workspace_response(workspace),
    )


@router.get(
    "",
    response_model=DraftListResponse,
    summary="List shipment drafts",
    description="List the operator's drafts, most recently modified first.",
)
async def list_shipment_drafts(
    status_filter: Optional[DraftStatus] = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(50, ge=1, le=200, description="Results per page"),
    owner: Owner = Depends(get_operator),
    store: DraftStorePort = Depends(get_store),
) -> DraftListResponse:
    offset = (page - 1) * per_page
    records, total = await store.list_for_owner(owner, status=status_filter, limit=per_page, offset=offset)

    return DraftListResponse(
        items=[DraftListItem(**record.to_summary()) for record in records],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=(total + per_page - 1) // per_page,
    )


@router.post(
    "",
    response_model=WorkspaceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a shipment draft",
    description="""
    Create a new draft, or resume an existing one by key.

    - Unknown key: a new draft is created (notice `resume_key_not_found`)
    - Draft of another operator: 403
    - Draft no longer in status draft, or created by another form: 409
    """,
)
async def open_shipment_draft(
    request: OpenDraftRequest,
    owner: Owner = Depends(get_operator),
    lifecycle: DraftLifecycleManager = Depends(get_lifecycle),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> WorkspaceResponse:
    workspace = await lifecycle.open(
        owner,
        draft_key=request.draft_key,
        creation_method=request.creation_method,
    )
    workspaces.add(workspace)
    return _workspace_response(workspace)


@router.get("/{key}", response_model=WorkspaceResponse, summary="Get workspace state")
async def get_shipment_draft(
    key: UUID,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> WorkspaceResponse:
    return _workspace_response(workspaces.require(key, owner))


@router.post(
    "/{key}/advance",
    response_model=NavigationResponse,
    summary="Save the current step and move forward",
    description="""
    Merges `payload` into the current step's section, persists it and moves to
    the next step. A failed persist still advances; `persist_error` is set.
    """,
)
async def advance_step(
    key: UUID,
    request: AdvanceRequest,
    owner: Owner = Depends(get_operator),
    lifecycle: DraftLifecycleManager = Depends(get_lifecycle),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> NavigationResponse:
    workspace = workspaces.require(key, owner)
    edited = workspace.navigator.current_step.section
    result = await workspace.navigator.advance(request.payload)

    if edited == SectionName.DESTINATION and request.payload is not None:
        await lifecycle.refresh_identifier(workspace)

    return _navigation_response(workspace, result)


@router.post("/{key}/retreat", response_model=NavigationResponse, summary="Go back one step")
async def retreat_step(
    key: UUID,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> NavigationResponse:
    workspace = workspaces.require(key, owner)
    return _navigation_response(workspace, workspace.navigator.retreat())


@router.post(
    "/{key}/jump",
    response_model=NavigationResponse,
    summary="Jump to any step",
    description=f"Steps: {', '.join(step.name for step in STEPS)}. Nothing is persisted.",
)
async def jump_to_step(
    key: UUID,
    request: JumpRequest,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> NavigationResponse:
    workspace = workspaces.require(key, owner)
    return _navigation_response(workspace, workspace.navigator.jump_to(request.step))


@router.put(
    "/{key}/rate",
    response_model=NavigationResponse,
    summary="Bind the selected rate",
    description="""
    Binds a rate document id and/or the selected rate snapshot. A snapshot
    without id is persisted as a rate document when booking starts.
    Once booking has started the binding is locked: 409.
    """,
)
async def bind_rate(
    key: UUID,
    request: RateBindingRequest,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
    store: DraftStorePort = Depends(get_store),
) -> NavigationResponse:
    workspace = workspaces.require(key, owner)
    workspace.orchestrator.ensure_editable()

    if request.rate_snapshot:
        # Reject unusable snapshots now rather than at booking time
        normalize_rate(request.rate_snapshot)

    previous = workspace.accumulator.get(SectionName.RATE_REF)
    workspace.accumulator.update(
        SectionName.RATE_REF,
        {
            "rate_document_id": request.rate_document_id,
            "rate_snapshot": request.rate_snapshot,
        },
    )

    persist_error = None
    try:
        await store.patch(
            key,
            SectionName.RATE_REF.value,
            workspace.accumulator.section_payload(SectionName.RATE_REF),
        )
    except DraftNotEditableError:
        workspace.accumulator.restore(SectionName.RATE_REF, previous)
        raise
    except DraftStoreError as e:
        persist_error = str(e)
        logger.warning(
            f"Rate binding not persisted: {e}",
            extra={"draft_key": str(key), "section": SectionName.RATE_REF.value},
        )

    navigator = workspace.navigator
    return NavigationResponse(
        step_index=navigator.current_index,
        step=navigator.current_step.name,
        section_persisted=SectionName.RATE_REF.value,
        persist_error=persist_error,
        workspace=_workspace_response(workspace),
    )


@router.post(
    "/{key}/book",
    response_model=BookingAttemptResponse,
    summary="Book the shipment",
    description="""
    Reserves the shipment with the carrier of the bound rate, then generates
    the carrier's follow-up document (label or bill of lading).

    - Incomplete sections or missing rate: 422
    - Already booked: 409
    - Rate snapshot could not be persisted: 502
    - Carrier failure: 200 with phase `error`
    - Booking already running: 200 with the in-flight attempt
    """,
)
async def book_shipment(
    key: UUID,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> BookingAttemptResponse:
    workspace = workspaces.require(key, owner)
    attempt = await workspace.orchestrator.book()
    return BookingAttemptResponse(**attempt.to_dict())


@router.post(
    "/{key}/mark-unrecoverable",
    response_model=DraftStatusResponse,
    summary="Mark an in-flight booking unrecoverable",
    description="Operator action after investigation: processing -> error.",
)
async def mark_unrecoverable(
    key: UUID,
    request: MarkUnrecoverableRequest,
    owner: Owner = Depends(get_operator),
    lifecycle: DraftLifecycleManager = Depends(get_lifecycle),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> DraftStatusResponse:
    workspace = workspaces.get(key)
    target = workspace if workspace is not None and workspace.owner == owner else key
    record = await lifecycle.mark_unrecoverable(target, request.reason, owner=owner)

    return DraftStatusResponse(
        key=record.key,
        human_id=record.human_id,
        status=record.status.value,
        last_booking_error=record.last_booking_error,
    )


@router.post(
    "/{key}/close",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close the workspace and return to the listing",
)
async def close_workspace(
    key: UUID,
    owner: Owner = Depends(get_operator),
    workspaces: WorkspaceRegistry = Depends(get_workspaces),
) -> Response:
    workspace = workspaces.require(key, owner)
    workspace.orchestrator.return_to_listing()
    workspaces.close(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
