from fastapi import APIRouter, Depends, Path, Query, WebSocket, WebSocketDisconnect, status

from triage.api.schemas import (
    CreateTicketRequest,
    CreateTicketResponse,
    ResolveTicketRequest,
    ResolveTicketResponse,
    TicketListResponse,
    build_filters,
)
from triage.deps import get_notifier, get_ticket_service
from triage.domain.models import TicketWithResult
from triage.infra.notifier import WebSocketNotifier
from triage.services.ticket_service import TicketService

router = APIRouter()


@router.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


@router.post("/tickets", response_model=CreateTicketResponse, status_code=status.HTTP_201_CREATED, tags=["tickets"])
def create_ticket(
    payload: CreateTicketRequest,
    svc: TicketService = Depends(get_ticket_service),
):
    ticket = svc.create(payload.email, payload.content)
    return CreateTicketResponse.from_ticket(ticket)


@router.get("/tickets", response_model=TicketListResponse, tags=["tickets"])
def list_tickets(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    status_filter: str | None = Query(None, alias="status"),
    urgency: str | None = Query(None),
    category: str | None = Query(None),
    svc: TicketService = Depends(get_ticket_service),
):
    filters = build_filters(page, limit, status_filter, urgency, category)
    return TicketListResponse.from_page(svc.list_tickets(filters), filters)


@router.get("/tickets/{ticket_id}", response_model=TicketWithResult, tags=["tickets"])
def get_ticket(
    ticket_id: int = Path(..., gt=0),
    svc: TicketService = Depends(get_ticket_service),
):
    return svc.get(ticket_id)


@router.post("/tickets/{ticket_id}/resolve", response_model=ResolveTicketResponse, tags=["tickets"])
def resolve_ticket(
    payload: ResolveTicketRequest | None = None,
    ticket_id: int = Path(..., gt=0),
    svc: TicketService = Depends(get_ticket_service),
):
    final_reply = payload.final_reply if payload else None
    ticket = svc.resolve(ticket_id, final_reply)
    return ResolveTicketResponse(ticket_id=ticket.id, status=ticket.status)


@router.websocket("/ws")
async def observe(websocket: WebSocket, notifier: WebSocketNotifier = Depends(get_notifier)):
    await notifier.connect(websocket)
    try:
        # observers only listen; inbound frames are ignored
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.disconnect(websocket)
