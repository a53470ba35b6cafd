"""
routes.py - Activity ingestion endpoint.

POST /api/activity-log  - append a batch of enriched activity events

Body: {"token": "<delivery credential>", "events": [{kind, payload, uid, login, session_id}, ...]}
Beacons arrive as text/plain, so the raw body is parsed regardless of content type.

app.state resources (audit_store, credentials) are set in main.py lifespan.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from sessionlog.activity.schemas import IngestRequest
from sessionlog.store import AuditLogStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Activity"])


def get_audit_store(request: Request) -> AuditLogStore:
    return request.app.state.audit_store


def get_credentials(request: Request):
    return request.app.state.credentials


@router.post("/activity-log")
async def ingest_activity(
    request: Request,
    store: AuditLogStore = Depends(get_audit_store),
    credentials=Depends(get_credentials),
) -> dict:
    """
    Verify the delivery credential and append the batch in caller order.

    uid is always the verified subject; login falls back to the login derived
    from the verified e-mail. recorded_at is assigned by the store.
    Returns 400 on malformed payloads, 401 on unknown tokens, 503 when the
    store is unavailable (StoreUnavailable handler in main.py).
    """
    raw = await request.body()
    try:
        body = IngestRequest.model_validate_json(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    identity = await credentials.verify(body.token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    events = []
    for event in body.events:
        if event.uid and event.uid != identity.uid:
            logger.warning("Event uid does not match credential; using verified uid kind=%s", event.kind)
        events.append(event.model_copy(update={"uid": identity.uid, "login": event.login or identity.login}))

    await store.append(events)
    logger.info("Activity events ingested uid=%s count=%d", identity.uid, len(events))
    return {"ok": True}
