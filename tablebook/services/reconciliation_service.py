"""
Point-of-sale event reconciliation.

Inbound events are stored once per provider event id and queued. A worker drains
due queue items, links each order to a reservation (customer id, then booking
code in the order note, then a walk-in) and retries failures on a fixed backoff
schedule. After the last attempt the event is failed and handed to a human as a
manual review carrying the full event snapshot.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tablebook.core.config import get_settings
from tablebook.core.errors import InvalidInput, NotFound
from tablebook.core.security import verify_pos_signature
from tablebook.core.state_machine import EventOutcome, EventStatus, ReservationStatus
from tablebook.models.pos import EventQueueItem, ManualReview, OrderLink, PosDeviceMap, PosLocationMap, PosWebhookEvent
from tablebook.models.reservation import Reservation
from tablebook.models.resource import Resource
from tablebook.models.venue import Venue
from tablebook.services.pos_client import PosClient
from tablebook.services.reservation_service import create_walk_in, transition_reservation

logger = logging.getLogger(__name__)

BOOKING_CODE_RE = re.compile(r"BK-\d{4}-\d{6}")

ORDER_EVENTS = {"order.created", "order.updated"}
PAYMENT_EVENTS = {"payment.created", "payment.updated"}

# Claimed items are hidden from other workers for this long.
CLAIM_LEASE = timedelta(minutes=5)

CONFIDENCE_CUSTOMER_ID = 0.9
CONFIDENCE_BOOKING_CODE = 0.95
CONFIDENCE_WALK_IN = 0.7

WALK_IN_NOTE = "POS order {}"


class EventProcessingError(Exception):
    """Retriable failure while processing a queued event."""


@dataclass
class DrainResult:
    processed: int = 0
    retried: int = 0
    escalated: int = 0


def backoff_delay(attempts: int) -> int:
    """Seconds to wait before the next try after `attempts` failures."""
    schedule = get_settings().queue_backoff_seconds
    return schedule[min(max(attempts, 1) - 1, len(schedule) - 1)]


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(tz=ZoneInfo("UTC"))


# ---------------------------------------------------------------------------
# Receipt
# ---------------------------------------------------------------------------

def receive_event(
    db: Session,
    *,
    raw_body: bytes,
    signature: str | None,
    now: datetime | None = None,
) -> tuple[PosWebhookEvent, bool]:
    """Persist an inbound event once and queue it. Returns (event, created)."""
    settings = get_settings()
    now = _now(now)

    signature_valid = False
    if settings.pos_webhook_secret:
        signature_valid = verify_pos_signature(
            settings.pos_webhook_secret, settings.pos_notification_url, raw_body, signature
        )

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise InvalidInput("Malformed event body")
    if not isinstance(payload, dict):
        raise InvalidInput("Malformed event body")

    event_id = str(payload.get("event_id") or uuid.uuid4())
    existing = db.execute(select(PosWebhookEvent).where(PosWebhookEvent.event_id == event_id)).scalar_one_or_none()
    if existing is not None:
        logger.info("duplicate pos event %s ignored", event_id)
        return existing, False

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    event = PosWebhookEvent(
        event_id=event_id,
        event_type=str(payload.get("type") or "unknown"),
        location_id=str(payload.get("location_id") or payload.get("merchant_id") or ""),
        object_id=str(data.get("id") or ""),
        payload=payload,
        signature_valid=signature_valid,
        status=EventStatus.RECEIVED.value,
    )
    db.add(event)

    if settings.pos_webhook_secret and not signature_valid:
        event.status = EventStatus.FAILED.value
        event.outcome = EventOutcome.IGNORED.value
        event.error = "invalid_signature"
        logger.warning("pos event %s failed signature verification", event_id)
    else:
        db.flush()
        db.add(EventQueueItem(webhook_event_id=event.id, next_attempt_at=now))
        event.status = EventStatus.QUEUED.value

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = db.execute(select(PosWebhookEvent).where(PosWebhookEvent.event_id == event_id)).scalar_one()
        return existing, False

    db.refresh(event)
    return event, True


# ---------------------------------------------------------------------------
# Queue drain
# ---------------------------------------------------------------------------

def _claim_due_items(db: Session, *, now: datetime) -> list[EventQueueItem]:
    settings = get_settings()
    items = db.execute(
        select(EventQueueItem)
        .where(EventQueueItem.next_attempt_at <= now, EventQueueItem.attempts < settings.queue_max_attempts)
        .order_by(EventQueueItem.next_attempt_at)
        .limit(settings.queue_batch_size)
        .with_for_update(skip_locked=True)
    ).scalars().all()

    for item in items:
        item.next_attempt_at = now + CLAIM_LEASE
        event = db.get(PosWebhookEvent, item.webhook_event_id)
        if event is not None:
            event.status = EventStatus.PROCESSING.value
    db.commit()
    return list(items)


def _record_failure(db: Session, *, item_id: str, error: str, now: datetime) -> bool:
    """Schedule a retry or escalate. Returns True when escalated."""
    settings = get_settings()
    item = db.get(EventQueueItem, item_id)
    if item is None:
        return False
    event_ref = item.webhook_event_id
    event = db.get(PosWebhookEvent, event_ref)
    attempts = item.attempts + 1

    if attempts >= settings.queue_max_attempts:
        if event is not None:
            event.status = EventStatus.FAILED.value
            event.outcome = EventOutcome.ESCALATED.value
            event.error = error
            db.add(
                ManualReview(
                    webhook_event_id=event.id,
                    order_id=event.object_id,
                    reason="processing_failed",
                    snapshot={
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "payload": event.payload,
                        "attempts": attempts,
                        "last_error": error,
                    },
                    status="open",
                )
            )
        db.delete(item)
        db.commit()
        logger.error("pos event %s escalated to manual review after %s attempts", event_ref, attempts)
        return True

    item.attempts = attempts
    item.last_error = error
    retry_at = now + timedelta(seconds=backoff_delay(attempts))
    item.next_attempt_at = retry_at
    if event is not None:
        event.status = EventStatus.QUEUED.value
        event.error = error
    db.commit()
    logger.warning("pos event %s failed attempt %s, retry at %s", event_ref, attempts, retry_at)
    return False


def _record_success(db: Session, *, item_id: str, outcome: EventOutcome, now: datetime) -> None:
    item = db.get(EventQueueItem, item_id)
    if item is None:
        return
    event = db.get(PosWebhookEvent, item.webhook_event_id)
    if event is not None:
        event.status = EventStatus.PROCESSED.value
        event.outcome = outcome.value
        event.error = ""
        event.processed_at = now
    db.delete(item)
    db.commit()


def drain_queue(db: Session, *, now: datetime | None = None, client: PosClient | None = None) -> DrainResult:
    now = _now(now)
    client = client or PosClient()
    result = DrainResult()

    for item in _claim_due_items(db, now=now):
        item_id = item.id
        event = db.get(PosWebhookEvent, item.webhook_event_id)
        try:
            if event is None:
                raise EventProcessingError("Queued event no longer exists")
            outcome = process_event(db, event=event, client=client, now=now)
        except Exception as exc:
            db.rollback()
            logger.exception("pos event processing failed item=%s", item_id)
            if _record_failure(db, item_id=item_id, error=str(exc)[:1000] or exc.__class__.__name__, now=now):
                result.escalated += 1
            else:
                result.retried += 1
            continue

        _record_success(db, item_id=item_id, outcome=outcome, now=now)
        result.processed += 1

    if result.processed or result.retried or result.escalated:
        logger.info(
            "queue drain processed=%s retried=%s escalated=%s", result.processed, result.retried, result.escalated
        )
    return result


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

def process_event(db: Session, *, event: PosWebhookEvent, client: PosClient, now: datetime) -> EventOutcome:
    if event.event_type in ORDER_EVENTS:
        return process_order_event(db, event=event, client=client, now=now)
    if event.event_type in PAYMENT_EVENTS:
        return process_payment_event(db, event=event, client=client, now=now)
    return EventOutcome.IGNORED


def _event_object(event: PosWebhookEvent, *keys: str) -> dict[str, Any]:
    data = (event.payload or {}).get("data") or {}
    obj = data.get("object") or {}
    for key in keys:
        value = obj.get(key)
        if isinstance(value, dict):
            return value
    raise EventProcessingError(f"No {keys[0].split('_')[0]} data in event payload")


def _fetch_or_fallback(fetch, object_id: str, fallback: dict[str, Any]) -> dict[str, Any]:
    try:
        full = fetch(object_id)
    except httpx.HTTPError as exc:
        logger.warning("pos api fetch failed for %s, using webhook data: %s", object_id, exc)
        full = None
    if not full:
        return dict(fallback, id=object_id)
    return full


def _venue_timezone(venue: Venue | None) -> ZoneInfo:
    return ZoneInfo((venue.timezone if venue and venue.timezone else None) or get_settings().timezone)


def _order_local_time(order: dict[str, Any], tz: ZoneInfo, now: datetime) -> datetime:
    raw = order.get("created_at")
    opened = now
    if raw:
        try:
            opened = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            opened = now
    if opened.tzinfo is None:
        opened = opened.replace(tzinfo=ZoneInfo("UTC"))
    return opened.astimezone(tz).replace(second=0, microsecond=0)


def _link(db: Session, *, order_id: str, reservation: Reservation, method: str, confidence: float) -> None:
    db.add(OrderLink(order_id=order_id, reservation_id=reservation.id, link_method=method, confidence=confidence))
    try:
        db.commit()
    except IntegrityError:
        # linked concurrently by another worker
        db.rollback()
    logger.info("order %s linked to %s via %s", order_id, reservation.reference, method)


def _match_by_customer(
    db: Session, *, customer_id: str, venue_id: str | None, local: datetime
) -> Reservation | None:
    q = select(Reservation).where(
        Reservation.external_customer_id == customer_id,
        Reservation.booking_date == local.date(),
        Reservation.status.in_([ReservationStatus.CONFIRMED.value, ReservationStatus.SEATED.value]),
    )
    if venue_id:
        q = q.where(Reservation.venue_id == venue_id)
    return db.execute(q.order_by(Reservation.start_time).limit(1)).scalar_one_or_none()


def _match_by_booking_code(db: Session, note: str) -> Reservation | None:
    match = BOOKING_CODE_RE.search(note or "")
    if not match:
        return None
    return db.execute(
        select(Reservation).where(
            Reservation.reference == match.group(0),
            Reservation.status.notin_([ReservationStatus.CANCELLED.value, ReservationStatus.INCOMPLETE.value]),
        )
    ).scalar_one_or_none()


def _resolve_table(db: Session, *, venue_id: str, order: dict[str, Any]) -> str | None:
    ticket_name = (order.get("ticket_name") or "").strip()
    if ticket_name:
        table = db.execute(
            select(Resource).where(
                Resource.venue_id == venue_id,
                func.lower(Resource.label) == ticket_name.lower(),
                Resource.active == True,
            )
        ).scalars().first()
        if table is not None:
            return table.id

    source = order.get("source") or {}
    for device_key in (source.get("device_id"), source.get("name")):
        if not device_key:
            continue
        mapping = db.execute(
            select(PosDeviceMap).where(PosDeviceMap.venue_id == venue_id, PosDeviceMap.device_id == device_key)
        ).scalar_one_or_none()
        if mapping is not None and mapping.resource_id:
            return mapping.resource_id
    return None


def _existing_walk_in(db: Session, *, venue_id: str, order_id: str) -> Reservation | None:
    return db.execute(
        select(Reservation).where(
            Reservation.venue_id == venue_id,
            Reservation.source == "walk_in",
            Reservation.notes == WALK_IN_NOTE.format(order_id),
        )
    ).scalars().first()


def process_order_event(db: Session, *, event: PosWebhookEvent, client: PosClient, now: datetime) -> EventOutcome:
    webhook_order = _event_object(event, "order_updated", "order_created", "order")
    order_id = webhook_order.get("order_id") or webhook_order.get("id")
    if not order_id:
        raise EventProcessingError("No order id in event payload")

    if db.execute(select(OrderLink.id).where(OrderLink.order_id == order_id)).first() is not None:
        return EventOutcome.LINKED

    order = _fetch_or_fallback(client.fetch_order, order_id, webhook_order)
    location_id = order.get("location_id") or webhook_order.get("location_id") or event.location_id

    mapping = db.execute(select(PosLocationMap).where(PosLocationMap.location_id == location_id)).scalar_one_or_none()
    venue = db.get(Venue, mapping.venue_id) if mapping is not None else None
    local = _order_local_time(order, _venue_timezone(venue), now)

    customer_id = order.get("customer_id")
    if customer_id:
        reservation = _match_by_customer(db, customer_id=customer_id, venue_id=venue.id if venue else None, local=local)
        if reservation is not None:
            _link(db, order_id=order_id, reservation=reservation, method="customer_id", confidence=CONFIDENCE_CUSTOMER_ID)
            return EventOutcome.LINKED

    reservation = _match_by_booking_code(db, order.get("note") or "")
    if reservation is not None:
        _link(db, order_id=order_id, reservation=reservation, method="booking_code", confidence=CONFIDENCE_BOOKING_CODE)
        return EventOutcome.LINKED

    if venue is None:
        db.add(
            ManualReview(
                webhook_event_id=event.id,
                order_id=order_id,
                reason="no_venue_mapping",
                snapshot={"event_id": event.event_id, "location_id": location_id, "order": order},
                status="open",
            )
        )
        db.commit()
        logger.warning("order %s from unmapped location %s sent to review", order_id, location_id)
        return EventOutcome.REVIEW_CREATED

    # an earlier attempt may have created the walk-in but failed before linking it
    walk_in = _existing_walk_in(db, venue_id=venue.id, order_id=order_id)
    if walk_in is None:
        table_id = _resolve_table(db, venue_id=venue.id, order=order)
        walk_in = create_walk_in(
            db,
            venue_id=venue.id,
            day=local.date(),
            start_time=local.time(),
            resource_id=table_id,
            external_customer_id=customer_id,
            notes=WALK_IN_NOTE.format(order_id),
            now=now,
        )
    _link(db, order_id=order_id, reservation=walk_in, method="auto_walk_in", confidence=CONFIDENCE_WALK_IN)
    return EventOutcome.WALK_IN_CREATED


def process_payment_event(db: Session, *, event: PosWebhookEvent, client: PosClient, now: datetime) -> EventOutcome:
    webhook_payment = _event_object(event, "payment", "payment_updated", "payment_created")
    payment_id = webhook_payment.get("payment_id") or webhook_payment.get("id")
    if not payment_id:
        raise EventProcessingError("No payment id in event payload")

    payment = _fetch_or_fallback(client.fetch_payment, payment_id, webhook_payment)
    order_id = payment.get("order_id")
    if payment.get("status") != "COMPLETED" or not order_id:
        return EventOutcome.IGNORED

    link = db.execute(select(OrderLink).where(OrderLink.order_id == order_id)).scalar_one_or_none()
    if link is None:
        return EventOutcome.IGNORED
    reservation = db.get(Reservation, link.reservation_id)
    if reservation is None:
        return EventOutcome.IGNORED

    if reservation.status == ReservationStatus.CONFIRMED.value:
        transition_reservation(db, reservation=reservation, to_status=ReservationStatus.SEATED, now=now)
    if reservation.status == ReservationStatus.SEATED.value:
        transition_reservation(db, reservation=reservation, to_status=ReservationStatus.FINISHED, now=now)
        logger.info("reservation %s finished after payment for order %s", reservation.reference, order_id)
        return EventOutcome.RESERVATION_FINISHED
    return EventOutcome.IGNORED


# ---------------------------------------------------------------------------
# Manual review
# ---------------------------------------------------------------------------

def list_reviews(db: Session, *, status: str = "open", limit: int = 200) -> list[ManualReview]:
    q = select(ManualReview).order_by(ManualReview.created_at.desc()).limit(limit)
    if status:
        q = q.where(ManualReview.status == status)
    return list(db.execute(q).scalars().all())


def resolve_review(
    db: Session,
    *,
    review_id: str,
    resolved_by: str,
    resolution: str = "",
    reservation_reference: str | None = None,
    dismiss: bool = False,
    now: datetime | None = None,
) -> ManualReview:
    now = _now(now)
    review = db.get(ManualReview, review_id)
    if review is None:
        raise NotFound("Review not found")
    if review.status != "open":
        return review

    if reservation_reference and review.order_id:
        reservation = db.execute(
            select(Reservation).where(Reservation.reference == reservation_reference)
        ).scalar_one_or_none()
        if reservation is None:
            raise NotFound("Reservation not found")
        if db.execute(select(OrderLink.id).where(OrderLink.order_id == review.order_id)).first() is None:
            db.add(OrderLink(order_id=review.order_id, reservation_id=reservation.id, link_method="manual", confidence=1.0))

    review.status = "dismissed" if dismiss else "resolved"
    review.resolution = resolution[:255]
    review.resolved_by = resolved_by
    review.resolved_at = now
    db.commit()
    return review
