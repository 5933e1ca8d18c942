import enum
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..errors import MalformedPayload, TagMismatch
from .consumed_store import ConsumedStore, build_store
from .integrity import TagScheme, get_tag_scheme
from .tickets import TicketRecord, decode_and_verify, is_expired


class RedeemResult(enum.Enum):
    ACCEPTED = 'Accepted'
    ALREADY_USED = 'AlreadyUsed'


class RedemptionGuard:
    """At most one accepted redemption per ticket id for the store's lifetime."""

    def __init__(self, store: ConsumedStore):
        self.store = store

    def redeem(self, ticket_id: str) -> RedeemResult:
        if self.store.insert_if_absent(ticket_id):
            return RedeemResult.ACCEPTED
        return RedeemResult.ALREADY_USED

    def is_consumed(self, ticket_id: str) -> bool:
        return self.store.contains(ticket_id)


MESSAGES = {
    'MalformedPayload': 'Unable to read QR code. Please ensure the code is clear and try again.',
    'TagMismatch': 'Invalid ticket. This ticket is not valid for this event.',
    'Expired': 'Ticket expired for this event.',
    'AlreadyUsed': 'Ticket already redeemed.',
    'Accepted': 'Ticket validated successfully!',
}


@dataclass(frozen=True)
class ScanOutcome:
    category: str
    message: str
    ticket: TicketRecord | None = None
    detail: str | None = None

    @property
    def accepted(self) -> bool:
        return self.category == 'Accepted'

    def to_json(self) -> dict:
        out = {'ok': self.accepted, 'category': self.category, 'message': self.message}
        if self.ticket is not None:
            out['ticket'] = self.ticket.to_payload()
        if self.detail:
            out['detail'] = self.detail
        return out


def _outcome(category, ticket=None, detail=None):
    return ScanOutcome(category, MESSAGES[category], ticket, detail)


def scan_ticket(payload_text, guard: RedemptionGuard, *, event_instant: str | None = None,
                event_id: str | None = None,
                scheme: TagScheme | None = None, now: datetime | None = None) -> ScanOutcome:
    """Decode, verify, optionally check expiry, then redeem.

    When ``event_id`` is given, tickets for other events are rejected as
    invalid before they can be redeemed. Rejections come back as outcomes,
    never as exceptions. A bad ``event_instant`` is the caller's error and
    raises ``ValueError``.
    """
    try:
        record = decode_and_verify(payload_text, scheme=scheme)
    except MalformedPayload as e:
        return _outcome('MalformedPayload', detail=str(e))
    except TagMismatch as e:
        return _outcome('TagMismatch', detail=str(e))

    if event_id and record.event_id != event_id:
        return _outcome('TagMismatch', record, detail=f"ticket belongs to event {record.event_id}")

    if event_instant and is_expired(record, event_instant, now=now):
        return _outcome('Expired', record)

    if guard.redeem(record.ticket_id) is RedeemResult.ALREADY_USED:
        return _outcome('AlreadyUsed', record)
    return _outcome('Accepted', record)


def init_app(app):
    """Build the app's guard and tag scheme once, before any request thread runs."""
    app.extensions['evoke.guard'] = RedemptionGuard(build_store(app.config))
    app.extensions['evoke.tag_scheme'] = get_tag_scheme(app.config.get('TICKET_TAG_SCHEME'),
                                                        app.config.get('TICKET_TAG_SECRET'))


def get_guard() -> RedemptionGuard:
    return current_app.extensions['evoke.guard']


def get_scheme() -> TagScheme:
    return current_app.extensions['evoke.tag_scheme']
