import json, secrets, string, time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone

from ..errors import MalformedPayload, MissingField, TagMismatch, TicketError
from .integrity import DEFAULT_SCHEME, TagScheme

_BASE36 = string.digits + string.ascii_uppercase

# wire key -> attribute, in canonical order
WIRE_FIELDS = (
    ('ticketId', 'ticket_id'),
    ('eventId', 'event_id'),
    ('userId', 'user_id'),
    ('ticketType', 'ticket_type'),
    ('purchaseDate', 'purchase_date'),
    ('eventName', 'event_name'),
    ('attendeeName', 'attendee_name'),
    ('price', 'price'),
    ('currency', 'currency'),
    ('hash', 'hash'),
)
REQUIRED_FIELDS = ('ticketId', 'eventId', 'userId', 'hash')
# ids are stored in String(64) columns
ID_FIELDS = ('ticketId', 'eventId', 'userId')
MAX_ID_LENGTH = 64


@dataclass(frozen=True)
class TicketRecord:
    ticket_id: str
    event_id: str
    user_id: str
    ticket_type: str = ''
    purchase_date: str = ''
    event_name: str = ''
    attendee_name: str = ''
    price: int | float = 0
    currency: str = ''
    hash: str = ''

    def to_payload(self) -> dict:
        return {wire: getattr(self, attr) for wire, attr in WIRE_FIELDS}

    def serialize(self) -> str:
        return json.dumps(self.to_payload(), separators=(',', ':'), ensure_ascii=False)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    ticket: TicketRecord | None = None
    error: str | None = None
    category: str | None = None

    def to_json(self) -> dict:
        out = {'isValid': self.is_valid}
        if self.ticket is not None:
            out['ticketData'] = self.ticket.to_payload()
        if self.error:
            out['error'] = self.error
            out['category'] = self.category
        return out


def generate_ticket_id(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(6))
    return f"TKT-{now_ms}-{suffix}".upper()


def _iso_utc(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def create_ticket(event_id: str, user_id: str, ticket_type: str, event_name: str,
                  attendee_name: str, price, currency: str, *,
                  scheme: TagScheme | None = None, now: datetime | None = None) -> TicketRecord:
    scheme = scheme or DEFAULT_SCHEME
    now = now or datetime.now(timezone.utc)
    ticket_id = generate_ticket_id(int(now.timestamp() * 1000))
    purchase_date = _iso_utc(now)
    tag = scheme.tag(ticket_id, event_id, user_id, purchase_date)
    return TicketRecord(
        ticket_id=ticket_id,
        event_id=event_id,
        user_id=user_id,
        ticket_type=ticket_type,
        purchase_date=purchase_date,
        event_name=event_name,
        attendee_name=attendee_name,
        price=price,
        currency=currency,
        hash=tag,
    )


def _is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def parse_payload(payload_text) -> TicketRecord:
    """Parse canonical payload text into a record without checking the tag.

    Fails closed: anything that is not a JSON object with known keys and
    correctly typed values is rejected.
    """
    if isinstance(payload_text, (bytes, bytearray)):
        try:
            payload_text = payload_text.decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedPayload('Invalid QR code data format')
    if not isinstance(payload_text, str):
        raise MalformedPayload('Invalid QR code data format')
    try:
        data = json.loads(payload_text)
    except (ValueError, RecursionError):
        # a QR symbol holds enough brackets to exhaust the decoder's stack
        raise MalformedPayload('Invalid QR code data format')
    if not isinstance(data, dict):
        raise MalformedPayload('Invalid QR code data format')

    known = dict(WIRE_FIELDS)
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise MalformedPayload(f"Unexpected field: {unknown[0]}")

    values = {}
    for wire, attr in WIRE_FIELDS:
        if wire not in data or data[wire] is None:
            continue
        v = data[wire]
        if wire == 'price':
            if not _is_number(v):
                raise MalformedPayload('Field price must be a number')
        elif not isinstance(v, str):
            raise MalformedPayload(f"Field {wire} must be a string")
        elif wire in ID_FIELDS and len(v) > MAX_ID_LENGTH:
            raise MalformedPayload(f"Field {wire} is longer than {MAX_ID_LENGTH} characters")
        values[attr] = v

    for wire in REQUIRED_FIELDS:
        if not values.get(known[wire]):
            raise MissingField(wire)
    return TicketRecord(**values)


def decode_and_verify(payload_text, *, scheme: TagScheme | None = None) -> TicketRecord:
    record = parse_payload(payload_text)
    scheme = scheme or DEFAULT_SCHEME
    if not scheme.verify(record):
        raise TagMismatch('Invalid ticket hash')
    return record


def validate_ticket_data(payload_text, *, scheme: TagScheme | None = None) -> VerificationResult:
    try:
        record = decode_and_verify(payload_text, scheme=scheme)
    except TicketError as e:
        return VerificationResult(False, error=str(e), category=e.category)
    return VerificationResult(True, ticket=record)


def parse_instant(value: str) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValueError('empty instant')
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_expired(record: TicketRecord, event_instant: str, *, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return now > parse_instant(event_instant)
