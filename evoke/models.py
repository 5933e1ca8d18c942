from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import func
import time, os

from .services.tickets import parse_payload


def _gen_bigint_id():
    """Generate a sortable 64-bit int: millis timestamp << 16 | 16 bits randomness."""
    return (int(time.time() * 1000) << 16) | int.from_bytes(os.urandom(2), 'big')

db = SQLAlchemy()

class Ticket(db.Model):
    id = db.Column(db.String(64), primary_key=True)  # TKT-<millis>-<suffix>
    event_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)  # canonical serialized record
    payment_reference = db.Column(db.String(128))
    issued_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    def to_record(self):
        return parse_payload(self.payload)

class Redemption(db.Model):
    id = db.Column(db.BigInteger, primary_key=True, default=_gen_bigint_id)
    ticket_id = db.Column(db.String(64), nullable=False, unique=True)
    redeemed_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

class ScanLog(db.Model):
    id = db.Column(db.BigInteger, primary_key=True, default=_gen_bigint_id)
    ts = db.Column(db.DateTime(timezone=True), server_default=func.now())
    ticket_id = db.Column(db.String(64), index=True)
    event_id = db.Column(db.String(64))
    category = db.Column(db.String(32), nullable=False)  # Accepted|AlreadyUsed|TagMismatch|...
    scanner = db.Column(db.String(64))
    device_id = db.Column(db.String(64))

    def to_json(self):
        return {
            'id': self.id,
            'ts': self.ts.isoformat() if self.ts else None,
            'ticketId': self.ticket_id,
            'eventId': self.event_id,
            'category': self.category,
            'scanner': self.scanner,
            'deviceId': self.device_id,
        }
