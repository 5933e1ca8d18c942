"""Ticket error taxonomy.

Every error carries a ``category`` naming the scan outcome it maps to, so
callers can pick operator messages without string matching.
"""


class TicketError(Exception):
    category = 'TicketError'


class MalformedPayload(TicketError):
    """Payload text cannot be parsed into the ticket field set."""
    category = 'MalformedPayload'


class MissingField(MalformedPayload):
    """Payload parsed but a required identity/integrity field is absent or empty."""
    category = 'MissingField'

    def __init__(self, field: str):
        super().__init__(f'Missing required field: {field}')
        self.field = field


class TagMismatch(TicketError):
    category = 'TagMismatch'


class Expired(TicketError):
    category = 'Expired'


class AlreadyUsed(TicketError):
    category = 'AlreadyUsed'


class EncodingError(TicketError):
    """Serialized ticket does not fit the requested QR level/size."""
    category = 'EncodingError'
