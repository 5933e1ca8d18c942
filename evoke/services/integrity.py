import base64, hashlib, hmac, re

# Integrity tags over the four identity fields of a ticket.
# None of the unkeyed schemes authenticate anything: anyone who knows the
# algorithm can compute a valid tag. They only detect naive edits.

TAG_LENGTH = 16
_NON_ALNUM = re.compile(r'[^a-zA-Z0-9]')


def _joined(ticket_id: str, event_id: str, user_id: str, purchase_date: str) -> bytes:
    return f"{ticket_id}-{event_id}-{user_id}-{purchase_date}".encode('utf-8')


def _shorten(raw: bytes) -> str:
    return _NON_ALNUM.sub('', base64.b64encode(raw).decode('ascii'))[:TAG_LENGTH]


class TagScheme:
    name = 'base'

    def tag(self, ticket_id: str, event_id: str, user_id: str, purchase_date: str) -> str:
        raise NotImplementedError

    def tag_for(self, record) -> str:
        return self.tag(record.ticket_id, record.event_id, record.user_id, record.purchase_date)

    def verify(self, record) -> bool:
        return hmac.compare_digest(self.tag_for(record).encode(), (record.hash or '').encode())


class DigestTagScheme(TagScheme):
    """SHA-256 of the joined fields, base64, alphanumerics only, 16 chars."""
    name = 'digest'

    def tag(self, ticket_id, event_id, user_id, purchase_date):
        return _shorten(hashlib.sha256(_joined(ticket_id, event_id, user_id, purchase_date)).digest())


class LegacyTagScheme(TagScheme):
    """Tags as issued by the first Evoke release: base64 of the joined text.

    Truncating plain base64 to 16 chars keeps only the first 12 bytes of input,
    so in practice the tag covers the ``TKT-`` prefix and the leading
    timestamp digits of the ticket id. Use only to accept old tickets.
    """
    name = 'legacy'

    def tag(self, ticket_id, event_id, user_id, purchase_date):
        return _shorten(_joined(ticket_id, event_id, user_id, purchase_date))


class HmacTagScheme(TagScheme):
    """Keyed HMAC-SHA256 with the same output shape. Opt-in."""
    name = 'hmac'

    def __init__(self, secret: str):
        if not secret:
            raise ValueError('hmac tag scheme needs a secret')
        self._secret = secret.encode()

    def tag(self, ticket_id, event_id, user_id, purchase_date):
        msg = _joined(ticket_id, event_id, user_id, purchase_date)
        return _shorten(hmac.new(self._secret, msg, hashlib.sha256).digest())


DEFAULT_SCHEME = DigestTagScheme()


def get_tag_scheme(name: str | None = None, secret: str | None = None) -> TagScheme:
    name = (name or 'digest').lower()
    if name == 'digest':
        return DEFAULT_SCHEME
    if name == 'legacy':
        return LegacyTagScheme()
    if name == 'hmac':
        return HmacTagScheme(secret or '')
    raise ValueError(f'unknown tag scheme: {name}')
