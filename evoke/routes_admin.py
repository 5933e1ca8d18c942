from flask import Blueprint, jsonify, request, current_app, send_file
import hashlib
import hmac
import io
import math
from .models import db, Ticket
from .errors import EncodingError, MalformedPayload
from .services.auth import require_admin_key, sign_scanner_jwt
from .services.qr import RenderOptions, render_ticket, render_bulk
from .services.redeem import get_scheme
from .services.tickets import MAX_ID_LENGTH, create_ticket

bp = Blueprint('admin', __name__)

MAX_TICKETS_PER_CHARGE = 20


def _field_error(data: dict) -> str | None:
    """Reject fields that would produce a ticket the scanner cannot read back."""
    price = data.get('price', 0)
    if price is not None and (isinstance(price, bool) or not isinstance(price, (int, float))
                              or not math.isfinite(price)):
        return 'invalid_price'
    if any(len(str(data[key])) > MAX_ID_LENGTH for key in ('eventId', 'userId')):
        return 'id_too_long'
    return None


def _coerce_price(value):
    # Paystack metadata is free-form client JSON: "5000" is as common as 5000
    if isinstance(value, str):
        text = value.strip()
        try:
            value = int(text)
        except ValueError:
            value = float(text)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f'price must be a number, got {value!r}')
    return value


def _issue(data: dict, payment_reference: str | None = None):
    record = create_ticket(
        str(data['eventId']),
        str(data['userId']),
        str(data.get('ticketType') or 'General'),
        str(data.get('eventName') or ''),
        str(data.get('attendeeName') or ''),
        data.get('price') or 0,
        str(data.get('currency') or 'NGN'),
        scheme=get_scheme(),
    )
    db.session.add(Ticket(
        id=record.ticket_id,
        event_id=record.event_id,
        user_id=record.user_id,
        payload=record.serialize(),
        payment_reference=payment_reference,
    ))
    return record


def _render_options(fmt: str | None = None) -> RenderOptions:
    args = request.args
    return RenderOptions.from_config(
        current_app.config,
        width=args.get('width', type=int),
        height=args.get('height', type=int) or args.get('width', type=int),
        margin=args.get('margin', type=int),
        error_correction=args.get('level'),
        image_format=fmt,
    )


def _image_format() -> str | None:
    accept = request.headers.get('Accept', '')
    fmt = request.args.get('format')
    if 'image/svg+xml' in accept or fmt == 'svg':
        return 'svg'
    if 'image/png' in accept or fmt == 'png':
        return 'png'
    return None


@bp.get('/ping')
def ping():
    return jsonify({'admin': 'ok'})

@bp.post('/tickets')
@require_admin_key
def issue_ticket():
    data = request.get_json(silent=True) or {}
    if not data.get('eventId') or not data.get('userId'):
        return jsonify({'error': 'missing_fields', 'required': ['eventId', 'userId']}), 400
    error = _field_error(data)
    if error:
        return jsonify({'error': error}), 400
    fmt = _image_format()
    try:
        opts = _render_options(fmt or 'png')
        opts.validate()
    except ValueError as e:
        return jsonify({'error': 'invalid_options', 'detail': str(e)}), 400

    record = _issue(data)
    try:
        image = render_ticket(record, opts)
    except EncodingError as e:
        db.session.rollback()
        return jsonify({'error': 'encoding_failed', 'detail': str(e)}), 422
    db.session.commit()
    current_app.logger.info('issued ticket %s for event %s', record.ticket_id, record.event_id)

    if fmt:
        return send_file(
            io.BytesIO(image.content), mimetype=image.mime_type, as_attachment=False,
            download_name=f"ticket_{record.ticket_id}.{fmt}", etag=False,
        )
    return jsonify({
        'ok': True,
        'ticket': record.to_payload(),
        'qr_data_url': image.to_data_url(),
    }), 201

@bp.get('/tickets/<ticket_id>/qr')
@require_admin_key
def ticket_qr(ticket_id: str):
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        return jsonify({'error': 'not_found'}), 404
    fmt = request.args.get('format', 'png')
    try:
        image = render_ticket(ticket.to_record(), _render_options(fmt))
    except MalformedPayload as e:
        current_app.logger.error('stored ticket %s is unreadable: %s', ticket_id, e)
        return jsonify({'error': 'stored_payload_invalid', 'detail': str(e)}), 409
    except ValueError as e:
        return jsonify({'error': 'invalid_options', 'detail': str(e)}), 400
    except EncodingError as e:
        return jsonify({'error': 'encoding_failed', 'detail': str(e)}), 422
    return send_file(io.BytesIO(image.content), mimetype=image.mime_type,
                     download_name=f"ticket_{ticket_id}.{fmt}", etag=False)

@bp.post('/tickets/qr-bulk')
@require_admin_key
def bulk_qr():
    data = request.get_json(silent=True) or {}
    ids = data.get('ticketIds') or []
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'missing_ticket_ids'}), 400

    records, missing, unreadable = [], [], []
    for tid in ids:
        ticket = db.session.get(Ticket, str(tid))
        if ticket is None:
            missing.append(tid)
            continue
        try:
            records.append(ticket.to_record())
        except MalformedPayload as e:
            current_app.logger.error('stored ticket %s is unreadable: %s', tid, e)
            unreadable.append(tid)
    try:
        items = render_bulk(records, _render_options('png'))
    except ValueError as e:
        return jsonify({'error': 'invalid_options', 'detail': str(e)}), 400

    results = [
        {'ticketId': it.ticket_id, 'ok': True, 'qr_data_url': it.image.to_data_url()} if it.ok
        else {'ticketId': it.ticket_id, 'ok': False, 'error': it.error}
        for it in items
    ]
    results += [{'ticketId': tid, 'ok': False, 'error': 'not_found'} for tid in missing]
    results += [{'ticketId': tid, 'ok': False, 'error': 'stored_payload_invalid'} for tid in unreadable]
    failed = sum(1 for r in results if not r['ok'])
    if failed:
        current_app.logger.warning('bulk qr: %d of %d tickets failed', failed, len(results))
    return jsonify({'ok': failed == 0, 'results': results})

@bp.post('/scanner-token')
@require_admin_key
def scanner_token():
    data = request.get_json(silent=True) or {}
    sub = data.get('sub')
    if not sub:
        return jsonify({'error': 'missing_sub'}), 400
    try:
        token = sign_scanner_jwt(str(sub), data.get('role', 'staff'), data.get('eventId'))
    except ValueError as e:
        return jsonify({'error': 'invalid_role', 'detail': str(e)}), 400
    return jsonify({'token': token})

@bp.post('/payment-webhook')
def payment_webhook():
    # Paystack signs the raw body with HMAC-SHA512 of the secret key
    secret = current_app.config.get('PAYSTACK_SECRET_KEY') or ''
    sig = request.headers.get('X-Paystack-Signature', '')
    raw = request.get_data()
    expected = hmac.new(secret.encode(), raw, hashlib.sha512).hexdigest()
    if not secret or not hmac.compare_digest(sig, expected):
        return jsonify({'error': 'unauthorized'}), 401

    body = request.get_json(silent=True) or {}
    if body.get('event') != 'charge.success':
        return jsonify({'ok': True, 'skipped': True})

    data = body.get('data') or {}
    reference = data.get('reference')
    meta = data.get('metadata') or {}
    if not reference or not meta.get('eventId') or not meta.get('userId'):
        return jsonify({'error': 'missing_metadata'}), 400

    existing = Ticket.query.filter_by(payment_reference=reference).all()
    if existing:
        return jsonify({'ok': True, 'duplicate': True, 'ticketIds': [t.id for t in existing]})

    try:
        quantity = max(1, min(int(meta.get('quantity') or 1), MAX_TICKETS_PER_CHARGE))
    except (TypeError, ValueError):
        return jsonify({'error': 'invalid_quantity'}), 400
    price = meta.get('price')
    try:
        if price is None or price == '':
            price = _coerce_price(data.get('amount') or 0) / 100 / quantity  # kobo -> naira
        price = _coerce_price(price)
    except (TypeError, ValueError):
        current_app.logger.warning('payment %s: unusable price %r', reference, meta.get('price'))
        return jsonify({'error': 'invalid_price'}), 400
    fields = {**meta, 'price': price, 'currency': data.get('currency') or meta.get('currency')}
    error = _field_error(fields)
    if error:
        return jsonify({'error': error}), 400
    records = [_issue(fields, payment_reference=reference) for _ in range(quantity)]
    db.session.commit()
    current_app.logger.info('payment %s issued %d tickets', reference, len(records))
    return jsonify({'ok': True, 'ticketIds': [r.ticket_id for r in records]})
