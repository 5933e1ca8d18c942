from flask import Blueprint, request, jsonify, current_app, g
import cv2
import numpy as np
from .models import db, ScanLog
from .services.auth import require_scanner
from .services.device import fingerprint_scanner
from .services.redeem import get_guard, get_scheme, scan_ticket
from .services.tickets import parse_instant

bp = Blueprint('api', __name__)

RECENT_SCANS_LIMIT = 50


@bp.post('/scan')
@require_scanner
def scan():
    data = request.get_json(silent=True) or {}
    payload = data.get('payload')
    if not isinstance(payload, str) or not payload:
        return jsonify({'error': 'missing_payload'}), 400
    event_date = data.get('eventDate')
    if event_date is not None:
        try:
            parse_instant(event_date)
        except ValueError:
            return jsonify({'error': 'invalid_event_date'}), 400
    outcome = scan_ticket(payload, get_guard(), event_instant=event_date,
                          event_id=g.scanner.get('event_id'), scheme=get_scheme())

    ticket = outcome.ticket
    body = outcome.to_json()
    if outcome.category == 'AlreadyUsed':
        first = (ScanLog.query.filter_by(ticket_id=ticket.ticket_id, category='Accepted')
                 .order_by(ScanLog.ts.asc()).first())
        if first is not None and first.ts is not None:
            body['firstRedeemedAt'] = first.ts.isoformat()

    db.session.add(ScanLog(
        ticket_id=ticket.ticket_id if ticket else None,
        event_id=ticket.event_id if ticket else None,
        category=outcome.category,
        scanner=str(g.scanner.get('sub') or ''),
        device_id=fingerprint_scanner(),
    ))
    db.session.commit()
    current_app.logger.info('scan %s: %s', ticket.ticket_id if ticket else '-', outcome.category)
    return jsonify(body)

@bp.get('/scans')
@require_scanner
def recent_scans():
    limit = min(request.args.get('limit', RECENT_SCANS_LIMIT, type=int), RECENT_SCANS_LIMIT)
    q = ScanLog.query
    event_id = request.args.get('eventId')
    if event_id:
        q = q.filter_by(event_id=event_id)
    rows = q.order_by(ScanLog.ts.desc(), ScanLog.id.desc()).limit(limit).all()
    return jsonify({'scans': [r.to_json() for r in rows]})

@bp.post('/decode')
@require_scanner
def decode_qr():
    # Accept multipart/form-data with file field 'image'
    if 'image' not in request.files:
        return jsonify({'error': 'missing_file'}), 400
    file = request.files['image']
    data = file.read()
    if not data:
        return jsonify({'error': 'empty_file'}), 400
    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        return jsonify({'error': 'bad_image'}), 400
    detector = cv2.QRCodeDetector()
    val, points, _ = detector.detectAndDecode(img)
    if not val:
        return jsonify({'ok': False})
    return jsonify({'ok': True, 'raw': val})
