"""
HTTP surface through Flask's test client.
"""

import hashlib
import hmac
import io
import json

import cv2
import jwt
import numpy as np
import pytest
import qrcode

from evoke.models import db, Ticket, ScanLog
from evoke.services.integrity import DEFAULT_SCHEME
from evoke.services.tickets import create_ticket

PAYSTACK_SECRET = "sk_test_paystack_secret"

NEW_TICKET = {
    "eventId": "EVT-1",
    "userId": "USR-1",
    "ticketType": "VIP",
    "eventName": "Launch Night",
    "attendeeName": "Jane Doe",
    "price": 10000,
    "currency": "NGN",
}


def _issue(client, admin_headers, **overrides):
    r = client.post("/admin/tickets", headers=admin_headers, json={**NEW_TICKET, **overrides})
    assert r.status_code == 201, r.get_json()
    return r.get_json()["ticket"]


def _payload(ticket: dict) -> str:
    return json.dumps(ticket, separators=(",", ":"))


class TestAdmin:

    def test_health_and_ping(self, client):
        assert client.get("/health").get_json() == {"ok": True}
        assert client.get("/admin/ping").get_json() == {"admin": "ok"}

    def test_issue_requires_key(self, client):
        r = client.post("/admin/tickets", json=NEW_TICKET)
        assert r.status_code == 401
        r = client.post("/admin/tickets", headers={"X-Admin-Key": "nope"}, json=NEW_TICKET)
        assert r.status_code == 401

    def test_issue_json(self, app, client, admin_headers):
        r = client.post("/admin/tickets", headers=admin_headers, json=NEW_TICKET)
        assert r.status_code == 201
        body = r.get_json()
        assert body["ok"] is True
        assert body["qr_data_url"].startswith("data:image/png;base64,")
        assert body["ticket"]["attendeeName"] == "Jane Doe"
        with app.app_context():
            stored = db.session.get(Ticket, body["ticket"]["ticketId"])
            assert stored is not None
            assert stored.to_record().hash == body["ticket"]["hash"]

    def test_issue_png(self, client, admin_headers):
        r = client.post("/admin/tickets", headers={**admin_headers, "Accept": "image/png"}, json=NEW_TICKET)
        assert r.status_code == 200
        assert r.mimetype == "image/png"
        assert r.data.startswith(b"\x89PNG")

    def test_issue_svg(self, client, admin_headers):
        r = client.post("/admin/tickets?format=svg", headers=admin_headers, json=NEW_TICKET)
        assert r.status_code == 200
        assert r.mimetype == "image/svg+xml"
        assert b"<svg" in r.data

    @pytest.mark.parametrize("body,error", [
        ({"userId": "USR-1"}, "missing_fields"),
        ({**NEW_TICKET, "price": "free"}, "invalid_price"),
        ({**NEW_TICKET, "eventId": "E" * 65}, "id_too_long"),
        ({**NEW_TICKET, "userId": "U" * 65}, "id_too_long"),
    ])
    def test_issue_rejects_bad_body(self, client, admin_headers, body, error):
        r = client.post("/admin/tickets", headers=admin_headers, json=body)
        assert r.status_code == 400
        assert r.get_json()["error"] == error

    def test_issue_rejects_bad_level(self, app, client, admin_headers):
        r = client.post("/admin/tickets?level=Z", headers=admin_headers, json=NEW_TICKET)
        assert r.status_code == 400
        assert r.get_json()["error"] == "invalid_options"
        with app.app_context():
            assert Ticket.query.count() == 0

    def test_issue_oversized_is_not_stored(self, app, client, admin_headers):
        r = client.post("/admin/tickets?level=H", headers=admin_headers,
                        json={**NEW_TICKET, "attendeeName": "x" * 3000})
        assert r.status_code == 422
        assert r.get_json()["error"] == "encoding_failed"
        with app.app_context():
            assert Ticket.query.count() == 0

    def test_ticket_qr(self, client, admin_headers):
        ticket = _issue(client, admin_headers)
        r = client.get(f"/admin/tickets/{ticket['ticketId']}/qr?width=300", headers=admin_headers)
        assert r.status_code == 200
        assert r.mimetype == "image/png"
        r = client.get("/admin/tickets/TKT-0-NOPE00/qr", headers=admin_headers)
        assert r.status_code == 404

    def test_unreadable_stored_payload(self, app, client, admin_headers):
        """Rows written before price checks existed answer 409, not a server error."""
        ticket = _issue(client, admin_headers)
        with app.app_context():
            row = db.session.get(Ticket, ticket["ticketId"])
            row.payload = _payload({**ticket, "price": "5000"})
            db.session.commit()
        r = client.get(f"/admin/tickets/{ticket['ticketId']}/qr", headers=admin_headers)
        assert r.status_code == 409
        assert r.get_json()["error"] == "stored_payload_invalid"
        body = client.post("/admin/tickets/qr-bulk", headers=admin_headers,
                           json={"ticketIds": [ticket["ticketId"]]}).get_json()
        assert body["results"] == [
            {"ticketId": ticket["ticketId"], "ok": False, "error": "stored_payload_invalid"},
        ]

    def test_bulk_qr(self, client, admin_headers):
        a = _issue(client, admin_headers)
        b = _issue(client, admin_headers, attendeeName="John Doe")
        r = client.post("/admin/tickets/qr-bulk", headers=admin_headers,
                        json={"ticketIds": [a["ticketId"], "TKT-0-NOPE00", b["ticketId"]]})
        body = r.get_json()
        assert r.status_code == 200
        assert body["ok"] is False
        by_id = {item["ticketId"]: item for item in body["results"]}
        assert by_id[a["ticketId"]]["ok"] and by_id[b["ticketId"]]["ok"]
        assert by_id["TKT-0-NOPE00"] == {"ticketId": "TKT-0-NOPE00", "ok": False, "error": "not_found"}

    def test_scanner_token(self, app, client, admin_headers):
        r = client.post("/admin/scanner-token", headers=admin_headers, json={"sub": "gate-7", "eventId": "EVT-1"})
        token = r.get_json()["token"]
        claims = jwt.decode(token, app.config["JWT_SECRET"], algorithms=["HS256"])
        assert claims["sub"] == "gate-7"
        assert claims["role"] == "staff"
        assert claims["event_id"] == "EVT-1"
        r = client.post("/admin/scanner-token", headers=admin_headers, json={"sub": "x", "role": "attendee"})
        assert r.status_code == 400


class TestPaymentWebhook:

    @staticmethod
    def _post(client, body, secret=PAYSTACK_SECRET):
        raw = json.dumps(body).encode()
        sig = hmac.new(secret.encode(), raw, hashlib.sha512).hexdigest()
        return client.post("/admin/payment-webhook", data=raw, content_type="application/json",
                           headers={"X-Paystack-Signature": sig})

    def _charge(self, reference="ref-123", quantity=2):
        return {
            "event": "charge.success",
            "data": {
                "reference": reference,
                "amount": 2000000,
                "currency": "NGN",
                "metadata": {**NEW_TICKET, "price": None, "quantity": quantity},
            },
        }

    def test_bad_signature(self, client):
        r = self._post(client, self._charge(), secret="wrong")
        assert r.status_code == 401

    def test_other_events_are_skipped(self, client):
        r = self._post(client, {"event": "transfer.success", "data": {}})
        assert r.get_json() == {"ok": True, "skipped": True}

    def test_charge_issues_tickets_once(self, app, client):
        r = self._post(client, self._charge())
        body = r.get_json()
        assert r.status_code == 200
        assert len(body["ticketIds"]) == 2
        with app.app_context():
            record = db.session.get(Ticket, body["ticketIds"][0]).to_record()
            assert record.price == 10000
            assert record.currency == "NGN"

        again = self._post(client, self._charge()).get_json()
        assert again["duplicate"] is True
        assert sorted(again["ticketIds"]) == sorted(body["ticketIds"])

    def test_missing_metadata(self, client):
        charge = self._charge()
        charge["data"]["metadata"] = {}
        assert self._post(client, charge).status_code == 400

    @pytest.mark.parametrize("price,expected", [("5000", 5000), (" 2500.50 ", 2500.5), (7500, 7500)])
    def test_metadata_price_is_numeric(self, app, client, price, expected):
        """Metadata is client JSON; numeric strings become JSON numbers on the ticket."""
        charge = self._charge(quantity=1)
        charge["data"]["metadata"]["price"] = price
        body = self._post(client, charge).get_json()
        with app.app_context():
            stored = db.session.get(Ticket, body["ticketIds"][0])
            assert json.loads(stored.payload)["price"] == expected
            assert stored.to_record().price == expected

    def test_string_price_ticket_scans_and_renders(self, client, admin_headers, scanner_headers):
        charge = self._charge(quantity=1)
        charge["data"]["metadata"]["price"] = "5000"
        ticket_id = self._post(client, charge).get_json()["ticketIds"][0]

        r = client.get(f"/admin/tickets/{ticket_id}/qr", headers=admin_headers)
        assert r.status_code == 200
        bulk = client.post("/admin/tickets/qr-bulk", headers=admin_headers,
                           json={"ticketIds": [ticket_id]}).get_json()
        assert bulk["ok"] is True

        raw = client.get(f"/admin/tickets/{ticket_id}/qr?width=600&margin=4", headers=admin_headers).data
        img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
        text, _, _ = cv2.QRCodeDetector().detectAndDecode(img)
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": text})
        assert r.get_json()["category"] == "Accepted"

    @pytest.mark.parametrize("price", ["free", "NaN", True, {"amount": 1}, [5000]])
    def test_unusable_price_is_rejected(self, app, client, price):
        charge = self._charge()
        charge["data"]["metadata"]["price"] = price
        r = self._post(client, charge)
        assert r.status_code == 400
        assert r.get_json()["error"] == "invalid_price"
        with app.app_context():
            assert Ticket.query.count() == 0

    def test_overlong_ids_are_rejected(self, app, client):
        charge = self._charge()
        charge["data"]["metadata"]["userId"] = "U" * 65
        r = self._post(client, charge)
        assert r.status_code == 400
        assert r.get_json()["error"] == "id_too_long"
        with app.app_context():
            assert Ticket.query.count() == 0


class TestScanApi:

    def test_requires_token(self, client):
        assert client.post("/api/scan", json={"payload": "x"}).status_code == 401
        r = client.post("/api/scan", json={"payload": "x"}, headers={"Authorization": "Bearer junk"})
        assert r.status_code == 401
        assert r.get_json()["error"] == "invalid"

    def test_scan_accept_then_already_used(self, app, client, admin_headers, scanner_headers):
        ticket = _issue(client, admin_headers)
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(ticket)})
        body = r.get_json()
        assert body["ok"] is True
        assert body["category"] == "Accepted"

        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(ticket)})
        body = r.get_json()
        assert body["ok"] is False
        assert body["category"] == "AlreadyUsed"
        assert body["message"] == "Ticket already redeemed."
        assert "firstRedeemedAt" in body

        with app.app_context():
            cats = [s.category for s in ScanLog.query.order_by(ScanLog.id).all()]
        assert sorted(cats) == ["Accepted", "AlreadyUsed"]

    def test_scan_rejections(self, client, admin_headers, scanner_headers):
        ticket = _issue(client, admin_headers)
        tampered = {**ticket, "eventId": "EVT-2"}
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(tampered)})
        assert r.get_json()["category"] == "TagMismatch"

        r = client.post("/api/scan", headers=scanner_headers, json={"payload": "{oops"})
        assert r.get_json()["category"] == "MalformedPayload"

        r = client.post("/api/scan", headers=scanner_headers,
                        json={"payload": _payload(ticket), "eventDate": "2000-01-01T00:00:00Z"})
        assert r.get_json()["category"] == "Expired"

        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(ticket), "eventDate": "later"})
        assert r.status_code == 400

        # none of the rejections consumed the ticket
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(ticket)})
        assert r.get_json()["category"] == "Accepted"

    def test_scanner_scoped_to_event(self, app, client, admin_headers):
        ticket = _issue(client, admin_headers, eventId="EVT-OTHER")
        token = client.post("/admin/scanner-token", headers=admin_headers,
                            json={"sub": "gate-2", "eventId": "EVT-1"}).get_json()["token"]
        r = client.post("/api/scan", headers={"Authorization": f"Bearer {token}"},
                        json={"payload": _payload(ticket)})
        assert r.get_json()["category"] == "TagMismatch"

    def test_missing_payload(self, client, scanner_headers):
        r = client.post("/api/scan", headers=scanner_headers, json={})
        assert r.status_code == 400

    @pytest.mark.parametrize("event_date", [123, ["2030-01-01"], {"at": "2030-01-01"}, ""])
    def test_bad_event_date_types(self, app, client, admin_headers, scanner_headers, event_date):
        ticket = _issue(client, admin_headers)
        r = client.post("/api/scan", headers=scanner_headers,
                        json={"payload": _payload(ticket), "eventDate": event_date})
        assert r.status_code == 400
        assert r.get_json()["error"] == "invalid_event_date"
        with app.app_context():
            assert ScanLog.query.count() == 0

    @pytest.mark.parametrize("payload", ["[" * 2800, '{"a":' * 2000])
    def test_deeply_nested_payload(self, client, scanner_headers, payload):
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": payload})
        assert r.status_code == 200
        assert r.get_json()["category"] == "MalformedPayload"

    def test_overlong_ticket_id_is_malformed(self, app, client, scanner_headers):
        """A self-tagged payload with an id wider than the column never reaches the store."""
        record = create_ticket("EVT-1", "USR-1", "VIP", "Launch Night", "Jane Doe", 10000, "NGN")
        long_id = "TKT-" + "9" * 200
        payload = {**record.to_payload(), "ticketId": long_id}
        payload["hash"] = DEFAULT_SCHEME.tag(long_id, record.event_id, record.user_id, record.purchase_date)
        r = client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(payload)})
        assert r.get_json()["category"] == "MalformedPayload"
        with app.app_context():
            assert ScanLog.query.one().ticket_id is None

    def test_recent_scans(self, client, admin_headers, scanner_headers):
        ticket = _issue(client, admin_headers)
        client.post("/api/scan", headers=scanner_headers, json={"payload": _payload(ticket)})
        client.post("/api/scan", headers=scanner_headers, json={"payload": "nope"})
        scans = client.get("/api/scans", headers=scanner_headers).get_json()["scans"]
        assert len(scans) == 2
        assert {s["category"] for s in scans} == {"Accepted", "MalformedPayload"}
        only = client.get("/api/scans?eventId=EVT-1", headers=scanner_headers).get_json()["scans"]
        assert [s["ticketId"] for s in only] == [ticket["ticketId"]]
        assert only[0]["scanner"] == "gate-1"

    def test_decode_image(self, client, scanner_headers):
        buf = io.BytesIO()
        qrcode.make('{"ticketId":"TKT-1"}').save(buf, format="PNG")
        png = buf.getvalue()
        r = client.post("/api/decode", headers=scanner_headers,
                        data={"image": (io.BytesIO(png), "qr.png")}, content_type="multipart/form-data")
        assert r.get_json() == {"ok": True, "raw": '{"ticketId":"TKT-1"}'}

    def test_decode_errors(self, client, scanner_headers):
        r = client.post("/api/decode", headers=scanner_headers, data={}, content_type="multipart/form-data")
        assert r.get_json()["error"] == "missing_file"
        r = client.post("/api/decode", headers=scanner_headers,
                        data={"image": (io.BytesIO(b"not an image"), "qr.png")}, content_type="multipart/form-data")
        assert r.get_json()["error"] == "bad_image"
