#!/usr/bin/env python3
import sys, json, argparse, pathlib

# Usage: python scripts/check_ticket.py '<PAYLOAD JSON>' [--scheme digest|legacy|hmac] [--secret S] [--event-date ISO]
# Pass '-' to read the payload from stdin. Verifies the tag offline; does not redeem.

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from evoke.services.integrity import get_tag_scheme
from evoke.services.tickets import validate_ticket_data, is_expired


def parse_args(argv=None):
    p = argparse.ArgumentParser(description='Verify an Evoke ticket QR payload')
    p.add_argument('payload', help="payload text, or '-' for stdin")
    p.add_argument('--scheme', default='digest', help='tag scheme: digest, legacy or hmac')
    p.add_argument('--secret', default=None, help='secret for the hmac scheme')
    p.add_argument('--event-date', default=None, help='ISO-8601 event instant for the expiry check')
    return p.parse_args(argv)


def main(argv=None, stdin=None, out=None) -> int:
    args = parse_args(argv)
    out = out or sys.stdout
    raw = (stdin or sys.stdin).read() if args.payload == '-' else args.payload
    try:
        scheme = get_tag_scheme(args.scheme, args.secret)
    except ValueError as e:
        print(f"ERROR: {e}", file=out)
        return 2

    result = validate_ticket_data(raw.strip(), scheme=scheme)
    report = result.to_json()
    if result.is_valid and args.event_date:
        try:
            report['expired'] = is_expired(result.ticket, args.event_date)
        except ValueError as e:
            print(f"ERROR: event date: {e}", file=out)
            return 2
    print(json.dumps(report, indent=2, sort_keys=True), file=out)
    return 0 if result.is_valid else 1


if __name__ == '__main__':
    sys.exit(main())
