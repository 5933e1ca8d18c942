import hashlib
from flask import request

def fingerprint_scanner() -> str:
    """Stable id for the scanning device, from headers plus an optional gate id."""
    ua = request.headers.get('User-Agent','')
    plat = request.headers.get('Sec-CH-UA-Platform','')
    lang = request.headers.get('Accept-Language','')
    gate = request.headers.get('X-Scanner-Gate','')
    raw = f"{ua}|{plat}|{lang}|{gate}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]
