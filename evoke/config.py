import os
from dotenv import load_dotenv

load_dotenv()


def _read_secret(*paths):
    for p in paths:
        try:
            with open(p, 'r') as f:
                return f.read().strip()
        except OSError:
            continue
    return None


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///local.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    CONSUMED_STORE = os.environ.get('CONSUMED_STORE', 'sql')  # sql|redis|memory
    CONSUMED_TTL = os.environ.get('CONSUMED_TTL')
    JWT_SECRET = os.environ.get('JWT_SECRET')
    JWT_ALG = 'HS256'
    JWT_EXPIRES_MIN = int(os.environ.get('JWT_EXPIRES_MIN', '720'))
    ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY')
    PAYSTACK_SECRET_KEY = os.environ.get('PAYSTACK_SECRET_KEY')
    TICKET_TAG_SCHEME = os.environ.get('TICKET_TAG_SCHEME', 'digest')  # digest|legacy|hmac
    TICKET_TAG_SECRET = os.environ.get('TICKET_TAG_SECRET')
    QR_WIDTH = int(os.environ.get('QR_WIDTH', '256'))
    QR_MARGIN = int(os.environ.get('QR_MARGIN', '2'))
    QR_ERROR_CORRECTION = os.environ.get('QR_ERROR_CORRECTION', 'M')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    def __init__(self):
        # Optional fallbacks to support Secret Files on Render (/etc/secrets)
        if (not self.SECRET_KEY) or self.SECRET_KEY == 'dev':
            self.SECRET_KEY = _read_secret('/etc/secrets/secret_key') or self.SECRET_KEY
        if not self.JWT_SECRET:
            self.JWT_SECRET = _read_secret('/etc/secrets/jwt_secret', 'jwt.secret') or self.SECRET_KEY
        if not self.ADMIN_API_KEY:
            self.ADMIN_API_KEY = _read_secret('/etc/secrets/admin_api_key')
        if not self.PAYSTACK_SECRET_KEY:
            self.PAYSTACK_SECRET_KEY = _read_secret('/etc/secrets/paystack_secret_key')
        if not self.TICKET_TAG_SECRET:
            self.TICKET_TAG_SECRET = _read_secret('/etc/secrets/ticket_tag_secret')
