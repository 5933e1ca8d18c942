import base64
import io
from dataclasses import dataclass

import qrcode
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgPathImage
from PIL import Image

from ..errors import EncodingError

ERROR_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H,
}
FORMATS = {'png': 'image/png', 'svg': 'image/svg+xml'}


@dataclass(frozen=True)
class RenderOptions:
    width: int = 256
    height: int = 256
    margin: int = 2
    dark: str = '#000000'
    light: str = '#FFFFFF'
    error_correction: str = 'M'
    image_format: str = 'png'
    max_version: int = 40

    def validate(self):
        if self.error_correction not in ERROR_LEVELS:
            raise ValueError(f'unknown error correction level: {self.error_correction}')
        if self.image_format not in FORMATS:
            raise ValueError(f'unsupported image format: {self.image_format}')
        if self.width <= 0 or self.height <= 0 or self.margin < 0:
            raise ValueError('width/height must be positive and margin non-negative')
        if not 1 <= self.max_version <= 40:
            raise ValueError('max_version must be within 1..40')

    @classmethod
    def from_config(cls, config, **overrides):
        base = {
            'width': int(config.get('QR_WIDTH', 256)),
            'height': int(config.get('QR_WIDTH', 256)),
            'margin': int(config.get('QR_MARGIN', 2)),
            'error_correction': config.get('QR_ERROR_CORRECTION', 'M'),
        }
        base.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**base)


@dataclass(frozen=True)
class EncodedImage:
    ticket_id: str
    mime_type: str
    content: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.content).decode('ascii')

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass(frozen=True)
class BulkItem:
    ticket_id: str
    image: EncodedImage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


def _build(text: str, opts: RenderOptions) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_LEVELS[opts.error_correction],
        box_size=1,
        border=opts.margin,
    )
    qr.add_data(text.encode('utf-8'))
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        # qrcode 8 rejects the fitted "version 41" with a ValueError
        raise EncodingError(f'payload too large for level {opts.error_correction}') from e
    if qr.version > opts.max_version:
        raise EncodingError(f'payload needs version {qr.version}, above max_version {opts.max_version}')
    side = qr.modules_count + 2 * opts.margin
    # vector output scales freely; only rasters need a pixel per module
    if opts.image_format == 'png' and side > min(opts.width, opts.height):
        raise EncodingError(f'{side} modules do not fit in {opts.width}x{opts.height} px')
    return qr


def _png(qr: qrcode.QRCode, opts: RenderOptions) -> bytes:
    side = qr.modules_count + 2 * opts.margin
    size = min(opts.width, opts.height)
    qr.box_size = max(1, size // side)
    symbol = qr.make_image(fill_color=opts.dark, back_color=opts.light).get_image()
    symbol = symbol.convert('RGB').resize((size, size), Image.NEAREST)
    # keep modules square: pad a non-square canvas instead of stretching
    img = Image.new('RGB', (opts.width, opts.height), opts.light)
    img.paste(symbol, ((opts.width - size) // 2, (opts.height - size) // 2))
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def _svg(qr: qrcode.QRCode, opts: RenderOptions) -> bytes:
    factory = type('TicketSvgImage', (SvgPathImage,), {
        'QR_PATH_STYLE': {**SvgPathImage.QR_PATH_STYLE, 'fill': opts.dark},
        'background': opts.light,
    })
    qr.box_size = 10
    img = qr.make_image(image_factory=factory)
    # the viewBox keeps module units; the outer size follows the options
    root = img.get_image()
    root.set('width', str(opts.width))
    root.set('height', str(opts.height))
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def render_ticket(record, options: RenderOptions | None = None) -> EncodedImage:
    """Encode the serialized ticket as a QR image (PNG raster or SVG vector)."""
    opts = options or RenderOptions()
    opts.validate()
    qr = _build(record.serialize(), opts)
    content = _svg(qr, opts) if opts.image_format == 'svg' else _png(qr, opts)
    return EncodedImage(record.ticket_id, FORMATS[opts.image_format], content)


def render_bulk(records, options: RenderOptions | None = None) -> list[BulkItem]:
    """Render each record independently; oversized records come back as failed items."""
    opts = options or RenderOptions()
    opts.validate()
    items = []
    for record in records:
        try:
            items.append(BulkItem(record.ticket_id, image=render_ticket(record, opts)))
        except EncodingError as e:
            items.append(BulkItem(record.ticket_id, error=str(e)))
    return items
