"""QR code rendering to data URIs using qrcode + Pillow."""

from __future__ import annotations

import base64
import io
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from qrcode.image.pil import PilImage
from qrcode.image.svg import SvgPathImage

from pairbot.config import QrConfig
from pairbot.core.types import QrFormat

_ERROR_CORRECTION = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}

_MIME_TYPES = {
    QrFormat.PNG: "image/png",
    QrFormat.JPEG: "image/jpeg",
    QrFormat.SVG: "image/svg+xml",
}


@dataclass(frozen=True)
class RenderOptions:
    width: int = 256
    margin: int = 1
    error_correction: str = "M"
    dark: str = "#000000"
    light: str = "#FFFFFF"
    quality: int = 90

    @classmethod
    def from_config(cls, config: QrConfig) -> RenderOptions:
        return cls(
            width=config.width,
            margin=config.margin,
            error_correction=config.error_correction,
            dark=config.dark,
            light=config.light,
            quality=config.jpeg_quality,
        )


@dataclass(frozen=True)
class RenderedQr:
    image: str  # data URI
    format: QrFormat
    mime_type: str
    size: str
    options: dict[str, Any] = field(default_factory=dict)
    fallback: bool = False


class Renderer(Protocol):
    def render(self, payload: str, fmt: QrFormat, options: RenderOptions) -> RenderedQr: ...


class QrRenderer:
    """Deterministic renderer: identical inputs give identical artifacts."""

    def render(self, payload: str, fmt: QrFormat, options: RenderOptions) -> RenderedQr:
        qr = qrcode.QRCode(
            error_correction=_ERROR_CORRECTION[options.error_correction.upper()],
            border=options.margin,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        if fmt == QrFormat.SVG:
            data = qr.make_image(image_factory=SvgPathImage).to_string()
            if isinstance(data, str):
                data = data.encode("utf-8")
        else:
            img = qr.make_image(
                image_factory=PilImage,
                fill_color=options.dark,
                back_color=options.light,
            )
            pil = img.get_image().convert("RGB")
            pil = pil.resize((options.width, options.width), Image.Resampling.NEAREST)
            buf = io.BytesIO()
            if fmt == QrFormat.JPEG:
                pil.save(buf, format="JPEG", quality=options.quality)
            else:
                pil.save(buf, format="PNG")
            data = buf.getvalue()

        mime_type = _MIME_TYPES[fmt]
        encoded = base64.b64encode(data).decode("ascii")
        return RenderedQr(
            image=f"data:{mime_type};base64,{encoded}",
            format=fmt,
            mime_type=mime_type,
            size=f"{options.width}x{options.width}",
            options=asdict(options),
        )
