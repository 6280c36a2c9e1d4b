"""Message templates: built-in defaults plus optional YAML overrides."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel

from pairbot.core.errors import TemplateNotFoundError

DEFAULT_TEMPLATE = "default"


class TemplateSpec(BaseModel):
    text: str
    image: Optional[str] = None


@dataclass(frozen=True)
class RenderedTemplate:
    text: str
    image: Optional[str] = None


BUILTIN_TEMPLATES: dict[str, TemplateSpec] = {
    "cita_gratis": TemplateSpec(
        text=(
            "✨ ¡Hola {nombre}! Te saluda Digimedia. 💻🚀\n\n"
            "Potencia tu presencia online con una página web profesional y personalizada para tu marca.\n\n"
            "Hazlo digital con *DigiMedia.*"
        ),
        image="imagenes/Flyer.jpg",
    ),
    "cita_confirmada": TemplateSpec(
        text=(
            "¡Hola 👋\n\n"
            "✅ Tu primera cita GRATUITA ha sido confirmada:\n\n"
            "📅 Fecha: {fecha}\n"
            "🕐 Hora: {hora}\n"
            "👨‍⚕️ Psicólogo: {nombre}\n\n"
            "¡Te esperamos! 🌟"
        ),
        image="{image}",
    ),
    "accept": TemplateSpec(
        text=(
            "✅ COMPROBANTE APROBADO ✅\n\n"
            "🎉 ¡Excelente! Tu comprobante de pago ha sido revisado y aprobado.\n\n"
            "💬 Comentario: {comentario}"
        ),
    ),
    "reject": TemplateSpec(
        text=(
            "❌ COMPROBANTE RECHAZADO ❌\n\n"
            "Tu comprobante de pago no pudo ser aprobado.\n\n"
            "💬 Motivo: {comentario}"
        ),
    ),
    DEFAULT_TEMPLATE: TemplateSpec(
        text="Hola {nombre}, este es un mensaje automático.",
        image="imagenes/default.jpg",
    ),
}


class TemplateProvider:
    """Resolves a template id and parameters into text plus optional image locator.

    Missing parameters render as empty strings. Unknown ids fall back to the
    ``default`` template when one exists.
    """

    def __init__(self, templates: Mapping[str, TemplateSpec] | None = None):
        self._templates = dict(BUILTIN_TEMPLATES if templates is None else templates)

    @classmethod
    def from_yaml(cls, path: str | Path) -> TemplateProvider:
        template_file = Path(path)
        if not template_file.exists():
            raise FileNotFoundError(f"Templates file not found: {template_file}")
        data = yaml.safe_load(template_file.read_text(encoding="utf-8")) or {}
        merged = dict(BUILTIN_TEMPLATES)
        merged.update({str(k): TemplateSpec(**v) for k, v in data.get("templates", data).items()})
        return cls(merged)

    def ids(self) -> list[str]:
        return list(self._templates)

    def resolve(self, template_id: str, params: Mapping[str, Any] | None = None) -> RenderedTemplate:
        spec = self._templates.get(template_id) or self._templates.get(DEFAULT_TEMPLATE)
        if spec is None:
            raise TemplateNotFoundError(f"Unknown template: {template_id}", {"template": template_id})

        values: defaultdict[str, str] = defaultdict(str)
        values.update({k: "" if v is None else str(v) for k, v in (params or {}).items()})
        text = spec.text.format_map(values)
        if not text.strip():
            raise TemplateNotFoundError(f"Template rendered empty text: {template_id}", {"template": template_id})
        image = spec.image.format_map(values) if spec.image else None
        return RenderedTemplate(text=text, image=image or None)
