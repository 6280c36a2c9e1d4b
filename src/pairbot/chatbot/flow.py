"""Scripted dialogue graph: steps, transitions and load-time validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from pairbot.core.errors import FlowValidationError

WILDCARD = "*"


@dataclass(frozen=True)
class Step:
    message: str
    transitions: Mapping[str, str]

    @property
    def is_terminal(self) -> bool:
        return not self.transitions

    def resolve(self, option: str) -> Optional[str]:
        """Exact match first, then the wildcard."""
        if option in self.transitions:
            return self.transitions[option]
        return self.transitions.get(WILDCARD)


class DialogueGraph:
    """Immutable step graph, validated when built."""

    def __init__(self, steps: Mapping[str, Step], start: str = "start", closing: str = "cierre"):
        self._steps = MappingProxyType(dict(steps))
        self.start = start
        self.closing = closing
        self._validate()

    def _validate(self) -> None:
        missing = [s for s in (self.start, self.closing) if s not in self._steps]
        if missing:
            raise FlowValidationError(
                f"Dialogue graph is missing required steps: {', '.join(missing)}",
                {"missing": missing},
            )
        dangling = sorted(
            f"{step_id} -> {target}"
            for step_id, step in self._steps.items()
            for target in step.transitions.values()
            if target not in self._steps
        )
        if dangling:
            raise FlowValidationError(
                f"Dialogue graph has transitions to unknown steps: {'; '.join(dangling)}",
                {"dangling": dangling},
            )

    def get(self, step_id: str) -> Optional[Step]:
        return self._steps.get(step_id)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def step_ids(self) -> list[str]:
        return list(self._steps)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], start: str = "start", closing: str = "cierre") -> DialogueGraph:
        steps: dict[str, Step] = {}
        for step_id, raw in data.items():
            if not isinstance(raw, Mapping) or "message" not in raw:
                raise FlowValidationError(f"Step '{step_id}' must define a message")
            transitions = raw.get("next") or {}
            steps[str(step_id)] = Step(
                message=str(raw["message"]),
                transitions=MappingProxyType({str(k): str(v) for k, v in transitions.items()}),
            )
        return cls(steps, start=start, closing=closing)

    @classmethod
    def from_yaml(cls, path: str | Path, start: str = "start", closing: str = "cierre") -> DialogueGraph:
        flow_file = Path(path)
        if not flow_file.exists():
            raise FileNotFoundError(f"Dialogue flow file not found: {flow_file}")
        data = yaml.safe_load(flow_file.read_text(encoding="utf-8")) or {}
        steps = data.get("steps", data)
        return cls.from_dict(steps, start=start, closing=closing)


DEFAULT_FLOW: dict[str, dict[str, Any]] = {
    "start": {
        "message": (
            "✨ ¡Hola! Te saluda Digimedia. 💻🚀\n"
            "Potencia tu presencia online con una página web profesional y personalizada para tu marca.\n"
            "Te ayudamos con:\n"
            "📌 Servicios especializados para hacer crecer tu marca\n"
            "📞 Asesoría en Marketing\n"
            "📊 Auditoría gratuita\n\n"
            "Elige una opción:\n"
            "1️⃣ Ver servicios\n"
            "2️⃣ Hablar con un asesor\n"
            "3️⃣ Auditoría gratis"
        ),
        "next": {"1": "servicios", "2": "asesor", "3": "auditoria"},
    },
    "servicios": {
        "message": (
            "En Digimedia Marketing ofrecemos:\n\n"
            "✔️ Diseño y Desarrollo Web\n"
            "✔️ Gestión de Redes Sociales\n"
            "✔️ Marketing y Gestión Digital\n"
            "✔️ Branding y Diseño\n\n"
            "¿Te enviamos un plan gratuito de mejora para tu negocio?\n\n"
            "1️⃣ Sí, deseo el plan\n"
            "2️⃣ Hablar con un asesor\n"
            "3️⃣ Auditoría gratis\n"
            "4️⃣ Cierre"
        ),
        "next": {"1": "cierre", "2": "asesor", "3": "auditoria", "4": "cierre"},
    },
    "asesor": {
        "message": (
            "Perfecto 🙌 Para poder ayudarte mejor, cuéntame:\n\n"
            "1️⃣ Nombre de tu negocio\n"
            "2️⃣ Rubro en el que trabajas\n"
            "3️⃣ Objetivos a lograr (Ej: más clientes, más ventas, mayor visibilidad, etc.)\n\n"
            "(Escribe tus respuestas en un solo mensaje)"
        ),
        "next": {WILDCARD: "cierre"},
    },
    "auditoria": {
        "message": (
            "Opciones para tu auditoría gratuita:\n\n"
            "1️⃣ Sí, agendar reunión\n"
            "2️⃣ Quiero más información primero"
        ),
        "next": {"1": "cierre", "2": "info_adicional"},
    },
    "info_adicional": {
        "message": "Perfecto, en breve un asesor te dará más información detallada.",
        "next": {WILDCARD: "cierre"},
    },
    "cierre": {
        "message": (
            "✅ ¡Listo! Ya tenemos tu información.\n"
            "En breve, uno de nuestros asesores se pondrá en contacto contigo 📲"
        ),
        "next": {},
    },
    "post_asesoria": {
        "message": (
            "👋 ¡Hola! Queremos darte las gracias por tu interés y confianza en nuestras asesorías.\n\n"
            "¿Quieres agendar una reunión esta semana para dar el siguiente paso?\n"
            "1️⃣ Sí, agendar\n"
            "2️⃣ No por ahora"
        ),
        "next": {"1": "cierre"},
    },
}


def default_graph(start: str = "start", closing: str = "cierre") -> DialogueGraph:
    return DialogueGraph.from_dict(DEFAULT_FLOW, start=start, closing=closing)
