"""
Personalizacao de mensagens.

Placeholders no formato {{campo}} (espacos opcionais) sao trocados pelo
atributo do cliente. Placeholders sem valor ficam como estao.
"""
import re
from datetime import datetime
from typing import Any, Mapping, Set

PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")


def _format_attribute(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.2f}"
    return str(value)


def render_template(template: str, attributes: Mapping[str, Any]) -> str:
    """
    Renderiza template com atributos do cliente.

    Args:
        template: Texto com {{campo}}
        attributes: Atributos do cliente

    Returns:
        Texto personalizado

    Exemplo:
        >>> render_template("Oi {{ name }}!", {"name": "Ana"})
        'Oi Ana!'
    """

    def _replace(match: "re.Match") -> str:
        value = attributes.get(match.group(1))
        if value is None or value == "":
            return match.group(0)
        return _format_attribute(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def template_fields(template: str) -> Set[str]:
    """Campos referenciados pelo template."""
    return set(PLACEHOLDER_PATTERN.findall(template))
