"""
Módulo centralizado para tratamento de timezone.

O projeto usa UTC para armazenamento e comparacoes. Datas que chegam
do banco (strings ISO), de recibos do vendor ou de regras de segmentacao
passam por `parse_timestamp` para virar datetime aware em UTC.
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Optional


TZ_UTC = timezone.utc


def utc_now() -> datetime:
    """
    Retorna datetime atual em UTC (timezone-aware).

    Use para armazenar no banco, logs e comparações com dados do banco.
    """
    return datetime.now(TZ_UTC)


def to_utc(dt: datetime) -> datetime:
    """
    Converte datetime para UTC.

    Datetime naive é tratado como UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_UTC)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Converte valores variados para datetime UTC.

    Aceita:
    - datetime (naive = UTC)
    - date (meia-noite UTC)
    - string ISO 8601 (inclusive sufixo 'Z')
    - int/float: epoch em segundos

    Returns:
        datetime aware em UTC, ou None se valor vazio

    Raises:
        ValueError: se o valor não puder ser interpretado
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=TZ_UTC)

    if isinstance(value, bool):
        raise ValueError(f"Timestamp invalido: {value!r}")

    if isinstance(value, (int, float)):
        try:
            finite = math.isfinite(value)
        except OverflowError:
            finite = False
        if not finite:
            raise ValueError(f"Timestamp invalido: {value!r}")
        try:
            return datetime.fromtimestamp(value, tz=TZ_UTC)
        except (OverflowError, OSError, ValueError):
            # Fora do intervalo suportado pela plataforma
            raise ValueError(f"Timestamp fora do intervalo: {value!r}")

    if isinstance(value, str):
        texto = value.strip()
        if not texto:
            return None
        if texto.endswith("Z"):
            texto = texto[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(texto))
        except ValueError:
            raise ValueError(f"Timestamp invalido: {value!r}")

    raise ValueError(f"Timestamp invalido: {value!r}")


def iso_utc(dt: datetime | None = None) -> str:
    """
    Retorna datetime em formato ISO 8601 UTC.

    Conveniente para inserir no banco de dados.
    """
    if dt is None:
        dt = utc_now()
    return to_utc(dt).isoformat()
