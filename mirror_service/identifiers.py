"""CUI（企业税号）规范化"""

import re
from typing import Union

from mirror_service.errors import ValidationError

_COUNTRY_PREFIX = re.compile(r"^[A-Za-z]{2}")
_ASCII_DIGITS = re.compile(r"[0-9]+")
MAX_CUI_DIGITS = 10


def canonical_entity_id(raw: Union[str, int]) -> str:
    """
    将 CUI 规范化为不带前导零的十进制字符串

    "RO000123" / "ro123" / " 123 " / 123 → "123"
    """
    text = str(raw).strip()
    text = _COUNTRY_PREFIX.sub("", text, count=1).strip()
    if not _ASCII_DIGITS.fullmatch(text):
        raise ValidationError(f"Invalid CUI format: {raw}")
    digits = text.lstrip("0") or "0"
    if len(digits) > MAX_CUI_DIGITS:
        raise ValidationError(f"Invalid CUI format: longer than {MAX_CUI_DIGITS} digits")
    return digits


def validate_entity_id(raw: Union[str, int, None]) -> bool:
    if raw is None:
        return False
    try:
        canonical_entity_id(raw)
    except ValidationError:
        return False
    return True
