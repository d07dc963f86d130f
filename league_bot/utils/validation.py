import re
from typing import Optional

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_NON_DIGIT_RE = re.compile(r'\D')


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return bool(_EMAIL_RE.match(email.strip()))


def is_valid_phone(phone: Optional[str]) -> bool:
    """Accept international or local numbers carrying at least 7 digits"""
    if not phone:
        return False
    return len(_NON_DIGIT_RE.sub('', phone)) >= 7


def clean_text(value: Optional[str]) -> str:
    return str(value or '').strip()


def mask_email(email: Optional[str]) -> str:
    if not email:
        return ''
    user, _, domain = email.partition('@')
    if not domain:
        return '***'
    if len(user) <= 2:
        safe_user = user[:1] + '*'
    else:
        safe_user = user[:2] + '*' * min(10, len(user) - 2)
    return f'{safe_user}@{domain}'


def mask_phone(phone: Optional[str]) -> str:
    if not phone:
        return ''
    digits = _NON_DIGIT_RE.sub('', phone)
    if len(digits) <= 4:
        return '*' * len(digits)
    return f'***{digits[-4:]}'
