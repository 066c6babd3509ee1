from typing import Optional

from .errors import InvalidRequestError
from .models import SetType


def require(**fields: Optional[str]):
    """Reject the request when any named field is missing or blank."""
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise InvalidRequestError(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


def parse_set_type(value: Optional[str]) -> SetType:
    require(set_type=value)
    try:
        return SetType(value)
    except ValueError:
        allowed = ", ".join(s.value for s in SetType)
        raise InvalidRequestError(f"Unknown set_type {value!r} (expected one of: {allowed})") from None
