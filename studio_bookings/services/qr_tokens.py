"""Signed QR payloads that identify a (member, session) pair for check-in."""

from dataclasses import dataclass

from itsdangerous import BadSignature, URLSafeTimedSerializer

from studio_bookings.core.config import get_settings

SALT = "studio-check-in"


@dataclass(frozen=True)
class CheckInTarget:
    member_id: int
    session_id: int


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().qr_secret_key, salt=SALT)


def issue_check_in_token(member_id: int, session_id: int) -> str:
    """Return the string the member app renders as a QR code."""
    return _serializer().dumps({"m": member_id, "s": session_id})


def resolve_check_in_token(token: str, max_age: int | None = None) -> CheckInTarget | None:
    """Decode a scanned token. None if it is forged, expired or malformed."""
    if not token:
        return None
    try:
        # SignatureExpired is a BadSignature
        data = _serializer().loads(token, max_age=max_age or get_settings().qr_token_max_age)
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    member_id, session_id = data.get("m"), data.get("s")
    if not isinstance(member_id, int) or not isinstance(session_id, int):
        return None
    return CheckInTarget(member_id=member_id, session_id=session_id)
