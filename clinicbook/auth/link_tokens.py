from datetime import datetime, timedelta, timezone

import jwt

from clinicbook.core import config

CONFIRM_ATTENDANCE_PURPOSE = "confirm_attendance"


class InvalidLinkToken(Exception):
    pass


def create_link_token(booking_id: int, purpose: str = CONFIRM_ATTENDANCE_PURPOSE, expires_hours: int | None = None) -> str:
    expire_hours = expires_hours or config.LINK_TOKEN_EXPIRES_HOURS
    now = datetime.now(timezone.utc)
    payload = {"sub": str(booking_id), "purpose": purpose, "exp": now + timedelta(hours=expire_hours), "iat": now}
    return jwt.encode(payload, config.LINK_TOKEN_SECRET, algorithm=config.LINK_TOKEN_ALGORITHM)


def decode_link_token(token: str, purpose: str = CONFIRM_ATTENDANCE_PURPOSE) -> int:
    try:
        payload = jwt.decode(token, config.LINK_TOKEN_SECRET, algorithms=[config.LINK_TOKEN_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise InvalidLinkToken("Invalid or expired link.") from exc

    if payload.get("purpose") != purpose:
        raise InvalidLinkToken("Link was issued for a different action.")

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidLinkToken("Invalid link subject.") from exc


def confirmation_link(booking_id: int) -> str:
    return f"{config.PUBLIC_APP_URL.rstrip('/')}/confirmar/{create_link_token(booking_id)}"
