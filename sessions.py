from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import Settings


SESSION_COOKIE = "finance_session"


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt="session")


def encode_session(settings: Settings, uid: str, demo: bool = False) -> str:
    return _serializer(settings).dumps({"uid": uid, "demo": demo})


def decode_session(settings: Settings, token: Optional[str]) -> Optional[dict]:
    """Return ``{"uid", "demo"}`` for a valid unexpired token, else None."""
    if not token:
        return None
    try:
        data = _serializer(settings).loads(token, max_age=settings.session_max_age_secs)
    except BadSignature:
        return None

    if not isinstance(data, dict) or not data.get("uid"):
        return None
    return {"uid": str(data["uid"]), "demo": bool(data.get("demo"))}
