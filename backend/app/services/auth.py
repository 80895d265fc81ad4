import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str


def parse_bearer_token(req: Request) -> str:
    header = req.headers.get("authorization", "")
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        logger.warning("missing bearer token path=%s", req.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return parts[1].strip()


def get_session_user(conn, token: str) -> AuthUser:
    """Resolve a login session token issued by the OTP flow to its user."""
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT u.id::text AS id,
                   u.email,
                   s.expires_at
            FROM sessions s
            JOIN users u ON u.id=s.user_id
            WHERE s.token=%s
            """,
            (token,),
        )
        row = cur.fetchone()
    if not row:
        logger.warning("invalid session token")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if row["expires_at"] < datetime.now(timezone.utc):
        logger.warning("expired session token user=%s", row["email"])
        raise HTTPException(status_code=401, detail="Session expired")
    return AuthUser(id=row["id"], email=row["email"])
