import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import field_validator

from .client import ApiClient, parse_model
from ..booking.models import ApiModel, Hirer
from ..errors import MalformedResponseError

logger = logging.getLogger(__name__)


def decode_jwt(token: str) -> Optional[Dict[str, Any]]:
    """Decode a JWT payload without verifying it. Used for display/debugging only."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        return json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (IndexError, ValueError) as e:
        logger.error(f"Failed to decode JWT: {e}")
        return None


class AuthSession(ApiModel):
    token: str
    username: Optional[str] = None
    roles: List[str] = []
    expiration: Optional[str] = None
    decoded: Optional[Dict[str, Any]] = None

    @field_validator("roles", mode="before")
    @classmethod
    def _roles_as_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    def has_role(self, role: str) -> bool:
        return role in self.roles


class AuthStore:
    """Signed-in session persisted as JSON, so a restart keeps the user logged in."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[AuthSession]:
        if not self.path.exists():
            return None
        try:
            return AuthSession.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable auth file {self.path}: {e}")
            return None

    def save(self, session: AuthSession):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json(), encoding="utf-8")
        logger.info(f"Stored auth data for {session.username}")

    def clear(self):
        if self.path.exists():
            self.path.unlink()
            logger.info("Cleared stored auth data")

    def token(self) -> Optional[str]:
        session = self.load()
        return session.token if session else None


class AuthClient:
    def __init__(self, api: ApiClient, store: AuthStore):
        self.api = api
        self.store = store

    async def login(self, email: str, password: str) -> AuthSession:
        data = await self.api.post(
            "/authentication/login",
            json={"email": email, "password": password},
            authenticated=False,
        )
        if not isinstance(data, dict) or not data.get("token"):
            raise MalformedResponseError("Login response did not include a token.")

        session = parse_model(AuthSession, data)
        session.decoded = decode_jwt(session.token)
        self.store.save(session)
        return session

    def logout(self):
        self.store.clear()

    def current(self) -> Optional[AuthSession]:
        return self.store.load()

    def roles(self) -> List[str]:
        session = self.current()
        return session.roles if session else []

    async def profile(self) -> Dict[str, Any]:
        return await self.api.get("/authentication/profile")

    async def hirer_from_profile(self) -> Hirer:
        """Prefill the hirer step from the signed-in user's profile."""
        profile = await self.profile() or {}
        return Hirer(
            first_name=profile.get("firstName") or "",
            last_name=profile.get("lastName") or "",
            email=profile.get("email") or "",
            phone=profile.get("phoneNumber") or "",
            country=profile.get("country") or "",
            driver_license_number=profile.get("driverLicenseNumber") or "",
        )
