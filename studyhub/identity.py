from __future__ import annotations

import logging

import httpx
from jose import JWTError, jwt

from studyhub.core.errors import SignupRejected, Unauthenticated

logger = logging.getLogger("studyhub.identity")


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityAuthority:
    """HTTP client for a Supabase-compatible auth API."""

    def __init__(
        self,
        base_url: str,
        service_key: str = "",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def fetch_user(self, token: str) -> dict | None:
        if not self.base_url:
            logger.error("event=identity_unconfigured reason=missing_url")
            return None
        headers = {"Authorization": f"Bearer {token}", "apikey": self.service_key}
        try:
            r = self._client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("event=identity_unreachable error=%s", str(e))
            return None
        if r.status_code != 200:
            return None
        try:
            user = r.json()
        except ValueError:
            logger.warning("event=identity_bad_reply status=%s", r.status_code)
            return None
        return user if isinstance(user, dict) else None

    def create_user(self, email: str, password: str, name: str) -> dict:
        if not self.base_url:
            raise SignupRejected("Signup is not available on this server")
        payload = {
            "email": email,
            "password": password,
            "user_metadata": {"name": name},
            # No mail server is wired up, so accounts are confirmed on creation
            "email_confirm": True,
        }
        headers = {"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key}
        try:
            r = self._client.post(f"{self.base_url}/auth/v1/admin/users", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("event=signup_unreachable error=%s", str(e))
            raise SignupRejected() from e
        if r.status_code >= 400:
            raise SignupRejected(_error_message(r))
        return r.json()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "Signup failed"
    for field in ("msg", "message", "error_description", "error"):
        if isinstance(body.get(field), str) and body[field]:
            return body[field]
    return "Signup failed"


class IdentityGateway:
    """Turns a bearer credential into a verified identity id.

    Tokens are checked locally when a signing secret is configured; otherwise the
    identity authority is asked on every call.
    """

    def __init__(
        self,
        authority: IdentityAuthority,
        jwt_secret: str = "",
        audience: str = "",
    ) -> None:
        self.authority = authority
        self.jwt_secret = jwt_secret
        self.audience = audience

    def resolve(self, credential: str | None) -> str:
        if not credential:
            raise Unauthenticated()
        if self.jwt_secret:
            identity_id = self._verify_locally(credential)
        else:
            user = self.authority.fetch_user(credential)
            identity_id = user.get("id") if user else None
        if not identity_id:
            raise Unauthenticated()
        return identity_id

    def _verify_locally(self, token: str) -> str | None:
        options = {"verify_aud": bool(self.audience), "require_exp": True, "require_sub": True}
        try:
            claims = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=["HS256"],
                audience=self.audience or None,
                options=options,
            )
        except JWTError as e:
            logger.info("event=token_rejected error=%s", str(e))
            return None
        subject = claims.get("sub")
        return subject if isinstance(subject, str) else None

    def register(self, email: str, password: str, name: str) -> dict:
        """Create credentials at the authority. Returns ``{"id", "email"}``."""
        created = self.authority.create_user(email, password, name)
        identity_id = created.get("id")
        if not identity_id:
            raise SignupRejected()
        logger.info("event=identity_registered identity_id=%s", identity_id)
        return {"id": identity_id, "email": created.get("email", email)}
