"""Identity service — Supabase Auth (GoTrue) over its REST API.

Responsible for:
- Verifying a bearer access token and returning the user it belongs to
- Looking up an auth user by email (admin API)
- Sending invitations and password-recovery emails

Everything else about identity (sessions, password storage, email
templates) lives in Supabase. All calls are bounded by
IDENTITY_TIMEOUT_SECONDS.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Supabase Auth returned an error or a server failure."""


class IdentityClient:
    """Thin Supabase Auth client, configured once per app."""

    def __init__(self, app=None):
        self.base_url = None
        self.service_key = None
        self.timeout = 10
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.base_url = (app.config.get("SUPABASE_URL") or "").rstrip("/")
        self.service_key = app.config.get("SUPABASE_SERVICE_KEY")
        self.timeout = app.config.get("IDENTITY_TIMEOUT_SECONDS", 10)
        app.extensions["identity"] = self

    def _headers(self, bearer=None):
        return {
            "apikey": self.service_key or "",
            "Authorization": f"Bearer {bearer or self.service_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path):
        return f"{self.base_url}/auth/v1{path}"

    def verify_token(self, token):
        """Return {"id", "email"} for a valid access token, else None.

        A rejected token is None. An unreachable provider or a 5xx raises,
        so the request fails as a server error rather than a 401.
        """
        try:
            resp = requests.get(
                self._url("/user"),
                headers=self._headers(bearer=token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Identity provider unreachable during token check: {e}")
            raise

        if resp.status_code >= 500:
            logger.error(f"Identity provider error during token check: HTTP {resp.status_code}")
            raise IdentityError(f"Token check failed: HTTP {resp.status_code}")
        if resp.status_code != 200:
            return None

        user = resp.json()
        if not user.get("id"):
            return None
        return {"id": user["id"], "email": user.get("email")}

    def find_user_by_email(self, email):
        """Return the auth user dict for this email, or None."""
        resp = requests.get(
            self._url("/admin/users"),
            headers=self._headers(),
            params={"per_page": 1000},
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise IdentityError(f"Failed to list users: {resp.text}")

        email = email.lower()
        for user in resp.json().get("users", []):
            if (user.get("email") or "").lower() == email:
                return user
        return None

    def invite_user(self, email, redirect_to, data=None):
        """Create the auth user and send the invite email. Returns the new user dict."""
        resp = requests.post(
            self._url("/invite"),
            headers=self._headers(),
            params={"redirect_to": redirect_to},
            json={"email": email, "data": data or {}},
            timeout=self.timeout,
        )
        if resp.status_code not in (200, 201):
            raise IdentityError(_error_message(resp))
        return resp.json()

    def send_recovery(self, email, redirect_to):
        """Send a password-recovery email (used to resend invites)."""
        resp = requests.post(
            self._url("/recover"),
            headers=self._headers(),
            params={"redirect_to": redirect_to},
            json={"email": email},
            timeout=self.timeout,
        )
        if resp.status_code not in (200, 201):
            raise IdentityError(_error_message(resp))


def _error_message(resp):
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    return body.get("msg") or body.get("message") or body.get("error_description") or str(body)
