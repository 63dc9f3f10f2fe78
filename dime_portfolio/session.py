from __future__ import annotations

import logging
import re
import threading
from typing import Callable, List, Optional

from .errors import AuthError

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
INITIAL_SESSION = "INITIAL_SESSION"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Listener = Callable[[str, Optional[str]], None]


class AuthSession:
    """Who is signed in, shared by the auth bar and the sync controller.

    Starts unauthenticated. The backend pushes SIGNED_IN / SIGNED_OUT /
    TOKEN_REFRESHED events through ``apply``; listeners hear about every
    event together with the resulting email.
    """

    def __init__(self, gateway):
        self.gateway = gateway
        self.email: Optional[str] = None
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._unbind: Optional[Callable[[], None]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.email is not None

    async def bind(self) -> None:
        """Read the current session once, then follow backend auth events."""
        email = await self.gateway.current_session_email()
        self.apply(INITIAL_SESSION, email)
        if self._unbind is None:
            self._unbind = self.gateway.on_session_change(self.apply)

    def unbind(self) -> None:
        if self._unbind is not None:
            unbind, self._unbind = self._unbind, None
            unbind()

    def apply(self, event: str, email: Optional[str]) -> None:
        if event == SIGNED_OUT:
            email = None
        previous, self.email = self.email, email
        if previous != email:
            logger.info("auth %s: %s -> %s", event, previous or "anonymous", email or "anonymous")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event, email)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ---------- actions ----------
    async def sign_in_with_email(self, email: str) -> None:
        email = (email or "").strip()
        if not _EMAIL_RE.match(email):
            raise AuthError("Enter a valid email address.")
        await self.gateway.send_magic_link(email)
        logger.info("magic link sent to %s", email)

    async def verify_code(self, email: str, code: str) -> None:
        code = (code or "").strip()
        if not code:
            raise AuthError("Enter the code from the email.")
        signed_in = await self.gateway.verify_email_code(email.strip(), code)
        # the backend also emits SIGNED_IN; applying here makes the page current immediately
        self.apply(SIGNED_IN, signed_in or email.strip())

    async def sign_out(self) -> None:
        await self.gateway.sign_out()
        if self.email is not None:
            self.apply(SIGNED_OUT, None)
