"""Identity provider for the current session."""

from __future__ import annotations

import logging
from typing import Callable, Optional

log = logging.getLogger(__name__)

AuthListener = Callable[[Optional[str]], None]


class LocalIdentity:
    """Holds the signed-in user id and tells subscribers when it changes.

    Listeners receive the new user id, or ``None`` after sign-out.
    """

    def __init__(self, user_id: Optional[str] = None) -> None:
        self._user_id = user_id.strip() if user_id and user_id.strip() else None
        self._listeners: list[AuthListener] = []

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_signed_in(self) -> bool:
        return self._user_id is not None

    def on_auth_change(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe ``listener``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user_id: str) -> None:
        user_id = user_id.strip()
        if not user_id:
            raise ValueError("user_id must not be empty")
        if user_id == self._user_id:
            return
        self._user_id = user_id
        log.info("Signed in as %s", user_id)
        self._emit()

    def sign_out(self) -> None:
        if self._user_id is None:
            return
        log.info("Signed out %s", self._user_id)
        self._user_id = None
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._user_id)
