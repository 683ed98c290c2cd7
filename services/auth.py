# triplog/services/auth.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from core.logs import ensure_logger
from core.settings import TOKEN_PATH
from services.backend import Backend, BackendError


class AuthError(RuntimeError):
    pass


class BackendAuth:
    """Email/password session against the backend auth service.

    The access/refresh token pair is kept in ``token_path`` so the session
    survives restarts, the way the backend's browser client persists it.
    """

    def __init__(self, backend: Backend, token_path: str | Path = TOKEN_PATH):
        self.backend = backend
        self.token_path = Path(token_path)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = ensure_logger("triplog.auth")
        self._user_id: Optional[str] = None
        self._email: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def email(self) -> Optional[str]:
        return self._email

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def restore(self) -> bool:
        """Reuse the stored session. Returns True when a user is signed in."""

        if not self.backend.configured or not self.token_path.exists():
            return False
        try:
            data = json.loads(self.token_path.read_text(encoding="utf-8"))
            access = data["access_token"]
            refresh = data["refresh_token"]
        except (ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Stored session unreadable: %s; signing out", exc)
            self._forget()
            return False
        try:
            response = self.backend.auth.set_session(access, refresh)
        except BackendError:
            raise
        except Exception as exc:
            self.logger.warning("Stored session rejected: %s", exc)
            self._forget()
            return False
        self._remember(response)
        return self.is_authenticated

    def sign_in(self, email: str, password: str) -> str:
        credentials = {"email": email.strip().lower(), "password": password}
        try:
            response = self.backend.auth.sign_in_with_password(credentials)
        except BackendError:
            raise
        except Exception as exc:
            self.logger.warning("Sign in failed for %s: %s", credentials["email"], exc)
            raise AuthError("E-mail ou senha inválidos.") from exc
        self._remember(response)
        if not self._user_id:
            raise AuthError("Sessão não iniciada.")
        self.logger.info("Signed in as %s", self._email)
        return self._user_id

    def sign_up(self, email: str, password: str) -> Optional[str]:
        credentials = {"email": email.strip().lower(), "password": password}
        try:
            response = self.backend.auth.sign_up(credentials)
        except BackendError:
            raise
        except Exception as exc:
            raise AuthError(f"Falha ao criar conta: {exc}") from exc
        # projects requiring e-mail confirmation return a user without a session
        self._remember(response)
        return self._user_id

    def sign_out(self) -> None:
        try:
            if self.backend.configured and self.is_authenticated:
                self.backend.auth.sign_out()
        except Exception as exc:
            self.logger.warning("Remote sign out failed: %s", exc)
        finally:
            self._forget()

    def update_password(self, new_password: str) -> None:
        if not self.is_authenticated:
            raise AuthError("É necessário estar autenticado.")
        try:
            self.backend.auth.update_user({"password": new_password})
        except BackendError:
            raise
        except Exception as exc:
            raise AuthError(f"Falha ao atualizar senha: {exc}") from exc

    # ------------------------------------------------------------------
    def _remember(self, response) -> None:
        session = getattr(response, "session", None)
        user = getattr(response, "user", None) or getattr(session, "user", None)
        if session is None or user is None:
            return
        self._user_id = str(user.id)
        self._email = getattr(user, "email", None)
        payload = {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
        }
        self.token_path.write_text(json.dumps(payload), encoding="utf-8")

    def _forget(self) -> None:
        self._user_id = None
        self._email = None
        if self.token_path.exists():
            self.token_path.unlink()


__all__ = ["AuthError", "BackendAuth"]
