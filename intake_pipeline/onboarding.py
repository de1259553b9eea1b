"""Conversational registration of new operators, one conversation per admin."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .access import Approvers
from .operators import OperatorRegistry, normalise_handle
from .schema import Operator
from .store import StateStore

WAITING_ID = "waiting_id"
WAITING_NICKNAME = "waiting_nickname"

CANCEL_WORDS = frozenset({"/cancel", "cancel", "отмена", "/отмена"})
MIN_NICKNAME_LENGTH = 2

_NUMERIC_ID_RE = re.compile(r"^\d{1,19}$")
MAX_EXTERNAL_ID = 2**63 - 1
FORMAT_ERROR = "❌ Неверный формат. Укажите @username или Telegram ID."

PROMPT_ID = (
    "👤 Отправьте Telegram ID нового оператора (число) или его @username.\n"
    "Для отмены напишите «отмена»."
)
PROMPT_NICKNAME = "✏️ Теперь отправьте псевдоним оператора (не короче 2 символов)."


@dataclass(frozen=True)
class OnboardingReply:
    text: str
    state: Optional[str]
    operator: Optional[Operator] = None


def is_cancel(text: str) -> bool:
    return text.strip().lower() in CANCEL_WORDS


class OnboardingFlow:
    """Per-admin state machine: ``waiting_id`` -> ``waiting_nickname`` -> registered."""

    def __init__(
        self,
        registry: OperatorRegistry,
        approvers: Approvers,
        store: StateStore,
        ttl_seconds: Optional[float] = 86400,
        on_registered: Optional[Callable[[Operator], None]] = None,
    ):
        self.registry = registry
        self.approvers = approvers
        self.store = store
        self.ttl_seconds = ttl_seconds or None
        self.on_registered = on_registered

    @staticmethod
    def _key(admin_id: int) -> str:
        return f"onboarding:{admin_id}"

    def _save(self, admin_id: int, state: dict) -> None:
        self.store.set(self._key(admin_id), state, ttl=self.ttl_seconds)

    def pending(self, admin_id: int) -> Optional[dict]:
        return self.store.get(self._key(admin_id))

    def start(self, admin_id: int) -> OnboardingReply:
        self.approvers.require(admin_id)
        self._save(admin_id, {"state": WAITING_ID})
        return OnboardingReply(PROMPT_ID, WAITING_ID)

    def cancel(self, admin_id: int) -> OnboardingReply:
        had_pending = self.pending(admin_id) is not None
        self.store.expire(self._key(admin_id))
        text = "❌ Добавление оператора отменено." if had_pending else "Нечего отменять."
        return OnboardingReply(text, None)

    def handle_message(self, admin_id: int, text: str) -> Optional[OnboardingReply]:
        """Feed a free-text message into the admin's conversation.

        Returns None when the message is not part of a conversation (no
        pending flow, or the sender is not an approver).
        """
        if not self.approvers.is_allowed(admin_id):
            return None
        state = self.pending(admin_id)
        if state is None:
            return None

        text = (text or "").strip()
        if is_cancel(text):
            return self.cancel(admin_id)

        if state.get("state") == WAITING_NICKNAME:
            return self._accept_nickname(admin_id, state, text)
        return self._accept_identity(admin_id, text)

    def _resolve_target(self, text: str) -> Tuple[Optional[int], Optional[str], Optional[str]]:
        """Return ``(external_id, handle, error_text)`` for an id or @handle."""
        if _NUMERIC_ID_RE.match(text) and int(text) <= MAX_EXTERNAL_ID:
            external_id = int(text)
            return external_id, self.registry.known_handle(external_id), None
        handle = normalise_handle(text) if text.startswith("@") else None
        if handle:
            external_id = self.registry.resolve_handle(text)
            if external_id is None:
                return (
                    None,
                    handle,
                    f"⚠️ Пользователь @{handle} ещё не писал боту.\n"
                    "Попросите его отправить любое сообщение боту, а затем повторите.",
                )
            return external_id, handle, None
        return None, None, FORMAT_ERROR

    def _accept_identity(self, admin_id: int, text: str) -> OnboardingReply:
        external_id, handle, error = self._resolve_target(text)
        if error is not None:
            return OnboardingReply(f"{error}\n\n{PROMPT_ID}", WAITING_ID)

        self._save(admin_id, {"state": WAITING_NICKNAME, "external_id": external_id, "handle": handle})
        return OnboardingReply(f"🆔 ID: {external_id}\n{PROMPT_NICKNAME}", WAITING_NICKNAME)

    def _accept_nickname(self, admin_id: int, state: dict, text: str) -> OnboardingReply:
        if len(text) < MIN_NICKNAME_LENGTH:
            return OnboardingReply(f"❌ Слишком короткий псевдоним.\n{PROMPT_NICKNAME}", WAITING_NICKNAME)

        operator = self._register(admin_id, state["external_id"], text, state.get("handle"))
        self.store.expire(self._key(admin_id))
        return OnboardingReply(self._registered_text(operator), None, operator)

    def register_direct(self, admin_id: int, target: str, nickname: str) -> OnboardingReply:
        """One-shot registration, e.g. ``/addoperator 123456789 Иван``."""
        self.approvers.require(admin_id)
        nickname = (nickname or "").strip()
        external_id, handle, error = self._resolve_target((target or "").strip())
        if error is not None:
            return OnboardingReply(error, None)
        if len(nickname) < MIN_NICKNAME_LENGTH:
            return OnboardingReply("❌ Слишком короткий псевдоним.", None)

        operator = self._register(admin_id, external_id, nickname, handle)
        return OnboardingReply(self._registered_text(operator), None, operator)

    def _register(self, admin_id: int, external_id: int, nickname: str, handle: Optional[str]) -> Operator:
        operator = self.registry.upsert(external_id, nickname, handle=handle, added_by=admin_id)
        if self.on_registered is not None:
            try:
                self.on_registered(operator)
            except Exception as exc:  # noqa: BLE001
                logging.warning("Post-registration setup failed for operator %s: %s", external_id, exc)
        return operator

    @staticmethod
    def _registered_text(operator: Operator) -> str:
        handle = f"@{operator.handle}" if operator.handle else "—"
        return (
            "✅ Оператор добавлен!\n\n"
            f"👤 Псевдоним: {operator.nickname}\n"
            f"🆔 Telegram ID: {operator.external_id}\n"
            f"📛 Username: {handle}"
        )
