"""Per-session conversation memory."""

from __future__ import annotations

import datetime
from collections import OrderedDict
from typing import TYPE_CHECKING

from .config import config
from .models import ConversationTurn

if TYPE_CHECKING:
    from .models import DocumentChunk

logger = config.get_logger(__name__)


class ConversationManager:
    """Keeps recent turns for each client-supplied session id.

    Requests without a session id are answered without memory. Sessions are
    evicted least recently used first once ``max_sessions`` is exceeded.
    """

    def __init__(
        self,
        max_history_turns: int | None = None,
        max_sessions: int | None = None,
    ) -> None:
        """Initialize ConversationManager.

        Args:
            max_history_turns: Turns replayed to the agent. If None, uses
                config.MAX_HISTORY_TURNS.
            max_sessions: Sessions kept in memory. If None, uses
                config.MAX_SESSIONS.
        """
        self.max_history_turns = (
            max_history_turns
            if max_history_turns is not None
            else config.MAX_HISTORY_TURNS
        )
        self.max_sessions = (
            max_sessions if max_sessions is not None else config.MAX_SESSIONS
        )
        self.sessions: OrderedDict[str, list[ConversationTurn]] = OrderedDict()

    def get_history(self, session_id: str | None) -> list[ConversationTurn]:
        """Return the stored turns of a session, oldest first."""
        if not session_id or session_id not in self.sessions:
            return []
        self.sessions.move_to_end(session_id)
        return list(self.sessions[session_id])

    def history_messages(self, session_id: str | None) -> list[dict[str, str]]:
        """Render the last ``max_history_turns`` turns as chat messages.

        Returns:
            Alternating user/assistant messages, oldest first.
        """
        if self.max_history_turns <= 0:
            return []

        messages: list[dict[str, str]] = []
        for turn in self.get_history(session_id)[-self.max_history_turns :]:
            messages.append({"role": "user", "content": turn.user_question})
            messages.append({"role": "assistant", "content": turn.bot_response})
        return messages

    def record_turn(
        self,
        session_id: str | None,
        question: str,
        answer: str,
        retrieved_contexts: list[tuple[DocumentChunk, float]] | None = None,
    ) -> ConversationTurn:
        """Store a completed turn under ``session_id``.

        Turns without a session id are returned but not kept.

        Returns:
            The recorded turn.
        """
        turn = ConversationTurn(
            user_question=question,
            bot_response=answer,
            retrieved_contexts=retrieved_contexts or [],
            timestamp=datetime.datetime.now(tz=datetime.UTC).isoformat(),
        )
        if not session_id:
            return turn

        history = self.sessions.setdefault(session_id, [])
        history.append(turn)
        # Only the replayed window is ever read back.
        del history[: -max(self.max_history_turns, 1)]
        self.sessions.move_to_end(session_id)

        while len(self.sessions) > self.max_sessions:
            evicted, _ = self.sessions.popitem(last=False)
            logger.info("Evicted conversation session %s", evicted)

        return turn

    def clear_history(self, session_id: str | None = None) -> None:
        """Clear one session, or every session when ``session_id`` is None."""
        if session_id is None:
            self.sessions.clear()
            logger.info("All conversation histories cleared.")
            return
        self.sessions.pop(session_id, None)
        logger.info("Conversation history cleared for session %s.", session_id)
