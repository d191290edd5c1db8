# Copyright (c) Syntropy Systems
"""Chat session lifecycle and persistence."""
from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal

from mcplab.errors import SessionStateError
from mcplab.models.session import ChatMessage, ChatMetadata, ChatSession, SessionMetadata, TokenUsage

if TYPE_CHECKING:
    from pathlib import Path

    from mcplab.models.base import JSONObject

logger = logging.getLogger(__name__)

SessionState = Literal["idle", "active", "paused"]


def generate_session_id(now: datetime | None = None) -> str:
    """Generate a sortable session ID: ``YYYYMMDD-HHMMSS-xxxxxx``."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3)}"


@dataclass
class StateBundle:
    """Everything needed to continue a paused session."""

    session: ChatSession
    started_at: datetime


class SessionStateMachine:
    """Owns the current chat session: idle, active or paused.

    Transitions::

        idle --start--> active --pause--> paused --resume--> active
        active --end/discard--> idle
    """

    def __init__(self, chats_dir: Path) -> None:
        self.chats_dir = chats_dir
        self.state: SessionState = "idle"
        self._session: ChatSession | None = None
        self._started_at: datetime | None = None

    @property
    def session(self) -> ChatSession:
        if self.state != "active" or self._session is None:
            msg = f"No active session (state: {self.state})"
            raise SessionStateError(msg)
        return self._session

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    def start(
        self,
        model: str,
        servers: list[str],
        tools: list[JSONObject] | None = None,
        resume_id: str | None = None,
    ) -> str:
        if self.state != "idle":
            msg = f"Cannot start a session while {self.state}"
            raise SessionStateError(msg)

        now = datetime.now(timezone.utc)
        session_id = resume_id or generate_session_id(now)
        self._session = ChatSession(
            session_id=session_id,
            start_time=now.isoformat(),
            model=model,
            servers=list(servers),
            tools=list(tools or []),
        )
        self._started_at = now
        self.state = "active"
        logger.debug("Started chat session %s (%s)", session_id, model)
        return session_id

    def pause(self) -> StateBundle:
        """Set the active session aside without saving it."""
        if self.state != "active" or self._session is None or self._started_at is None:
            msg = f"Cannot pause a session while {self.state}"
            raise SessionStateError(msg)
        bundle = StateBundle(session=self._session, started_at=self._started_at)
        self._session = None
        self._started_at = None
        self.state = "paused"
        return bundle

    def resume(self, bundle: StateBundle) -> None:
        if self.state == "active":
            msg = "Cannot resume while another session is active"
            raise SessionStateError(msg)
        self._session = bundle.session
        self._started_at = bundle.started_at
        self.state = "active"

    def discard(self) -> None:
        if self._session is not None:
            logger.debug("Discarded chat session %s", self._session.session_id)
        self._session = None
        self._started_at = None
        self.state = "idle"

    # Recording

    def _append(self, message: ChatMessage) -> None:
        session = self.session
        session.messages.append(message)
        session.metadata.message_count += 1

    def add_user_message(self, content: str, attachments: list[str] | None = None) -> None:
        self._append(ChatMessage(timestamp=_now(), role="user", content=content, attachments=attachments))

    def add_assistant_message(self, content: str, content_blocks: list[JSONObject] | None = None) -> None:
        self._append(
            ChatMessage(timestamp=_now(), role="assistant", content=content, content_blocks=content_blocks)
        )

    def add_client_message(self, content: str) -> None:
        """Record a note from the client itself (phase markers, directives)."""
        self._append(ChatMessage(timestamp=_now(), role="client", content=content))

    def add_tool_execution(
        self,
        tool_name: str,
        tool_input: JSONObject,
        tool_output: str,
        internal: bool = False,
        tool_use_id: str | None = None,
        input_time: str | None = None,
        output_time: str | None = None,
    ) -> None:
        output_time = output_time or _now()
        self._append(
            ChatMessage(
                timestamp=output_time,
                role="tool",
                content=tool_output,
                tool_use_id=tool_use_id,
                tool_name=tool_name,
                tool_input=tool_input,
                tool_output=tool_output,
                tool_input_time=input_time,
                tool_output_time=output_time,
                is_internal=internal,
            )
        )
        metadata = self.session.metadata
        if internal:
            metadata.ipc_call_count += 1
        else:
            metadata.tool_use_count += 1

    def record_round_trip(self, input_tokens: int, output_tokens: int) -> None:
        """Record one model request/response and its token usage."""
        total = input_tokens + output_tokens
        session = self.session
        session.token_usage.append(
            TokenUsage(
                timestamp=_now(),
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total,
            )
        )
        session.metadata.cumulative_tokens += total

    def user_turns(self) -> list[tuple[int, ChatMessage]]:
        """Indices and messages of every user message, for rewinding."""
        return [(i, m) for i, m in enumerate(self.session.messages) if m.role == "user"]

    def rewind_to_index(self, index: int) -> None:
        """Drop every message from ``index`` on and recompute the counters."""
        session = self.session
        if index < 0 or index > len(session.messages):
            msg = f"Rewind index {index} out of range 0..{len(session.messages)}"
            raise SessionStateError(msg)

        remaining = session.messages[:index]
        assistant_count = sum(1 for m in remaining if m.role == "assistant")
        token_usage = session.token_usage[:assistant_count]

        session.messages = remaining
        session.token_usage = token_usage
        session.metadata = SessionMetadata(
            message_count=len(remaining),
            tool_use_count=sum(1 for m in remaining if m.is_agent_tool_call),
            ipc_call_count=sum(1 for m in remaining if m.role == "tool" and m.is_internal),
            cumulative_tokens=sum(u.total_tokens for u in token_usage),
        )

    # Persistence

    def end(self, summary: str | None = None, path: Path | None = None) -> ChatMetadata | None:
        """Close the active session, saving it if the model was ever called.

        Args:
            summary: Optional free-text summary stored in the metadata
            path: Where to write the chat JSON; defaults to
                ``<chats_dir>/<YYYY-MM-DD>/chat-<HHMMSS>-<id>.json``

        Returns:
            Metadata of the saved chat, or None when nothing was saved.

        """
        session = self.session
        started_at = self._started_at or datetime.now(timezone.utc)

        if not session.token_usage:
            logger.info("Chat %s not saved: no model calls were made", session.session_id)
            self.discard()
            return None

        end = datetime.now(timezone.utc)
        session.end_time = end.isoformat()
        if path is None:
            path = self.chats_dir / f"{end:%Y-%m-%d}" / f"chat-{end:%H%M%S}-{session.session_id}.json"
        write_chat(session, path)

        metadata = ChatMetadata(
            session_id=session.session_id,
            start_time=session.start_time,
            end_time=session.end_time,
            duration=int((end - started_at).total_seconds() * 1000),
            message_count=session.metadata.message_count,
            tool_use_count=session.metadata.tool_use_count,
            ipc_call_count=session.metadata.ipc_call_count,
            cumulative_tokens=session.metadata.cumulative_tokens,
            model=session.model,
            servers=session.servers,
            summary=summary,
            file_path=str(path),
        )
        self.discard()
        return metadata


def write_chat(session: ChatSession, path: Path) -> None:
    """Write a chat session as pretty-printed JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(session.to_document(), f, indent=2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
