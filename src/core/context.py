"""Conversation history for the responder."""

from __future__ import annotations

from dataclasses import dataclass, field

from src.services.llm.protocol import LLMResponse, Message, Role, ToolCall


@dataclass
class ConversationManager:
    """Holds the running message history for one call.

    The history is bounded to the last `max_history` messages. A trimmed
    window never begins with tool results whose assistant request has
    already been dropped.
    """

    system_prompt: str = ""
    messages: list[Message] = field(default_factory=list)
    max_history: int = 20

    def add_user_message(self, content: str) -> Message:
        msg = Message(role=Role.USER, content=content)
        self.messages.append(msg)
        self._trim_history()
        return msg

    def add_assistant_message(self, content: str) -> Message:
        msg = Message(role=Role.ASSISTANT, content=content)
        self.messages.append(msg)
        self._trim_history()
        return msg

    def add_tool_request(self, response: LLMResponse) -> Message:
        """Record the model's tool-call turn before the results arrive."""
        msg = Message(
            role=Role.ASSISTANT,
            content=response.text or "",
            tool_calls=response.tool_calls,
        )
        self.messages.append(msg)
        return msg

    def add_tool_result(self, call: ToolCall, content: str) -> Message:
        msg = Message(role=Role.TOOL, content=content, tool_call_id=call.id)
        self.messages.append(msg)
        self._trim_history()
        return msg

    def _trim_history(self) -> None:
        """Keep only the last max_history messages."""
        if len(self.messages) > self.max_history:
            self.messages = self.messages[-self.max_history :]
        while self.messages and self.messages[0].role is Role.TOOL:
            self.messages.pop(0)

    def build_messages(self, note: str | None = None) -> list[Message]:
        """System prompt, history, and an optional one-off system note."""
        messages = [Message(role=Role.SYSTEM, content=self.system_prompt), *self.messages]
        if note:
            messages.append(Message(role=Role.SYSTEM, content=note))
        return messages

    def __len__(self) -> int:
        return len(self.messages)
