"""Collected user messages returned alongside API responses."""
from typing import Any, Dict, List, Optional


class FlashMessenger:
    """Accumulates ``{type, msg, tokens}`` messages for one response."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def add(self, msg: str, type_: str = "info", tokens: Optional[Dict[str, Any]] = None) -> None:
        message = {"type": type_, "msg": msg}
        if tokens:
            message["tokens"] = tokens
        self.messages.append(message)

    def error(self, msg: str, tokens: Optional[Dict[str, Any]] = None) -> None:
        self.add(msg, "error", tokens)

    def success(self, msg: str, tokens: Optional[Dict[str, Any]] = None) -> None:
        self.add(msg, "success", tokens)

    def info(self, msg: str, tokens: Optional[Dict[str, Any]] = None) -> None:
        self.add(msg, "info", tokens)

    def has_errors(self) -> bool:
        return any(m["type"] == "error" for m in self.messages)

    def __iter__(self):
        return iter(self.messages)

    def __len__(self):
        return len(self.messages)
