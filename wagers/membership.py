from collections import defaultdict
from typing import Protocol


class ChatMembership(Protocol):
    """Lookup into the chat service that owns membership and join requests."""

    def is_member(self, user_id: str, chat_id: str) -> bool:
        ...


class InMemoryChatMembership:
    def __init__(self):
        self._members: dict[str, set[str]] = defaultdict(set)

    def add_member(self, chat_id: str, user_id: str) -> None:
        self._members[chat_id].add(user_id)

    def remove_member(self, chat_id: str, user_id: str) -> None:
        self._members[chat_id].discard(user_id)

    def is_member(self, user_id: str, chat_id: str) -> bool:
        return user_id in self._members.get(chat_id, ())
