"""
In-memory chat history per conversation.

Feeds the last turns of a conversation back into generation. History is
process-local; discussed verses (the part that affects ranking) live in the
conversation context store instead.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import time
import uuid


@dataclass
class Conversation:
    conversation_id: str
    messages: List[dict] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)


class ConversationHistory:
    """
    Tracks message history per conversation.

    Conversations not accessed for max_age_seconds are removed once more than
    100 conversations are held.
    """

    def __init__(self, max_age_seconds: int = 3600):
        self.conversations: Dict[str, Conversation] = {}
        self.max_age_seconds = max_age_seconds

    def get_or_create(self, conversation_id: Optional[str] = None) -> str:
        """Return an existing conversation id, or create one (client-provided id or a new UUID)."""
        if conversation_id and conversation_id in self.conversations:
            self.conversations[conversation_id].last_accessed = time.time()
            return conversation_id

        self._run_cleanup_if_needed()
        c_id = conversation_id or str(uuid.uuid4())
        self.conversations[c_id] = Conversation(conversation_id=c_id)
        return c_id

    def get_messages(self, conversation_id: str) -> List[dict]:
        """Message history (oldest first). Empty list if the conversation is unknown."""
        c = self.conversations.get(conversation_id)
        if c is None:
            return []
        c.last_accessed = time.time()
        return list(c.messages)

    def add_message(self, conversation_id: str, role: str, content: str, verse_keys: Optional[List[str]] = None) -> None:
        if conversation_id not in self.conversations:
            raise ValueError(f"Conversation {conversation_id} not found")

        message = {"role": role, "content": content}
        if verse_keys is not None:
            message["verse_keys"] = verse_keys

        c = self.conversations[conversation_id]
        c.messages.append(message)
        c.last_accessed = time.time()

    def delete_last_message(self, conversation_id: str) -> dict:
        """Pop the last message (rollback after a failed turn)."""
        if conversation_id not in self.conversations:
            raise ValueError(f"Conversation {conversation_id} not found")

        c = self.conversations[conversation_id]
        if not c.messages:
            raise ValueError(f"Conversation {conversation_id} has no messages")

        c.last_accessed = time.time()
        return c.messages.pop()

    def cleanup_old_conversations(self) -> int:
        """Remove stale conversations, return count removed."""
        current_time = time.time()
        to_remove = [
            c_id for c_id, c in self.conversations.items()
            if current_time - c.last_accessed > self.max_age_seconds
        ]
        for c_id in to_remove:
            del self.conversations[c_id]
        return len(to_remove)

    def _run_cleanup_if_needed(self) -> None:
        if len(self.conversations) > 100:
            self.cleanup_old_conversations()
