from db_chat_agent.storage.conversation_store import ConversationStore, ConversationTabState
from db_chat_agent.storage.store import ConversationDb

__all__ = [
    "ConversationDb",
    "ConversationStore",
    "ConversationTabState",
]
