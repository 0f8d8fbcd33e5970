from buddy.memory.conversation_log import RedisConversationLog
from buddy.memory.subscriber_store import InMemorySubscriberStore, RedisSubscriberStore

__all__ = ["InMemorySubscriberStore", "RedisConversationLog", "RedisSubscriberStore"]
