from buddy.agents.conversation_agent import LanguageBuddyAgent
from buddy.agents.digest_agent import ConversationDigestService

__all__ = ["ConversationDigestService", "LanguageBuddyAgent"]
