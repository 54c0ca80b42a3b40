from app.models.conversation import Conversation, StoredMessage
from app.models.tool_confirmation import ToolConfirmation

__all__ = ["Conversation", "StoredMessage", "ToolConfirmation"]
