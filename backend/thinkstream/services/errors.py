"""
Generation session error taxonomy.

Only backend failures and misconfigured sessions are true errors.
Truncation and user cancellation are reported as data.
"""


class GenerationSessionError(Exception):
    """Base class for generation session errors"""


class SessionAlreadyActiveError(GenerationSessionError):
    """A session was started while another is still active on the conversation"""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation {conversation_id} already has an active generation session"
        )


class SessionStateError(GenerationSessionError):
    """A session operation was attempted from the wrong state"""


class BackendFailureError(GenerationSessionError):
    """The stream producer failed (network or model error)"""
