"""
Failure taxonomy for one notification occurrence.

Each error is contained to its occurrence; the orchestrator maps it to a
summary detail and never lets it abort the batch.
"""
from typing import Optional


class DispatchError(Exception):
    """Base class; `reason` is the machine-readable summary reason."""
    reason = "dispatch_error"


class ClaimConflict(DispatchError):
    """Another invocation owns (or already delivered) this occurrence."""
    reason = "already_processing_or_sent"

    def __init__(self, key, status: Optional[str] = None):
        super().__init__(f"Occurrence {key} already claimed (status={status})")
        self.key = key
        self.status = status


class RecipientUnresolved(DispatchError):
    """Neither a group channel nor a direct channel is available."""
    reason = "recipient_unresolved"

    def __init__(self, patient_id):
        super().__init__(f"No deliverable channel for patient {patient_id}")
        self.patient_id = patient_id


class TransportFailure(DispatchError):
    """Non-success response or network error from the messaging platform."""
    reason = "transport_failure"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedInput(DispatchError):
    """A reminder row is missing or carries an invalid required field."""
    reason = "malformed_input"

    def __init__(self, record_id, problem: str):
        super().__init__(f"Reminder {record_id} is malformed: {problem}")
        self.record_id = record_id
        self.problem = problem
