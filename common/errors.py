"""
Error taxonomy shared by the store, the dispatch core and the HTTP layer.

Every error carries the HTTP status it maps to and a short machine code
that ends up in the response envelope's ``error`` field.
"""


class DispatchError(Exception):
    """Base class for all dispatch errors."""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(DispatchError):
    """Malformed input, rejected before touching the store."""
    status_code = 400
    code = "validation_error"


class NotFound(DispatchError):
    """An identity did not resolve."""
    status_code = 404
    code = "not_found"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class Conflict(DispatchError):
    """A concurrent mutation won the race. Safe to retry."""
    status_code = 409
    code = "conflict"


class InvalidState(DispatchError):
    """Operation not allowed in the entity's current state."""
    status_code = 409
    code = "invalid_state"


class TaskAlreadyAssigned(Conflict, InvalidState):
    """Task is no longer Pending because an assignment already won."""
    code = "already_assigned"


class InvalidTransition(DispatchError):
    """Requested lifecycle transition is not allowed."""
    status_code = 409
    code = "invalid_transition"


class LoadCapExceeded(DispatchError):
    """Worker already holds as many tasks as the load cap allows."""
    status_code = 409
    code = "load_cap_exceeded"


class WorkerBusy(DispatchError):
    """Worker still holds tasks and cannot be deleted."""
    status_code = 409
    code = "worker_busy"


class EntityInUse(DispatchError):
    """Area or asset is still referenced by a task and cannot be deleted."""
    status_code = 409
    code = "in_use"


class NoEligibleWorker(DispatchError):
    """
    Raised only at the API boundary. Inside the engine this is a normal
    outcome reported through AssignmentResult.
    """
    status_code = 409
    code = "no_eligible_worker"


class AssignmentCancelled(DispatchError):
    """Assignment was cancelled before its commit started."""
    status_code = 409
    code = "cancelled"


class StoreUnavailable(DispatchError):
    """Backing store kept failing after retries."""
    status_code = 503
    code = "store_unavailable"
