"""
Typed business errors raised by the order and payment services.

Routes never build HTTP responses for these by hand; `main` registers one
handler that maps `POSError.status_code` onto the response.
"""


class POSError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(POSError):
    """Malformed or missing input (empty item list, unknown table...)."""
    status_code = 400


class NotFoundError(POSError):
    status_code = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ForbiddenTransitionError(POSError):
    """Actor role may not perform the requested transition."""
    status_code = 403

    def __init__(self, role: str, from_state: str, to_state: str):
        self.role = role
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Role '{role}' cannot change {from_state} -> {to_state}")


class InvalidStateError(POSError):
    """Unknown state value, or a transition that is not defined from the current state."""
    status_code = 409


class SignatureError(POSError):
    """Inbound gateway notification failed HMAC verification."""
    status_code = 400
    gateway_code = "97"


class AmountMismatchError(POSError):
    """Inbound gateway amount disagrees with the order total."""
    status_code = 400
    gateway_code = "04"

    def __init__(self, expected: int, received):
        self.expected = expected
        self.received = received
        super().__init__(f"Amount mismatch: expected {expected}, received {received}")
