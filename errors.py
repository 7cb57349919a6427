from typing import Optional


class NotFound(ValueError):
    pass


class ValidationError(ValueError):
    pass


class ConstraintViolation(ValueError):
    pass


class AlreadyExists(ConstraintViolation):
    pass


class DuplicatePaymentMethod(AlreadyExists):
    def __init__(self, name: str, institution: Optional[str]) -> None:
        self.display_name = f"{name} ({institution})" if institution else name
        super().__init__(f'Payment method already exists: "{self.display_name}"')


class ContextViolation(RuntimeError):
    """Raised when data access happens outside an established tenant scope."""
