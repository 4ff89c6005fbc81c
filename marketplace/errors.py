"""Domain errors raised by the order engine.

Every component raises these up to the caller; nothing is logged and dropped.
The HTTP layer maps the five base kinds onto status codes.
"""
from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for engine errors."""

    code = "marketplace_error"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())
        self.message = str(self.args[0])

    def default_message(self) -> str:
        return self.code.replace("_", " ")


class ValidationError(MarketplaceError):
    """Malformed or missing input."""

    code = "validation_error"


class ConflictError(MarketplaceError):
    """The request collides with existing state."""

    code = "conflict"


class NotFoundError(MarketplaceError):
    code = "not_found"


class IllegalTransitionError(MarketplaceError):
    """State machine violation."""

    code = "illegal_transition"


class AuthorizationError(MarketplaceError):
    """Actor lacks ownership or role for the mutation."""

    code = "forbidden"


# Categories

class DuplicateSlugError(ConflictError):
    code = "duplicate_slug"

    def __init__(self, slug: str):
        super().__init__(f"Category with slug '{slug}' already exists")
        self.slug = slug


class CategoryNotFoundError(NotFoundError):
    code = "category_not_found"

    def __init__(self, category_id: int | str):
        super().__init__(f"Category {category_id} not found")
        self.category_id = category_id


class ParentNotFoundError(NotFoundError):
    code = "parent_not_found"

    def __init__(self, parent_id: int):
        super().__init__(f"Parent category {parent_id} not found")
        self.parent_id = parent_id


class SelfParentError(ValidationError):
    code = "self_parent"

    def __init__(self, category_id: int):
        super().__init__(f"Category {category_id} cannot be its own parent")


class CyclicDependencyError(ValidationError):
    code = "cyclic_dependency"

    def __init__(self, category_id: int, parent_id: int):
        super().__init__(
            f"Moving category {category_id} under {parent_id} would create a cycle; "
            "choose a parent outside its subtree"
        )


class HasChildrenError(ConflictError):
    code = "has_children"

    def __init__(self, category_id: int):
        super().__init__(f"Category {category_id} has child categories; move or delete them first")


class CategoryInUseError(ConflictError):
    code = "category_in_use"

    def __init__(self, category_id: int):
        super().__init__(
            f"Category {category_id} is used by orders or executor profiles; deactivate it instead"
        )


# Geo

class InvalidCoordinateError(ValidationError):
    code = "invalid_coordinate"


# Orders

class OrderNotFoundError(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class IncompleteOrderError(ValidationError):
    code = "incomplete_order"

    def __init__(self, missing: list[str]):
        super().__init__(f"Order cannot be published, missing: {', '.join(missing)}")
        self.missing = missing


class TerminalOrderError(IllegalTransitionError):
    code = "terminal_order"

    def __init__(self, order_id: int, status: str):
        super().__init__(f"Order {order_id} is already {status}")


class OrderLockTimeoutError(ConflictError):
    """Another request holds the order; refresh and retry."""

    code = "order_locked"
    retryable = True

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} is being modified by another request, retry shortly")


# Applications

class OrderNotAcceptingApplicationsError(IllegalTransitionError):
    code = "order_not_accepting_applications"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} is not open for applications")


class DuplicateApplicationError(ConflictError):
    code = "duplicate_application"

    def __init__(self, order_id: int, executor_id: int):
        super().__init__(f"Executor {executor_id} already applied to order {order_id}")


class ApplicationNotFoundError(NotFoundError):
    code = "application_not_found"

    def __init__(self, application_id: int):
        super().__init__(f"Application {application_id} not found")


class ApplicationNotPendingError(IllegalTransitionError):
    code = "application_not_pending"

    def __init__(self, application_id: int, status: str):
        super().__init__(
            f"Application {application_id} is {status}; only pending applications can change, refresh and retry"
        )


class ExecutorAlreadySelectedError(ConflictError):
    """Lost the accept race: the order already has an executor."""

    code = "executor_already_selected"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} already has an accepted application, refresh the order")


class ExecutorProfileNotFoundError(NotFoundError):
    code = "executor_profile_not_found"
