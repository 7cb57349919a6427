from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from errors import ContextViolation


@dataclass(frozen=True)
class TenantContext:
    user_id: str
    budget_id: Optional[int] = None


def require_context(context: Optional[TenantContext]) -> TenantContext:
    if context is None or not context.user_id:
        raise ContextViolation(
            "Tenant context not set. Data access must run within tenant_scope or user_scope."
        )
    return context


class TenantSession:
    """
    The data-access handle services are given.

    It pairs a SQLAlchemy session with the tenant it was opened for. Every
    primitive checks that the context is present and the owning scope is
    still open, so a query that escapes its request fails loudly instead of
    running unscoped. Infrastructure code that has no tenant uses
    ``database.raw_session_scope`` and a plain ``Session`` instead.
    """

    def __init__(self, session: Session, context: Optional[TenantContext]) -> None:
        self._context = require_context(context)
        self._session = session
        self._closed = False

    @property
    def context(self) -> TenantContext:
        return self._context

    @property
    def user_id(self) -> str:
        return self._context.user_id

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def require_budget(self) -> int:
        self._require_active("require_budget")
        if self._context.budget_id is None:
            raise ContextViolation(
                "Budget context not set. Budget data must be accessed within tenant_scope."
            )
        return self._context.budget_id

    def _require_active(self, primitive: str) -> Session:
        if self._closed:
            raise ContextViolation(
                f"{primitive}() called after the tenant scope for user {self._context.user_id} ended"
            )
        return self._session

    def execute(self, statement: Any, *args: Any, **kwargs: Any) -> Any:
        return self._require_active("execute").execute(statement, *args, **kwargs)

    def scalar(self, statement: Any, *args: Any, **kwargs: Any) -> Any:
        return self._require_active("scalar").scalar(statement, *args, **kwargs)

    def scalars(self, statement: Any, *args: Any, **kwargs: Any) -> Any:
        return self._require_active("scalars").scalars(statement, *args, **kwargs)

    def get(self, entity: Any, ident: Any) -> Any:
        return self._require_active("get").get(entity, ident)

    def add(self, instance: Any) -> None:
        self._require_active("add").add(instance)

    def add_all(self, instances: Any) -> None:
        self._require_active("add_all").add_all(instances)

    def delete(self, instance: Any) -> None:
        self._require_active("delete").delete(instance)

    def flush(self) -> None:
        self._require_active("flush").flush()

    def refresh(self, instance: Any) -> None:
        self._require_active("refresh").refresh(instance)

    @property
    def dialect_name(self) -> str:
        return self._require_active("dialect_name").get_bind().dialect.name
