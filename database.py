import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from tenancy import TenantContext, TenantSession, require_context

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _create_engine() -> Engine:
    settings = get_settings()
    options: dict[str, Any] = {}
    if _is_sqlite(settings.database_url):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    eng = create_engine(settings.database_url, **options)
    if _is_sqlite(settings.database_url):
        event.listen(eng, "connect", _sqlite_on_connect)
    logger.debug(f"engine_created: dialect={eng.dialect.name}")
    return eng


def _sqlite_on_connect(dbapi_conn, _record):
    # foreign keys are off per connection unless switched on
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def raw_session_scope(
    factory: Callable[[], Session] = SessionLocal,
) -> Iterator[Session]:
    """Unguarded session for infrastructure code that has no tenant (startup checks, migrations)."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def tenant_scope(
    context: TenantContext,
    factory: Callable[[], Session] = SessionLocal,
    rejected: tuple[type[BaseException], ...] = (ValueError,),
) -> Iterator[TenantSession]:
    """
    Run one unit of work for a tenant: commit on success, roll back on error.

    Exceptions in ``rejected`` are caller mistakes and are logged at INFO; anything else
    is logged with its traceback.
    """
    require_context(context)
    session: Session = factory()
    db = TenantSession(session, context)
    try:
        yield db
        session.commit()
    except rejected as exc:
        session.rollback()
        logger.info(
            f"tenant_scope_rejected: user_id={context.user_id} "
            f"budget_id={context.budget_id} error={type(exc).__name__}"
        )
        raise
    except Exception:
        session.rollback()
        logger.exception(
            f"tenant_scope_failed: user_id={context.user_id} budget_id={context.budget_id}"
        )
        raise
    finally:
        db.close()
        session.close()


@contextmanager
def user_scope(
    user_id: str,
    factory: Callable[[], Session] = SessionLocal,
) -> Iterator[TenantSession]:
    with tenant_scope(TenantContext(user_id), factory) as db:
        yield db
