"""Worker identity, store handle and clock, passed explicitly to every queue operation.

Nothing in the queue layer reads a global worker id or calls ``datetime.now``
directly; tests swap in a fake clock and a throwaway database through this
object.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import StoreUnavailable


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class WorkerContext:
    """Everything a queue operation needs to know about who is calling and when.

    Attributes:
        worker_id: Value written to ``locked_by`` on claim.
        session_factory: Produces short-lived sessions; one per operation so
            that no transaction stays open while a stage runs for minutes.
        clock: Returns the current aware UTC time.
    """

    worker_id: str
    session_factory: sessionmaker
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session; roll back on error and surface driver failures as StoreUnavailable."""
        db = self.session_factory()
        try:
            yield db
        except (OperationalError, InterfaceError) as e:
            db.rollback()
            raise StoreUnavailable(str(e.orig) if getattr(e, "orig", None) else str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
