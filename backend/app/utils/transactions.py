from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# session.info key counting the smart_transaction blocks open on a session
_DEPTH_KEY = "smart_transaction_depth"


@contextmanager
def smart_transaction(session: Session) -> Iterator[Session]:
    """
    Run the block as one atomic unit of work on `session`.

    The outermost block closes a transaction the session autobegan for plain
    reads, so it always starts on a fresh boundary and commits (or rolls
    back) as a whole. A block opened inside another smart_transaction, or
    after the caller staged ORM writes, runs in a SAVEPOINT (begin_nested)
    and the outer commit stays with the caller.
    Usage:
        with smart_transaction(db):
            ... DB work ...
    """
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        if session.in_transaction():
            # Core updates never show up in new/dirty, hence the depth counter
            if depth > 0 or session.new or session.dirty or session.deleted:
                with session.begin_nested():
                    yield session
                return
            session.commit()
        with session.begin():
            yield session
    finally:
        session.info[_DEPTH_KEY] = depth


def is_constraint_violation(exc: IntegrityError, constraint_name: str) -> bool:
    """True when `exc` was raised by the named CHECK/UNIQUE constraint."""
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name == constraint_name
    return constraint_name in str(orig or exc)
