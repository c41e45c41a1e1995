"""
Transaction Helper Service

Commit/rollback handling for service operations:
- ``atomic()`` context manager for multi-row units of work
- ``with_transaction`` decorator for service methods
- Retry with backoff for dropped database connections
"""

from contextlib import contextmanager
from functools import wraps
from typing import Callable
import logging
from sqlalchemy.exc import OperationalError, DisconnectionError
from app import db
from services.exceptions import ServiceError
import time

logger = logging.getLogger(__name__)

class TransactionHelper:
    """Helper class for managing database transactions safely"""

    @staticmethod
    @contextmanager
    def atomic():
        """
        Run a block as one unit of work: commit when it completes,
        roll back everything and re-raise when it raises.

        Usage:
            with TransactionHelper.atomic():
                db.session.add(salary)
                db.session.flush()
                mark_advances(salary.id)
        """
        try:
            yield db.session
            db.session.commit()
        except ServiceError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Transaction rolled back: {str(e)}")
            raise

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Decorator that wraps a service method in a database transaction.
        Commits on return, rolls back on any exception. Dropped connections
        are retried; business errors are re-raised immediately.

        Usage:
            @TransactionHelper.with_transaction
            def approve(self, tripsheet_id, admin_id):
                ...
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            max_retries = 3
            for attempt in range(max_retries):
                try:
                    result = func(*args, **kwargs)
                    db.session.commit()
                    return result
                except (DisconnectionError, OperationalError) as e:
                    db.session.rollback()
                    logger.warning(f"Database connection error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {str(e)}")
                    if attempt < max_retries - 1:
                        time.sleep(0.5 * (2 ** attempt))
                        continue
                    logger.error(f"Transaction failed after {max_retries} attempts: {str(e)}")
                    raise
                except Exception:
                    db.session.rollback()
                    raise
            return None
        return wrapper
