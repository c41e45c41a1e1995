"""
Service Layer Architecture

Business logic behind the tripsheet, billing and salary endpoints. Services own
transactions and raise the typed errors in ``services.exceptions``; the route
handlers only translate them to JSON.

Services Architecture:
- **TripsheetService**: monthly tripsheet creation, daily entries, submit/approve/reject
- **BillingService**: client bills from approved tripsheets, adjustments, payment status
- **SalaryService**: driver salaries from approved tripsheets, advance netting
- **AdvanceSalaryService**: advance requests, approval, payment and deduction

Service classes are imported from their modules, e.g.
``from services.billing_service import BillingService``.
"""

from .exceptions import (
    ServiceError,
    ValidationError,
    NotFoundError,
    ConfigurationError,
    PreconditionError,
    DuplicateBillError,
    DuplicateSalaryError,
    PartialBatchFailure,
)
from .transaction_helper import TransactionHelper

__all__ = [
    'ServiceError',
    'ValidationError',
    'NotFoundError',
    'ConfigurationError',
    'PreconditionError',
    'DuplicateBillError',
    'DuplicateSalaryError',
    'PartialBatchFailure',
    'TransactionHelper'
]
