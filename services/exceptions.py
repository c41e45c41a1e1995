"""
Service error taxonomy

Every error raised by the calculation core or the services carries a machine
readable code and the HTTP status the API layer should answer with.
"""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for expected business errors"""
    code = 'SERVICE_ERROR'
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None,
                 code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'success': False,
            'error': self.code,
            'message': self.message,
        }
        if self.field:
            payload['field'] = self.field
        return payload


class ValidationError(ServiceError):
    """Malformed entry or request input"""
    code = 'VALIDATION_ERROR'
    status_code = 400


class NotFoundError(ServiceError):
    code = 'NOT_FOUND'
    status_code = 404


class ConfigurationError(ServiceError):
    """Billing rules for a vehicle type are missing or incomplete"""
    code = 'CONFIGURATION_ERROR'
    status_code = 422


class PreconditionError(ServiceError):
    """The record is not in a state that allows the operation"""
    code = 'PRECONDITION_FAILED'
    status_code = 409


class DuplicateBillError(PreconditionError):
    code = 'DUPLICATE_BILL'


class DuplicateSalaryError(PreconditionError):
    code = 'DUPLICATE_SALARY'


class PartialBatchFailure(ServiceError):
    """
    Raised by batch generation when some tripsheets failed.
    The successful items were still committed and are available on ``results``.
    """
    code = 'PARTIAL_BATCH_FAILURE'
    status_code = 207

    def __init__(self, results: List[Dict[str, Any]], errors: List[Dict[str, Any]]):
        message = f"{len(results)} succeeded, {len(errors)} failed"
        super().__init__(message)
        self.results = results
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload['success'] = bool(self.results)
        payload['data'] = self.results
        payload['errors'] = self.errors
        return payload
