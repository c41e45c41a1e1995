from flask import Blueprint, request
from flask_login import current_user
import logging
from auth import admin_required, api_endpoint, success_response
from services.exceptions import ValidationError
from services.tripsheet_service import TripsheetService, validate_period
from services.billing_service import BillingService
from services.salary_service import SalaryService
from services.advance_service import AdvanceSalaryService
from timezone_utils import current_month_year

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

tripsheet_service = TripsheetService()
billing_service = BillingService()
salary_service = SalaryService()
advance_service = AdvanceSalaryService()


def _json_body():
    return request.get_json(silent=True) or {}


def _required_id(data, key):
    value = data.get(key)
    if value in (None, ''):
        raise ValidationError(f"{key} is required", field=key)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer", field=key)


def _requested_period():
    month, year = current_month_year()
    return validate_period(request.args.get('month', month), request.args.get('year', year))


# Tripsheets

@admin_bp.route('/tripsheets', methods=['GET'])
@admin_required
@api_endpoint
def list_tripsheets():
    month, year = _requested_period()
    tripsheets = tripsheet_service.list_tripsheets(month, year, request.args.get('status'))
    return success_response([tripsheet_service.to_dict(t, include_entries=False) for t in tripsheets],
                            stats=tripsheet_service.get_period_stats(month, year))


@admin_bp.route('/tripsheets/<int:tripsheet_id>', methods=['GET'])
@admin_required
@api_endpoint
def get_tripsheet(tripsheet_id):
    tripsheet = tripsheet_service.get_tripsheet(tripsheet_id)
    return success_response(tripsheet_service.to_dict(tripsheet))


@admin_bp.route('/tripsheets/<int:tripsheet_id>/approve', methods=['POST'])
@admin_required
@api_endpoint
def approve_tripsheet(tripsheet_id):
    tripsheet = tripsheet_service.approve(tripsheet_id, current_user.id)
    return success_response(tripsheet_service.to_dict(tripsheet, include_entries=False),
                            'Tripsheet approved')


@admin_bp.route('/tripsheets/<int:tripsheet_id>/reject', methods=['POST'])
@admin_required
@api_endpoint
def reject_tripsheet(tripsheet_id):
    reason = _json_body().get('reason')
    tripsheet = tripsheet_service.reject(tripsheet_id, current_user.id, reason)
    return success_response(tripsheet_service.to_dict(tripsheet, include_entries=False),
                            'Tripsheet sent back to driver')


# Billing

@admin_bp.route('/billing', methods=['GET'])
@admin_required
@api_endpoint
def list_bills():
    month = request.args.get('month', type=int)
    year = request.args.get('year', type=int)
    bills = billing_service.list_bills(month, year, request.args.get('status'))
    return success_response([bill.to_dict() for bill in bills],
                            stats=billing_service.get_period_stats(month, year))


@admin_bp.route('/billing', methods=['POST'])
@admin_required
@api_endpoint
def generate_bill():
    tripsheet_id = _required_id(_json_body(), 'tripsheetId')
    bill = billing_service.generate_bill(tripsheet_id, current_user.id)
    return success_response(bill.to_dict(), 'Bill generated successfully', 201)


@admin_bp.route('/billing/generate-all', methods=['POST'])
@admin_required
@api_endpoint
def generate_all_bills():
    data = _json_body()
    bills = billing_service.generate_all(data.get('month'), data.get('year'), current_user.id)
    return success_response(bills, f'Generated {len(bills)} bills successfully', 201)


@admin_bp.route('/billing/pending', methods=['GET'])
@admin_required
@api_endpoint
def pending_bills():
    month, year = _requested_period()
    tripsheets = billing_service.pending_tripsheets(month, year)
    return success_response([tripsheet_service.to_dict(t, include_entries=False) for t in tripsheets],
                            f'Found {len(tripsheets)} tripsheet(s) pending billing',
                            count=len(tripsheets))


@admin_bp.route('/billing/<int:bill_id>', methods=['DELETE'])
@admin_required
@api_endpoint
def delete_bill(bill_id):
    bill_number = billing_service.delete_bill(bill_id)
    return success_response({'billNumber': bill_number}, 'Bill deleted successfully')


@admin_bp.route('/billing/<int:bill_id>', methods=['GET'])
@admin_required
@api_endpoint
def get_bill(bill_id):
    return success_response(billing_service.get_bill(bill_id).to_dict())


@admin_bp.route('/billing/<int:bill_id>', methods=['PATCH'])
@admin_required
@api_endpoint
def adjust_bill(bill_id):
    data = _json_body()
    if 'adjustments' not in data:
        raise ValidationError("adjustments is required", field='adjustments')
    bill = billing_service.apply_adjustments(bill_id, data['adjustments'])
    return success_response(bill.to_dict(), 'Bill updated')


@admin_bp.route('/billing/<int:bill_id>/mark-sent', methods=['POST'])
@admin_required
@api_endpoint
def mark_bill_sent(bill_id):
    bill = billing_service.mark_sent(bill_id)
    return success_response(bill.to_dict(), 'Bill marked as sent')


@admin_bp.route('/billing/<int:bill_id>/mark-paid', methods=['POST'])
@admin_required
@api_endpoint
def mark_bill_paid(bill_id):
    bill = billing_service.mark_paid(bill_id)
    return success_response(bill.to_dict(), 'Bill marked as paid')


# Salary

@admin_bp.route('/salary', methods=['GET'])
@admin_required
@api_endpoint
def list_salaries():
    month = request.args.get('month', type=int)
    year = request.args.get('year', type=int)
    salaries = salary_service.list_salaries(month, year, request.args.get('status'))
    return success_response([salary.to_dict() for salary in salaries],
                            stats=salary_service.get_period_stats(month, year))


@admin_bp.route('/salary', methods=['POST'])
@admin_required
@api_endpoint
def generate_salary():
    data = _json_body()
    tripsheet_id = _required_id(data, 'tripsheetId')
    salary = salary_service.generate_salary(tripsheet_id, data.get('notes'), current_user.id)
    return success_response(salary.to_dict(), 'Salary generated successfully', 201)


@admin_bp.route('/salary/generate-all', methods=['POST'])
@admin_required
@api_endpoint
def generate_all_salaries():
    data = _json_body()
    salaries = salary_service.generate_all(data.get('month'), data.get('year'), current_user.id)
    return success_response(salaries, f'Generated {len(salaries)} salaries successfully', 201)


@admin_bp.route('/salary/pending', methods=['GET'])
@admin_required
@api_endpoint
def pending_salaries():
    month, year = _requested_period()
    tripsheets = salary_service.pending_tripsheets(month, year)
    return success_response([tripsheet_service.to_dict(t, include_entries=False) for t in tripsheets],
                            stats=salary_service.get_pending_counts(month, year))


@admin_bp.route('/salary/<int:salary_id>', methods=['GET'])
@admin_required
@api_endpoint
def get_salary(salary_id):
    return success_response(salary_service.get_salary(salary_id).to_dict())


@admin_bp.route('/salary/<int:salary_id>', methods=['PUT'])
@admin_required
@api_endpoint
def update_salary(salary_id):
    salary = salary_service.update_notes(salary_id, _json_body().get('notes'))
    return success_response(salary.to_dict(), 'Salary updated successfully')


@admin_bp.route('/salary/<int:salary_id>', methods=['DELETE'])
@admin_required
@api_endpoint
def delete_salary(salary_id):
    salary_number = salary_service.delete_salary(salary_id)
    return success_response({'salaryNumber': salary_number}, 'Salary deleted successfully')


@admin_bp.route('/salary/<int:salary_id>/mark-paid', methods=['POST'])
@admin_required
@api_endpoint
def mark_salary_paid(salary_id):
    salary = salary_service.mark_paid(salary_id, current_user.id)
    return success_response(salary.to_dict(), 'Salary marked as paid')


# Advance salary

@admin_bp.route('/advance-salary', methods=['GET'])
@admin_required
@api_endpoint
def list_advances():
    advances = advance_service.list_advances(
        driver_id=request.args.get('driverId', type=int),
        month=request.args.get('month', type=int),
        year=request.args.get('year', type=int),
        status=request.args.get('status'),
    )
    return success_response([advance.to_dict() for advance in advances],
                            stats=advance_service.get_stats(advances))


@admin_bp.route('/advance-salary', methods=['POST'])
@admin_required
@api_endpoint
def create_advance():
    data = _json_body()
    advance = advance_service.request_advance(
        driver_id=data.get('driverId'),
        vehicle_id=data.get('vehicleId'),
        amount=data.get('amount'),
        month=data.get('requestedMonth'),
        year=data.get('requestedYear'),
        reason=data.get('reason'),
        notes=data.get('notes'),
    )
    return success_response(advance.to_dict(), 'Advance salary request created', 201)


@admin_bp.route('/advance-salary/<int:advance_id>/approve', methods=['POST'])
@admin_required
@api_endpoint
def approve_advance(advance_id):
    advance = advance_service.approve(advance_id, current_user.id)
    return success_response(advance.to_dict(), 'Advance salary approved')


@admin_bp.route('/advance-salary/<int:advance_id>/reject', methods=['POST'])
@admin_required
@api_endpoint
def reject_advance(advance_id):
    data = _json_body()
    reason = data.get('rejectionReason') or data.get('reason')
    advance = advance_service.reject(advance_id, current_user.id, reason)
    return success_response(advance.to_dict(), 'Advance salary rejected')


@admin_bp.route('/advance-salary/<int:advance_id>/pay', methods=['POST'])
@admin_required
@api_endpoint
def pay_advance(advance_id):
    advance = advance_service.pay(advance_id, current_user.id)
    return success_response(advance.to_dict(), 'Advance salary marked as paid')


@admin_bp.route('/advance-salary/<int:advance_id>/deduct', methods=['POST'])
@admin_required
@api_endpoint
def deduct_advance(advance_id):
    result = advance_service.deduct_from_salary(advance_id, _json_body().get('salaryId'))
    return success_response(result, 'Advance deducted from salary successfully')
