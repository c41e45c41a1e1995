from flask import Blueprint, request
from flask_login import current_user
import logging
from auth import driver_required, api_endpoint, success_response
from services.exceptions import NotFoundError
from services.tripsheet_service import TripsheetService, validate_period
from services.salary_service import SalaryService
from timezone_utils import current_month_year

logger = logging.getLogger(__name__)

driver_bp = Blueprint('driver', __name__)

tripsheet_service = TripsheetService()
salary_service = SalaryService()


def _requested_period():
    month, year = current_month_year()
    return validate_period(request.args.get('month', month), request.args.get('year', year))


@driver_bp.route('/tripsheet', methods=['GET'])
@driver_required
@api_endpoint
def get_tripsheet():
    """Current driver's tripsheet for the month, created on first access"""
    month, year = _requested_period()
    tripsheet = tripsheet_service.get_or_create(current_user, month, year)
    return success_response(tripsheet_service.to_dict(tripsheet))


@driver_bp.route('/tripsheet/entry', methods=['POST'])
@driver_required
@api_endpoint
def save_entry():
    entry = tripsheet_service.save_entry(current_user, request.get_json(silent=True) or {})
    tripsheet = entry.tripsheet
    return success_response({
        'entry': entry.to_dict(),
        'summary': tripsheet_service.get_summary(tripsheet).to_dict(),
    }, 'Entry saved')


@driver_bp.route('/tripsheet/submit', methods=['POST'])
@driver_required
@api_endpoint
def submit_tripsheet():
    data = request.get_json(silent=True) or {}
    tripsheet = tripsheet_service.submit(current_user, data.get('month'), data.get('year'))
    return success_response(tripsheet_service.to_dict(tripsheet, include_entries=False),
                            'Tripsheet submitted for approval')


@driver_bp.route('/previous-km', methods=['GET'])
@driver_required
@api_endpoint
def previous_km():
    """Last closing km before the given date, used to prefill the starting km"""
    previous = tripsheet_service.previous_closing_km(current_user, request.args.get('date'))
    return success_response(previous)


@driver_bp.route('/salary-preview', methods=['GET'])
@driver_required
@api_endpoint
def salary_preview():
    month, year = _requested_period()
    tripsheet = tripsheet_service.find_for_driver(current_user, month, year)
    if not tripsheet:
        raise NotFoundError("No tripsheet found for this month")
    calculation = salary_service.preview(tripsheet)
    return success_response({
        'tripsheetId': tripsheet.id,
        'status': tripsheet.status.value,
        'calculation': calculation.to_dict(),
    })
