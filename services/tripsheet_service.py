"""
Tripsheet Service

Monthly tripsheet lifecycle: creation with every day pre-populated, daily
entry writes while in draft, driver submission and admin approval/rejection.
"""

from typing import Optional, Dict, Any, List
import logging
from datetime import date, datetime
from models import (db, Tripsheet, TripsheetEntry, Vehicle, User,
                    TripsheetStatus, EntryStatus)
from calculators import TripsheetSummary, recompute_summary
from utils.time_calculator import (calculate_total_hours, calculate_extra_hours,
                                   calculate_driver_extra_hours, get_day_type, get_day_name,
                                   month_dates, is_valid_time, format_time)
from timezone_utils import get_ist_time_naive
from .exceptions import ValidationError, NotFoundError, PreconditionError
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)

MAX_REMARKS_LENGTH = 500


def _parse_number(value, field: str, integer: bool = False):
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if number < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return int(round(number)) if integer else number


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError("Date is required", field='date')
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError("Date must be in YYYY-MM-DD format", field='date')


def validate_period(month, year):
    try:
        month, year = int(month), int(year)
    except (TypeError, ValueError):
        raise ValidationError("Month and year are required")
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", field='month')
    if year < 2000:
        raise ValidationError("Invalid year", field='year')
    return month, year


class TripsheetService:
    """Service class for tripsheet and daily entry operations"""

    def get_tripsheet(self, tripsheet_id: int) -> Tripsheet:
        tripsheet = db.session.get(Tripsheet, tripsheet_id)
        if not tripsheet:
            raise NotFoundError("Tripsheet not found")
        return tripsheet

    def find_for_driver(self, driver: User, month: int, year: int) -> Optional[Tripsheet]:
        return Tripsheet.query.filter_by(driver_id=driver.id, month=month, year=year).first()

    def initialize(self, driver: User, month: int, year: int) -> Tripsheet:
        """
        Create the driver's tripsheet for the month on their assigned vehicle,
        with one pending entry per calendar day. Returns the existing sheet if
        there already is one.
        """
        month, year = validate_period(month, year)
        if not driver.assigned_vehicle_id:
            raise PreconditionError("No vehicle is assigned to this driver")

        tripsheet = Tripsheet.query.filter_by(
            vehicle_id=driver.assigned_vehicle_id, month=month, year=year
        ).first()
        if tripsheet:
            if tripsheet.driver_id != driver.id:
                raise PreconditionError("The tripsheet for this vehicle and month belongs to another driver")
            return tripsheet

        tripsheet = Tripsheet(
            tripsheet_number=Tripsheet.generate_number(year),
            vehicle_id=driver.assigned_vehicle_id,
            driver_id=driver.id,
            month=month,
            year=year,
            status=TripsheetStatus.DRAFT,
        )
        db.session.add(tripsheet)
        db.session.flush()

        for day in month_dates(month, year):
            tripsheet.entries.append(self._pending_entry(tripsheet, day))

        db.session.flush()
        logger.info(f"Tripsheet {tripsheet.tripsheet_number} created for driver {driver.id}, {month}/{year}")
        return tripsheet

    def _pending_entry(self, tripsheet: Tripsheet, day: date) -> TripsheetEntry:
        return TripsheetEntry(
            tripsheet_id=tripsheet.id,
            entry_date=day,
            day_of_week=get_day_name(day),
            day_type=get_day_type(day),
            status=EntryStatus.PENDING,
        )

    def backfill_missing_days(self, tripsheet: Tripsheet) -> int:
        """Add pending rows for any calendar day without an entry. Returns the number added."""
        existing = {entry.entry_date for entry in tripsheet.entries}
        missing = [day for day in month_dates(tripsheet.month, tripsheet.year) if day not in existing]
        for day in missing:
            tripsheet.entries.append(self._pending_entry(tripsheet, day))
        if missing:
            db.session.flush()
            logger.warning(f"Tripsheet {tripsheet.tripsheet_number}: backfilled {len(missing)} missing days")
        return len(missing)

    def get_summary(self, tripsheet: Tripsheet) -> TripsheetSummary:
        """Summary recomputed from the entries on every call"""
        return recompute_summary(
            [entry.to_daily_entry() for entry in tripsheet.entries],
            tripsheet.month, tripsheet.year
        )

    @TransactionHelper.with_transaction
    def get_or_create(self, driver: User, month: int, year: int) -> Tripsheet:
        tripsheet = self.initialize(driver, month, year)
        self.backfill_missing_days(tripsheet)
        return tripsheet

    @TransactionHelper.with_transaction
    def save_entry(self, driver: User, entry_data: Dict[str, Any]) -> TripsheetEntry:
        """
        Create or update the driver's entry for one day.

        entry_data uses the API field names: date, status, startingKm,
        closingKm, startingTime, closingTime, fuelLitres, fuelAmount, remarks.
        """
        entry_date = _parse_date(entry_data.get('date'))
        tripsheet = self.initialize(driver, entry_date.month, entry_date.year)

        if not tripsheet.is_editable:
            raise PreconditionError(
                f"Tripsheet is {tripsheet.status.value} and can no longer be edited"
            )

        self.backfill_missing_days(tripsheet)
        entry = TripsheetEntry.query.filter_by(tripsheet_id=tripsheet.id, entry_date=entry_date).first()

        status = entry_data.get('status')
        try:
            entry_status = EntryStatus(status)
        except ValueError:
            raise ValidationError("Status must be working, off or pending", field='status')

        remarks = entry_data.get('remarks')
        if remarks is not None and not isinstance(remarks, str):
            raise ValidationError("Remarks must be text", field='remarks')
        if remarks and len(remarks) > MAX_REMARKS_LENGTH:
            raise ValidationError(f"Remarks cannot exceed {MAX_REMARKS_LENGTH} characters", field='remarks')

        entry.status = entry_status
        entry.remarks = remarks or None

        if entry_status == EntryStatus.WORKING:
            self._apply_working_fields(entry, entry_data)
            vehicle = db.session.get(Vehicle, tripsheet.vehicle_id)
            if vehicle and entry.closing_km > (vehicle.current_odometer or 0):
                vehicle.current_odometer = entry.closing_km
        else:
            entry.clear_working_fields()

        logger.info(f"Tripsheet {tripsheet.tripsheet_number}: {entry_date} saved as {entry_status.value}")
        return entry

    def _apply_working_fields(self, entry: TripsheetEntry, data: Dict[str, Any]):
        starting_km = _parse_number(data.get('startingKm'), 'startingKm', integer=True)
        closing_km = _parse_number(data.get('closingKm'), 'closingKm', integer=True)
        if starting_km is None:
            raise ValidationError("Starting KM is required for a working day", field='startingKm')
        if closing_km is None:
            raise ValidationError("Closing KM is required for a working day", field='closingKm')
        if closing_km <= starting_km:
            raise ValidationError("Closing KM must be greater than starting KM", field='closingKm')

        starting_time = data.get('startingTime')
        closing_time = data.get('closingTime')
        if not is_valid_time(starting_time):
            raise ValidationError("Starting time is required in HH:mm format", field='startingTime')
        if not is_valid_time(closing_time):
            raise ValidationError("Closing time is required in HH:mm format", field='closingTime')

        fuel_litres = _parse_number(data.get('fuelLitres'), 'fuelLitres')
        fuel_amount = _parse_number(data.get('fuelAmount'), 'fuelAmount')
        fuel_litres = fuel_litres or None
        fuel_amount = fuel_amount or None
        if (fuel_litres is None) != (fuel_amount is None):
            raise ValidationError("Fuel litres and fuel amount must be entered together",
                                  field='fuelAmount' if fuel_amount is None else 'fuelLitres')

        entry.starting_km = starting_km
        entry.closing_km = closing_km
        entry.total_km = closing_km - starting_km
        entry.starting_time = format_time(starting_time)
        entry.closing_time = format_time(closing_time)

        total_hours = calculate_total_hours(entry.starting_time, entry.closing_time)
        entry.total_hours = total_hours
        # Both overages come straight from total_hours
        entry.extra_hours = calculate_extra_hours(total_hours)
        entry.driver_extra_hours = calculate_driver_extra_hours(total_hours)

        entry.fuel_litres = fuel_litres
        entry.fuel_amount = fuel_amount

    def pending_dates(self, tripsheet: Tripsheet) -> List[date]:
        return [entry.entry_date for entry in tripsheet.entries if entry.status == EntryStatus.PENDING]

    @TransactionHelper.with_transaction
    def submit(self, driver: User, month: int, year: int) -> Tripsheet:
        month, year = validate_period(month, year)
        tripsheet = self.find_for_driver(driver, month, year)
        if not tripsheet:
            raise NotFoundError("No tripsheet found for this month")
        if tripsheet.status != TripsheetStatus.DRAFT:
            raise PreconditionError(f"Tripsheet is already {tripsheet.status.value}")

        self.backfill_missing_days(tripsheet)
        pending = self.pending_dates(tripsheet)
        if pending:
            listed = ', '.join(day.isoformat() for day in pending)
            raise ValidationError(f"Fill in every day before submitting. Pending dates: {listed}",
                                  field='entries')

        tripsheet.status = TripsheetStatus.SUBMITTED
        tripsheet.submitted_at = get_ist_time_naive()
        logger.info(f"Tripsheet {tripsheet.tripsheet_number} submitted by driver {driver.id}")
        return tripsheet

    @TransactionHelper.with_transaction
    def approve(self, tripsheet_id: int, admin_id: int) -> Tripsheet:
        tripsheet = self.get_tripsheet(tripsheet_id)
        if tripsheet.status != TripsheetStatus.SUBMITTED:
            raise PreconditionError("Only submitted tripsheets can be approved")

        tripsheet.status = TripsheetStatus.APPROVED
        tripsheet.approved_at = get_ist_time_naive()
        tripsheet.approved_by = admin_id
        logger.info(f"Tripsheet {tripsheet.tripsheet_number} approved by admin {admin_id}")
        return tripsheet

    @TransactionHelper.with_transaction
    def reject(self, tripsheet_id: int, admin_id: int, reason: Optional[str]) -> Tripsheet:
        """Send a submitted tripsheet back to the driver for correction"""
        tripsheet = self.get_tripsheet(tripsheet_id)
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field='reason')
        if tripsheet.status != TripsheetStatus.SUBMITTED:
            raise PreconditionError("Only submitted tripsheets can be rejected")

        tripsheet.status = TripsheetStatus.DRAFT
        tripsheet.rejected_at = get_ist_time_naive()
        tripsheet.rejected_by = admin_id
        tripsheet.rejection_reason = reason.strip()
        logger.info(f"Tripsheet {tripsheet.tripsheet_number} rejected by admin {admin_id}: {tripsheet.rejection_reason}")
        return tripsheet

    def list_tripsheets(self, month, year, status: Optional[str] = None) -> List[Tripsheet]:
        """
        Tripsheets of the period for the admin queue. Submitted sheets come
        first, newest submission first, then the rest by creation date.
        """
        month, year = validate_period(month, year)
        query = Tripsheet.query.filter_by(month=month, year=year)
        if status and status != 'all':
            try:
                query = query.filter(Tripsheet.status == TripsheetStatus(status))
            except ValueError:
                raise ValidationError("Unknown tripsheet status", field='status')
        tripsheets = query.order_by(Tripsheet.created_at.desc(), Tripsheet.id.desc()).all()
        submitted = sorted((t for t in tripsheets if t.status == TripsheetStatus.SUBMITTED),
                           key=lambda t: t.submitted_at or datetime.min, reverse=True)
        return submitted + [t for t in tripsheets if t.status != TripsheetStatus.SUBMITTED]

    def get_period_stats(self, month, year) -> Dict[str, int]:
        month, year = validate_period(month, year)
        stats = {'total': 0}
        stats.update({status.value: 0 for status in TripsheetStatus})
        for tripsheet in Tripsheet.query.filter_by(month=month, year=year).all():
            stats['total'] += 1
            stats[tripsheet.status.value] += 1
        return stats

    def previous_closing_km(self, driver: User, on_date) -> Optional[Dict[str, Any]]:
        """
        Closing odometer of the last working day before on_date on the
        driver's vehicle, looking back into the previous month if needed.
        """
        on_date = _parse_date(on_date)
        if not driver.assigned_vehicle_id:
            return None

        previous_month = (on_date.month - 2) % 12 + 1
        previous_year = on_date.year - 1 if on_date.month == 1 else on_date.year
        for month, year in ((on_date.month, on_date.year), (previous_month, previous_year)):
            entry = (
                TripsheetEntry.query
                .join(Tripsheet, TripsheetEntry.tripsheet_id == Tripsheet.id)
                .filter(Tripsheet.vehicle_id == driver.assigned_vehicle_id,
                        Tripsheet.month == month, Tripsheet.year == year,
                        TripsheetEntry.status == EntryStatus.WORKING,
                        TripsheetEntry.closing_km.isnot(None),
                        TripsheetEntry.entry_date < on_date)
                .order_by(TripsheetEntry.entry_date.desc())
                .first()
            )
            if entry:
                return {'date': entry.entry_date.isoformat(), 'closingKm': entry.closing_km}
        return None

    def to_dict(self, tripsheet: Tripsheet, include_entries: bool = True) -> Dict[str, Any]:
        data = {
            'id': tripsheet.id,
            'tripsheetNumber': tripsheet.tripsheet_number,
            'vehicleId': tripsheet.vehicle_id,
            'vehicleNumber': tripsheet.vehicle.vehicle_number if tripsheet.vehicle else None,
            'driverId': tripsheet.driver_id,
            'driverName': tripsheet.driver.name if tripsheet.driver else None,
            'month': tripsheet.month,
            'year': tripsheet.year,
            'status': tripsheet.status.value,
            'summary': self.get_summary(tripsheet).to_dict(),
            'submittedAt': tripsheet.submitted_at.isoformat() if tripsheet.submitted_at else None,
            'approvedAt': tripsheet.approved_at.isoformat() if tripsheet.approved_at else None,
            'rejectionReason': tripsheet.rejection_reason,
        }
        if include_entries:
            data['entries'] = [entry.to_dict() for entry in sorted(tripsheet.entries, key=lambda e: e.entry_date)]
        return data
