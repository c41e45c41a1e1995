"""
Salary Service

Driver salaries from approved tripsheets. Paid advances for the month are
netted against the salary in the same transaction that creates it.
"""

from typing import Optional, Dict, Any, List
import logging
from sqlalchemy.exc import IntegrityError
from models import db, DriverSalary, Tripsheet, TripsheetStatus, SalaryStatus, NUMBER_ALLOCATION_ATTEMPTS
from calculators import SalaryCalculation, calculate_driver_salary, apply_advance_deduction
from timezone_utils import get_ist_time_naive
from .exceptions import (ServiceError, ValidationError, NotFoundError, PreconditionError,
                         DuplicateSalaryError, PartialBatchFailure)
from .tripsheet_service import TripsheetService, validate_period
from .advance_service import AdvanceSalaryService, advance_note
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


class SalaryService:
    """Service class for driver salary operations"""

    def __init__(self):
        self.tripsheet_service = TripsheetService()
        self.advance_service = AdvanceSalaryService()

    def get_salary(self, salary_id: int) -> DriverSalary:
        salary = db.session.get(DriverSalary, salary_id)
        if not salary:
            raise NotFoundError("Salary not found")
        return salary

    def preview(self, tripsheet: Tripsheet) -> SalaryCalculation:
        """Salary the driver would get for the tripsheet as it stands now"""
        return calculate_driver_salary(self.tripsheet_service.get_summary(tripsheet))

    def generate_salary(self, tripsheet_id: int, notes: Optional[str] = None,
                        admin_id: Optional[int] = None) -> DriverSalary:
        """
        Calculate and store the salary for one approved tripsheet, netting
        the driver's paid advances for the month.

        The salary row and the advance markings are written in a single
        transaction: if either fails, neither is kept.

        Raises:
            DuplicateSalaryError: a salary already exists for the tripsheet
            NotFoundError: unknown tripsheet
            PreconditionError: tripsheet is not approved, or one of the
                advances was consumed by another salary before this one committed
        """
        if DriverSalary.query.filter_by(tripsheet_id=tripsheet_id).first():
            raise DuplicateSalaryError("Salary already exists for this tripsheet")

        tripsheet = self.tripsheet_service.get_tripsheet(tripsheet_id)
        if tripsheet.status != TripsheetStatus.APPROVED:
            raise PreconditionError("Tripsheet must be approved before generating salary")

        calculation = self.preview(tripsheet)
        advances = self.advance_service.find_deductible(tripsheet.driver_id, tripsheet.month, tripsheet.year)
        total_advances = round(sum(advance.amount for advance in advances), 2)
        if advances:
            calculation = apply_advance_deduction(calculation, total_advances)
        advance_ids = [advance.id for advance in advances]
        notes = notes or (advance_note(total_advances) if total_advances > 0 else None)

        for attempt in range(NUMBER_ALLOCATION_ATTEMPTS):
            salary = DriverSalary(
                tripsheet_id=tripsheet.id,
                driver_id=tripsheet.driver_id,
                vehicle_id=tripsheet.vehicle_id,
                month=tripsheet.month,
                year=tripsheet.year,
                total_salary=calculation.total_salary,
                status=SalaryStatus.GENERATED,
                generated_by=admin_id,
                notes=notes,
            )
            salary.set_calculation(calculation.to_dict())
            try:
                with TransactionHelper.atomic():
                    salary.salary_number = DriverSalary.generate_number(tripsheet.year)
                    db.session.add(salary)
                    db.session.flush()
                    marked = self.advance_service.mark_deducted(advance_ids, salary.id)
                    if marked != len(advance_ids):
                        raise PreconditionError("Advances for this month were deducted elsewhere "
                                                "while the salary was being generated, try again")
                break
            except IntegrityError as e:
                if DriverSalary.query.filter_by(tripsheet_id=tripsheet_id).first():
                    raise DuplicateSalaryError("Salary already exists for this tripsheet")
                if attempt == NUMBER_ALLOCATION_ATTEMPTS - 1:
                    raise PreconditionError("Could not allocate a salary number, try again") from e
                logger.warning(f"Salary number {salary.salary_number} already taken, allocating another")

        logger.info(f"Salary {salary.salary_number} generated for tripsheet {tripsheet.tripsheet_number}: "
                    f"₹{salary.total_salary} after ₹{total_advances} advances")
        return salary

    def pending_tripsheets(self, month, year) -> List[Tripsheet]:
        """Approved tripsheets of the period without a salary"""
        month, year = validate_period(month, year)
        return (
            Tripsheet.query
            .outerjoin(DriverSalary, DriverSalary.tripsheet_id == Tripsheet.id)
            .filter(Tripsheet.month == month, Tripsheet.year == year,
                    Tripsheet.status == TripsheetStatus.APPROVED,
                    DriverSalary.id.is_(None))
            .order_by(Tripsheet.id)
            .all()
        )

    def get_pending_counts(self, month, year) -> Dict[str, int]:
        month, year = validate_period(month, year)
        approved = Tripsheet.query.filter_by(month=month, year=year, status=TripsheetStatus.APPROVED).count()
        generated = DriverSalary.query.filter_by(month=month, year=year).count()
        return {
            'totalApproved': approved,
            'pendingCount': len(self.pending_tripsheets(month, year)),
            'alreadyGenerated': generated,
        }

    def generate_all(self, month: int, year: int, admin_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Generate salaries for every approved tripsheet of the period that has
        none. Failures are collected per tripsheet and raised together as
        PartialBatchFailure after the whole batch has run.
        """
        month, year = validate_period(month, year)
        tripsheets = self.pending_tripsheets(month, year)
        if not tripsheets:
            raise NotFoundError(f"No approved tripsheets without salary for {month}/{year}")

        results, errors = [], []
        for tripsheet in tripsheets:
            tripsheet_id, number = tripsheet.id, tripsheet.tripsheet_number
            try:
                salary = self.generate_salary(tripsheet_id, admin_id=admin_id)
                results.append(salary.to_dict())
            except ServiceError as e:
                logger.warning(f"Salary generation failed for tripsheet {number}: {e.message}")
                errors.append({'tripsheetId': tripsheet_id, 'tripsheetNumber': number,
                               'error': e.code, 'message': e.message})
            except Exception as e:
                logger.error(f"Unexpected error generating salary for tripsheet {number}: {str(e)}", exc_info=True)
                errors.append({'tripsheetId': tripsheet_id, 'tripsheetNumber': number,
                               'error': 'INTERNAL_ERROR', 'message': str(e)})

        logger.info(f"Salary batch {month}/{year}: {len(results)} generated, {len(errors)} failed")
        if errors:
            raise PartialBatchFailure(results, errors)
        return results

    @TransactionHelper.with_transaction
    def mark_paid(self, salary_id: int, admin_id: int) -> DriverSalary:
        salary = self.get_salary(salary_id)
        if salary.status == SalaryStatus.PAID:
            raise PreconditionError("Salary is already paid")
        salary.status = SalaryStatus.PAID
        salary.paid_at = get_ist_time_naive()
        salary.paid_by = admin_id
        logger.info(f"Salary {salary.salary_number} marked as paid by admin {admin_id}")
        return salary

    @TransactionHelper.with_transaction
    def update_notes(self, salary_id: int, notes: Optional[str]) -> DriverSalary:
        salary = self.get_salary(salary_id)
        salary.notes = notes or None
        logger.info(f"Salary {salary.salary_number} notes updated")
        return salary

    @TransactionHelper.with_transaction
    def delete_salary(self, salary_id: int) -> str:
        """
        Remove an unpaid salary. Advances it had consumed go back to paid so
        the next salary for the month deducts them again. Returns the salary
        number.
        """
        salary = self.get_salary(salary_id)
        if salary.status == SalaryStatus.PAID:
            raise PreconditionError("Cannot delete a paid salary")
        salary_number = salary.salary_number
        released = self.advance_service.release_from_salary(salary.id)
        db.session.delete(salary)
        logger.info(f"Salary {salary_number} deleted, {released} advance(s) released")
        return salary_number

    def list_salaries(self, month: Optional[int] = None, year: Optional[int] = None,
                      status: Optional[str] = None) -> List[DriverSalary]:
        query = DriverSalary.query
        if month:
            query = query.filter(DriverSalary.month == int(month))
        if year:
            query = query.filter(DriverSalary.year == int(year))
        if status:
            try:
                query = query.filter(DriverSalary.status == SalaryStatus(status))
            except ValueError:
                raise ValidationError("Unknown salary status", field='status')
        return query.order_by(DriverSalary.created_at.desc(), DriverSalary.id.desc()).all()

    def get_period_stats(self, month: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
        salaries = self.list_salaries(month, year)
        total = sum(s.total_salary or 0 for s in salaries)
        paid = sum(s.total_salary or 0 for s in salaries if s.status == SalaryStatus.PAID)
        return {
            'totalSalaries': len(salaries),
            'paid': sum(1 for s in salaries if s.status == SalaryStatus.PAID),
            'unpaid': sum(1 for s in salaries if s.status != SalaryStatus.PAID),
            'totalAmount': round(total, 2),
            'paidAmount': round(paid, 2),
            'unpaidAmount': round(total - paid, 2),
        }
