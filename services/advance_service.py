"""
Advance Salary Service

Cash advances to drivers: request, approval, payment, and netting against a
salary. An advance is consumed by at most one salary, recorded through
deducted_from_salary_id.
"""

from typing import Optional, Dict, Any, List, Sequence
import logging
from models import db, AdvanceSalary, DriverSalary, User, Vehicle, UserRole, AdvanceStatus, SalaryStatus
from calculators import SalaryCalculation, apply_advance_deduction
from timezone_utils import get_ist_time_naive
from .exceptions import ValidationError, NotFoundError, PreconditionError
from .tripsheet_service import validate_period
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


def advance_note(amount) -> str:
    return f"Advance deduction: ₹{amount:g}"


class AdvanceSalaryService:
    """Service class for advance salary operations"""

    def get_advance(self, advance_id: int) -> AdvanceSalary:
        advance = db.session.get(AdvanceSalary, advance_id)
        if not advance:
            raise NotFoundError("Advance salary not found")
        return advance

    @TransactionHelper.with_transaction
    def request_advance(self, driver_id: int, vehicle_id: int, amount, month, year,
                        reason: Optional[str] = None, notes: Optional[str] = None) -> AdvanceSalary:
        if not driver_id or not vehicle_id or amount in (None, '') or not month or not year:
            raise ValidationError("Driver, vehicle, amount, month, and year are required")
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("Amount must be a number", field='amount')
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero", field='amount')
        month, year = validate_period(month, year)

        driver = db.session.get(User, int(driver_id))
        if not driver or driver.role != UserRole.DRIVER:
            raise NotFoundError("Driver not found", field='driverId')
        if not db.session.get(Vehicle, int(vehicle_id)):
            raise NotFoundError("Vehicle not found", field='vehicleId')

        advance = AdvanceSalary(
            advance_number=AdvanceSalary.generate_number(year),
            driver_id=driver.id,
            vehicle_id=int(vehicle_id),
            amount=amount,
            requested_month=month,
            requested_year=year,
            reason=reason,
            notes=notes,
            status=AdvanceStatus.PENDING,
        )
        db.session.add(advance)
        db.session.flush()
        logger.info(f"Advance {advance.advance_number} of ₹{amount} requested for driver {driver.id}, {month}/{year}")
        return advance

    @TransactionHelper.with_transaction
    def approve(self, advance_id: int, admin_id: int) -> AdvanceSalary:
        advance = self.get_advance(advance_id)
        if advance.status != AdvanceStatus.PENDING:
            raise PreconditionError(f"Cannot approve advance salary with status {advance.status.value}")
        advance.status = AdvanceStatus.APPROVED
        advance.approved_by = admin_id
        advance.approved_at = get_ist_time_naive()
        logger.info(f"Advance {advance.advance_number} approved by admin {admin_id}")
        return advance

    @TransactionHelper.with_transaction
    def reject(self, advance_id: int, admin_id: int, reason: Optional[str] = None) -> AdvanceSalary:
        advance = self.get_advance(advance_id)
        if advance.status != AdvanceStatus.PENDING:
            raise PreconditionError(f"Cannot reject advance salary with status {advance.status.value}")
        advance.status = AdvanceStatus.REJECTED
        advance.rejected_by = admin_id
        advance.rejected_at = get_ist_time_naive()
        if reason:
            advance.rejection_reason = reason
        logger.info(f"Advance {advance.advance_number} rejected by admin {admin_id}")
        return advance

    @TransactionHelper.with_transaction
    def pay(self, advance_id: int, admin_id: int) -> AdvanceSalary:
        advance = self.get_advance(advance_id)
        if advance.status != AdvanceStatus.APPROVED:
            raise PreconditionError("Only approved advances can be paid")
        advance.status = AdvanceStatus.PAID
        advance.paid_by = admin_id
        advance.paid_at = get_ist_time_naive()
        logger.info(f"Advance {advance.advance_number} paid by admin {admin_id}")
        return advance

    def find_deductible(self, driver_id: int, month: int, year: int) -> List[AdvanceSalary]:
        """Paid advances of the driver for the period that no salary has consumed yet"""
        return AdvanceSalary.query.filter(
            AdvanceSalary.driver_id == driver_id,
            AdvanceSalary.requested_month == month,
            AdvanceSalary.requested_year == year,
            AdvanceSalary.status == AdvanceStatus.PAID,
            AdvanceSalary.deducted_from_salary_id.is_(None),
        ).order_by(AdvanceSalary.id).all()

    def mark_deducted(self, advance_ids: Sequence[int], salary_id: int) -> int:
        """
        Mark advances as consumed by a salary. Advances already carrying a
        salary id are left alone, so repeating the call changes nothing.
        Does not commit; callers run it inside their own transaction.
        """
        if not advance_ids:
            return 0
        updated = AdvanceSalary.query.filter(
            AdvanceSalary.id.in_(list(advance_ids)),
            AdvanceSalary.deducted_from_salary_id.is_(None),
        ).update({
            AdvanceSalary.status: AdvanceStatus.DEDUCTED,
            AdvanceSalary.deducted_from_salary_id: salary_id,
            AdvanceSalary.deducted_at: get_ist_time_naive(),
        }, synchronize_session='fetch')
        logger.info(f"{updated} advance(s) marked as deducted from salary {salary_id}")
        return updated

    def release_from_salary(self, salary_id: int) -> int:
        """Undo mark_deducted for every advance consumed by the salary. Does not commit."""
        released = AdvanceSalary.query.filter(
            AdvanceSalary.deducted_from_salary_id == salary_id,
        ).update({
            AdvanceSalary.status: AdvanceStatus.PAID,
            AdvanceSalary.deducted_from_salary_id: None,
            AdvanceSalary.deducted_at: None,
        }, synchronize_session='fetch')
        return released

    def deduct_from_salary(self, advance_id: int, salary_id) -> Dict[str, Any]:
        """Manually net one paid advance against an existing unpaid salary of the same driver"""
        if not salary_id:
            raise ValidationError("Salary ID is required", field='salaryId')
        advance = self.get_advance(advance_id)
        if advance.status != AdvanceStatus.PAID:
            raise PreconditionError("Only paid advances can be deducted from salary")
        if advance.deducted_from_salary_id:
            raise PreconditionError("This advance has already been deducted from a salary")

        salary = db.session.get(DriverSalary, int(salary_id))
        if not salary:
            raise NotFoundError("Salary not found", field='salaryId')
        if salary.driver_id != advance.driver_id:
            raise ValidationError("Advance and salary must belong to the same driver", field='salaryId')
        if salary.status == SalaryStatus.PAID:
            raise PreconditionError("Advances cannot be deducted from a paid salary")

        current = SalaryCalculation.from_dict(salary.get_calculation())
        calculation = apply_advance_deduction(current, (current.advance_deduction or 0) + advance.amount)

        with TransactionHelper.atomic():
            salary.set_calculation(calculation.to_dict())
            salary.total_salary = calculation.total_salary
            note = advance_note(advance.amount)
            salary.notes = f"{salary.notes}; {note}" if salary.notes else note
            if self.mark_deducted([advance.id], salary.id) != 1:
                raise PreconditionError("This advance has already been deducted from a salary")

        logger.info(f"Advance {advance.advance_number} deducted from salary {salary.salary_number}")
        return {
            'advance': advance.to_dict(),
            'salary': {
                'id': salary.id,
                'salaryNumber': salary.salary_number,
                'totalSalary': salary.total_salary,
                'advanceDeduction': calculation.advance_deduction,
            },
        }

    def list_advances(self, driver_id: Optional[int] = None, month: Optional[int] = None,
                      year: Optional[int] = None, status: Optional[str] = None) -> List[AdvanceSalary]:
        query = AdvanceSalary.query
        if driver_id:
            query = query.filter(AdvanceSalary.driver_id == int(driver_id))
        if month:
            query = query.filter(AdvanceSalary.requested_month == int(month))
        if year:
            query = query.filter(AdvanceSalary.requested_year == int(year))
        if status and status != 'all':
            try:
                query = query.filter(AdvanceSalary.status == AdvanceStatus(status))
            except ValueError:
                raise ValidationError("Unknown advance status", field='status')
        return query.order_by(AdvanceSalary.requested_date.desc(), AdvanceSalary.id.desc()).all()

    def get_stats(self, advances: List[AdvanceSalary]) -> Dict[str, Any]:
        stats = {status.value: 0 for status in AdvanceStatus}
        for advance in advances:
            stats[advance.status.value] += 1
        stats['totalAmount'] = round(sum(a.amount for a in advances), 2)
        stats['outstandingAmount'] = round(sum(
            a.amount for a in advances if a.status in (AdvanceStatus.PENDING, AdvanceStatus.APPROVED)
        ), 2)
        return stats
