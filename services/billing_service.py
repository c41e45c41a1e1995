"""
Billing Service

Generates client bills from approved tripsheets and manages their
generated -> sent -> paid lifecycle.
"""

from typing import Optional, Dict, Any, List
import logging
from sqlalchemy.exc import IntegrityError
from models import db, Bill, Tripsheet, Vehicle, TripsheetStatus, BillStatus, NUMBER_ALLOCATION_ATTEMPTS
from calculators import (BillingRules, BillingCalculation, calculate_billing,
                         apply_bill_adjustments)
from timezone_utils import get_ist_time_naive
from .exceptions import (ServiceError, ValidationError, NotFoundError, ConfigurationError,
                         PreconditionError, DuplicateBillError, PartialBatchFailure)
from .tripsheet_service import TripsheetService, validate_period
from .transaction_helper import TransactionHelper

logger = logging.getLogger(__name__)


class BillingService:
    """Service class for client billing operations"""

    def __init__(self):
        self.tripsheet_service = TripsheetService()

    def load_billing_rules(self, vehicle: Vehicle) -> BillingRules:
        """Typed billing rules for a vehicle, read from its vehicle type"""
        vehicle_type = vehicle.vehicle_type if vehicle else None
        if vehicle_type is None:
            raise ConfigurationError("Vehicle has no vehicle type with billing rules configured")
        return BillingRules(
            base_amount=vehicle_type.base_amount,
            base_days=vehicle_type.base_days,
            extra_day_rate=vehicle_type.extra_day_rate or 0.0,
            extra_km_rate=vehicle_type.extra_km_rate or 0.0,
            base_hours_per_day=vehicle_type.base_hours_per_day or 10.0,
            extra_hour_rate=vehicle_type.extra_hour_rate or 0.0,
            vehicle_type_name=vehicle_type.name,
        )

    def get_bill(self, bill_id: int) -> Bill:
        bill = db.session.get(Bill, bill_id)
        if not bill:
            raise NotFoundError("Bill not found")
        return bill

    def generate_bill(self, tripsheet_id: int, admin_id: Optional[int] = None) -> Bill:
        """
        Calculate and store the bill for one approved tripsheet.

        Raises:
            NotFoundError: unknown tripsheet
            DuplicateBillError: a bill already exists for the tripsheet
            PreconditionError: tripsheet is not approved
            ConfigurationError: vehicle type billing rules are incomplete
        """
        tripsheet = self.tripsheet_service.get_tripsheet(tripsheet_id)

        if Bill.query.filter_by(tripsheet_id=tripsheet.id).first():
            raise DuplicateBillError("A bill has already been generated for this tripsheet")
        if tripsheet.status != TripsheetStatus.APPROVED:
            raise PreconditionError("Tripsheet must be approved before generating a bill")

        vehicle = tripsheet.vehicle
        rules = self.load_billing_rules(vehicle)
        summary = self.tripsheet_service.get_summary(tripsheet)
        calculation = calculate_billing(summary, rules)

        vehicle_type_id = vehicle.vehicle_type_id

        for attempt in range(NUMBER_ALLOCATION_ATTEMPTS):
            bill = Bill(
                tripsheet_id=tripsheet.id,
                vehicle_id=tripsheet.vehicle_id,
                driver_id=tripsheet.driver_id,
                vehicle_type_id=vehicle_type_id,
                month=tripsheet.month,
                year=tripsheet.year,
                total_amount=calculation.total_amount,
                status=BillStatus.GENERATED,
                generated_by=admin_id,
            )
            bill.set_calculation(calculation.to_dict())
            try:
                with TransactionHelper.atomic():
                    bill.bill_number = Bill.generate_number(tripsheet.year)
                    db.session.add(bill)
                break
            except IntegrityError as e:
                if Bill.query.filter_by(tripsheet_id=tripsheet_id).first():
                    raise DuplicateBillError("A bill has already been generated for this tripsheet")
                if attempt == NUMBER_ALLOCATION_ATTEMPTS - 1:
                    raise PreconditionError("Could not allocate a bill number, try again") from e
                logger.warning(f"Bill number {bill.bill_number} already taken, allocating another")

        logger.info(f"Bill {bill.bill_number} generated for tripsheet {tripsheet.tripsheet_number}: ₹{bill.total_amount}")
        return bill

    def pending_tripsheets(self, month, year) -> List[Tripsheet]:
        """Approved tripsheets of the period that have no bill yet"""
        month, year = validate_period(month, year)
        return (
            Tripsheet.query
            .outerjoin(Bill, Bill.tripsheet_id == Tripsheet.id)
            .filter(Tripsheet.month == month, Tripsheet.year == year,
                    Tripsheet.status == TripsheetStatus.APPROVED,
                    Bill.id.is_(None))
            .order_by(Tripsheet.id)
            .all()
        )

    def generate_all(self, month: int, year: int, admin_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Generate bills for every approved tripsheet of the period that has none.
        One failure never stops the batch; failures are reported together
        through PartialBatchFailure once the rest are done.
        """
        month, year = validate_period(month, year)
        tripsheets = self.pending_tripsheets(month, year)
        if not tripsheets:
            raise NotFoundError(f"No approved tripsheets without bills for {month}/{year}")

        results, errors = [], []
        for tripsheet in tripsheets:
            tripsheet_id, number = tripsheet.id, tripsheet.tripsheet_number
            try:
                bill = self.generate_bill(tripsheet_id, admin_id)
                results.append(bill.to_dict())
            except ServiceError as e:
                logger.warning(f"Bill generation failed for tripsheet {number}: {e.message}")
                errors.append({'tripsheetId': tripsheet_id, 'tripsheetNumber': number,
                               'error': e.code, 'message': e.message})
            except Exception as e:
                logger.error(f"Unexpected error generating bill for tripsheet {number}: {str(e)}", exc_info=True)
                errors.append({'tripsheetId': tripsheet_id, 'tripsheetNumber': number,
                               'error': 'INTERNAL_ERROR', 'message': str(e)})

        logger.info(f"Bill batch {month}/{year}: {len(results)} generated, {len(errors)} failed")
        if errors:
            raise PartialBatchFailure(results, errors)
        return results

    @TransactionHelper.with_transaction
    def apply_adjustments(self, bill_id: int, adjustments) -> Bill:
        """Set the signed admin adjustment; the total is sub total plus adjustment"""
        bill = self.get_bill(bill_id)
        if bill.status == BillStatus.PAID:
            raise PreconditionError("Paid bills cannot be adjusted")
        try:
            adjustments = float(adjustments)
        except (TypeError, ValueError):
            raise ValidationError("Adjustments must be a number", field='adjustments')

        calculation = apply_bill_adjustments(BillingCalculation.from_dict(bill.get_calculation()), adjustments)
        bill.set_calculation(calculation.to_dict())
        bill.total_amount = calculation.total_amount
        logger.info(f"Bill {bill.bill_number} adjusted by {adjustments}: total ₹{bill.total_amount}")
        return bill

    @TransactionHelper.with_transaction
    def mark_sent(self, bill_id: int) -> Bill:
        bill = self.get_bill(bill_id)
        if bill.status != BillStatus.GENERATED:
            raise PreconditionError(f"Bill is already {bill.status.value}")
        bill.status = BillStatus.SENT
        bill.sent_at = get_ist_time_naive()
        logger.info(f"Bill {bill.bill_number} marked as sent")
        return bill

    @TransactionHelper.with_transaction
    def mark_paid(self, bill_id: int) -> Bill:
        bill = self.get_bill(bill_id)
        if bill.status == BillStatus.PAID:
            raise PreconditionError("Bill is already paid")
        bill.status = BillStatus.PAID
        bill.paid_at = get_ist_time_naive()
        logger.info(f"Bill {bill.bill_number} marked as paid")
        return bill

    @TransactionHelper.with_transaction
    def delete_bill(self, bill_id: int) -> str:
        """Remove an unpaid bill so the tripsheet can be billed again. Returns the bill number."""
        bill = self.get_bill(bill_id)
        if bill.status == BillStatus.PAID:
            raise PreconditionError("Cannot delete a paid bill")
        bill_number = bill.bill_number
        db.session.delete(bill)
        logger.info(f"Bill {bill_number} deleted")
        return bill_number

    def list_bills(self, month: Optional[int] = None, year: Optional[int] = None,
                   status: Optional[str] = None) -> List[Bill]:
        query = Bill.query
        if month:
            query = query.filter(Bill.month == int(month))
        if year:
            query = query.filter(Bill.year == int(year))
        if status:
            try:
                query = query.filter(Bill.status == BillStatus(status))
            except ValueError:
                raise ValidationError("Unknown bill status", field='status')
        return query.order_by(Bill.created_at.desc(), Bill.id.desc()).all()

    def get_period_stats(self, month: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
        bills = self.list_bills(month, year)
        stats = {
            'totalBills': len(bills),
            'generated': 0,
            'sent': 0,
            'paid': 0,
            'totalAmount': 0.0,
            'paidAmount': 0.0,
            'outstandingAmount': 0.0,
        }
        for bill in bills:
            stats[bill.status.value] += 1
            stats['totalAmount'] += bill.total_amount or 0
            if bill.status == BillStatus.PAID:
                stats['paidAmount'] += bill.total_amount or 0
            else:
                stats['outstandingAmount'] += bill.total_amount or 0
        for key in ('totalAmount', 'paidAmount', 'outstandingAmount'):
            stats[key] = round(stats[key], 2)
        return stats
