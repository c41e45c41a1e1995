"""
Integration tests for advance salary requests and deductions
"""

import pytest

from app import db
from models import AdvanceSalary, DriverSalary, AdvanceStatus
from services.exceptions import ValidationError, NotFoundError, PreconditionError
from services.advance_service import AdvanceSalaryService
from services.salary_service import SalaryService
from tests.conftest import AdvanceSalaryFactory, DriverFactory


def request_advance(driver, **overrides):
    values = dict(driver_id=driver.id, vehicle_id=driver.assigned_vehicle_id, amount=5000,
                  month=1, year=2025, reason='School fees')
    values.update(overrides)
    return AdvanceSalaryService().request_advance(**values)


@pytest.fixture
def generated_salary(db_session, approved_tripsheet):
    return SalaryService().generate_salary(approved_tripsheet.id)


class TestRequestAdvance:

    def test_new_request_is_pending(self, db_session, driver_user):
        advance = request_advance(driver_user)

        assert advance.advance_number == 'ADV-2025-0001'
        assert advance.status == AdvanceStatus.PENDING
        assert advance.amount == 5000
        assert advance.requested_date is not None
        assert advance.deducted_from_salary_id is None

    @pytest.mark.parametrize('amount', [0, -100, 'five'])
    def test_amount_must_be_positive_number(self, db_session, driver_user, amount):
        with pytest.raises(ValidationError) as exc_info:
            request_advance(driver_user, amount=amount)
        assert exc_info.value.field == 'amount'

    def test_required_fields(self, db_session, driver_user):
        with pytest.raises(ValidationError):
            request_advance(driver_user, vehicle_id=None)

    def test_month_out_of_range(self, db_session, driver_user):
        with pytest.raises(ValidationError):
            request_advance(driver_user, month=13)

    def test_unknown_driver(self, db_session, driver_user):
        with pytest.raises(NotFoundError):
            request_advance(driver_user, driver_id=9999)

    def test_admin_is_not_a_driver(self, db_session, driver_user, admin_user):
        with pytest.raises(NotFoundError):
            request_advance(driver_user, driver_id=admin_user.id)

    def test_unknown_vehicle(self, db_session, driver_user):
        with pytest.raises(NotFoundError):
            request_advance(driver_user, vehicle_id=9999)


class TestAdvanceWorkflow:

    def test_approve_then_pay(self, db_session, driver_user, admin_user):
        service = AdvanceSalaryService()
        advance = request_advance(driver_user)

        approved = service.approve(advance.id, admin_user.id)
        assert approved.status == AdvanceStatus.APPROVED
        assert approved.approved_by == admin_user.id

        paid = service.pay(advance.id, admin_user.id)
        assert paid.status == AdvanceStatus.PAID
        assert paid.paid_at is not None

    def test_pay_requires_approval(self, db_session, driver_user, admin_user):
        advance = request_advance(driver_user)

        with pytest.raises(PreconditionError):
            AdvanceSalaryService().pay(advance.id, admin_user.id)

    def test_reject_pending(self, db_session, driver_user, admin_user):
        advance = request_advance(driver_user)

        rejected = AdvanceSalaryService().reject(advance.id, admin_user.id, 'Limit reached')

        assert rejected.status == AdvanceStatus.REJECTED
        assert rejected.rejection_reason == 'Limit reached'

    def test_reject_without_reason(self, db_session, driver_user, admin_user):
        advance = request_advance(driver_user)

        rejected = AdvanceSalaryService().reject(advance.id, admin_user.id)

        assert rejected.status == AdvanceStatus.REJECTED
        assert rejected.rejection_reason is None

    def test_only_pending_can_be_decided(self, db_session, driver_user, admin_user):
        service = AdvanceSalaryService()
        advance = request_advance(driver_user)
        service.approve(advance.id, admin_user.id)

        with pytest.raises(PreconditionError):
            service.approve(advance.id, admin_user.id)
        with pytest.raises(PreconditionError):
            service.reject(advance.id, admin_user.id)

    def test_unknown_advance(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            AdvanceSalaryService().approve(9999, admin_user.id)


class TestMarkDeducted:

    def test_marking_is_idempotent(self, db_session, driver_user, generated_salary):
        service = AdvanceSalaryService()
        advance = AdvanceSalaryFactory(driver=driver_user)

        assert service.mark_deducted([advance.id], generated_salary.id) == 1
        db.session.commit()
        assert service.mark_deducted([advance.id], generated_salary.id + 1) == 0
        db.session.commit()

        advance = db.session.get(AdvanceSalary, advance.id)
        assert advance.deducted_from_salary_id == generated_salary.id
        assert advance.status == AdvanceStatus.DEDUCTED

    def test_nothing_to_mark(self, db_session):
        assert AdvanceSalaryService().mark_deducted([], 1) == 0

    def test_release_returns_advances_to_paid(self, db_session, driver_user, generated_salary):
        service = AdvanceSalaryService()
        first = AdvanceSalaryFactory(driver=driver_user)
        second = AdvanceSalaryFactory(driver=driver_user)
        untouched = AdvanceSalaryFactory(driver=driver_user)
        service.mark_deducted([first.id, second.id], generated_salary.id)
        db.session.commit()

        assert service.release_from_salary(generated_salary.id) == 2
        db.session.commit()

        for advance_id in (first.id, second.id):
            advance = db.session.get(AdvanceSalary, advance_id)
            assert advance.status == AdvanceStatus.PAID
            assert advance.deducted_from_salary_id is None
        assert [a.id for a in service.find_deductible(driver_user.id, 1, 2025)] == [first.id, second.id, untouched.id]

    def test_deducted_advances_are_not_deductible(self, db_session, driver_user, generated_salary):
        service = AdvanceSalaryService()
        advance = AdvanceSalaryFactory(driver=driver_user)
        service.mark_deducted([advance.id], generated_salary.id)
        db.session.commit()

        assert service.find_deductible(driver_user.id, 1, 2025) == []


class TestDeductFromSalary:

    def test_manual_deduction_reduces_salary(self, db_session, driver_user, generated_salary):
        advance = AdvanceSalaryFactory(driver=driver_user, amount=3000)

        result = AdvanceSalaryService().deduct_from_salary(advance.id, generated_salary.id)

        assert result['salary']['totalSalary'] == 20738
        assert result['salary']['advanceDeduction'] == 3000
        assert result['advance']['deductedFromSalaryId'] == generated_salary.id
        salary = db.session.get(DriverSalary, generated_salary.id)
        assert salary.total_salary == 20738
        assert salary.get_calculation()['grossSalary'] == 23738
        assert salary.notes == 'Advance deduction: ₹3000'

    def test_deductions_accumulate(self, db_session, driver_user, generated_salary):
        service = AdvanceSalaryService()
        first = AdvanceSalaryFactory(driver=driver_user, amount=3000)
        second = AdvanceSalaryFactory(driver=driver_user, amount=700)

        service.deduct_from_salary(first.id, generated_salary.id)
        result = service.deduct_from_salary(second.id, generated_salary.id)

        assert result['salary']['advanceDeduction'] == 3700
        assert result['salary']['totalSalary'] == 20038
        salary = db.session.get(DriverSalary, generated_salary.id)
        assert salary.notes == 'Advance deduction: ₹3000; Advance deduction: ₹700'

    def test_salary_id_required(self, db_session, driver_user):
        advance = AdvanceSalaryFactory(driver=driver_user)

        with pytest.raises(ValidationError):
            AdvanceSalaryService().deduct_from_salary(advance.id, None)

    def test_advance_must_be_paid(self, db_session, driver_user, generated_salary):
        advance = AdvanceSalaryFactory(driver=driver_user, status=AdvanceStatus.APPROVED)

        with pytest.raises(PreconditionError):
            AdvanceSalaryService().deduct_from_salary(advance.id, generated_salary.id)

    def test_advance_deducted_only_once(self, db_session, driver_user, generated_salary):
        service = AdvanceSalaryService()
        advance = AdvanceSalaryFactory(driver=driver_user)
        service.deduct_from_salary(advance.id, generated_salary.id)

        with pytest.raises(PreconditionError):
            service.deduct_from_salary(advance.id, generated_salary.id)

    def test_salary_is_untouched_when_advance_was_taken_meanwhile(self, db_session, driver_user,
                                                                  generated_salary, monkeypatch):
        service = AdvanceSalaryService()
        advance = AdvanceSalaryFactory(driver=driver_user, amount=3000)
        monkeypatch.setattr(service, 'mark_deducted', lambda advance_ids, salary_id: 0)

        with pytest.raises(PreconditionError):
            service.deduct_from_salary(advance.id, generated_salary.id)

        salary = db.session.get(DriverSalary, generated_salary.id)
        assert salary.total_salary == 23738
        assert salary.notes is None
        assert salary.get_calculation()['advanceDeduction'] == 0

    def test_salary_of_another_driver(self, db_session, generated_salary):
        advance = AdvanceSalaryFactory(driver=DriverFactory())

        with pytest.raises(ValidationError):
            AdvanceSalaryService().deduct_from_salary(advance.id, generated_salary.id)

    def test_paid_salary_is_closed(self, db_session, driver_user, generated_salary, admin_user):
        SalaryService().mark_paid(generated_salary.id, admin_user.id)
        advance = AdvanceSalaryFactory(driver=driver_user)

        with pytest.raises(PreconditionError):
            AdvanceSalaryService().deduct_from_salary(advance.id, generated_salary.id)

    def test_unknown_salary(self, db_session, driver_user):
        advance = AdvanceSalaryFactory(driver=driver_user)

        with pytest.raises(NotFoundError):
            AdvanceSalaryService().deduct_from_salary(advance.id, 9999)


class TestListing:

    def test_filters_and_stats(self, db_session, driver_user):
        service = AdvanceSalaryService()
        AdvanceSalaryFactory(driver=driver_user, amount=1000)
        AdvanceSalaryFactory(driver=driver_user, amount=2000, status=AdvanceStatus.PENDING)
        AdvanceSalaryFactory(driver=driver_user, amount=500, requested_month=2)
        AdvanceSalaryFactory(amount=9000)

        advances = service.list_advances(driver_id=driver_user.id, month=1, year=2025)
        stats = service.get_stats(advances)

        assert len(advances) == 2
        assert stats['paid'] == 1
        assert stats['pending'] == 1
        assert stats['totalAmount'] == 3000
        assert stats['outstandingAmount'] == 2000
        assert len(service.list_advances(status='all')) == 4
        assert len(service.list_advances(status='pending')) == 1
