"""
Integration tests for salary generation and advance netting
"""

import pytest

from app import db
from models import DriverSalary, AdvanceSalary, TripsheetEntry, SalaryStatus, AdvanceStatus, TripsheetStatus
from services.exceptions import (NotFoundError, PreconditionError, DuplicateSalaryError,
                                 PartialBatchFailure)
from services.salary_service import SalaryService
from tests.conftest import TripsheetFactory, DriverFactory, AdvanceSalaryFactory, fill_tripsheet


@pytest.fixture
def long_days_tripsheet(db_session, driver_user):
    """24 working days, five of them with one hour past the driver's 12"""
    tripsheet = TripsheetFactory(driver=driver_user, status=TripsheetStatus.APPROVED)
    fill_tripsheet(tripsheet, working_days=24)
    long_days = (TripsheetEntry.query.filter_by(tripsheet_id=tripsheet.id)
                 .order_by(TripsheetEntry.entry_date).limit(5).all())
    for entry in long_days:
        entry.closing_time = '21:00'
        entry.total_hours = 13.0
        entry.extra_hours = 3.0
        entry.driver_extra_hours = 1.0
    db.session.commit()
    return tripsheet


class TestGenerateSalary:

    def test_salary_for_approved_tripsheet(self, db_session, approved_tripsheet, admin_user):
        salary = SalaryService().generate_salary(approved_tripsheet.id, admin_id=admin_user.id)

        calculation = salary.get_calculation()
        assert salary.salary_number == 'SAL-2025-0001'
        assert salary.status == SalaryStatus.GENERATED
        # 20000 base + 2 extra days at 909 + 24 hours past 12 at 80
        assert calculation['extraDaysAmount'] == 1818
        assert calculation['extraHoursAmount'] == 1920
        assert salary.total_salary == 23738
        assert salary.notes is None

    def test_paid_advance_is_netted(self, db_session, long_days_tripsheet, driver_user):
        advance = AdvanceSalaryFactory(driver=driver_user, amount=5000)

        salary = SalaryService().generate_salary(long_days_tripsheet.id)

        calculation = salary.get_calculation()
        assert calculation['grossSalary'] == 22218
        assert calculation['advanceDeduction'] == 5000
        assert salary.total_salary == 17218
        assert calculation['amountInWords'] == 'Seventeen Thousand Two Hundred Eighteen'
        assert salary.notes == 'Advance deduction: ₹5000'

        advance = db.session.get(AdvanceSalary, advance.id)
        assert advance.status == AdvanceStatus.DEDUCTED
        assert advance.deducted_from_salary_id == salary.id
        assert advance.deducted_at is not None

    def test_only_paid_advances_of_the_month_are_netted(self, db_session, long_days_tripsheet, driver_user):
        AdvanceSalaryFactory(driver=driver_user, amount=1000)
        AdvanceSalaryFactory(driver=driver_user, amount=2000)
        pending = AdvanceSalaryFactory(driver=driver_user, amount=3000, status=AdvanceStatus.PENDING)
        other_month = AdvanceSalaryFactory(driver=driver_user, amount=4000, requested_month=2)
        other_driver = AdvanceSalaryFactory(amount=5000)

        salary = SalaryService().generate_salary(long_days_tripsheet.id)

        assert salary.get_calculation()['advanceDeduction'] == 3000
        assert salary.total_salary == 19218
        for untouched in (pending, other_month, other_driver):
            assert db.session.get(AdvanceSalary, untouched.id).deducted_from_salary_id is None

    def test_advances_above_salary_floor_at_zero(self, db_session, approved_tripsheet, driver_user):
        AdvanceSalaryFactory(driver=driver_user, amount=30000)

        salary = SalaryService().generate_salary(approved_tripsheet.id)

        assert salary.total_salary == 0
        assert salary.get_calculation()['amountInWords'] == 'Zero'

    def test_explicit_notes_are_kept(self, db_session, approved_tripsheet, driver_user):
        AdvanceSalaryFactory(driver=driver_user)

        salary = SalaryService().generate_salary(approved_tripsheet.id, notes='January payout')

        assert salary.notes == 'January payout'

    def test_second_generation_does_not_deduct_twice(self, db_session, long_days_tripsheet, driver_user):
        advance = AdvanceSalaryFactory(driver=driver_user, amount=5000)
        service = SalaryService()
        salary = service.generate_salary(long_days_tripsheet.id)

        with pytest.raises(DuplicateSalaryError):
            service.generate_salary(long_days_tripsheet.id)

        assert DriverSalary.query.count() == 1
        advance = db.session.get(AdvanceSalary, advance.id)
        assert advance.deducted_from_salary_id == salary.id
        assert db.session.get(DriverSalary, salary.id).total_salary == 17218

    def test_failed_marking_leaves_no_salary(self, db_session, long_days_tripsheet, driver_user, monkeypatch):
        advance = AdvanceSalaryFactory(driver=driver_user, amount=5000)
        service = SalaryService()

        def fail(*args, **kwargs):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(service.advance_service, 'mark_deducted', fail)

        with pytest.raises(RuntimeError):
            service.generate_salary(long_days_tripsheet.id)

        assert DriverSalary.query.count() == 0
        advance = db.session.get(AdvanceSalary, advance.id)
        assert advance.status == AdvanceStatus.PAID
        assert advance.deducted_from_salary_id is None

    def test_advance_taken_by_another_salary_is_not_deducted_again(self, db_session, long_days_tripsheet,
                                                                   driver_user, monkeypatch):
        advance_id = AdvanceSalaryFactory(driver=driver_user, amount=5000).id
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        fill_tripsheet(other, working_days=22)
        service = SalaryService()
        other_salary_id = service.generate_salary(other.id).id
        original_find = service.advance_service.find_deductible

        def find_then_lose_advance(*args):
            found = original_find(*args)
            AdvanceSalary.query.filter_by(id=advance_id).update({
                AdvanceSalary.status: AdvanceStatus.DEDUCTED,
                AdvanceSalary.deducted_from_salary_id: other_salary_id,
            })
            db.session.commit()
            return found

        monkeypatch.setattr(service.advance_service, 'find_deductible', find_then_lose_advance)

        with pytest.raises(PreconditionError):
            service.generate_salary(long_days_tripsheet.id)

        assert DriverSalary.query.filter_by(tripsheet_id=long_days_tripsheet.id).count() == 0
        advance = db.session.get(AdvanceSalary, advance_id)
        assert advance.deducted_from_salary_id == other_salary_id
        assert db.session.get(DriverSalary, other_salary_id).total_salary == 20000

    def test_taken_salary_number_is_allocated_again(self, db_session, approved_tripsheet, monkeypatch):
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        fill_tripsheet(other, working_days=22)
        service = SalaryService()
        service.generate_salary(other.id)
        numbers = iter(['SAL-2025-0001'])
        original_number = DriverSalary.generate_number

        monkeypatch.setattr(DriverSalary, 'generate_number',
                            staticmethod(lambda year: next(numbers, None) or original_number(year)))

        salary = service.generate_salary(approved_tripsheet.id)

        assert salary.salary_number == 'SAL-2025-0002'
        assert DriverSalary.query.count() == 2

    def test_salary_number_clash_gives_up_after_retry(self, db_session, long_days_tripsheet, driver_user,
                                                      monkeypatch):
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        fill_tripsheet(other, working_days=22)
        service = SalaryService()
        service.generate_salary(other.id)
        advance = AdvanceSalaryFactory(driver=driver_user, amount=5000)

        monkeypatch.setattr(DriverSalary, 'generate_number', staticmethod(lambda year: 'SAL-2025-0001'))

        with pytest.raises(PreconditionError):
            service.generate_salary(long_days_tripsheet.id)

        assert DriverSalary.query.count() == 1
        assert db.session.get(AdvanceSalary, advance.id).status == AdvanceStatus.PAID

    def test_tripsheet_must_be_approved(self, db_session, driver_user):
        tripsheet = TripsheetFactory(driver=driver_user, status=TripsheetStatus.SUBMITTED)

        with pytest.raises(PreconditionError):
            SalaryService().generate_salary(tripsheet.id)

    def test_unknown_tripsheet(self, db_session):
        with pytest.raises(NotFoundError):
            SalaryService().generate_salary(4242)

    def test_preview_matches_generated_gross(self, db_session, long_days_tripsheet):
        service = SalaryService()

        preview = service.preview(long_days_tripsheet)

        assert preview.total_salary == 22218
        assert preview.advance_deduction == 0


class TestGenerateAll:

    def test_batch_collects_failures(self, db_session, approved_tripsheet, monkeypatch):
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        fill_tripsheet(other, working_days=22)
        other_id, other_number = other.id, other.tripsheet_number
        service = SalaryService()
        original_preview = service.preview

        def preview(tripsheet):
            if tripsheet.id == other_id:
                raise PreconditionError("Tripsheet data is inconsistent")
            return original_preview(tripsheet)

        monkeypatch.setattr(service, 'preview', preview)

        with pytest.raises(PartialBatchFailure) as exc_info:
            service.generate_all(1, 2025)

        failure = exc_info.value
        assert len(failure.results) == 1
        assert failure.results[0]['tripsheetId'] == approved_tripsheet.id
        assert failure.errors == [{
            'tripsheetId': other_id,
            'tripsheetNumber': other_number,
            'error': 'PRECONDITION_FAILED',
            'message': 'Tripsheet data is inconsistent',
        }]
        assert DriverSalary.query.count() == 1

    def test_batch_skips_existing_salaries(self, db_session, approved_tripsheet):
        service = SalaryService()
        service.generate_salary(approved_tripsheet.id)

        with pytest.raises(NotFoundError):
            service.generate_all(1, 2025)


class TestSalaryLifecycle:

    def test_mark_paid_once(self, db_session, approved_tripsheet, admin_user):
        service = SalaryService()
        salary = service.generate_salary(approved_tripsheet.id)

        paid = service.mark_paid(salary.id, admin_user.id)
        assert paid.status == SalaryStatus.PAID
        assert paid.paid_by == admin_user.id

        with pytest.raises(PreconditionError):
            service.mark_paid(salary.id, admin_user.id)

    def test_update_notes(self, db_session, approved_tripsheet):
        service = SalaryService()
        salary = service.generate_salary(approved_tripsheet.id)

        assert service.update_notes(salary.id, 'Paid by cheque').notes == 'Paid by cheque'
        assert service.update_notes(salary.id, '').notes is None

    def test_delete_releases_advances(self, db_session, long_days_tripsheet, driver_user):
        advance = AdvanceSalaryFactory(driver=driver_user, amount=5000)
        service = SalaryService()
        salary = service.generate_salary(long_days_tripsheet.id)

        assert service.delete_salary(salary.id) == 'SAL-2025-0001'

        assert DriverSalary.query.count() == 0
        advance = db.session.get(AdvanceSalary, advance.id)
        assert advance.status == AdvanceStatus.PAID
        assert advance.deducted_from_salary_id is None
        assert advance.deducted_at is None

        regenerated = service.generate_salary(long_days_tripsheet.id)
        assert regenerated.total_salary == 17218

    def test_paid_salary_cannot_be_deleted(self, db_session, approved_tripsheet, admin_user):
        service = SalaryService()
        salary = service.generate_salary(approved_tripsheet.id)
        service.mark_paid(salary.id, admin_user.id)

        with pytest.raises(PreconditionError):
            service.delete_salary(salary.id)
        assert DriverSalary.query.count() == 1

    def test_pending_tripsheets(self, db_session, approved_tripsheet):
        service = SalaryService()
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.SUBMITTED)
        service.generate_salary(approved_tripsheet.id)

        assert [t.id for t in service.pending_tripsheets(1, 2025)] == [other.id]
        assert service.get_pending_counts(1, 2025) == {
            'totalApproved': 2,
            'pendingCount': 1,
            'alreadyGenerated': 1,
        }

    def test_period_stats(self, db_session, approved_tripsheet, admin_user):
        service = SalaryService()
        salary = service.generate_salary(approved_tripsheet.id)
        other = TripsheetFactory(driver=DriverFactory(), status=TripsheetStatus.APPROVED)
        fill_tripsheet(other, working_days=20)
        service.generate_salary(other.id)
        service.mark_paid(salary.id, admin_user.id)

        stats = service.get_period_stats(1, 2025)

        assert stats == {
            'totalSalaries': 2,
            'paid': 1,
            'unpaid': 1,
            'totalAmount': 43738,
            'paidAmount': 23738,
            'unpaidAmount': 20000,
        }
