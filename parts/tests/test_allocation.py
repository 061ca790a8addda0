import threading
from decimal import Decimal
from unittest import mock

import pytest
from django.db import OperationalError, connection
from django.db.models import F

from jobs.models import Job
from parts.models import JobPart, LedgerTransaction, Part
from parts.services import (
    JobPartService, FIFOCostService, LedgerService, PartCatalogService,
    ValidationError, NotFoundError, BusinessRuleError, ConcurrencyConflictError,
    InsufficientHistoryError,
)

pytestmark = pytest.mark.django_db


def test_stock_allocation_scenario(job, part, purchase):
    purchase("CAP-45", 10, "25.00")
    part.refresh_from_db()
    assert (part.in_stock, part.avg_cost, part.sell_price) == (10, Decimal("25.00"), Decimal("30.00"))

    result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=4, actor="tech-1")

    job_part = JobPart.objects.get(pk=result["job_part"]["id"])
    assert job_part.source == JobPart.Source.STOCK
    assert job_part.unit_cost == Decimal("25.00")
    assert job_part.total_cost == Decimal("100.00")
    assert job_part.sell_price == Decimal("120.00")
    assert result["in_stock"] == 6

    entry = job_part.transaction
    assert entry.kind == LedgerTransaction.Kind.USED
    assert entry.quantity == -4
    assert entry.job_id == job.id

    job.refresh_from_db()
    assert job.parts_cost == Decimal("100.00")
    assert job.parts_total == Decimal("120.00")

    removed = JobPartService.remove(job_part.id, actor="tech-1")

    reversal = LedgerTransaction.objects.get(pk=removed["reversal_transaction_id"])
    assert reversal.kind == LedgerTransaction.Kind.ADJUSTMENT
    assert reversal.quantity == 4
    assert reversal.reverses_id == entry.id

    part.refresh_from_db()
    assert part.in_stock == 10
    assert part.times_used == 0
    job.refresh_from_db()
    assert job.parts_cost == Decimal("0")
    assert job.parts_total == Decimal("0")
    assert not JobPart.objects.filter(pk=job_part.pk).exists()


def test_stock_allocation_spanning_lots(job, part, purchase):
    purchase("CAP-45", 5, "10.00")
    purchase("CAP-45", 5, "20.00")

    result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=7, markup_percent="0")

    assert result["job_part"]["total_cost"] == "90.0000"
    assert Decimal(result["job_part"]["unit_cost"]) == Decimal("12.8571")
    assert Decimal(result["job_part"]["sell_price"]) == Decimal("90.00")


def test_allocation_markup_override(job, part, purchase):
    purchase("CAP-45", 2, "40.00")

    result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1, markup_percent="50")

    assert Decimal(result["job_part"]["markup_percent"]) == Decimal("50")
    assert Decimal(result["job_part"]["sell_price"]) == Decimal("60.00")


def test_consecutive_allocations_follow_fifo(job, part, purchase):
    purchase("CAP-45", 2, "10.00")
    purchase("CAP-45", 2, "30.00")

    JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)
    second = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)

    assert Decimal(second["job_part"]["unit_cost"]) == Decimal("30.00")


def test_direct_order_does_not_touch_stock(job, part, purchase):
    purchase("CAP-45", 10, "25.00")
    ledger_count = LedgerTransaction.objects.count()

    result = JobPartService.add_direct_order(
        job_id=job.id, part_code="CAP-45", quantity=2, unit_cost="40.00", notes="supply house pickup"
    )

    assert result["job_part"]["source"] == JobPart.Source.DIRECT_ORDER
    assert result["job_part"]["transaction_id"] is None
    assert Decimal(result["job_part"]["total_cost"]) == Decimal("80.00")
    assert Decimal(result["job_part"]["sell_price"]) == Decimal("96.00")
    assert LedgerTransaction.objects.count() == ledger_count

    part.refresh_from_db()
    assert part.in_stock == 10
    assert part.avg_cost == Decimal("25.00")

    job.refresh_from_db()
    assert job.parts_total == Decimal("96.00")

    JobPartService.remove(result["job_part"]["id"])
    assert LedgerTransaction.objects.count() == ledger_count


def test_direct_order_requires_unit_cost(job, part):
    with pytest.raises(ValidationError):
        JobPartService.add_direct_order(job_id=job.id, part_code="CAP-45", quantity=1, unit_cost=None)


def test_allocation_without_history_writes_nothing(job, part):
    with pytest.raises(InsufficientHistoryError):
        JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)

    assert LedgerTransaction.objects.count() == 0
    assert JobPart.objects.count() == 0


def test_allocation_validates_inputs(job, part, purchase):
    purchase("CAP-45", 5, "10.00")

    with pytest.raises(ValidationError):
        JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=0)
    with pytest.raises(NotFoundError):
        JobPartService.add_from_stock(job_id=9999, part_code="CAP-45", quantity=1)
    with pytest.raises(NotFoundError):
        JobPartService.add_from_stock(job_id=job.id, part_code="NOPE", quantity=1)

    PartCatalogService.archive("CAP-45")
    with pytest.raises(ValidationError):
        JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)


def test_job_totals_sum_all_allocations(job, part, make_part, purchase):
    make_part(code="FUSE-5", description="Fuse 5A", markup_percent="100")
    purchase("CAP-45", 3, "10.00")
    purchase("FUSE-5", 10, "1.50")

    JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)
    JobPartService.add_from_stock(job_id=job.id, part_code="FUSE-5", quantity=4)
    JobPartService.add_direct_order(job_id=job.id, part_code="CAP-45", quantity=1, unit_cost="12.00")

    job.refresh_from_db()
    assert job.parts_cost == Decimal("38.00")
    assert job.parts_total == Decimal("50.40")

    listing = JobPartService.list_for_job(job.id)
    assert listing["count"] == 3
    assert listing["job"]["parts_total"] == str(job.parts_total)


def test_financial_fields_are_not_editable(job, part, purchase):
    purchase("CAP-45", 2, "10.00")
    result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)
    allocation_id = result["job_part"]["id"]

    with pytest.raises(ValidationError):
        JobPartService.update(allocation_id, quantity=2)
    with pytest.raises(ValidationError):
        JobPartService.update(allocation_id, sell_price="1.00")

    updated = JobPartService.update(allocation_id, notes="left on condenser", description="45/5 cap")
    assert updated["job_part"]["notes"] == "left on condenser"
    assert updated["job_part"]["description"] == "45/5 cap"


def test_allocation_entry_cannot_be_reversed_directly(job, part, purchase):
    purchase("CAP-45", 2, "10.00")
    result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)

    with pytest.raises(BusinessRuleError):
        LedgerService.reverse(result["job_part"]["transaction_id"])


def test_remove_unknown_allocation(db):
    with pytest.raises(NotFoundError):
        JobPartService.remove(12345)


def test_conflict_is_retried_with_fresh_walk(job, part, purchase):
    purchase("CAP-45", 5, "10.00")
    original = FIFOCostService.allocate_part
    calls = []

    def racing_allocate(locked_part, quantity, *args, **kwargs):
        calls.append(quantity)
        if len(calls) == 1:
            # Another writer lands between the read and the append
            Part.objects.filter(pk=locked_part.pk).update(ledger_version=F("ledger_version") + 1)
        return original(locked_part, quantity, *args, **kwargs)

    with mock.patch.object(FIFOCostService, "allocate_part", side_effect=racing_allocate):
        result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)

    assert len(calls) == 2
    assert result["in_stock"] == 3
    assert LedgerTransaction.objects.filter(kind=LedgerTransaction.Kind.USED).count() == 1
    assert JobPart.objects.count() == 1


def test_conflict_surfaces_after_retries(job, part, purchase, settings_row):
    settings_row.max_conflict_retries = 2
    settings_row.save()
    purchase("CAP-45", 5, "10.00")
    original = FIFOCostService.allocate_part
    calls = []

    def always_racing(locked_part, quantity, *args, **kwargs):
        calls.append(quantity)
        Part.objects.filter(pk=locked_part.pk).update(ledger_version=F("ledger_version") + 1)
        return original(locked_part, quantity, *args, **kwargs)

    with mock.patch.object(FIFOCostService, "allocate_part", side_effect=always_racing):
        with pytest.raises(ConcurrencyConflictError):
            JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)

    assert len(calls) == 3
    assert JobPart.objects.count() == 0
    assert LedgerTransaction.objects.filter(kind=LedgerTransaction.Kind.USED).count() == 0
    assert Part.objects.get(pk=part.pk).in_stock == 5


def test_last_unit_goes_to_one_job_only(make_job, part, purchase, settings_row):
    settings_row.allow_extrapolation = False
    settings_row.save()
    purchase("CAP-45", 1, "10.00")
    first, second = make_job(), make_job()

    JobPartService.add_from_stock(job_id=first.id, part_code="CAP-45", quantity=1)
    with pytest.raises(InsufficientHistoryError):
        JobPartService.add_from_stock(job_id=second.id, part_code="CAP-45", quantity=1)

    assert Job.objects.get(pk=second.pk).parts_cost == Decimal("0")


@pytest.mark.django_db(transaction=True)
def test_simultaneous_allocations_of_the_last_units(make_job, part, purchase, settings_row):
    purchase("CAP-45", 3, "10.00")
    jobs = [make_job(), make_job()]
    barrier = threading.Barrier(len(jobs))
    outcomes = {}

    def allocate(job):
        barrier.wait()
        try:
            JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=3)
            outcomes[job.job_number] = "allocated"
        except Exception as e:
            outcomes[job.job_number] = type(e).__name__
        finally:
            connection.close()

    threads = [threading.Thread(target=allocate, args=(job,)) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes.values()) == ["InsufficientHistoryError", "allocated"]
    assert JobPart.objects.count() == 1
    assert LedgerTransaction.objects.filter(kind=LedgerTransaction.Kind.USED).count() == 1
    assert Part.objects.get(pk=part.pk).in_stock == 0


def test_locked_database_is_retried_as_a_conflict(job, part, purchase):
    purchase("CAP-45", 5, "10.00")
    original = JobPartService._add_from_stock_once
    calls = []

    def locked_once(*args):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("database is locked")
        return original(*args)

    with mock.patch.object(JobPartService, "_add_from_stock_once", side_effect=locked_once):
        result = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)

    assert len(calls) == 2
    assert result["in_stock"] == 3


def test_locked_database_surfaces_as_conflict_after_retries(job, part, settings_row):
    settings_row.max_conflict_retries = 1
    settings_row.save()

    with mock.patch.object(
        JobPartService, "_add_from_stock_once", side_effect=OperationalError("database is locked")
    ):
        with pytest.raises(ConcurrencyConflictError) as excinfo:
            JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)

    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_other_database_errors_are_not_retried(job, part):
    with mock.patch.object(
        JobPartService, "_add_from_stock_once", side_effect=OperationalError("disk I/O error")
    ) as once:
        with pytest.raises(OperationalError):
            JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=1)

    assert once.call_count == 1


def test_integrity_check_passes_for_consistent_jobs(job, part, purchase):
    purchase("CAP-45", 5, "10.00")
    stock = JobPartService.add_from_stock(job_id=job.id, part_code="CAP-45", quantity=2)
    JobPartService.add_direct_order(job_id=job.id, part_code="CAP-45", quantity=1, unit_cost="9.00")
    JobPartService.remove(stock["job_part"]["id"])

    assert JobPartService.verify_integrity()["ok"] is True


def test_integrity_check_flags_orphan_usage(job, part, purchase):
    purchase("CAP-45", 5, "10.00")
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="Used", job_id=job.id)

    result = JobPartService.verify_integrity(job_id=job.id)
    assert result["ok"] is False
    assert result["issues"][0]["issue"] == "Used entry without allocation"
