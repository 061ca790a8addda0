import pytest
from django.test import Client

from jobs.models import Job
from parts.models import Part, StorageLocation, PartsSettings
from parts.services import LedgerService, PartCatalogService


@pytest.fixture()
def settings_row(db):
    return PartsSettings.load()


@pytest.fixture()
def make_job(db):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        kwargs.setdefault("job_number", f"J-{counter['n']:04d}")
        return Job.objects.create(**kwargs)

    return _make


@pytest.fixture()
def job(make_job):
    return make_job(customer_name="Hillside Dental")


@pytest.fixture()
def make_part(db):
    def _make(code="CAP-45", description="Run capacitor 45/5 uF", **kwargs):
        result = PartCatalogService.create(code=code, description=description, **kwargs)
        return Part.objects.get(pk=result["id"])

    return _make


@pytest.fixture()
def part(make_part):
    return make_part()


@pytest.fixture()
def purchase(db):
    def _purchase(part_code, quantity, unit_cost, **kwargs):
        return LedgerService.receive_purchase(
            part_code=part_code, quantity=quantity, unit_cost=unit_cost, **kwargs
        )

    return _purchase


@pytest.fixture()
def make_location(db):
    counter = {"n": 0}

    def _make(location_type=StorageLocation.LocationType.VEHICLE, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("code", f"LOC-{counter['n']:03d}")
        kwargs.setdefault("name", f"Truck {counter['n']}")
        return StorageLocation.objects.create(location_type=location_type, **kwargs)

    return _make


@pytest.fixture()
def api_client():
    return Client()
