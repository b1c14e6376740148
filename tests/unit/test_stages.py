"""
Unit tests for the stage collaborators.
"""

import pytest

from seeder.batch.poller import IngestionPoller
from seeder.clients.order_api import SEED_TAG, RemoteOrder, format_batch_tag, format_index_tag
from seeder.core.errors import IngestionTimeoutError, OrderApiError, RepositoryError
from seeder.core.models import (
    CreatedLineItem,
    Customer,
    EntityStageOptions,
    EntitySubmission,
    GroupingConfig,
    StageResult,
    StageSuccess,
)
from seeder.stages import (
    DirectEntityStage,
    DryRunEntityStage,
    DryRunGroupingStage,
    DryRunOrderStage,
    GroupingStage,
    RemoteOrderStage,
    WebhookEntityStage,
)
from seeder.stages.grouping_stage import grouping_name
from seeder.utils.validation import ValidationError
from tests.conftest import make_seed_config


class FakeOrderClient:
    def __init__(self, existing=None, failing_emails=(), lookup_error=None):
        self.existing = existing or []
        self.failing_emails = set(failing_emails)
        self.lookup_error = lookup_error
        self.created: list[int] = []

    def query_orders_by_tag(self, tag):
        if self.lookup_error:
            raise self.lookup_error
        return self.existing

    def create_order(self, spec, batch_id):
        if spec.customer.email in self.failing_emails:
            raise OrderApiError("Variant not found for SKU(s): " + spec.line_items[0].sku)
        self.created.append(spec.original_index)
        return RemoteOrder(
            order_id=f"gid://shopify/Order/{spec.original_index}",
            order_number=f"#{1000 + spec.original_index}",
            tags=[SEED_TAG, format_batch_tag(batch_id), format_index_tag(spec.original_index)],
            line_items=[CreatedLineItem(line_item_id=f"li-{spec.original_index}", sku=spec.line_items[0].sku)],
        )


class FakeRepository:
    def __init__(self, existing=None, failing=(), preps=None):
        self.existing = existing or {}
        self.preps = preps or {}
        self.failing = set(failing)
        self.created: list[str] = []
        self.groupings: list[tuple] = []

    def find_order_by_external_id(self, external_id):
        return self.existing.get(external_id)

    def find_preps_by_order_ids(self, external_ids, region):
        return [{"prep_id": p, "external_id": e} for e in external_ids for p in self.preps.get(e, [])]

    def create_order_with_preps(self, external_id, display_number, customer, line_items, region, status="paid"):
        if external_id in self.failing:
            raise RepositoryError("connection reset")
        self.created.append(external_id)
        return f"wms-{external_id}", [f"prep-{li.line_item_id}" for li in line_items]

    def create_grouping_record(self, name, grouping, external_ids):
        self.groupings.append((name, list(external_ids)))
        return "grp-1"


def entity(original_index, external_id=None):
    return EntitySubmission(
        original_index=original_index,
        external_id=external_id or f"ext-{original_index}",
        display_number=f"#{1000 + original_index}",
        customer=Customer(name="Test", email=f"c{original_index}@example.com"),
        line_items=[CreatedLineItem(line_item_id=f"li-{original_index}", sku="SKU")],
    )


class TestRemoteOrderStage:
    """Tests for RemoteOrderStage"""

    def test_creates_orders_and_echoes_index(self):
        """Test that each success carries its original index and line items"""
        client = FakeOrderClient()
        specs = make_seed_config(3).orders[1:]

        report = RemoteOrderStage(client).execute(specs, "batch-1", "CA")

        assert [s.original_index for s in report.successes] == [1, 2]
        assert report.successes[0].line_items[0].line_item_id == "li-1"
        assert report.successes[0].already_existed is False
        assert report.failures == []

    def test_failure_is_recorded_by_submission_position(self):
        """Test that an API error becomes a failure and the stage continues"""
        client = FakeOrderClient(failing_emails={"customer1@example.com"})
        specs = make_seed_config(3).orders

        report = RemoteOrderStage(client).execute(specs, "batch-1", "CA")

        assert [s.original_index for s in report.successes] == [0, 2]
        assert report.failures[0].submission_index == 1
        assert report.failures[0].identifier == "customer1@example.com"
        assert "SKU-001" in report.failures[0].error_message

    def test_existing_tagged_order_is_not_recreated(self):
        """Test that an order created before a crash is reported as existing"""
        tags = [SEED_TAG, format_batch_tag("batch-1"), format_index_tag(1)]
        client = FakeOrderClient(existing=[RemoteOrder(order_id="gid://shopify/Order/old", tags=tags)])

        report = RemoteOrderStage(client).execute(make_seed_config(2).orders, "batch-1", "CA")

        assert client.created == [0]
        existing = [s for s in report.successes if s.already_existed]
        assert [(s.original_index, s.external_id) for s in existing] == [(1, "gid://shopify/Order/old")]

    def test_orders_from_other_batches_are_ignored(self):
        """Test that only orders carrying this batch's tag are reused"""
        tags = [SEED_TAG, format_batch_tag("other"), format_index_tag(0)]
        client = FakeOrderClient(existing=[RemoteOrder(order_id="o", tags=tags)])

        RemoteOrderStage(client).execute(make_seed_config(1).orders, "batch-1", "CA")

        assert client.created == [0]

    def test_lookup_failure_propagates(self):
        """Test that a failing existing-order lookup aborts the stage"""
        client = FakeOrderClient(lookup_error=OrderApiError("unreachable"))

        with pytest.raises(OrderApiError):
            RemoteOrderStage(client).execute(make_seed_config(1).orders, "batch-1", "CA")

    def test_progress_reported_per_record(self):
        """Test that progress is reported once per submitted record"""
        ticks = []

        RemoteOrderStage(FakeOrderClient()).execute(
            make_seed_config(2).orders, "b", "CA", on_progress=lambda *t: ticks.append(t)
        )

        assert ticks == [(1, 2, "customer0@example.com"), (2, 2, "customer1@example.com")]


class TestDirectEntityStage:
    """Tests for DirectEntityStage"""

    def test_creates_order_with_preps(self):
        """Test that entities are created with one prep per line item"""
        repo = FakeRepository()

        report = DirectEntityStage(repo).execute([entity(0), entity(2)], "b", "CA")

        assert [s.original_index for s in report.successes] == [0, 2]
        assert report.successes[1].entity_id == "wms-ext-2"
        assert report.successes[1].sub_record_ids == ["prep-li-2"]

    def test_options_are_direct(self):
        """Test that direct mode is recorded without polling overrides"""
        assert DirectEntityStage(FakeRepository()).options == EntityStageOptions(mode="direct")

    def test_repository_error_becomes_failure(self):
        """Test that a database error fails only that record"""
        repo = FakeRepository(failing={"ext-1"})

        report = DirectEntityStage(repo).execute([entity(0), entity(1)], "b", "CA")

        assert [s.original_index for s in report.successes] == [0]
        assert report.failures[0].submission_index == 1
        assert report.failures[0].external_id == "ext-1"
        assert report.failures[0].error_message == "connection reset"

    def test_existing_order_with_preps_is_reused(self):
        """Test that an order already present downstream is not written again"""
        repo = FakeRepository(
            existing={"ext-0": {"id": "wms-old", "region": "CA"}},
            preps={"ext-0": ["prep-old"]},
        )

        report = DirectEntityStage(repo).execute([entity(0)], "b", "CA")

        assert repo.created == []
        assert report.successes[0].entity_id == "wms-old"
        assert report.successes[0].already_existed is True

    def test_existing_order_without_preps_is_completed(self):
        """Test that an order missing its preps is written again"""
        repo = FakeRepository(existing={"ext-0": {"id": "wms-old", "region": "CA"}})

        DirectEntityStage(repo).execute([entity(0)], "b", "CA")

        assert repo.created == ["ext-0"]


class FrozenClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class TestWebhookEntityStage:
    """Tests for WebhookEntityStage"""

    def make_stage(self, ingested, allow_partial=False):
        repo = FakeRepository(
            existing={e: {"id": f"wms-{e}", "region": "CA"} for e in ingested},
            preps={e: [f"prep-{e}"] for e in ingested},
        )
        clock = FrozenClock()
        poller = IngestionPoller(repo, clock=clock, sleep=clock.sleep)
        return WebhookEntityStage(poller, timeout=10, poll_interval=5, allow_partial_success=allow_partial)

    def test_found_orders_are_successes(self):
        """Test that ingested orders map back to their original indices"""
        stage = self.make_stage({"ext-1", "ext-3"})

        report = stage.execute([entity(1), entity(3)], "b", "CA")

        assert sorted(s.original_index for s in report.successes) == [1, 3]
        assert report.successes[0].sub_record_ids == [f"prep-{report.successes[0].external_id}"]

    def test_missing_orders_become_failures_when_partial_allowed(self):
        """Test that orders missing at the deadline are failures, not an error"""
        stage = self.make_stage({"ext-1"}, allow_partial=True)

        report = stage.execute([entity(1), entity(3)], "b", "CA")

        assert [s.original_index for s in report.successes] == [1]
        assert report.failures[0].submission_index == 1
        assert report.failures[0].error_message == "Order not ingested within 10s"

    def test_timeout_propagates_when_partial_not_allowed(self):
        """Test that strict mode raises IngestionTimeoutError"""
        stage = self.make_stage({"ext-1"})

        with pytest.raises(IngestionTimeoutError) as exc_info:
            stage.execute([entity(1), entity(3)], "b", "CA")

        assert exc_info.value.missing_ids == ["ext-3"]

    def test_empty_submission_does_not_poll(self):
        """Test that nothing is polled for an empty submission"""
        assert self.make_stage(set()).execute([], "b", "CA").successes == []

    def test_options_describe_polling(self):
        """Test that the stage reports the settings a resume must reuse"""
        stage = self.make_stage([], allow_partial=True)

        assert stage.options == EntityStageOptions(mode="webhook", timeout=10, poll_interval=5, allow_partial=True)

    @pytest.mark.parametrize("timeout,interval", [(0, 5), (10, -1)])
    def test_non_positive_durations_rejected_on_construction(self, timeout, interval):
        """Test that bad durations fail before anything is submitted"""
        poller = IngestionPoller(FakeRepository())

        with pytest.raises(ValidationError):
            WebhookEntityStage(poller, timeout=timeout, poll_interval=interval)


class TestGroupingStage:
    """Tests for GroupingStage"""

    def test_links_every_stage2_success(self):
        """Test that the grouping record references all successful entities"""
        repo = FakeRepository()
        grouping = GroupingConfig(carrier="canada_post", location_id="LOC-1", prep_date="2025-01-15", test_tag="smoke")
        stage2 = StageResult(successful=[
            StageSuccess(original_index=0, external_id="ext-0"),
            StageSuccess(original_index=1, external_id="ext-1"),
        ])

        record = GroupingStage(repo).create("batch-1", grouping, stage2)

        assert record.id == "grp-1"
        assert record.region == "CA"
        assert repo.groupings == [("smoke-batch-1", ["ext-0", "ext-1"])]

    def test_default_name_prefix(self):
        """Test that the grouping name falls back to the seed prefix"""
        grouping = GroupingConfig(carrier="ups", location_id="L", prep_date="2025-01-15")

        assert grouping_name("b", grouping) == "seed-b"


class TestDryRunStages:
    """Tests for the simulated stages used by --dry-run"""

    def test_order_stage_simulates_every_record(self):
        """Test that each record gets a simulated order and line item ids"""
        specs = make_seed_config(3).orders[1:]

        report = DryRunOrderStage().execute(specs, "batch-1", "CA")

        assert report.failures == []
        assert [s.external_id for s in report.successes] == ["dry-run-order-1", "dry-run-order-2"]
        assert report.successes[0].display_number == "DRY-2"
        assert report.successes[0].line_items[0].line_item_id == "dry-run-order-1-li-0"
        assert report.successes[0].line_items[0].sku == "SKU-001"

    def test_entity_stage_simulates_one_prep_per_line_item(self):
        """Test that the simulated WMS order echoes the external id"""
        report = DryRunEntityStage().execute([entity(0), entity(2)], "batch-1", "CA")

        assert [s.external_id for s in report.successes] == ["ext-0", "ext-2"]
        assert report.successes[1].entity_id == "dry-run-wms-2"
        assert report.successes[1].sub_record_ids == ["dry-run-prep-li-2"]

    def test_grouping_stage_needs_no_repository(self):
        """Test that the simulated grouping record is named like a real one"""
        grouping = GroupingConfig(carrier="ups", location_id="L", prep_date="2025-01-15", test_tag="smoke")
        stage2 = StageResult(successful=[StageSuccess(original_index=0, external_id="ext-0")])

        record = DryRunGroupingStage().create("batch-1", grouping, stage2)

        assert record.id == "dry-run-smoke-batch-1"
        assert record.region == grouping.region
