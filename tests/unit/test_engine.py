"""
Unit tests for the orchestration engine.

Stage collaborators are replaced by in-memory fakes; the checkpoint store is
a real FileProgressStore in a temporary directory.
"""

import pytest

from seeder.batch.engine import OrchestrationEngine
from seeder.core.errors import (
    CheckpointNotFoundError,
    ConfigError,
    IngestionTimeoutError,
    RunAbortedError,
    StageFailedError,
)
from seeder.core.models import (
    CheckpointDocument,
    CollaboratorFailure,
    CollaboratorSuccess,
    CreatedLineItem,
    EntityStageOptions,
    GroupingRecord,
    StageReport,
    StageResult,
    StageSuccess,
)
from seeder.stages import DryRunEntityStage, DryRunGroupingStage, DryRunOrderStage
from seeder.stages.base import SeedStage
from seeder.stages.grouping_stage import GroupingStage
from tests.conftest import make_seed_config


class FakeOrderStage(SeedStage):
    """Creates 'order-<index>' for every record not in fail_indices."""

    stage_name = "stage1"

    def __init__(self, fail_indices=(), reverse=False, existing=False):
        self.fail_indices = set(fail_indices)
        self.reverse = reverse
        self.existing = existing
        self.calls: list[list[int]] = []

    def execute(self, submission, batch_id, region, on_progress=None):
        self.calls.append([spec.original_index for spec in submission])
        report = StageReport()
        for position, spec in enumerate(submission):
            if spec.original_index in self.fail_indices:
                report.failures.append(
                    CollaboratorFailure(
                        submission_index=position,
                        identifier=spec.identifier,
                        error_message="Variant not found for SKU(s)",
                    )
                )
            else:
                report.successes.append(
                    CollaboratorSuccess(
                        external_id=f"order-{spec.original_index}",
                        original_index=spec.original_index,
                        display_number=f"#{1000 + spec.original_index}",
                        customer_email=spec.customer.email,
                        already_existed=self.existing,
                        line_items=[
                            CreatedLineItem(
                                line_item_id=f"li-{spec.original_index}",
                                sku=spec.line_items[0].sku,
                            )
                        ],
                    )
                )
            if on_progress is not None:
                on_progress(position + 1, len(submission), spec.identifier)
        if self.reverse:
            report.successes.reverse()
        return report


class FakeEntityStage(SeedStage):
    """Creates 'wms-<external_id>' for every item not in fail_external_ids."""

    stage_name = "stage2"

    def __init__(self, fail_external_ids=(), error=None, existing=False):
        self.fail_external_ids = set(fail_external_ids)
        self.error = error
        self.existing = existing
        self.calls: list[list[int]] = []

    def execute(self, submission, batch_id, region, on_progress=None):
        self.calls.append([item.original_index for item in submission])
        if self.error is not None:
            raise self.error
        report = StageReport()
        for position, item in enumerate(submission):
            if item.external_id in self.fail_external_ids:
                report.failures.append(
                    CollaboratorFailure(
                        submission_index=position,
                        identifier=item.customer.email,
                        error_message="connection reset",
                        external_id=item.external_id,
                    )
                )
            else:
                report.successes.append(
                    CollaboratorSuccess(
                        external_id=item.external_id,
                        original_index=item.original_index,
                        entity_id=f"wms-{item.external_id}",
                        sub_record_ids=[f"prep-{item.external_id}"],
                        already_existed=self.existing,
                    )
                )
            if on_progress is not None:
                on_progress(position + 1, len(submission), item.customer.email)
        return report


class StubConfirmer:
    def __init__(self, answer=True):
        self.answer = answer
        self.messages: list[str] = []

    def confirm(self, message):
        self.messages.append(message)
        return self.answer


class FakeGroupingRepository:
    def __init__(self):
        self.created: list[tuple[str, list[str]]] = []

    def create_grouping_record(self, name, grouping, external_ids):
        self.created.append((name, list(external_ids)))
        return f"grp-{len(self.created)}"


@pytest.fixture
def order_stage():
    return FakeOrderStage()


@pytest.fixture
def entity_stage():
    return FakeEntityStage()


@pytest.fixture
def confirmer():
    return StubConfirmer()


@pytest.fixture
def engine(order_stage, entity_stage, progress_store, confirmer):
    return OrchestrationEngine(
        order_stage=order_stage,
        entity_stage=entity_stage,
        progress_store=progress_store,
        confirmer=confirmer,
    )


class TestFreshRun:
    """Tests for a run without a prior checkpoint"""

    def test_all_success_completes_and_deletes_checkpoint(self, engine, progress_store):
        """Test that a clean run reports completed and leaves no checkpoint"""
        config = make_seed_config(5)

        result = engine.run(config, batch_id="batch-ok")

        assert result.status == "completed"
        assert result.checkpoint_retained is False
        assert [s.original_index for s in result.stage1.successful] == [0, 1, 2, 3, 4]
        assert [s.original_index for s in result.stage2.successful] == [0, 1, 2, 3, 4]
        assert result.failures == []
        assert progress_store.load("batch-ok") is None

    def test_generates_batch_id_when_omitted(self, engine):
        """Test that a batch id is generated for a new run"""
        result = engine.run(make_seed_config(1))

        assert result.batch_id

    def test_permuted_successes_are_reconciled_by_identity(self, progress_store, entity_stage, confirmer):
        """Test that successes reported in reverse order land on the right records"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(reverse=True),
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )

        result = engine.run(make_seed_config(4), batch_id="batch-permuted")

        for success in result.stage1.successful:
            assert success.external_id == f"order-{success.original_index}"
            assert success.customer_email == f"customer{success.original_index}@example.com"

    def test_stage2_receives_stage1_external_ids(self, engine, entity_stage):
        """Test that stage 2 is keyed by the external ids created in stage 1"""
        result = engine.run(make_seed_config(3), batch_id="batch-keys")

        assert entity_stage.calls == [[0, 1, 2]]
        assert [s.entity_id for s in result.stage2.successful] == [
            "wms-order-0", "wms-order-1", "wms-order-2"
        ]


class TestFailureHandling:
    """Tests for continue-on-error and batch-fatal failures"""

    def test_all_failed_raises_after_persisting(self, progress_store, entity_stage, confirmer):
        """Test that a stage where every record failed aborts with the checkpoint kept"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(fail_indices={0, 1, 2}),
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )

        with pytest.raises(StageFailedError) as exc_info:
            engine.run(make_seed_config(3), batch_id="batch-dead")

        assert exc_info.value.stage == "stage1"
        assert exc_info.value.failed_count == 3
        assert exc_info.value.batch_id == "batch-dead"
        assert "resume batch-dead" in exc_info.value.resume_command
        assert entity_stage.calls == []

        checkpoint = progress_store.load("batch-dead")
        assert [f.original_index for f in checkpoint.stage1.failed] == [0, 1, 2]

    def test_partial_failure_continues_after_confirmation(self, progress_store, entity_stage, confirmer):
        """Test that stage 2 runs for the successful records once confirmed"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(fail_indices={1, 3}),
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )

        result = engine.run(make_seed_config(5), batch_id="batch-partial")

        assert len(confirmer.messages) == 1
        assert "2 record(s) failed" in confirmer.messages[0]
        assert entity_stage.calls == [[0, 2, 4]]
        assert result.status == "partial"
        assert [(f.stage, f.original_index) for f in result.failures] == [("stage1", 1), ("stage1", 3)]
        assert progress_store.load("batch-partial") is not None

    def test_declined_confirmation_aborts_with_checkpoint(self, progress_store, entity_stage):
        """Test that declining between stages raises RunAbortedError and keeps stage 1"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(fail_indices={0}),
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=StubConfirmer(answer=False),
        )

        with pytest.raises(RunAbortedError) as exc_info:
            engine.run(make_seed_config(3), batch_id="batch-declined")

        assert exc_info.value.batch_id == "batch-declined"
        assert entity_stage.calls == []
        checkpoint = progress_store.load("batch-declined")
        assert checkpoint.stage1.successful_indices == {1, 2}

    def test_no_confirmation_without_failures(self, engine, confirmer):
        """Test that the confirmer is not consulted when stage 1 is clean"""
        engine.run(make_seed_config(2), batch_id="batch-quiet")

        assert confirmer.messages == []

    def test_stage2_failure_keeps_checkpoint(self, progress_store, order_stage, confirmer):
        """Test that a stage 2 failure is recorded against its original index"""
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=FakeEntityStage(fail_external_ids={"order-2"}),
            progress_store=progress_store,
            confirmer=confirmer,
        )

        result = engine.run(make_seed_config(4), batch_id="batch-s2")

        assert result.status == "partial"
        assert [f.original_index for f in result.stage2.failed] == [2]
        assert progress_store.load("batch-s2").stage2.successful_indices == {0, 1, 3}

    def test_ingestion_timeout_carries_batch_id(self, progress_store, order_stage, confirmer):
        """Test that a webhook timeout is re-raised with the batch id attached"""
        error = IngestionTimeoutError("timeout", missing_ids=["order-0"], elapsed_ms=1000)
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=FakeEntityStage(error=error),
            progress_store=progress_store,
            confirmer=confirmer,
        )

        with pytest.raises(IngestionTimeoutError) as exc_info:
            engine.run(make_seed_config(1), batch_id="batch-timeout")

        assert exc_info.value.batch_id == "batch-timeout"
        assert exc_info.value.missing_ids == ["order-0"]
        assert progress_store.load("batch-timeout").stage1.successful_indices == {0}


class TestResume:
    """Tests for resuming from a checkpoint"""

    def test_resume_submits_only_failed_records(self, progress_store, entity_stage, confirmer):
        """Test that records 1 and 3 are the only ones resubmitted after failing"""
        order_stage = FakeOrderStage(fail_indices={1, 3})
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )
        config = make_seed_config(5)
        engine.run(config, batch_id="batch-resume")

        order_stage.fail_indices = set()
        result = engine.resume("batch-resume")

        assert order_stage.calls == [[0, 1, 2, 3, 4], [1, 3]]
        assert entity_stage.calls == [[0, 2, 4], [1, 3]]
        assert [s.external_id for s in result.stage1.successful] == [
            f"order-{i}" for i in range(5)
        ]
        assert result.skipped == {"stage1": 3, "stage2": 3}
        assert result.new_successes == {"stage1": 2, "stage2": 2}
        assert result.status == "completed"
        assert progress_store.load("batch-resume") is None

    def test_resume_with_everything_done_submits_nothing(self, engine, order_stage, entity_stage, progress_store):
        """Test idempotency: a fully successful checkpoint creates nothing"""
        config = make_seed_config(2)
        done = StageResult(
            successful=[
                StageSuccess(original_index=i, external_id=f"order-{i}") for i in range(2)
            ]
        )
        progress_store.save(
            CheckpointDocument(batch_id="batch-done", stage1=done, stage2=done, seed_config=config)
        )

        result = engine.resume("batch-done")

        assert order_stage.calls == []
        assert entity_stage.calls == []
        assert result.new_successes == {"stage1": 0, "stage2": 0}
        assert result.status == "completed"

    def test_found_records_are_not_new_successes(self, progress_store, confirmer):
        """Test that records the collaborators report as already existing count as zero new successes"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(existing=True),
            entity_stage=FakeEntityStage(existing=True),
            progress_store=progress_store,
            confirmer=confirmer,
        )

        result = engine.run(make_seed_config(3), batch_id="batch-rerun")

        assert result.status == "completed"
        assert result.new_successes == {"stage1": 0, "stage2": 0}
        assert len(result.stage2.successful) == 3

    def test_stage1_still_failing_does_not_block_pending_stage2(self, progress_store, confirmer):
        """Test that stage 2 retries its failures even when every resubmitted stage 1 record fails again"""
        order_stage = FakeOrderStage(fail_indices={1})
        entity_stage = FakeEntityStage(fail_external_ids={"order-2"})
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )
        engine.run(make_seed_config(5), batch_id="batch-stuck")

        entity_stage.fail_external_ids = set()
        result = engine.resume("batch-stuck")

        assert order_stage.calls == [[0, 1, 2, 3, 4], [1]]
        assert entity_stage.calls == [[0, 2, 3, 4], [2]]
        assert result.status == "partial"
        assert result.stage2.successful_indices == {0, 2, 3, 4}
        assert result.stage2.failed == []
        assert [f.original_index for f in result.stage1.failed] == [1]
        saved = progress_store.load("batch-stuck")
        assert saved.stage2.successful_indices == {0, 2, 3, 4}

    def test_stage1_still_failing_with_nothing_pending_raises(self, progress_store, confirmer):
        """Test that a resume with no new stage 1 success and no pending stage 2 work fails the stage"""
        order_stage = FakeOrderStage(fail_indices={1})
        entity_stage = FakeEntityStage()
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )
        engine.run(make_seed_config(3), batch_id="batch-done-but-one")

        with pytest.raises(StageFailedError) as exc_info:
            engine.resume("batch-done-but-one")

        assert exc_info.value.stage == "stage1"
        assert entity_stage.calls == [[0, 2]]
        assert progress_store.load("batch-done-but-one") is not None

    def test_stage2_resume_does_not_recreate_stage1(self, progress_store, order_stage, confirmer):
        """Test that resuming after a stage 2 failure skips stage 1 entirely"""
        entity_stage = FakeEntityStage(fail_external_ids={"order-1"})
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )
        engine.run(make_seed_config(3), batch_id="batch-s2-resume")

        entity_stage.fail_external_ids = set()
        result = engine.resume("batch-s2-resume")

        assert order_stage.calls == [[0, 1, 2]]
        assert entity_stage.calls == [[0, 1, 2], [1]]
        assert result.status == "completed"

    def test_progress_is_offset_by_completed_records(self, progress_store, entity_stage, confirmer):
        """Test that progress counts continue from the already-successful records"""
        order_stage = FakeOrderStage(fail_indices={3, 4})
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
        )
        engine.run(make_seed_config(5), batch_id="batch-progress")

        order_stage.fail_indices = set()
        events = []
        engine.resume("batch-progress", on_progress=lambda *event: events.append(event))

        stage1_events = [(current, total) for stage, current, total, _ in events if stage == "stage1"]
        assert stage1_events == [(4, 5), (5, 5)]

    def test_resume_without_checkpoint_raises(self, engine):
        """Test that resuming an unknown batch is distinct from a corrupt one"""
        with pytest.raises(CheckpointNotFoundError):
            engine.resume("no-such-batch")

    def test_resume_without_snapshot_needs_config(self, engine, progress_store):
        """Test that a checkpoint without a config snapshot requires a config"""
        progress_store.save(CheckpointDocument(batch_id="batch-bare"))

        with pytest.raises(ConfigError):
            engine.resume("batch-bare")

        result = engine.resume("batch-bare", config=make_seed_config(1))
        assert result.status == "completed"

    def test_config_too_small_for_checkpoint_is_rejected(self, engine, progress_store):
        """Test that a checkpoint index outside the configuration is refused"""
        progress_store.save(
            CheckpointDocument(
                batch_id="batch-big",
                stage1=StageResult(successful=[StageSuccess(original_index=4, external_id="order-4")]),
            )
        )

        with pytest.raises(ConfigError):
            engine.resume("batch-big", config=make_seed_config(2))


class TestGrouping:
    """Tests for the optional grouping record"""

    def test_grouping_created_once_all_records_succeed(self, progress_store, order_stage, confirmer):
        """Test that the grouping record waits for a clean batch and is created once"""
        repository = FakeGroupingRepository()
        entity_stage = FakeEntityStage(fail_external_ids={"order-0"})
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=entity_stage,
            progress_store=progress_store,
            confirmer=confirmer,
            grouping_stage=GroupingStage(repository),
        )
        config = make_seed_config(2, grouping=True)

        first = engine.run(config, batch_id="batch-group")
        assert first.grouping_record is None
        assert repository.created == []

        entity_stage.fail_external_ids = set()
        second = engine.resume("batch-group")

        assert second.status == "completed"
        assert second.grouping_record == GroupingRecord(id="grp-1", region="CA")
        assert repository.created == [("smoke-batch-group", ["order-0", "order-1"])]

    def test_grouping_record_in_checkpoint_is_reused(self, engine, progress_store):
        """Test that an existing grouping record is not created again"""
        repository = FakeGroupingRepository()
        engine.grouping_stage = GroupingStage(repository)
        config = make_seed_config(1, grouping=True)
        done = StageResult(successful=[StageSuccess(original_index=0, external_id="order-0")])
        progress_store.save(
            CheckpointDocument(
                batch_id="batch-regroup",
                stage1=done,
                stage2=done,
                grouping_record=GroupingRecord(id="grp-existing", region="CA"),
                seed_config=config,
            )
        )

        result = engine.resume("batch-regroup")

        assert repository.created == []
        assert result.grouping_record.id == "grp-existing"


class WebhookFakeEntityStage(FakeEntityStage):
    @property
    def options(self):
        return EntityStageOptions(mode="webhook", timeout=300, poll_interval=10, allow_partial=True)


class TestStoredOptions:
    """Tests for stage 2 settings kept in the checkpoint"""

    def test_checkpoint_records_entity_options(self, progress_store, order_stage, confirmer):
        """Test that a partial run stores the stage 2 mode it used"""
        engine = OrchestrationEngine(
            order_stage=order_stage,
            entity_stage=WebhookFakeEntityStage(fail_external_ids={"order-0"}),
            progress_store=progress_store,
            confirmer=confirmer,
        )

        engine.run(make_seed_config(2), batch_id="batch-webhook")

        saved = progress_store.load("batch-webhook")
        assert saved.entity_options == EntityStageOptions(
            mode="webhook", timeout=300, poll_interval=10, allow_partial=True
        )

    def test_stages_without_options_keep_stored_ones(self, engine, progress_store):
        """Test that a stage reporting no options leaves the checkpoint value in place"""
        stored = EntityStageOptions(mode="webhook")
        progress_store.save(
            CheckpointDocument(
                batch_id="batch-keep",
                seed_config=make_seed_config(2),
                entity_options=stored,
            )
        )
        engine.entity_stage = FakeEntityStage(fail_external_ids={"order-0"})

        engine.resume("batch-keep")

        assert progress_store.load("batch-keep").entity_options == stored


class TestDryRun:
    """Tests for runs that simulate every stage"""

    @pytest.fixture
    def dry_engine(self, progress_store, confirmer):
        return OrchestrationEngine(
            order_stage=DryRunOrderStage(),
            entity_stage=DryRunEntityStage(),
            progress_store=progress_store,
            confirmer=confirmer,
            grouping_stage=DryRunGroupingStage(),
            dry_run=True,
        )

    def test_dry_run_writes_no_checkpoint(self, dry_engine, progress_store):
        """Test that a simulated run reports success and saves nothing"""
        result = dry_engine.run(make_seed_config(3, grouping=True), batch_id="batch-dry")

        assert result.status == "completed"
        assert result.dry_run is True
        assert [s.external_id for s in result.stage1.successful] == [
            f"dry-run-order-{i}" for i in range(3)
        ]
        assert result.grouping_record.id == "dry-run-smoke-batch-dry"
        assert progress_store.list() == []

    def test_partial_dry_run_retains_nothing(self, progress_store, confirmer):
        """Test that failures in a dry run leave no checkpoint behind"""
        engine = OrchestrationEngine(
            order_stage=FakeOrderStage(fail_indices={1}),
            entity_stage=DryRunEntityStage(),
            progress_store=progress_store,
            confirmer=confirmer,
            dry_run=True,
        )

        result = engine.run(make_seed_config(3), batch_id="batch-dry-partial")

        assert result.status == "partial"
        assert result.checkpoint_retained is False
        assert progress_store.load("batch-dry-partial") is None

    def test_dry_run_resume_leaves_checkpoint_untouched(self, dry_engine, progress_store):
        """Test that simulating a resume neither updates nor deletes the checkpoint"""
        checkpoint = CheckpointDocument(
            batch_id="batch-dry-resume",
            stage1=StageResult(successful=[StageSuccess(original_index=0, external_id="order-0")]),
            seed_config=make_seed_config(2),
        )
        progress_store.save(checkpoint)
        before = progress_store.load("batch-dry-resume").model_dump()

        result = dry_engine.resume("batch-dry-resume")

        assert result.status == "completed"
        assert result.skipped["stage1"] == 1
        assert progress_store.load("batch-dry-resume").model_dump() == before
