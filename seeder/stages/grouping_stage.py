"""
Optional final step: one grouping record (collection prep) per batch.
"""

from seeder.core.models import GroupingConfig, GroupingRecord, StageResult
from seeder.observability.logger import get_logger
from seeder.warehouse.repository import WmsRepository

logger = get_logger(__name__)


def grouping_name(batch_id: str, grouping: GroupingConfig) -> str:
    return f"{grouping.test_tag or 'seed'}-{batch_id}"


class GroupingStage:
    """Creates the grouping record referencing every stage 2 entity."""

    stage_name = "grouping"

    def __init__(self, repository: WmsRepository):
        self.repository = repository

    def create(self, batch_id: str, grouping: GroupingConfig, stage2: StageResult) -> GroupingRecord:
        """
        Create the grouping record for a batch.

        Args:
            batch_id: Batch identifier
            grouping: Grouping configuration
            stage2: Merged stage 2 results; every successful entry is linked

        Returns:
            GroupingRecord

        Raises:
            RepositoryError: If the record cannot be written
        """
        external_ids = [entry.external_id for entry in stage2.successful]
        name = grouping_name(batch_id, grouping)
        grouping_id = self.repository.create_grouping_record(name, grouping, external_ids)
        logger.info(
            "Grouping record created",
            extra={
                "batch_id": batch_id,
                "grouping_id": grouping_id,
                "region": grouping.region,
                "order_count": len(external_ids),
            },
        )
        return GroupingRecord(id=str(grouping_id), region=grouping.region)
