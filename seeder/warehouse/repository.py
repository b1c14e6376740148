"""
WMS repository: create and find the downstream entities of seeded orders.

Writes use INSERT ... ON CONFLICT so that re-running a record never
duplicates its WMS order, preps or grouping links.
"""

import uuid
from typing import Any

import psycopg

from seeder.core.errors import RepositoryError
from seeder.core.models import CreatedLineItem, Customer, GroupingConfig
from seeder.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)


class WmsRepository:
    """
    Data access for WMS orders, preps and collection preps.

    Every public method wraps psycopg errors in RepositoryError so callers can
    treat a database failure as a per-record failure.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize repository.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def find_order_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        """
        Find a WMS order by its remote order id.

        Returns:
            Row with id, external_id, display_number, status and region, or None
        """
        query = """
            SELECT id, shopify_order_id AS external_id,
                   shopify_order_number AS display_number, status, region
            FROM wms_order
            WHERE shopify_order_id = %s
        """
        try:
            rows = self.pool.execute_query(query, (external_id,))
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to look up order {external_id}: {e}") from e
        return rows[0] if rows else None

    def find_preps_by_order_ids(self, external_ids: list[str], region: str) -> list[dict[str, Any]]:
        """
        Find preps belonging to the given remote orders.

        Returns:
            Rows with prep_id, external_id and line_item_id
        """
        if not external_ids:
            return []

        query = """
            SELECT id AS prep_id, shopify_order_id AS external_id, line_item_id
            FROM prep
            WHERE shopify_order_id = ANY(%s) AND region = %s
            ORDER BY shopify_order_id, line_item_id
        """
        try:
            return self.pool.execute_query(query, (list(external_ids), region))
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to look up preps: {e}") from e

    def create_order_with_preps(
        self,
        external_id: str,
        display_number: str | None,
        customer: Customer,
        line_items: list[CreatedLineItem],
        region: str,
        status: str = "paid",
    ) -> tuple[str, list[str]]:
        """
        Create customer, order and one prep per line item in a single transaction.

        Args:
            external_id: Remote order id
            display_number: Remote order number
            customer: Customer on the order
            line_items: Line items created on the remote order
            region: WMS region
            status: Initial order status (orders are paid, not fulfilled)

        Returns:
            Tuple of (wms_order_id, prep_ids)
        """
        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute(
                            """
                            INSERT INTO customer (id, email, name, region)
                            VALUES (%s, %s, %s, %s)
                            ON CONFLICT (email) DO UPDATE SET name = EXCLUDED.name
                            RETURNING id
                            """,
                            (str(uuid.uuid4()), customer.email, customer.name, region),
                        )
                        customer_id = cur.fetchone()["id"]

                        cur.execute(
                            """
                            INSERT INTO wms_order (
                                id, shopify_order_id, shopify_order_number,
                                status, region, customer_id
                            )
                            VALUES (%s, %s, %s, %s, %s, %s)
                            ON CONFLICT (shopify_order_id) DO NOTHING
                            """,
                            (str(uuid.uuid4()), external_id, display_number, status, region, customer_id),
                        )
                        cur.execute(
                            "SELECT id FROM wms_order WHERE shopify_order_id = %s",
                            (external_id,),
                        )
                        order_id = cur.fetchone()["id"]

                        cur.executemany(
                            """
                            INSERT INTO prep (id, shopify_order_id, line_item_id, sku, quantity, region)
                            VALUES (%s, %s, %s, %s, %s, %s)
                            ON CONFLICT (shopify_order_id, line_item_id) DO NOTHING
                            """,
                            [
                                (str(uuid.uuid4()), external_id, item.line_item_id,
                                 item.sku, item.quantity, region)
                                for item in line_items
                            ],
                        )
                        cur.execute(
                            """
                            SELECT id FROM prep
                            WHERE shopify_order_id = %s
                            ORDER BY line_item_id
                            """,
                            (external_id,),
                        )
                        prep_ids = [row["id"] for row in cur.fetchall()]
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to create WMS order for {external_id}: {e}") from e

        logger.debug(
            "WMS order created",
            extra={"external_id": external_id, "entity_id": order_id, "prep_count": len(prep_ids)},
        )
        return order_id, prep_ids

    def create_grouping_record(
        self,
        name: str,
        grouping: GroupingConfig,
        external_ids: list[str],
    ) -> str:
        """
        Create a collection prep linking every given order.

        Args:
            name: Collection prep name
            grouping: Grouping configuration
            external_ids: Remote order ids to link

        Returns:
            Collection prep id
        """
        grouping_id = str(uuid.uuid4())
        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute(
                            """
                            INSERT INTO collection_prep (
                                id, name, region, carrier, location_id, prep_date, boxes
                            )
                            VALUES (%s, %s, %s, %s, %s, %s, %s)
                            """,
                            (
                                grouping_id,
                                name,
                                grouping.region,
                                grouping.carrier,
                                grouping.location_id,
                                grouping.prep_date,
                                len(external_ids),
                            ),
                        )
                        cur.executemany(
                            """
                            INSERT INTO collection_prep_order (collection_prep_id, shopify_order_id)
                            VALUES (%s, %s)
                            ON CONFLICT DO NOTHING
                            """,
                            [(grouping_id, external_id) for external_id in external_ids],
                        )
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to create collection prep {name}: {e}") from e

        return grouping_id
