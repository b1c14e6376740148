"""
Shopify Admin GraphQL client used to create and find seeded orders.

Each seeded order carries three tags: the generic seed tag, the batch tag and
a per-record index tag. The index tag lets a rerun recognise orders created
before a crash that never reached the checkpoint.
"""

import time
from typing import Any, Callable

import requests
from pydantic import BaseModel, Field

from seeder.core.errors import OrderApiError
from seeder.core.models import CreatedLineItem, RecordSpec
from seeder.observability import metrics
from seeder.observability.logger import get_logger

logger = get_logger(__name__)

SEED_TAG = "wms_seed"
BATCH_TAG_PREFIX = "seed_batch_id:"
INDEX_TAG_PREFIX = "seed_index:"
MAX_TAG_LENGTH = 40

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

DRAFT_ORDER_CREATE = """
mutation draftOrderCreate($input: DraftOrderInput!) {
  draftOrderCreate(input: $input) {
    draftOrder { id name }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_COMPLETE = """
mutation draftOrderComplete($id: ID!) {
  draftOrderComplete(id: $id) {
    draftOrder {
      id
      order {
        id
        name
        lineItems(first: 250) {
          edges { node { id sku quantity } }
        }
      }
    }
    userErrors { field message }
  }
}
"""

ORDERS_BY_TAG = """
query getOrdersByTag($query: String!) {
  orders(first: 250, query: $query) {
    edges {
      node {
        id
        name
        tags
        lineItems(first: 250) {
          edges { node { id sku quantity } }
        }
      }
    }
  }
}
"""

PRODUCTS_BY_SKU = """
query getProductsBySkus($query: String!) {
  products(first: 250, query: $query) {
    edges {
      node {
        variants(first: 250) {
          edges { node { id sku } }
        }
      }
    }
  }
}
"""


def format_batch_tag(batch_id: str) -> str:
    """Batch tag as stored on the order (Shopify tags are capped at 40 characters)."""
    return f"{BATCH_TAG_PREFIX}{batch_id}"[:MAX_TAG_LENGTH]


def format_index_tag(original_index: int) -> str:
    return f"{INDEX_TAG_PREFIX}{original_index}"


def parse_index_tag(tags: list[str]) -> int | None:
    """Return the original index encoded in an order's tags, if any."""
    for tag in tags:
        if tag.startswith(INDEX_TAG_PREFIX):
            value = tag[len(INDEX_TAG_PREFIX):]
            if value.isdigit():
                return int(value)
    return None


class RemoteOrder(BaseModel):
    """An order as known to the order API."""

    order_id: str
    order_number: str = ""
    tags: list[str] = Field(default_factory=list)
    line_items: list[CreatedLineItem] = Field(default_factory=list)

    @property
    def original_index(self) -> int | None:
        return parse_index_tag(self.tags)


class OrderApiClient:
    """
    Thin GraphQL client over a requests session.

    Transport failures are retried with exponential backoff on retryable
    status codes; GraphQL errors and userErrors raise OrderApiError.
    """

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-01",
        session: requests.Session | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize client.

        Args:
            store_domain: Shop domain, e.g. my-store-staging.myshopify.com
            access_token: Admin API access token
            api_version: Admin API version
            session: Optional preconfigured requests session
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            backoff_seconds: Initial backoff, doubled on each retry
            sleep: Sleep function in seconds
        """
        self.endpoint = f"https://{store_domain}/admin/api/{api_version}/graphql.json"
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        })
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def find_variant_ids(self, skus: list[str]) -> dict[str, str]:
        """
        Resolve SKUs to variant ids.

        Returns:
            Mapping of sku -> variant id for every SKU that exists
        """
        wanted = set(skus)
        if not wanted:
            return {}

        query = " OR ".join(f"sku:{sku}" for sku in sorted(wanted))
        data = self._execute(PRODUCTS_BY_SKU, {"query": query})

        variant_ids: dict[str, str] = {}
        for product_edge in data.get("products", {}).get("edges", []):
            for variant_edge in product_edge["node"].get("variants", {}).get("edges", []):
                variant = variant_edge["node"]
                if variant.get("sku") in wanted:
                    variant_ids[variant["sku"]] = variant["id"]
        return variant_ids

    def create_order(self, spec: RecordSpec, batch_id: str) -> RemoteOrder:
        """
        Create a paid (unfulfilled) order for one record.

        Args:
            spec: Record to create
            batch_id: Batch the order belongs to

        Returns:
            RemoteOrder with its created line items

        Raises:
            OrderApiError: Unknown SKU, userErrors or transport failure
        """
        variant_ids = self.find_variant_ids([item.sku for item in spec.line_items])
        missing = [item.sku for item in spec.line_items if item.sku not in variant_ids]
        if missing:
            raise OrderApiError(f"Variant not found for SKU(s): {', '.join(missing)}")

        tags = [SEED_TAG, format_batch_tag(batch_id), format_index_tag(spec.original_index)]
        draft_input: dict[str, Any] = {
            "email": spec.customer.email,
            "note": f"WMS Seed Order - Batch: {batch_id}",
            "tags": tags,
            "customAttributes": [
                {"key": "seed_batch_id", "value": batch_id},
                {"key": "seed_original_index", "value": str(spec.original_index)},
            ],
            "lineItems": [
                {"variantId": variant_ids[item.sku], "quantity": item.quantity}
                for item in spec.line_items
            ],
        }
        if spec.customer.address:
            draft_input["shippingAddress"] = {
                "address1": spec.customer.address,
                "city": spec.customer.city,
                "province": spec.customer.province,
                "zip": spec.customer.postal_code,
                "firstName": spec.customer.name.split(" ")[0],
                "lastName": " ".join(spec.customer.name.split(" ")[1:]) or spec.customer.name,
            }

        created = self._execute(DRAFT_ORDER_CREATE, {"input": draft_input})["draftOrderCreate"]
        self._raise_user_errors("create draft order", created)
        draft = created.get("draftOrder")
        if not draft:
            raise OrderApiError("Draft order creation returned no data")

        completed = self._execute(DRAFT_ORDER_COMPLETE, {"id": draft["id"]})["draftOrderComplete"]
        self._raise_user_errors("complete draft order", completed)
        order = (completed.get("draftOrder") or {}).get("order")
        if not order:
            raise OrderApiError("Draft order completion returned no order data")

        return RemoteOrder(
            order_id=order["id"],
            order_number=order.get("name") or "",
            tags=tags,
            line_items=self._line_items(order),
        )

    def query_orders_by_tag(self, tag: str) -> list[RemoteOrder]:
        """Return every order carrying the given tag."""
        data = self._execute(ORDERS_BY_TAG, {"query": f"tag:'{tag}'"})
        return [
            RemoteOrder(
                order_id=edge["node"]["id"],
                order_number=edge["node"].get("name") or "",
                tags=edge["node"].get("tags") or [],
                line_items=self._line_items(edge["node"]),
            )
            for edge in data.get("orders", {}).get("edges", [])
        ]

    @staticmethod
    def _line_items(order: dict[str, Any]) -> list[CreatedLineItem]:
        return [
            CreatedLineItem(
                line_item_id=edge["node"]["id"],
                sku=edge["node"].get("sku") or "",
                quantity=edge["node"].get("quantity") or 1,
            )
            for edge in order.get("lineItems", {}).get("edges", [])
        ]

    @staticmethod
    def _raise_user_errors(operation: str, payload: dict[str, Any]) -> None:
        errors = payload.get("userErrors") or []
        if errors:
            raise OrderApiError(
                f"Failed to {operation}: " + ", ".join(e.get("message", "") for e in errors)
            )

    def _execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = self._post({"query": query, "variables": variables})
        try:
            body = response.json()
        except ValueError as e:
            raise OrderApiError("Order API response was not valid JSON") from e

        if body.get("errors"):
            messages = ", ".join(str(err.get("message", err)) for err in body["errors"])
            raise OrderApiError(f"GraphQL errors: {messages}")
        if "data" not in body or body["data"] is None:
            raise OrderApiError("Order API response contained no data")
        return body["data"]

    def _post(self, payload: dict[str, Any]) -> requests.Response:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as e:
                last_error = e
                status_code = e.response.status_code if e.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    metrics.increment_counter(
                        metrics.errors_total, error_type="http_error", component="order_api"
                    )
                    raise OrderApiError(f"Order API request failed with status {status_code}") from e
            except (requests.Timeout, requests.ConnectionError) as e:
                last_error = e

            if attempt >= self.max_retries:
                break

            backoff = self.backoff_seconds * (2 ** attempt)
            logger.warning(
                "Order API request retry",
                extra={"attempt": attempt + 1, "max_retries": self.max_retries, "wait_seconds": backoff},
            )
            self.sleep(backoff)

        metrics.increment_counter(metrics.errors_total, error_type="retries_exhausted", component="order_api")
        raise OrderApiError(f"Order API request failed after retries: {last_error}") from last_error
