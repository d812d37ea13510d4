"""
Flattening of the nested objectives/procedures tree.

The API is inconsistent about where children live (subMenus or childs), so
every child slot is walked.
"""

from typing import Any

from loguru import logger

from eregs.services.models import FlatRecord

PATH_SEPARATOR = " > "
CHILD_SLOTS = ("subMenus", "childs")
PROCEDURE_REL = "procedure"
# Properties that may wrap the list of root records in an object response
ROOT_LIST_PROPERTIES = ("items", "results", "data", "procedures", "objectives")


def extract_roots(payload: Any) -> list[Any]:
    """Find the list of root records in a list-endpoint response."""
    if isinstance(payload, list):
        return payload

    if isinstance(payload, dict):
        for prop in ROOT_LIST_PROPERTIES:
            if isinstance(payload.get(prop), list):
                logger.debug(f"Found procedures array in response.{prop}")
                return payload[prop]
        logger.debug("No array property found, treating response as a single record")
        return [payload]

    logger.warning(f"Unexpected API response type: {type(payload).__name__}")
    return []


def is_leaf_resource(node: dict[str, Any]) -> bool:
    """True if one of the node's links marks it as a fetchable procedure."""
    links = node.get("links")
    if not isinstance(links, list):
        return False
    return any(
        isinstance(link, dict) and link.get("rel") == PROCEDURE_REL for link in links
    )


def _record_id(node: dict[str, Any]) -> int | None:
    """Non-zero integer id, accepting integral floats such as 725.0."""
    node_id = node.get("id")
    if isinstance(node_id, float) and node_id.is_integer():
        node_id = int(node_id)
    if isinstance(node_id, bool) or not isinstance(node_id, int) or not node_id:
        return None
    return node_id


def flatten(roots: list[Any]) -> list[FlatRecord]:
    """
    Flatten a tree of records into a list sorted by full path.

    Nodes that are not objects or have no integer id are skipped, but their
    children are still visited. A failure on one node never aborts the walk.
    """
    if not isinstance(roots, list):
        logger.error(f"Expected a list of records but got: {type(roots).__name__}")
        return []

    records: list[FlatRecord] = []

    def visit(node: Any, parent_path: str | None) -> None:
        if not isinstance(node, dict):
            logger.debug(f"Skipping invalid record: {node!r:.100}")
            return

        try:
            node_id = _record_id(node)
            name = node.get("name")
            if not isinstance(name, str):
                name = f"Unnamed #{node_id or 'unknown'}"
            full_path = f"{parent_path}{PATH_SEPARATOR}{name}" if parent_path else name

            if node_id is not None:
                fields = {k: v for k, v in node.items() if k not in CHILD_SLOTS}
                fields.update(
                    id=node_id,
                    name=name,
                    full_path=full_path,
                    parent_path=parent_path,
                    is_leaf_resource=is_leaf_resource(node),
                )
                records.append(FlatRecord(**fields))
            else:
                logger.debug(f"Dropping record without numeric id: {full_path}")
        except Exception as e:
            logger.error(f"Error processing record: {e}")
            return

        for slot in CHILD_SLOTS:
            children = node.get(slot)
            if not isinstance(children, list):
                continue
            for child in children:
                try:
                    visit(child, full_path)
                except RecursionError:
                    logger.error(f"Tree too deep below '{full_path}', skipping")
                    break

    for root in roots:
        visit(root, None)

    logger.info(f"Extracted {len(records)} procedures from API data")
    return sorted(records, key=lambda record: record.full_path)
