# core/membership.py
from dataclasses import dataclass, field
from typing import Any, Iterable, List

from .errors import MutationError
from .logger import get_logger

logger = get_logger(__name__)


@dataclass
class MutationReport:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[Any] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


def bulk_add_to_list(client: Any, item_ids: Iterable[Any], code: str) -> MutationReport:
    """
    Add every item to the list `code`, keeping whatever lists it is already on.
    Items are processed one by one; a failure never stops the rest.
    """
    report = MutationReport()
    for item_id in item_ids:
        try:
            current = client.fetch_membership(item_id)
            merged = list(dict.fromkeys([*current, code]))
            client.set_membership(item_id, merged)
        except MutationError as e:
            logger.error("Failed to add item %s to list %s: %s", item_id, code, e)
            report.failed.append(item_id)
            continue
        report.succeeded.append(item_id)

    if report.failed:
        logger.warning("%d of %d items could not be added to %s.",
                       report.failed_count, len(report.succeeded) + report.failed_count, code)
    return report


def bulk_remove_from_all_lists(client: Any, item_ids: Iterable[Any]) -> MutationReport:
    report = MutationReport()
    for item_id in item_ids:
        try:
            client.remove_from_all_lists(item_id)
        except MutationError as e:
            logger.error("Failed to remove item %s: %s", item_id, e)
            report.failed.append(item_id)
            continue
        report.succeeded.append(item_id)

    if report.failed:
        logger.warning("%d items could not be removed.", report.failed_count)
    return report
