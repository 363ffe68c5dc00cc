"""
Group consecutive pages that belong to the same CR document.

A CR document often spans several pages of which only the first carries the
CR number; the stamp and signature usually sit on the last one.
"""

import logging
from typing import Dict, List, Optional

from notescan.config import CONFIG
from notescan.records import PageGroup, PageRecord
from .anchors import identifier_type

logger = logging.getLogger(__name__)


def _lookahead_identifier(pages: List[PageRecord], start: int, lookahead: int) -> Optional[str]:
    """CR of the first page carrying one within ``lookahead`` pages after ``start``."""
    for page in pages[start + 1:start + 1 + lookahead]:
        if page.identifier:
            return page.identifier
    return None


def merge_groups_by_identifier(groups: List[PageGroup]) -> List[PageGroup]:
    """Merge groups sharing one CR, keeping first-occurrence order."""
    merged: Dict[str, PageGroup] = {}
    for group in groups:
        existing = merged.get(group.identifier_value)
        if existing is None:
            merged[group.identifier_value] = PageGroup(
                identifier_value=group.identifier_value,
                type=group.type,
                pages=list(group.pages),
            )
        else:
            logger.debug("Merging pages %s into CR %s", group.page_range, group.identifier_value)
            existing.pages.extend(group.pages)
    return list(merged.values())


def group_pages(pages: List[PageRecord], lookahead: int = CONFIG.orphan_lookahead) -> List[PageGroup]:
    """
    Group pages by CR number in a single forward pass.

    - A page with the open group's CR joins it.
    - A page with a different CR closes the open group and opens a new one.
    - A page without CR joins the open group (e.g. a trailing signature page).
    - A page without CR and no open group looks ahead up to ``lookahead``
      pages; if a CR is found it opens that CR's group, otherwise the page
      is dropped.

    Groups that end up with the same CR (the CR dropped out and reappeared)
    are merged afterwards.

    Args:
        pages: Page records in document order
        lookahead: Pages an orphan page may look ahead

    Returns:
        One PageGroup per distinct CR
    """
    groups: List[PageGroup] = []
    current: Optional[PageGroup] = None

    for i, page in enumerate(pages):
        if page.identifier:
            if current is not None and current.identifier_value == page.identifier:
                current.pages.append(page)
                continue
            if current is not None and current.pages:
                groups.append(current)
            current = PageGroup(
                identifier_value=page.identifier,
                type=page.identifier_type,
                pages=[page],
            )
            continue

        if current is not None and current.pages:
            current.pages.append(page)
            logger.debug("Page %d: no CR, attached to %s", page.page_num, current.identifier_value)
            continue

        future = _lookahead_identifier(pages, i, lookahead)
        if future:
            logger.debug("Page %d: no CR, opens group of upcoming CR %s", page.page_num, future)
            current = PageGroup(identifier_value=future, type=identifier_type(future), pages=[page])
        else:
            logger.warning("Page %d: no CR found and none within %d page(s), page skipped",
                           page.page_num, lookahead)

    if current is not None and current.pages:
        groups.append(current)

    return merge_groups_by_identifier(groups)
