from __future__ import annotations

import re
from typing import Iterable, Literal

from dental_quotes.schemas.catalog import CatalogUnit
from dental_quotes.schemas.quote import MergedQuoteItem, QuoteItem, SessionGroup
from dental_quotes.services.discounts import line_total
from dental_quotes.services.layer_spec import surface_label

FULL_MOUTH_TEXT = "Teljes szájüreg"
ARCH_TEXT = {"upper": "Felső állcsont", "lower": "Alsó állcsont"}

_LEADING_NUMBER_RE = re.compile(r"^\d+")


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _tooth_sort_key(label: str) -> tuple[int, int, str]:
    match = _LEADING_NUMBER_RE.match(label)
    if match:
        return 0, int(match.group(0)), label
    return 1, 0, label


def treated_area_text(items: list[QuoteItem]) -> str:
    if not items:
        return ""
    unit = items[0].quote_unit

    if unit == CatalogUnit.session.value:
        return FULL_MOUTH_TEXT

    if unit == CatalogUnit.arch.value:
        areas = [ARCH_TEXT.get(item.treated_area or "", item.treated_area or "") for item in items]
        return ", ".join(_unique(areas))

    if unit == CatalogUnit.quadrant.value:
        return ", ".join(sorted(_unique(item.treated_area or "" for item in items)))

    labels = [
        surface_label(tooth, item.selected_surfaces)
        for item in items
        for tooth in item.teeth
    ]
    return ", ".join(sorted(labels, key=_tooth_sort_key))


def _group_by_catalog_item(items: Iterable[QuoteItem]) -> dict[str, list[QuoteItem]]:
    groups: dict[str, list[QuoteItem]] = {}
    for item in items:
        groups.setdefault(item.catalog_item_id, []).append(item)
    return groups


def _build_merged(items: Iterable[QuoteItem], session: int) -> list[MergedQuoteItem]:
    merged: list[MergedQuoteItem] = []
    for catalog_item_id, group in _group_by_catalog_item(items).items():
        first = group[0]
        merged.append(
            MergedQuoteItem(
                catalog_item_id=catalog_item_id,
                quote_name=first.quote_name,
                quote_unit=first.quote_unit,
                quote_unit_price_gross=first.quote_unit_price_gross,
                quote_unit_price_currency=first.quote_unit_price_currency,
                total_qty=sum(item.quote_qty for item in group),
                line_total=sum(line_total(item) for item in group),
                treated_area_text=treated_area_text(group),
                quote_line_discount_type=first.quote_line_discount_type,
                quote_line_discount_value=first.quote_line_discount_value,
                treatment_session=session,
                items=group,
            )
        )
    return merged


def merge_all(items: list[QuoteItem]) -> list[MergedQuoteItem]:
    return _build_merged(items, 1)


def merge_by_session(items: list[QuoteItem]) -> dict[int, list[MergedQuoteItem]]:
    sessions: dict[int, list[QuoteItem]] = {}
    for item in items:
        sessions.setdefault(item.session, []).append(item)
    return {session: _build_merged(group, session) for session, group in sessions.items()}


def session_groups(items: list[QuoteItem], expected_treatments: int = 1) -> list[SessionGroup]:
    by_session = merge_by_session(items)
    numbers = sorted(set(range(1, max(expected_treatments, 1) + 1)) | set(by_session))
    return [
        SessionGroup(treatment_session=number, merged=by_session.get(number, []))
        for number in numbers
    ]


def flatten(merged: Iterable[MergedQuoteItem]) -> list[QuoteItem]:
    return [item for group in merged for item in group.items]


def move_in_session(
    items: list[QuoteItem],
    catalog_item_id: str,
    session: int,
    direction: Literal["up", "down"],
) -> list[QuoteItem] | None:
    order = list(_group_by_catalog_item(item for item in items if item.session == session))
    if catalog_item_id not in order:
        return None
    current = order.index(catalog_item_id)
    target = current - 1 if direction == "up" else current + 1
    if target < 0 or target >= len(order):
        return None
    order[current], order[target] = order[target], order[current]

    session_items = [item for item in items if item.session == session]
    reordered = [
        item
        for group_id in order
        for item in session_items
        if item.catalog_item_id == group_id
    ]

    # the session block is re-inserted where its first item used to be
    result: list[QuoteItem] = []
    inserted = False
    for item in items:
        if item.session != session:
            result.append(item)
        elif not inserted:
            result.extend(reordered)
            inserted = True
    return result


def drop_on_session(
    items: list[QuoteItem],
    catalog_item_id: str,
    from_session: int,
    to_session: int,
) -> list[QuoteItem] | None:
    if from_session == to_session:
        return None
    if not any(
        item.catalog_item_id == catalog_item_id and item.session == from_session for item in items
    ):
        return None
    return [
        item.model_copy(update={"treatment_session": to_session})
        if item.catalog_item_id == catalog_item_id and item.session == from_session
        else item
        for item in items
    ]


def remove_group(
    items: list[QuoteItem], catalog_item_id: str, session: int | None = None
) -> list[QuoteItem] | None:
    remaining = [
        item
        for item in items
        if item.catalog_item_id != catalog_item_id
        or (session is not None and item.session != session)
    ]
    if len(remaining) == len(items):
        return None
    return remaining
