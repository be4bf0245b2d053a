"""Per-date crate inventory helpers."""
from datetime import date, datetime
from typing import List, Union

from schemas import CRATE_TYPES


def normalize_date(value: Union[str, date, datetime]) -> datetime:
    """Return the given day at midnight.

    Accepts "YYYY-MM-DD", full ISO datetimes, date and datetime objects.
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        day = value
    elif isinstance(value, date):
        day = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1]
        try:
            day = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    return datetime(day.year, day.month, day.day)


def low_stock_items(inventory: dict, threshold: int) -> List[dict]:
    """List every crate field whose count is below `threshold`."""
    items = []
    for field, (label, _) in CRATE_TYPES.items():
        quantity = int(inventory.get(field) or 0)
        if quantity < threshold:
            items.append({"product": field, "label": label, "quantity": quantity})
    return items
