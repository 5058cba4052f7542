"""
catalog/models.py -- Domain dataclass for the product catalog.

Pure data container with zero logic. catalog/store.py does the work.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Product:
    """A product created by a user or an API key on the user's behalf.

    created_by is the owner's internal user id (an API key creates products
    for its owner). external_id is the identifier sale webhooks refer to.

    id is None before the record is written to the database.
    """

    name: str
    created_by: int
    public_id: str = ""
    images: list[str] = field(default_factory=list)
    external_id: Optional[str] = None
    sales_count: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
