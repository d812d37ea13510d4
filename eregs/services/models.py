"""
Records returned by the eRegulations client.
"""

from pydantic import BaseModel, ConfigDict


class ApiLink(BaseModel):
    """Hypermedia link attached to remote records."""

    model_config = ConfigDict(extra="allow")

    href: str = ""
    rel: str = ""
    method: str | None = None


class FlatRecord(BaseModel):
    """
    One node of the procedure tree, flattened.

    full_path is the " > "-joined chain of ancestor names down to name.
    Other scalar fields of the remote node (description, links...) are kept
    as extras.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    full_path: str
    parent_path: str | None = None
    is_leaf_resource: bool = False


class ObjectiveSummary(BaseModel):
    """Lightweight search hit."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    description: str | None = None
    links: list[ApiLink] | None = None
