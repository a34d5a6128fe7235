"""
Default vertex formatters

Both are injectable into the router / notifier; these are the fallbacks.
"""

from typing import Optional, Sequence
from urllib.parse import quote

from selection_system.core.datashapes import Vertex

# Property names checked, in order, when deriving a display title
TITLE_PROPERTIES = ("title", "http://lumify.io#title", "_title", "name")


def format_vertex_title(vertex: Vertex) -> str:
    """Human readable title for a vertex, falling back to its id."""
    for name in TITLE_PROPERTIES:
        value = vertex.properties.get(name)
        if value:
            return str(value)
    return vertex.id


def build_shareable_url(vertices: Sequence[Vertex], workspace_id: Optional[str],
                        base_url: str = "") -> str:
    """
    Link that reopens the given vertices in a workspace.

    Shape: <base>#v=<id>,<id>&w=<workspace>
    """
    ids = ",".join(quote(v.id, safe="") for v in vertices)
    fragment = f"v={ids}"
    if workspace_id:
        fragment += f"&w={quote(workspace_id, safe='')}"
    return f"{base_url.rstrip('/')}#{fragment}"
