"""
HTML rendering for the dashboard pages.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATES_DIR = Path(__file__).parent / "templates"

LINK_LIST = "link_list.html"
INDEX = "index.html"


@lru_cache(maxsize=1)
def get_environment() -> Environment:
    """Get the template environment (templates are compiled once and cached)."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html"]),
    )


def render_template(name: str, data: dict[str, Any]) -> str:
    return get_environment().get_template(name).render(**data)


def render_links(items: list[dict[str, Any]]) -> str:
    """Render a list of {url, text, status?} links."""
    return render_template(LINK_LIST, {"items": items})


def render_index(
    content: str, title: str = "Builds", message: str | None = None
) -> str:
    """Wrap already rendered HTML into the page layout."""
    return render_template(
        INDEX, {"content": content, "title": title, "message": message}
    )
