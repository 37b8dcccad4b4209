from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from migrator.settings import reset_settings_cache


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def no_sleep():
    delays: List[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


def make_node(
    n: int,
    *,
    tags: Optional[List[str]] = None,
    favorite: bool = False,
    archived: bool = False,
    created_at: Any = None,
    published: Any = "2024-03-01 08:00:00",
) -> Dict[str, Any]:
    return {
        "id": f"saved-{n}",
        "url": f"https://example.com/{n}",
        "_createdAt": 1_700_000_000 + n if created_at is None else created_at,
        "isFavorite": favorite,
        "isArchived": archived,
        "tags": [{"id": f"t-{tag}", "name": tag} for tag in (tags or [])],
        "item": {
            "title": f"Article {n}",
            "givenUrl": f"https://example.com/{n}",
            "article": f"<p>body {n}</p>",
            "datePublished": published,
        },
    }


@pytest.fixture
def node_factory():
    return make_node
