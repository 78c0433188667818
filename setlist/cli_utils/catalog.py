from __future__ import annotations

from pathlib import Path
from typing import Any, List, Tuple

import yaml

from setlist.models import Plugin, Strategy


def _read_catalog(path: Path) -> Tuple[List[Plugin], List[Strategy]]:
    """Parse a YAML catalog of ``plugins`` and ``strategies``.

    Steps are listed under each strategy; their ``strategy_id`` is filled in
    from the enclosing strategy when omitted.
    """
    data: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
    plugins = [Plugin.model_validate(item) for item in data.get("plugins", [])]
    strategies = []
    for item in data.get("strategies", []):
        steps = [
            {"strategy_id": item.get("id"), **step} for step in item.get("steps", [])
        ]
        strategy = Strategy.model_validate({**item, "steps": steps})
        strategy.chain()
        strategies.append(strategy)
    return plugins, strategies


async def _seed_catalog(store: Any, path: Path) -> Tuple[int, int]:
    plugins, strategies = _read_catalog(path)
    for plugin in plugins:
        await store.add_plugin(plugin)
    for strategy in strategies:
        await store.add_strategy(strategy)
    return len(plugins), len(strategies)
