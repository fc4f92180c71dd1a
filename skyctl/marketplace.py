"""Reading marketplace indexes and looking plugins up in them."""

from __future__ import annotations

import json
import urllib.error
import urllib.request

from .models import (
    Marketplace,
    MarketplaceIndex,
    MarketplacePlugin,
    PluginError,
    SearchResult,
    validate_name,
)
from .store import Store

_FETCH_TIMEOUT = 10.0


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _is_http(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def _fetch_http(url: str) -> bytes:
    request = urllib.request.Request(url, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=_FETCH_TIMEOUT) as response:
            if response.status != 200:
                raise PluginError(f"unexpected status {response.status} {response.reason}")
            return response.read()
    except urllib.error.HTTPError as exc:
        raise PluginError(f"unexpected status {exc.code} {exc.reason}") from exc


def fetch_marketplace_index(marketplace: Marketplace) -> MarketplaceIndex:
    """Fetch and decode the index of a marketplace from a URL or a local file."""
    source = marketplace.url
    try:
        if _is_http(source):
            raw = _fetch_http(source)
        else:
            with open(source.removeprefix("file://"), "rb") as handle:
                raw = handle.read()
        return MarketplaceIndex.from_dict(json.loads(raw))
    except (OSError, ValueError, PluginError) as exc:
        raise PluginError(f"marketplace {_quote(marketplace.name)}: {exc}") from exc


def _selected(store: Store, marketplace_name: str) -> list[Marketplace]:
    marketplaces = store.load_marketplaces()
    if not marketplaces:
        raise PluginError("no marketplaces configured")
    if not marketplace_name:
        return marketplaces
    return [m for m in marketplaces if m.name == marketplace_name]


def search_marketplaces(
    store: Store, query: str, marketplace_name: str = ""
) -> list[SearchResult]:
    """Plugins whose name or description contains the query, case-insensitively."""
    marketplaces = _selected(store, marketplace_name)
    query = query.lower()
    results: list[SearchResult] = []
    for marketplace in marketplaces:
        index = fetch_marketplace_index(marketplace)
        results.extend(
            SearchResult(marketplace=marketplace, plugin=plugin)
            for plugin in index.plugins
            if not query
            or query in plugin.name.lower()
            or query in plugin.description.lower()
        )

    if marketplace_name and not marketplaces:
        raise PluginError(f"marketplace {_quote(marketplace_name)} not configured")
    if marketplace_name and not results:
        raise PluginError(f"no matches in marketplace {_quote(marketplace_name)}")
    if not results:
        raise PluginError(f"no plugins matched {_quote(query)}")
    return results


def resolve_marketplace_plugin(
    store: Store, name: str, marketplace_name: str = ""
) -> tuple[Marketplace, MarketplacePlugin]:
    """The first marketplace entry with exactly this plugin name."""
    validate_name(name)
    marketplaces = _selected(store, marketplace_name)
    for marketplace in marketplaces:
        index = fetch_marketplace_index(marketplace)
        for plugin in index.plugins:
            if plugin.name == name:
                return marketplace, plugin

    if marketplace_name and not marketplaces:
        raise PluginError(f"marketplace {_quote(marketplace_name)} not configured")
    if marketplace_name:
        raise PluginError(
            f"plugin {_quote(name)} not found in marketplace {_quote(marketplace_name)}"
        )
    raise PluginError(f"plugin {_quote(name)} not found in marketplaces")