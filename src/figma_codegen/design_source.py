"""Design-source capability: screenshots, node trees, icons and tokens.

``FigmaDesignSource`` talks to the Figma REST API. ``LocalDesignSource`` reads
a JSON export with the same node-tree shape and is used for offline runs.
"""

from __future__ import annotations

import json
import logging
import os
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol

from .models import (
    AtomicLevel,
    ComponentSpec,
    Composition,
    VariantVisual,
    VisualAnalysis,
    VisualProperties,
)
from .utils import to_pascal_case

logger = logging.getLogger(__name__)

_FIGMA_API = "https://api.figma.com/v1"
_FIGMA_TIMEOUT_SECONDS = 30
_FIGMA_URL = re.compile(r"figma\.com/(?:file|design|proto)/([A-Za-z0-9]+)")
_ICON_MAX_SIZE = 64
_ICON_NODE_TYPES = frozenset({"VECTOR", "BOOLEAN_OPERATION", "INSTANCE", "COMPONENT", "FRAME", "GROUP"})
_STYLE_KEYS = frozenset({"style", "variant", "type", "kind", "appearance"})


class DesignSource(Protocol):
    def fetch_screenshot(self, ref: str) -> str | None:
        ...

    def fetch_node_metadata(self, ref: str, depth: int = 5) -> dict[str, Any]:
        ...

    def extract_icons(self, tree: dict[str, Any]) -> list[dict[str, str]]:
        ...

    def extract_design_tokens(self, tree: dict[str, Any]) -> dict[str, list[Any]]:
        ...


@dataclass(frozen=True)
class FigmaRef:
    file_key: str
    node_id: str | None


def parse_figma_url(url: str) -> FigmaRef:
    """Extract the file key and optional node id from a Figma share URL.

    Raises:
        ValueError: If ``url`` is not a Figma file/design/proto URL.
    """
    match = _FIGMA_URL.search(url)
    if match is None:
        raise ValueError(f"Not a Figma file URL: {url!r}")
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    node_values = query.get("node-id") or []
    node_id = node_values[0].replace("-", ":") if node_values else None
    return FigmaRef(file_key=match.group(1), node_id=node_id)


def iter_nodes(node: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield node
    for child in node.get("children", []) or []:
        if isinstance(child, dict):
            yield from iter_nodes(child)


def _document(tree: dict[str, Any]) -> dict[str, Any]:
    document = tree.get("document")
    return document if isinstance(document, dict) else tree


def _color_to_hex(color: dict[str, Any]) -> str:
    channels = [max(0, min(255, round(float(color.get(key, 0.0)) * 255))) for key in ("r", "g", "b")]
    return "#{:02X}{:02X}{:02X}".format(*channels)


def _first_solid(paints: Any) -> str:
    for paint in paints or []:
        if isinstance(paint, dict) and paint.get("type") == "SOLID" and paint.get("visible", True):
            return _color_to_hex(paint.get("color", {}))
    return ""


def extract_design_tokens(tree: dict[str, Any]) -> dict[str, list[Any]]:
    colors: list[str] = []
    spacing: list[float] = []
    typography: list[dict[str, Any]] = []
    for node in iter_nodes(_document(tree)):
        for key in ("fills", "strokes"):
            value = _first_solid(node.get(key))
            if value and value not in colors:
                colors.append(value)
        for key in ("itemSpacing", "paddingLeft", "paddingRight", "paddingTop", "paddingBottom"):
            amount = node.get(key)
            if isinstance(amount, (int, float)) and amount > 0 and amount not in spacing:
                spacing.append(amount)
        style = node.get("style")
        if node.get("type") == "TEXT" and isinstance(style, dict):
            entry = {
                "fontFamily": style.get("fontFamily", ""),
                "fontSize": style.get("fontSize"),
                "fontWeight": style.get("fontWeight"),
            }
            if entry not in typography:
                typography.append(entry)
    return {"colors": colors, "spacing": sorted(spacing), "typography": typography}


def _is_icon_node(node: dict[str, Any]) -> bool:
    if node.get("type") not in _ICON_NODE_TYPES:
        return False
    if "icon" not in str(node.get("name", "")).lower():
        return False
    box = node.get("absoluteBoundingBox") or {}
    width = box.get("width", 0) or 0
    height = box.get("height", 0) or 0
    return width <= _ICON_MAX_SIZE and height <= _ICON_MAX_SIZE


def find_icon_nodes(tree: dict[str, Any]) -> list[dict[str, Any]]:
    found: list[dict[str, Any]] = []

    def _walk(node: dict[str, Any]) -> None:
        if _is_icon_node(node):
            found.append(node)
            return
        for child in node.get("children", []) or []:
            if isinstance(child, dict):
                _walk(child)

    _walk(_document(tree))
    return found


def _parse_variant_name(name: str) -> dict[str, str]:
    properties: dict[str, str] = {}
    for part in name.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        properties[key.strip().lower()] = value.strip()
    return properties


def _visual_properties(node: dict[str, Any]) -> VisualProperties:
    text_node = next((item for item in iter_nodes(node) if item.get("type") == "TEXT"), None)
    text_style = (text_node or {}).get("style") or {}
    stroke_weight = node.get("strokeWeight")
    padding = node.get("paddingLeft") or node.get("paddingTop")
    effects = [effect for effect in node.get("effects", []) or [] if effect.get("type") == "DROP_SHADOW"]
    return VisualProperties(
        background_color=_first_solid(node.get("fills")),
        text_color=_first_solid((text_node or {}).get("fills")),
        border_color=_first_solid(node.get("strokes")),
        border_width=f"{stroke_weight}px" if stroke_weight and node.get("strokes") else "",
        border_radius=f"{node['cornerRadius']}px" if node.get("cornerRadius") else "",
        padding=f"{padding}px" if padding else "",
        font_size=f"{text_style['fontSize']}px" if text_style.get("fontSize") else "",
        font_weight=str(text_style.get("fontWeight", "")) if text_style.get("fontWeight") else "",
        shadow="drop-shadow" if effects else "",
    )


def _atomic_level(node: dict[str, Any]) -> AtomicLevel:
    instances = sum(1 for item in iter_nodes(node) if item is not node and item.get("type") == "INSTANCE")
    if instances == 0:
        return AtomicLevel.ATOM
    if instances <= 4:
        return AtomicLevel.MOLECULE
    return AtomicLevel.ORGANISM


def _composition(node: dict[str, Any]) -> Composition:
    children = [child for child in node.get("children", []) or [] if isinstance(child, dict)]
    return Composition(
        contains_components=sorted(
            {str(item.get("name", "")) for item in iter_nodes(node) if item is not node and item.get("type") == "INSTANCE"}
        ),
        layout_pattern=str(node.get("layoutMode", "")).lower(),
        content_elements=[str(child.get("type", "")).lower() for child in children],
    )


def _spec_from_component_set(node: dict[str, Any]) -> ComponentSpec:
    variants = [child for child in node.get("children", []) or [] if child.get("type") == "COMPONENT"]
    styles: list[str] = []
    sizes: list[str] = []
    states: list[str] = []
    others: list[str] = []
    visuals: dict[str, VariantVisual] = {}
    for variant in variants:
        properties = _parse_variant_name(str(variant.get("name", "")))
        style = next((value for key, value in properties.items() if key in _STYLE_KEYS), "default")
        if style not in styles:
            styles.append(style)
            visuals[style] = VariantVisual(
                variant_name=style,
                visual_properties=_visual_properties(variant),
                composition=_composition(variant),
            )
        for key, value in properties.items():
            if key in _STYLE_KEYS:
                continue
            bucket = sizes if key == "size" else states if key == "state" else others
            if value not in bucket:
                bucket.append(value)
    first = variants[0] if variants else node
    return ComponentSpec(
        name=to_pascal_case(str(node.get("name", "Component"))) or "Component",
        atomic_level=_atomic_level(first),
        description=str(node.get("description", "")),
        style_variants=styles or ["default"],
        size_variants=sizes,
        other_variants=others,
        states=states or ["default"],
        variant_visual_map=[visuals[style] for style in styles]
        or [VariantVisual(variant_name="default", visual_properties=_visual_properties(first))],
        priority="high" if len(styles) > 1 else "medium",
    )


def _spec_from_component(node: dict[str, Any]) -> ComponentSpec:
    return ComponentSpec(
        name=to_pascal_case(str(node.get("name", "Component"))) or "Component",
        atomic_level=_atomic_level(node),
        description=str(node.get("description", "")),
        style_variants=["default"],
        states=["default"],
        variant_visual_map=[
            VariantVisual(
                variant_name="default",
                visual_properties=_visual_properties(node),
                composition=_composition(node),
            )
        ],
    )


def derive_component_specs(tree: dict[str, Any]) -> VisualAnalysis:
    """Deterministic analysis: one ComponentSpec per component set or standalone component."""
    specs: dict[str, ComponentSpec] = {}

    def _walk(node: dict[str, Any], inside_set: bool) -> None:
        node_type = node.get("type")
        if node_type == "COMPONENT_SET":
            spec = _spec_from_component_set(node)
            specs.setdefault(spec.name, spec)
            return
        if node_type == "COMPONENT" and not inside_set and not _is_icon_node(node):
            spec = _spec_from_component(node)
            specs.setdefault(spec.name, spec)
            return
        for child in node.get("children", []) or []:
            if isinstance(child, dict):
                _walk(child, inside_set)

    _walk(_document(tree), False)
    components = list(specs.values())
    summary = (
        f"Derived {len(components)} component(s) from the design tree: "
        + ", ".join(f"{spec.name} ({spec.atomic_level.value})" for spec in components)
        if components
        else "No components found in the design tree"
    )
    return VisualAnalysis(summary=summary, component_count=len(components), components=components)


def _http_get(url: str, headers: dict[str, str]) -> bytes:
    """Send a GET request and return the raw body.

    Raises:
        RuntimeError: If the request fails.
    """
    request = urllib.request.Request(url, method="GET", headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=_FIGMA_TIMEOUT_SECONDS) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        logger.error("HTTP %d from %s", exc.code, url)
        raise RuntimeError(f"HTTP {exc.code} from {url}: {exc.reason}") from exc
    except urllib.error.URLError as exc:
        logger.error("URL error reaching %s: %s", url, exc.reason)
        raise RuntimeError(f"Failed to reach {url}: {exc.reason}") from exc


class FigmaDesignSource:
    """Design source backed by the Figma REST API (``FIGMA_ACCESS_TOKEN``)."""

    def __init__(self, access_token: str | None = None) -> None:
        token = (access_token if access_token is not None else os.getenv("FIGMA_ACCESS_TOKEN", "")).strip()
        if not token:
            raise RuntimeError("FigmaDesignSource requires FIGMA_ACCESS_TOKEN")
        self._headers = {"X-Figma-Token": token}

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{_FIGMA_API}{path}?{urllib.parse.urlencode(params)}"
        body = _http_get(url, self._headers)
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RuntimeError(f"Invalid JSON response from {url}") from exc
        if not isinstance(payload, dict):
            raise RuntimeError(f"Figma response from {url} must be a JSON object")
        if payload.get("err"):
            raise RuntimeError(f"Figma API error for {url}: {payload['err']}")
        return payload

    def fetch_screenshot(self, ref: str) -> str | None:
        figma_ref = parse_figma_url(ref)
        if figma_ref.node_id is None:
            logger.info("No node-id in %s; skipping screenshot", ref)
            return None
        payload = self._get_json(
            f"/images/{figma_ref.file_key}",
            {"ids": figma_ref.node_id, "format": "png", "scale": 2},
        )
        return (payload.get("images") or {}).get(figma_ref.node_id)

    def fetch_node_metadata(self, ref: str, depth: int = 5) -> dict[str, Any]:
        figma_ref = parse_figma_url(ref)
        if figma_ref.node_id is None:
            payload = self._get_json(f"/files/{figma_ref.file_key}", {"depth": depth})
            document = payload.get("document") or {}
        else:
            payload = self._get_json(
                f"/files/{figma_ref.file_key}/nodes",
                {"ids": figma_ref.node_id, "depth": depth},
            )
            document = ((payload.get("nodes") or {}).get(figma_ref.node_id) or {}).get("document") or {}
        return {"fileKey": figma_ref.file_key, "nodeId": figma_ref.node_id, "document": document}

    def extract_icons(self, tree: dict[str, Any]) -> list[dict[str, str]]:
        nodes = find_icon_nodes(tree)
        file_key = tree.get("fileKey")
        if not nodes or not file_key:
            return []
        ids = ",".join(str(node["id"]) for node in nodes if node.get("id"))
        urls = self._get_json(f"/images/{file_key}", {"ids": ids, "format": "svg"}).get("images") or {}
        icons: list[dict[str, str]] = []
        for node in nodes:
            url = urls.get(node.get("id"))
            if not url:
                continue
            try:
                svg = _http_get(url, {}).decode("utf-8")
            except (RuntimeError, UnicodeDecodeError) as exc:
                logger.warning("Skipping icon %s: %s", node.get("name"), exc)
                continue
            icons.append({"name": str(node.get("name", "Icon")), "svg": svg})
        return icons

    def extract_design_tokens(self, tree: dict[str, Any]) -> dict[str, list[Any]]:
        return extract_design_tokens(tree)


class LocalDesignSource:
    """Design source backed by a JSON export ``{document, screenshotUrl?, icons?}``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        if not self.path.is_file():
            raise FileNotFoundError(f"Design export does not exist: {self.path}")
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload.get("document"), dict):
            raise ValueError(f"Design export must be a JSON object with a 'document' node: {self.path}")
        self._payload = payload

    def fetch_screenshot(self, ref: str) -> str | None:
        return self._payload.get("screenshotUrl")

    def fetch_node_metadata(self, ref: str, depth: int = 5) -> dict[str, Any]:
        return {"fileKey": None, "nodeId": None, "document": self._payload["document"]}

    def extract_icons(self, tree: dict[str, Any]) -> list[dict[str, str]]:
        icons = [
            {"name": str(icon["name"]), "svg": str(icon["svg"])}
            for icon in self._payload.get("icons", []) or []
            if isinstance(icon, dict) and icon.get("name") and icon.get("svg")
        ]
        icons.extend(
            {"name": str(node.get("name", "Icon")), "svg": str(node["svg"])}
            for node in find_icon_nodes(tree)
            if node.get("svg")
        )
        return icons

    def extract_design_tokens(self, tree: dict[str, Any]) -> dict[str, list[Any]]:
        return extract_design_tokens(tree)


def design_source_for(ref: str) -> DesignSource:
    """Pick the design source for a CLI input: a local JSON export or a Figma URL."""
    if Path(ref).suffix.lower() == ".json":
        return LocalDesignSource(ref)
    parse_figma_url(ref)
    return FigmaDesignSource()
