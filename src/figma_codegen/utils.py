from __future__ import annotations

import re

from .models import ComponentSpec

_SVG_ATTRIBUTE_RENAMES: tuple[tuple[str, str], ...] = (
    ("fill-rule=", "fillRule="),
    ("clip-rule=", "clipRule="),
    ("clip-path=", "clipPath="),
    ("stroke-width=", "strokeWidth="),
    ("stroke-linecap=", "strokeLinecap="),
    ("stroke-linejoin=", "strokeLinejoin="),
    ("stroke-miterlimit=", "strokeMiterlimit="),
    ("stop-color=", "stopColor="),
    ("class=", "className="),
)
_HEX_FILL = re.compile(r'fill="#[^"]+"')
_SVG_WRAPPER = re.compile(r"^\s*<svg[^>]*>(.*)</svg>\s*$", re.DOTALL)
_VIEW_BOX = re.compile(r'viewBox="([^"]+)"')


def to_pascal_case(name: str) -> str:
    """Turn ``primary button`` / ``primary-button`` / ``primaryButton`` into ``PrimaryButton``."""
    words = re.findall(r"[A-Za-z0-9]+", name)
    pascal = "".join(word[:1].upper() + word[1:] for word in words)
    if pascal[:1].isdigit():
        pascal = f"_{pascal}"
    return pascal


def normalize_icon_name(name: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9]", "", to_pascal_case(name))
    clean = re.sub(r"^(\d)", r"_\1", clean)
    return clean if clean.endswith("Icon") else f"{clean}Icon"


def reactify_svg(content: str) -> str:
    """Convert SVG markup attributes to their JSX spelling and make fills follow ``color``."""
    converted = content
    for source, target in _SVG_ATTRIBUTE_RENAMES:
        converted = converted.replace(source, target)
    return _HEX_FILL.sub("fill={color}", converted)


def render_icon_component(component_name: str, svg: str) -> str:
    view_box_match = _VIEW_BOX.search(svg)
    view_box = view_box_match.group(1) if view_box_match else "0 0 24 24"
    wrapper = _SVG_WRAPPER.match(svg)
    inner = reactify_svg(wrapper.group(1).strip() if wrapper else svg.strip())
    return f"""import React from 'react';

interface {component_name}Props extends React.SVGProps<SVGSVGElement> {{
  size?: number | string;
  color?: string;
}}

export const {component_name}: React.FC<{component_name}Props> = ({{
  size = 24,
  color = 'currentColor',
  className,
  ...props
}}) => {{
  return (
    <svg
      width={{size}}
      height={{size}}
      viewBox="{view_box}"
      fill="none"
      xmlns="http://www.w3.org/2000/svg"
      className={{className}}
      {{...props}}
    >
      {inner}
    </svg>
  );
}};

export default {component_name};
"""


def _ts_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _root_tag(name: str) -> str:
    lowered = name.lower()
    if lowered.endswith("button"):
        return "button"
    if lowered.endswith(("input", "field")):
        return "input"
    if lowered.endswith("link"):
        return "a"
    return "div"


def _variant_classes(spec: ComponentSpec) -> dict[str, str]:
    classes: dict[str, str] = {}
    for entry in spec.variant_visual_map:
        props = entry.visual_properties
        tokens = []
        if props.background_color:
            tokens.append(f"bg-[{props.background_color}]")
        if props.text_color:
            tokens.append(f"text-[{props.text_color}]")
        if props.border_color:
            tokens.append(f"border border-[{props.border_color}]")
        if props.border_radius:
            tokens.append(f"rounded-[{props.border_radius}]")
        if props.padding:
            tokens.append(f"p-[{props.padding}]")
        classes[entry.variant_name] = " ".join(tokens)
    for variant in spec.style_variants:
        classes.setdefault(variant, "")
    return classes


def scaffold_component(spec: ComponentSpec) -> str:
    """Render a typed React component skeleton covering the spec's variants and props."""
    name = to_pascal_case(spec.name)
    tag = _root_tag(name)
    variant_union = " | ".join(_ts_string(variant) for variant in spec.style_variants)
    default_variant = _ts_string(spec.style_variants[0])
    prop_lines = [f"  variant?: {variant_union};"]
    if spec.size_variants:
        prop_lines.append(f"  size?: {' | '.join(_ts_string(size) for size in spec.size_variants)};")
    for prop in spec.props:
        if prop.name in {"variant", "size", "className", "children"}:
            continue
        optional = "" if prop.required else "?"
        prop_lines.append(f"  {prop.name}{optional}: {prop.type};")
    prop_lines.append("  className?: string;")
    if tag != "input":
        prop_lines.append("  children?: React.ReactNode;")

    class_map = ",\n".join(
        f"  {_ts_string(variant)}: {_ts_string(classes)}" for variant, classes in _variant_classes(spec).items()
    )
    description = spec.description.replace("*/", "* /") or f"{name} component"
    body = (
        f"    <{tag} className={{[variantClasses[variant], className].filter(Boolean).join(' ')}} />"
        if tag == "input"
        else (
            f"    <{tag} className={{[variantClasses[variant], className].filter(Boolean).join(' ')}}>\n"
            f"      {{children}}\n"
            f"    </{tag}>"
        )
    )
    children_arg = "" if tag == "input" else ", children"
    return f"""import React from 'react';

/**
 * {description}
 */
export interface {name}Props {{
{chr(10).join(prop_lines)}
}}

const variantClasses: Record<string, string> = {{
{class_map}
}};

export const {name}: React.FC<{name}Props> = ({{ variant = {default_variant}, className{children_arg} }}) => {{
  return (
{body}
  );
}};

export default {name};
"""
