"""Cross-scope resolution of entity definitions into effective views.

Claude Code discovers the same logical entity (a command, an MCP server, a
plugin) at several layers. This module folds the per-layer definitions for
one kind into a single view per name:

1. Group definitions by logical name.
2. Collapse duplicates within one scope of one project (most recently
   modified wins, then the first one scanned).
3. Pick the authoring definition: the highest-precedence existing
   non-plugin definition. Plugin definitions are listed but never author.
4. Derive the effective state from the driving definition (authoring, or the
   highest-precedence plugin definition when nothing authors):
   - parse/read error            -> disabled (with ``error``)
   - disable marker              -> disabled
   - a higher layer turns it off -> runtime-disabled
   - otherwise                   -> enabled
5. A view is controllable when it has an authoring definition, or when it
   is a plugin install itself (toggled through ``enabledPlugins``), unless a
   plugin gate imposes its state.

Everything here is pure: no filesystem access.
"""

from __future__ import annotations

from collections.abc import Iterable

from .types import (
    Definition,
    EffectiveState,
    EffectiveView,
    EntityKind,
    Override,
    Scope,
)


def _precedence_key(defn: Definition) -> tuple[int, int]:
    # Non-plugin definitions sort ahead of plugin ones at equal rank.
    return (defn.scope.rank, 1 if defn.scope.is_plugin else 0)


def collapse_same_scope(definitions: list[Definition]) -> list[Definition]:
    """Keep one definition per (scope, project): newest mtime wins, ties keep scan order."""
    chosen: dict[tuple[Scope, str | None], Definition] = {}
    for defn in definitions:
        key = (defn.scope, defn.project)
        current = chosen.get(key)
        if current is None or defn.mtime > current.mtime:
            chosen[key] = defn
    return list(chosen.values())


def _winning_override(candidates: list[Override]) -> Override | None:
    """Highest-precedence override; later entries win ties."""
    best: Override | None = None
    for ov in candidates:
        if best is None or ov.scope.rank <= best.scope.rank:
            best = ov
    return best


def _name_gate(driving: Definition, overrides: list[Override]) -> Override | None:
    candidates = [
        ov for ov in overrides
        if ov.name == driving.name and ov.scope.rank < driving.scope.rank
    ]
    return _winning_override(candidates)


def _plugin_gate(driving: Definition, overrides: list[Override]) -> Override | None:
    if not driving.plugin:
        return None
    candidates = [
        ov for ov in overrides
        if ov.plugin == driving.plugin and ov.scope.rank <= driving.scope.rank
    ]
    return _winning_override(candidates)


def resolve_group(
    name: str,
    definitions: list[Definition],
    overrides: list[Override],
) -> EffectiveView | None:
    """Resolve the definitions of a single logical name.

    Returns None when none of the definitions exists on disk.
    """
    collapsed = collapse_same_scope(definitions)
    ordered = sorted(
        (d for d in collapsed if d.exists),
        key=_precedence_key,
    )
    if not ordered:
        return None

    authoring = next((d for d in ordered if not d.scope.is_plugin), None)
    driving = authoring or ordered[0]

    view = EffectiveView(
        kind=driving.kind,
        name=name,
        state=EffectiveState.ENABLED,
        scope=driving.scope,
        authoring=authoring,
        definitions=ordered,
        controllable=authoring is not None or driving.kind == EntityKind.PLUGIN,
        plugin=driving.plugin,
    )

    if driving.error:
        view.state = EffectiveState.DISABLED
        view.error = driving.error
        return view

    if driving.disabled:
        view.state = EffectiveState.DISABLED
        return view

    plugin_gate = _plugin_gate(driving, overrides)
    if plugin_gate is not None and not plugin_gate.enabled:
        view.state = EffectiveState.RUNTIME_DISABLED
        view.controllable = False
        view.reason = f"plugin '{driving.plugin}' disabled at {plugin_gate.scope} scope"
        return view

    name_gate = _name_gate(driving, overrides)
    if name_gate is not None and not name_gate.enabled:
        view.state = EffectiveState.RUNTIME_DISABLED
        view.reason = f"disabled at {name_gate.scope} scope"
        if name_gate.origin:
            view.reason += f" ({name_gate.origin})"
        return view

    return view


def resolve(
    definitions: Iterable[Definition],
    overrides: Iterable[Override] = (),
) -> list[EffectiveView]:
    """Resolve raw definitions of one kind into effective views sorted by name."""
    groups: dict[str, list[Definition]] = {}
    for defn in definitions:
        groups.setdefault(defn.name, []).append(defn)

    gates = list(overrides)
    views: list[EffectiveView] = []
    for name, group in groups.items():
        view = resolve_group(name, group, gates)
        if view is not None:
            views.append(view)

    views.sort(key=lambda v: v.name)
    return views


def resolve_kind(
    kind: EntityKind,
    definitions: Iterable[Definition],
    overrides: Iterable[Override] = (),
) -> list[EffectiveView]:
    """Resolve only the definitions of ``kind`` (mixed input is filtered)."""
    return resolve((d for d in definitions if d.kind == kind), overrides)
