"""Rendering of a decision tree as nested IF-THEN rules."""

from __future__ import annotations

import re
import unicodedata
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Final, TextIO

from treekit.tree.models import FieldInfo
from treekit.tree.node import DecisionTree, TreeNode

INDENT: Final[str] = "    "

_NON_ALPHANUMERIC_PATTERN = re.compile(r"[^0-9a-z]+")


def slugify(name: str) -> str:
    """Translate a field name into a variable-like name.

    Args:
        name (str): The field's display name.

    Returns:
        str: Lower-case ASCII name where runs of other characters become `_`,
            prefixed with `field_` when it would start with a digit.

    Examples:
        >>> slugify("Petal Width (cm)")
        'petal_width_cm_'
        >>> slugify("2nd área")
        'field_2nd_area'
    """
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _NON_ALPHANUMERIC_PATTERN.sub("_", folded.lower())
    if not slug or slug[0].isdigit():
        slug = f"field_{slug}"
    return slug


def sort_fields(fields: Mapping[str, FieldInfo]) -> list[tuple[str, FieldInfo]]:
    """Order fields by column number, placing derived fields after their parent.

    Regular fields are sorted by column number. The auto-generated fields of
    each regular field follow it, also by column number; those whose first
    declared parent is not a regular field are appended at the end.

    Args:
        fields (Mapping[str, FieldInfo]): Field metadata keyed by id.

    Returns:
        list[tuple[str, FieldInfo]]: `(field id, field)` pairs in rendering order.
    """
    by_column = sorted(fields.items(), key=lambda item: (item[1].column_number, item[0]))
    regular = [(field_id, field) for field_id, field in by_column if not field.auto_generated]
    regular_ids = {field_id for field_id, _ in regular}

    derived: defaultdict[str, list[tuple[str, FieldInfo]]] = defaultdict(list)
    orphans: list[tuple[str, FieldInfo]] = []
    for field_id, field in by_column:
        if not field.auto_generated:
            continue
        parent_id = field.parent_ids[0] if field.parent_ids else None
        if parent_id in regular_ids:
            derived[parent_id].append((field_id, field))
        else:
            orphans.append((field_id, field))

    ordered: list[tuple[str, FieldInfo]] = []
    for field_id, field in regular:
        ordered.append((field_id, field))
        ordered.extend(derived[field_id])
    return ordered + orphans


def assign_slugs(fields: Mapping[str, FieldInfo]) -> dict[str, FieldInfo]:
    """Return a copy of `fields` where every field carries a unique slug.

    Slugs are assigned in `sort_fields` order; a slug already taken gets a
    numeric suffix starting at `_2`.

    Args:
        fields (Mapping[str, FieldInfo]): Field metadata keyed by id.

    Returns:
        dict[str, FieldInfo]: Field metadata keyed by id, with `slug` set.
    """
    slugged: dict[str, FieldInfo] = {}
    taken: set[str] = set()
    for field_id, field in sort_fields(fields):
        base = slugify(field.name)
        slug = base
        suffix = 2
        while slug in taken:
            slug = f"{base}_{suffix}"
            suffix += 1
        taken.add(slug)
        slugged[field_id] = field.model_copy(update={"slug": slug})
    return slugged


def filter_nodes(
    nodes: Sequence[TreeNode],
    ids: Sequence[int] | None = None,
    subtree: bool = True,
) -> list[TreeNode]:
    """Select the children to render below a node.

    Args:
        nodes (Sequence[TreeNode]): Children of the node being rendered.
        ids (Sequence[int] | None): Node ids on the path to a requested node.
        subtree (bool): Whether to keep every child when none is on `ids`.

    Returns:
        list[TreeNode]: The single child on the id path if there is one,
            otherwise all children when `subtree` is true and none when it is not.
    """
    if ids:
        for node in nodes:
            if node.id in ids:
                return [node]
    return list(nodes) if subtree else []


def get_ids_path(tree: DecisionTree, filter_id: int | None) -> list[int] | None:
    """Return the ids from node `filter_id` up to the root, or `None` without a filter.

    Raises:
        KeyError: If no node has id `filter_id`.
    """
    if filter_id is None:
        return None
    node = tree.node_by_id(filter_id)
    return [ancestor.id for ancestor in [node, *tree.ancestors(node)] if ancestor.id is not None]


def generate_rules(
    tree: DecisionTree,
    *,
    fields: Mapping[str, FieldInfo] | None = None,
    ids_path: Sequence[int] | None = None,
    subtree: bool = True,
    indent: str = INDENT,
) -> str:
    """Translate a tree into IF-THEN rules, one line per rendered edge.

    A child is rendered as `IF <rule> AND` when it has children of its own and
    as `IF <rule> THEN` otherwise, each followed by its own rules one level
    deeper. A node with nothing rendered below it closes the branch with
    `<objective> = <output>`.

    Args:
        tree (DecisionTree): The tree to render.
        fields (Mapping[str, FieldInfo] | None): Field metadata with slugs. When
            `None`, slugs are assigned from the tree's own field metadata.
        ids_path (Sequence[int] | None): Restrict rendering to the branch
            leading to a node, as returned by `get_ids_path`.
        subtree (bool): Whether to render the children of nodes off `ids_path`.
        indent (str): Indentation unit repeated once per depth level.

    Returns:
        str: The rules, each line ending with a newline.

    Examples:
        >>> tree = DecisionTree.from_serialized(
        ...     {"output": "yes", "count": 2, "distribution": [["yes", 2]]},
        ...     fields={},
        ...     objective_id=None,
        ... )
        >>> generate_rules(tree)
        ' Prediction = yes\\n'
    """
    slugged = assign_slugs(tree.fields) if fields is None else fields
    objective = slugged.get(tree.objective_id) if tree.objective_id is not None else None
    objective_label = (objective.slug or objective.name) if objective is not None else "Prediction"
    lines: list[str] = []
    _render_node(
        tree,
        tree.root,
        0,
        lines,
        fields=slugged,
        objective_label=objective_label,
        ids_path=ids_path,
        subtree=subtree,
        indent=indent,
    )
    return "".join(lines)


def write_rules(out: TextIO, rules: str) -> None:
    """Write rendered rules to a text stream in a single write, then flush it."""
    out.write(rules)
    out.flush()


def _render_node(
    tree: DecisionTree,
    node: TreeNode,
    depth: int,
    lines: list[str],
    *,
    fields: Mapping[str, FieldInfo],
    objective_label: str,
    ids_path: Sequence[int] | None,
    subtree: bool,
    indent: str,
) -> None:
    children = filter_nodes(tree.children(node), ids_path, subtree)
    prefix = indent * depth
    if not children:
        lines.append(f"{prefix} {objective_label} = {node.output.value}\n")
        return
    for child in children:
        connective = "THEN" if child.is_leaf else "AND"
        lines.append(f"{prefix} IF {child.predicate.to_rule(fields, 'slug')} {connective}\n")
        _render_node(
            tree,
            child,
            depth + 1,
            lines,
            fields=fields,
            objective_label=objective_label,
            ids_path=ids_path,
            subtree=subtree,
            indent=indent,
        )
