"""
Immutable binary decision tree.

The asset format is the one produced by exporting a fitted classifier:
split nodes carry ``feature``, ``threshold``, ``left`` and ``right``; leaves carry
``value`` as ``[negative, positive]`` class weights. Nodes have no explicit tag,
so the union is discriminated by shape.
"""

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, ValidationError

from aurasense.core.errors import InvalidTree


class LeafNode(BaseModel):
    """Terminal node holding the (negative, positive) class distribution."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["leaf"] = "leaf"
    class_distribution: tuple[Annotated[float, Field(ge=0.0)], Annotated[float, Field(ge=0.0)]] = (
        Field(alias="value")
    )

    @property
    def negative(self) -> float:
        return self.class_distribution[0]

    @property
    def positive(self) -> float:
        return self.class_distribution[1]


class SplitNode(BaseModel):
    """Decision node: go left when record[feature] <= threshold."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = "split"
    feature: str = Field(min_length=1)
    threshold: float
    left: "DecisionNode"
    right: "DecisionNode"


def _node_kind(node: Any) -> str | None:
    if isinstance(node, dict):
        if "kind" in node:
            return node["kind"]
        if "value" in node or "class_distribution" in node:
            return "leaf"
        if "feature" in node:
            return "split"
        return None
    return getattr(node, "kind", None)


DecisionNode = Annotated[
    Annotated[LeafNode, Tag("leaf")] | Annotated[SplitNode, Tag("split")],
    Discriminator(_node_kind),
]

SplitNode.model_rebuild()

_tree_adapter: TypeAdapter[LeafNode | SplitNode] = TypeAdapter(DecisionNode)


def parse_tree(document: Any) -> LeafNode | SplitNode:
    """Validate a decoded JSON document into a tree."""
    try:
        return _tree_adapter.validate_python(document)
    except ValidationError as e:
        raise InvalidTree(f"Invalid decision tree: {e.error_count()} validation error(s)") from e


def load_tree(path: str | Path) -> LeafNode | SplitNode:
    """Load a tree asset from a JSON file."""
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidTree(f"Cannot read decision tree from {path}: {e}") from e
    return parse_tree(document)


def iter_splits(tree: LeafNode | SplitNode) -> Iterator[SplitNode]:
    """Yield every split node, depth first, without recursion."""
    stack: list[LeafNode | SplitNode] = [tree]
    while stack:
        node = stack.pop()
        if isinstance(node, SplitNode):
            yield node
            stack.append(node.right)
            stack.append(node.left)


def required_features(tree: LeafNode | SplitNode) -> frozenset[str]:
    """Names of every feature the tree may read."""
    return frozenset(split.feature for split in iter_splits(tree))
