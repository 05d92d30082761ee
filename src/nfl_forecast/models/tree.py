"""
CART classifier exposed as an explicit node tree with a leaf frequency table.

sklearn grows the tree (gini, depth and minimum-split limits). The fitted
structure is then converted into plain :class:`Leaf` / :class:`Split` nodes,
every training row is walked down again and each leaf records how many
wins/losses reached it. Predictions are the leaf's empirical win frequency,
0.5 for a leaf no training row reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np
from sklearn.tree import DecisionTreeClassifier

log = logging.getLogger(__name__)


@dataclass
class Leaf:
    leaf_id: int
    wins: int = 0
    count: int = 0

    @property
    def frequency(self) -> float:
        return self.wins / self.count if self.count else 0.5

    def to_dict(self) -> dict[str, Any]:
        return {"leaf": self.leaf_id, "wins": self.wins, "count": self.count, "p": self.frequency}


@dataclass
class Split:
    feature: int
    threshold: float
    left: "Node"
    right: "Node"

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature": self.feature,
            "threshold": self.threshold,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


Node = Union[Leaf, Split]


def _convert(tree: Any, node_id: int, leaves: list[Leaf]) -> Node:
    left = int(tree.children_left[node_id])
    right = int(tree.children_right[node_id])
    if left == right:  # sklearn marks leaves with -1 on both sides
        leaf = Leaf(leaf_id=len(leaves))
        leaves.append(leaf)
        return leaf
    return Split(
        feature=int(tree.feature[node_id]),
        threshold=float(tree.threshold[node_id]),
        left=_convert(tree, left, leaves),
        right=_convert(tree, right, leaves),
    )


def route(node: Node, x: np.ndarray) -> Leaf:
    while isinstance(node, Split):
        node = node.left if x[node.feature] <= node.threshold else node.right
    return node


@dataclass
class FrequencyTree:
    """Depth-limited CART whose predictions come from recomputed leaf frequencies."""

    max_depth: int = 4
    min_samples_split: int = 20
    random_state: int = 0
    root: Node | None = None
    leaves: list[Leaf] = field(default_factory=list)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "FrequencyTree":
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=int)
        if len(X) == 0:
            raise ValueError("Cannot fit a tree on an empty training slice.")

        cart = DecisionTreeClassifier(
            criterion="gini",
            max_depth=self.max_depth,
            min_samples_split=self.min_samples_split,
            random_state=self.random_state,
        )
        cart.fit(X, y)

        self.leaves = []
        self.root = _convert(cart.tree_, 0, self.leaves)
        for row, label in zip(X, y):
            leaf = route(self.root, row)
            leaf.count += 1
            leaf.wins += int(label)

        log.debug("Tree fitted with %d leaves", len(self.leaves))
        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        if self.root is None:
            raise RuntimeError("FrequencyTree.predict_proba called before fit.")
        X = np.asarray(X, dtype=float)
        return np.array([route(self.root, row).frequency for row in X], dtype=float)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_depth": self.max_depth,
            "min_samples_split": self.min_samples_split,
            "root": self.root.to_dict() if self.root is not None else None,
            "leaves": [leaf.to_dict() for leaf in self.leaves],
        }
