"""Decision tree sub-package: node arena, statistics, traversal, and rule rendering."""

from __future__ import annotations

from treekit.tree.models import (
    CategoryOutput,
    Distribution,
    DistributionUnit,
    FieldInfo,
    MissingStrategy,
    NumericOutput,
    Prediction,
)
from treekit.tree.node import DecisionTree, TreeNode
from treekit.tree.predicate import TRUE_PREDICATE, Predicate, PredicateOp, TruePredicate
from treekit.tree.prediction import BINS_LIMIT, predict, predict_last_prediction, predict_proportional
from treekit.tree.rules import INDENT, generate_rules, slugify

__all__ = [
    "BINS_LIMIT",
    "INDENT",
    "TRUE_PREDICATE",
    "CategoryOutput",
    "DecisionTree",
    "Distribution",
    "DistributionUnit",
    "FieldInfo",
    "MissingStrategy",
    "NumericOutput",
    "Prediction",
    "Predicate",
    "PredicateOp",
    "TreeNode",
    "TruePredicate",
    "generate_rules",
    "predict",
    "predict_last_prediction",
    "predict_proportional",
    "slugify",
]
