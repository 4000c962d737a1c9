"""treekit: Local predictions from serialized decision-tree models."""

from loguru import logger

from treekit.config import TreekitSettings
from treekit.logging import PACKAGE_NAME, enable_logging
from treekit.model import LocalModel
from treekit.tree import DecisionTree, Prediction

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the treekit module by default

__all__ = [
    "DecisionTree",
    "LocalModel",
    "Prediction",
    "TreekitSettings",
    "enable_logging",
]
