"""Runtime settings for local tree inference."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from treekit.tree.models import MissingStrategy
from treekit.tree.prediction import BINS_LIMIT, DEFAULT_Z
from treekit.tree.rules import INDENT


class TreekitSettings(
    BaseSettings,
    env_prefix="TREEKIT_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
):
    """Tunable constants used when predicting with and rendering a local model.

    Values are read from ``TREEKIT_*`` environment variables (or a ``.env``
    file) when not passed explicitly.

    Attributes:
        bins_limit (int): Maximum number of points kept in a merged regression
            distribution before nearest bins are combined.
        regression_z (float): Normal quantile used by the regression error bound.
        wilson_z (float): Normal quantile used by the Wilson score confidence.
        rule_indent (str): Indentation unit used for each depth level of rendered rules.
        missing_strategy (MissingStrategy): Default strategy when a splitting
            field is missing from the input data.
    """

    bins_limit: int = Field(default=BINS_LIMIT, ge=1, description="Maximum points kept in a merged distribution.")
    regression_z: float = Field(default=DEFAULT_Z, gt=0.0, description="z value for the regression error bound.")
    wilson_z: float = Field(default=DEFAULT_Z, gt=0.0, description="z value for the Wilson score confidence.")
    rule_indent: str = Field(default=INDENT, description="Indentation unit for rendered rules.")
    missing_strategy: MissingStrategy = Field(
        default="last_prediction",
        description="Default strategy when a splitting field is missing from the input.",
    )
