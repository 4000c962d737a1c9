"""Custom exceptions for treekit.

Construction exceptions (subclass ValueError):
- TreeConstructionError: Raised when a serialized tree node is malformed.
- FieldsNotFoundError: Raised when field ids are referenced but absent from the
  field metadata.
- ModelFormatError: Raised when a serialized model resource lacks a required
  section.

Inference exceptions (subclass Exception):
- InferenceExhaustedError: Raised when a traversal stops at an internal node
  because no child predicate accepts the input row.
"""

from __future__ import annotations


class TreeConstructionError(ValueError):
    """Raised when a serialized tree node cannot be materialized.

    Attributes:
        missing_fields (list[str]): Required node attributes that were absent.
        node_id (int | None): The serialized id of the offending node, when it
            has one.

    Examples:
        >>> err = TreeConstructionError("Node is missing required keys", missing_fields=["count"], node_id=3)
        >>> err.missing_fields
        ['count']
    """

    missing_fields: list[str]
    node_id: int | None

    def __init__(
        self,
        message: str,
        *,
        missing_fields: list[str] | None = None,
        node_id: int | None = None,
    ) -> None:
        """Initialize TreeConstructionError.

        Args:
            message (str): Description of the construction failure.
            missing_fields (list[str] | None): Required attributes that were absent.
            node_id (int | None): Serialized id of the node being built.
        """
        super().__init__(message)
        self.missing_fields = missing_fields or []
        self.node_id = node_id

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message, missing fields and node id.
        """
        return (
            f"{self.__class__.__name__}(message={str(self)!r}, "
            f"missing_fields={self.missing_fields!r}, node_id={self.node_id!r})"
        )


class FieldsNotFoundError(ValueError):
    """Raised when field ids are referenced but not present in the field metadata.

    Attributes:
        missing_fields (list[str]): Field ids that were not found.
        available_fields (list[str]): Field ids present in the metadata.

    Examples:
        >>> err = FieldsNotFoundError(missing_fields=["000009"], available_fields=["000000", "000001"])
        >>> str(err)
        "Fields not found in field metadata: ['000009']"
    """

    missing_fields: list[str]
    available_fields: list[str]

    def __init__(self, missing_fields: list[str], available_fields: list[str]) -> None:
        """Initialize FieldsNotFoundError.

        Args:
            missing_fields (list[str]): Field ids not found in the metadata.
            available_fields (list[str]): Field ids present in the metadata.
        """
        super().__init__(f"Fields not found in field metadata: {sorted(missing_fields)}")
        self.missing_fields = missing_fields
        self.available_fields = available_fields


class ModelFormatError(ValueError):
    """Raised when a serialized model resource is missing a required section.

    Attributes:
        key (str): Dotted path of the missing or malformed section, e.g. ``"model.root"``.
    """

    key: str

    def __init__(self, message: str, *, key: str) -> None:
        """Initialize ModelFormatError.

        Args:
            message (str): Description of the format problem.
            key (str): Dotted path of the offending section.
        """
        super().__init__(message)
        self.key = key

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and key.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, key={self.key!r})"


class InferenceExhaustedError(Exception):
    """Raised when a traversal cannot continue below an internal node.

    This happens when none of the node's children accepts the input row, which
    for a well-formed tree means the splitting field is missing from the input
    and the tree has no branch designated for missing values.

    Attributes:
        node_id (int | None): Serialized id of the node where traversal stopped.
        path (list[str]): Rules followed from the root to that node.

    Examples:
        >>> err = InferenceExhaustedError(node_id=0, path=[])
        >>> err.node_id
        0
    """

    node_id: int | None
    path: list[str]

    def __init__(self, *, node_id: int | None, path: list[str]) -> None:
        """Initialize InferenceExhaustedError.

        Args:
            node_id (int | None): Serialized id of the node where traversal stopped.
            path (list[str]): Rules followed from the root to that node.
        """
        super().__init__(f"No child of node {node_id!r} accepts the input data")
        self.node_id = node_id
        self.path = list(path)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including node id and path.
        """
        return f"{self.__class__.__name__}(node_id={self.node_id!r}, path={self.path!r})"
