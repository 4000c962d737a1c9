"""Demonstrates how to enable and configure logging in treekit.

treekit logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, treekit logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``PREDICTION`` level
  (numeric value 25, between INFO and WARNING) surfaces every prediction call
  and is the default. ``DEBUG`` also shows tree construction and traversal.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Error logging: failed operations (e.g. a strict prediction that stops at an
  internal node) are logged at WARNING before the exception propagates.
- Automatic cleanup: logging is re-disabled when the context manager exits.
"""

import polars as pl

from treekit import LocalModel, enable_logging
from treekit.exceptions import InferenceExhaustedError

RESOURCE = {
    "resource": "model/example",
    "object": {
        "objective_fields": ["000002"],
        "model": {
            "fields": {
                "000000": {"name": "petal length", "optype": "numeric", "column_number": 0},
                "000001": {"name": "petal width", "optype": "numeric", "column_number": 1},
                "000002": {"name": "species", "optype": "categorical", "column_number": 2},
            },
            "root": {
                "id": 0,
                "output": "Iris-setosa",
                "count": 150,
                "confidence": 0.26,
                "distribution": [["Iris-setosa", 50], ["Iris-versicolor", 50], ["Iris-virginica", 50]],
                "children": [
                    {
                        "id": 1,
                        "output": "Iris-versicolor",
                        "count": 100,
                        "distribution": [["Iris-versicolor", 50], ["Iris-virginica", 50]],
                        "predicate": {"operator": ">", "field": "000000", "value": 2.45},
                        "children": [
                            {
                                "id": 2,
                                "output": "Iris-virginica",
                                "count": 46,
                                "distribution": [["Iris-virginica", 45], ["Iris-versicolor", 1]],
                                "predicate": {"operator": ">", "field": "000001", "value": 1.75},
                            },
                            {
                                "id": 3,
                                "output": "Iris-versicolor",
                                "count": 54,
                                "distribution": [["Iris-versicolor", 49], ["Iris-virginica", 5]],
                                "predicate": {"operator": "<=", "field": "000001", "value": 1.75},
                            },
                        ],
                    },
                    {
                        "id": 4,
                        "output": "Iris-setosa",
                        "count": 50,
                        "distribution": [["Iris-setosa", 50]],
                        "predicate": {"operator": "<=", "field": "000000", "value": 2.45},
                    },
                ],
            },
        },
    },
}

# Enable logging at DEBUG level with full log format for better visibility of log details
with enable_logging(
    level="DEBUG",
    log_format="full",
):
    model = LocalModel.from_resource(RESOURCE)

    # Single prediction
    prediction = model.predict({"petal length": 5.0, "petal width": 2.1})
    print(f"\nPrediction: {prediction.prediction} (confidence: {prediction.confidence})\n")

    # Missing splitting field, merged over every branch
    model.predict({"petal length": 5.0}, missing_strategy="proportional")

    # Batch prediction
    frame = pl.DataFrame({"petal length": [1.4, 4.7, None], "petal width": [0.2, 1.4, 2.3]})
    print(model.predict_frame(frame))

    # Rules
    print(model.rules())

    # Try an error to show error logging
    try:
        model.predict({"petal width": 1.0}, strict=True)
    except InferenceExhaustedError as exc:
        print(f"\n{exc}\n")

# Logging automatically disabled here
