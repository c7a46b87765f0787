"""Structured failures for spatial context analysis.

Per-unit failures (one image, one test, one outcome column) are raised as
one of the exceptions below and recorded by the batch engine as a
``UnitFailure`` so that the rest of the run continues. Too few cells of a
type is not an error: it surfaces as a missing (NaN) statistic.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class CellContextError(ValueError):
    """Base class carrying the image/test the failure belongs to."""

    kind = "error"

    def __init__(
        self,
        message: str,
        image_id: Optional[str] = None,
        test: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.image_id = image_id
        self.test = test

    def to_failure(self) -> "UnitFailure":
        return UnitFailure(
            kind=self.kind,
            image_id=self.image_id,
            test=self.test,
            message=self.message,
        )


class InputDataError(CellContextError):
    """Malformed cell records: missing coordinates, duplicate ids, empty window."""

    kind = "input_data"


class InvalidHierarchy(CellContextError):
    """Parent population does not contain the ``to`` type, or a type is unmapped."""

    kind = "invalid_hierarchy"


class ModelNonEstimable(CellContextError):
    """An outcome model could not be fitted for one column."""

    kind = "model_non_estimable"


@dataclass
class UnitFailure:
    """A recorded per-unit failure.

    Attributes
    ----------
    kind : str
        One of "input_data", "invalid_hierarchy", "model_non_estimable"
    image_id : str, optional
        Image the failure belongs to
    test : str, optional
        Test name (``from__to`` or ``from__to__parent``)
    message : str
        Human-readable description
    """

    kind: str
    image_id: Optional[str] = None
    test: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "image_id": self.image_id,
            "test": self.test,
            "message": self.message,
        }
