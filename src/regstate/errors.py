# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .diagnostic import Diagnostics


class RegstateError(Exception):
    """Base class for errors raised by the library."""

    ...


class RegstateParseError(RegstateError):
    """Raised when an error occurs while importing a device description."""

    ...


class ModelDefinitionError(RegstateError, ValueError):
    """Raised when an element is registered in the model with an invalid definition."""

    def __init__(self, elements: Iterable[Any], explanation: str):
        elements_str = "\n".join(f"  * {e!r}" for e in elements)
        super().__init__(f"Invalid model element(s):\n{elements_str}\n{explanation}")


class UnresolvableEntitlementError(ModelDefinitionError):
    """
    Raised when an entitlement targets a field whose state cannot be statically tracked.
    Only fields with a store-like access modality can be entitled to.
    """

    def __init__(self, entitlement: Any, field: Any):
        super().__init__(
            [entitlement, field],
            f"{field!r} has access {field.access.value!r} and as such cannot be entitled to",
        )


class ModelPathError(RegstateError):
    """Raised when trying to access a nonexistent element of the model."""

    def __init__(self, path: Any, source: Any, explanation: str = "") -> None:
        formatted_explanation = "" if not explanation else f" ({explanation})"
        message = (
            f"{source!s} does not contain an element '{path}'{formatted_explanation}"
        )

        super().__init__(message)


class ModelIndexError(ModelPathError, IndexError):
    """Raised when given an index that does not refer to a registered element."""

    ...


class ModelKeyError(ModelPathError, KeyError):
    """Raised when given a name that does not refer to a registered element."""

    ...


class PatternError(RegstateError):
    """
    Raised when a combination of field states is not jointly achievable given the
    entitlement spaces declared in the model.
    """

    def __init__(self, pattern: Any, rendered: str = "") -> None:
        self.pattern = pattern
        super().__init__(f"invalid pattern {rendered if rendered else repr(pattern)}")


class GateError(RegstateError):
    """Raised when an access gate violates the entitlements of the fields it touches."""

    def __init__(self, diagnostics: Diagnostics) -> None:
        self.diagnostics = diagnostics
        super().__init__(diagnostics.report())
