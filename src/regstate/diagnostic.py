# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
Diagnostics emitted when validating a model or an access gate.

The validation passes never stop at the first problem. Every problem is collected as a
`Diagnostic`, and the `Diagnostics` collection can be rendered as a single report grouped by
the location in the model the problems were found at.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Tuple

if TYPE_CHECKING:
    from .entitlement import Entitlement, Pattern, Space
    from .model import Element, Field, Model, Variant


class Rank(enum.Enum):
    WARNING = "warning"
    ERROR = "error"


@enum.unique
class Kind(enum.Enum):
    """Kinds of diagnostics. The value is the stable diagnostic code."""

    # physical
    ADDRESS_UNALIGNED = 0
    OVERLAP = 1
    EXCEEDS_DOMAIN = 2
    EXPECTED_RESET = 3
    INVALID_RESET = 4

    # stasis
    UNRESOLVABLE = 1000
    READ_CANNOT_BE_INERT = 1001
    INVALID_PATTERN = 1002
    EMPTY_SPACE = 1003
    WRITE_UNSATISFIED = 1004
    STATEWISE_UNSATISFIED = 1005
    ONTOLOGICAL_UNSATISFIED = 1006
    ENTITLEMENT_TRANSITIONED = 1007

    # lexical
    RESERVED = 2000


# Names of the levels of a context path, indexed by path length
_LEVELS = ("", "peripheral", "register", "field", "variant")


@dataclass(frozen=True)
class Context:
    """Location in the model a diagnostic refers to, as a path of element names."""

    path: Tuple[str, ...] = ()

    @classmethod
    def of(cls, model: Model, element: Element) -> Context:
        """:return: Context pointing at the given element."""
        return cls(tuple(model.path_of(element).split(".")))

    def child(self, name: str) -> Context:
        """:return: Context of a child element."""
        return Context((*self.path, name))

    @property
    def level(self) -> str:
        """Name of the kind of element the context points at."""
        return _LEVELS[len(self.path)] if len(self.path) < len(_LEVELS) else ""

    @property
    def child_level(self) -> str:
        """Name of the kind of element contained by the element the context points at."""
        depth = len(self.path) + 1
        return _LEVELS[depth] if depth < len(_LEVELS) else ""

    def __bool__(self) -> bool:
        return bool(self.path)

    def __str__(self) -> str:
        return "/".join(self.path)


@dataclass(frozen=True)
class Diagnostic:
    """A single problem found during validation."""

    rank: Rank
    kind: Kind
    message: str
    context: Context = Context()
    notes: Tuple[str, ...] = ()

    def with_notes(self, *notes: str) -> Diagnostic:
        """:return: A copy of the diagnostic with the given notes appended."""
        return replace(self, notes=(*self.notes, *notes))

    @property
    def code(self) -> str:
        return f"E{self.kind.value:04}"

    @classmethod
    def address_unaligned(cls, address: int, context: Context) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.ADDRESS_UNALIGNED,
            f"{context.level} address must be word aligned",
            context,
            (f"address 0x{address:08x} does not satisfy: address % 4 == 0",),
        )

    @classmethod
    def overlap(cls, lhs: Any, rhs: Any, occupied: Any, context: Context) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.OVERLAP,
            f"{context.child_level}s [{lhs}] and [{rhs}] overlap, occupying {occupied}",
            context,
        )

    @classmethod
    def exceeds_domain(
        cls,
        offending: Any,
        offending_domain: Any,
        parent_domain: Any,
        context: Context,
    ) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.EXCEEDS_DOMAIN,
            f"{context.child_level} [{offending}] with domain {offending_domain} exceeds "
            f"parent {context.level} with domain {parent_domain}",
            context,
        )

    @classmethod
    def expected_reset(cls, resolvable_fields: Iterable[Field], context: Context) -> Diagnostic:
        names = ", ".join(field.name for field in resolvable_fields)
        return cls(
            Rank.ERROR,
            Kind.EXPECTED_RESET,
            "a reset value must be specified",
            context,
            (
                "reset values must be specified for registers containing resolvable fields",
                f"resolvable fields in this register: [{names}]",
            ),
        )

    @classmethod
    def invalid_reset(
        cls,
        field: Field,
        variants: Iterable[Variant],
        field_reset: int,
        register_reset: int,
        context: Context,
    ) -> Diagnostic:
        variants_str = ", ".join(f"{v.name}: 0x{v.bits:x}" for v in variants)
        return cls(
            Rank.ERROR,
            Kind.INVALID_RESET,
            f"no variants of field [{field.name}] correspond to reset value {field_reset}",
            context,
            (
                f"register reset value: 0x{register_reset:x}",
                f"field variants: [{variants_str}]",
            ),
        )

    @classmethod
    def unresolvable(
        cls, model: Model, entitlement: Entitlement, field: Field, context: Context
    ) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.UNRESOLVABLE,
            f"entitlement [{entitlement.render(model)}] resides within unresolvable field "
            f"[{field.name}] and as such cannot be entitled to",
            context,
        )

    @classmethod
    def unresolvable_transition(cls, field: Field, context: Context) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.UNRESOLVABLE,
            f"field [{field.name}] is unresolvable and as such cannot be transitioned",
            context,
        )

    @classmethod
    def read_cannot_be_inert(cls, context: Context) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.READ_CANNOT_BE_INERT,
            "read-only variants cannot be inert",
            context,
        )

    @classmethod
    def invalid_pattern(
        cls, model: Model, pattern: Pattern, kind: str, context: Context
    ) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.INVALID_PATTERN,
            f"{kind} entitlement pattern [{pattern.render(model)}] can never be satisfied",
            context,
            (
                "the pattern contradicts the ontological or statewise entitlements "
                "of the states it names",
            ),
        )

    @classmethod
    def empty_space(cls, kind: str, context: Context) -> Diagnostic:
        return cls(
            Rank.WARNING,
            Kind.EMPTY_SPACE,
            f"{kind} entitlement space is empty and can never be satisfied",
            context,
        )

    @classmethod
    def unsatisfied(
        cls,
        model: Model,
        kind: Kind,
        description: str,
        pattern: Pattern,
        space: Space,
        context: Context,
    ) -> Diagnostic:
        return cls(
            Rank.ERROR,
            kind,
            f"{description} are not satisfied",
            context,
            (
                f"provided states: [{pattern.render(model)}]",
                f"required: {space.render(model)}",
            ),
        )

    @classmethod
    def entitlement_transitioned(
        cls, dependency: Field, dependent: Field, context: Context
    ) -> Diagnostic:
        return cls(
            Rank.ERROR,
            Kind.ENTITLEMENT_TRANSITIONED,
            f"field [{dependency.name}] cannot be transitioned while it entitles the write "
            f"access of field [{dependent.name}]",
            context,
        )

    @classmethod
    def reserved(cls, offending: str, bank: Iterable[str], context: Context) -> Diagnostic:
        level = context.level
        return cls(
            Rank.ERROR,
            Kind.RESERVED,
            f'"{offending}" is a reserved keyword for {level}s',
            context,
            (f"reserved {level} keywords: [{', '.join(bank)}]",),
        )

    def __str__(self) -> str:
        notes = "".join(f"\n  note: {note}" for note in self.notes)
        return f"{self.rank.value}[{self.code}]: {self.message}{notes}"


class Diagnostics:
    """Insertion ordered collection of unique diagnostics."""

    def __init__(self, diagnostics: Iterable[Diagnostic] = ()) -> None:
        self._diagnostics: Dict[Diagnostic, None] = dict.fromkeys(diagnostics)

    def insert(self, diagnostic: Diagnostic) -> None:
        self._diagnostics[diagnostic] = None

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for diagnostic in diagnostics:
            self.insert(diagnostic)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.rank is Rank.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.rank is Rank.WARNING]

    def of_kind(self, kind: Kind) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.kind is kind]

    def report(self) -> str:
        """
        Render every diagnostic, grouped by context.

        :return: The report text.
        """
        groups: Dict[Context, List[Diagnostic]] = {}
        for diagnostic in self._diagnostics:
            groups.setdefault(diagnostic.context, []).append(diagnostic)

        sections = []
        for context, diagnostics in groups.items():
            body = "\n".join(str(d) for d in diagnostics)
            sections.append(f"in {context}:\n{body}" if context else body)

        return "\n\n".join(sections)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._diagnostics)

    def __len__(self) -> int:
        return len(self._diagnostics)

    def __contains__(self, diagnostic: object) -> bool:
        return diagnostic in self._diagnostics

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._diagnostics)!r})"
