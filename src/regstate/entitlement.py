# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
Entitlements and the consistency search built on top of them.

An entitlement is a requirement for a field to inhabit one particular state (variant).
Entitlements are grouped into patterns (AND across fields, OR within a field), and patterns are
grouped into spaces (OR across patterns). The search in this module decides whether a pattern
is achievable at all given every entitlement space it transitively touches, and whether two
requirements can hold at the same time.
"""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Sequence,
    Set,
    Tuple,
    Union,
)

import regstate

from .errors import PatternError

if TYPE_CHECKING:
    from .model import Field, Model, Peripheral, Variant

# Anything that names a single variant
EntitlementLike = Union["Entitlement", "Variant"]

# Field index -> acceptable states for that field
FieldStates = Mapping[int, Sequence["Entitlement"]]


@dataclass(frozen=True)
class Entitlement:
    """
    A requirement for a particular field to inhabit a particular state.

    The entitlement only refers to the variant, since the variant identifies its field.
    Two entitlements are equal if they name the same variant.
    """

    index: int

    @classmethod
    def of(cls, item: EntitlementLike) -> Entitlement:
        """
        :param item: Entitlement or variant record.
        :return: Entitlement naming the given variant.
        """
        if isinstance(item, Entitlement):
            return item
        if isinstance(item, regstate.Variant):
            return cls(item.index)
        raise TypeError(
            f"Expected an entitlement or a variant, got '{item!r}' of type '{type(item)}'"
        )

    def variant(self, model: Model) -> Variant:
        """The variant this entitlement requires."""
        return model.variant(self.index)

    def field(self, model: Model) -> Field:
        """The field that must inhabit the variant."""
        return model.field(self.variant(model).parent)

    def render(self, model: Model) -> str:
        """Dotted path of the required variant."""
        return model.path_of(self.variant(model))


class EntitlementKind(enum.Enum):
    """The kinds of elements entitlement spaces can be attached to."""

    # Which states must hold for the peripheral to exist at all
    PERIPHERAL = "peripheral"
    # Which states must hold for the field to exist at all
    FIELD = "field"
    # Which states must hold elsewhere to permit writing the field
    WRITE = "write"
    # Which states must hold elsewhere for hardware to be able to write the field
    HARDWARE_WRITE = "hardware-write"
    # Which states must hold elsewhere while the variant is active
    VARIANT = "variant"


@dataclass(frozen=True)
class EntitlementKey:
    """Key of an entitlement space in the model's entitlement store."""

    kind: EntitlementKind
    index: int

    @classmethod
    def ontological(cls, element: Union[Peripheral, Field]) -> EntitlementKey:
        if isinstance(element, regstate.Peripheral):
            return cls(EntitlementKind.PERIPHERAL, element.index)
        return cls(EntitlementKind.FIELD, element.index)

    @classmethod
    def write(cls, field: Field) -> EntitlementKey:
        return cls(EntitlementKind.WRITE, field.index)

    @classmethod
    def hardware_write(cls, field: Field) -> EntitlementKey:
        return cls(EntitlementKind.HARDWARE_WRITE, field.index)

    @classmethod
    def statewise(cls, variant: Variant) -> EntitlementKey:
        return cls(EntitlementKind.VARIANT, variant.index)


class Pattern:
    """
    A set of entitlements, grouped by field.

    A pattern is satisfied when every field it mentions inhabits one of the states listed for
    that field. Fields that are not mentioned are unconstrained.

    Patterns are immutable and hashable. Equality disregards the order in which fields and
    states were given.
    """

    __slots__ = ["_entitlements", "_state_sets", "_key"]

    def __init__(self, entitlements: FieldStates = MappingProxyType({})) -> None:
        """
        Low level constructor that does not validate the pattern.
        Use `Pattern.new` to construct a pattern from a flat collection of entitlements.

        :param entitlements: Mapping from field index to the acceptable states of the field.
        """
        self._entitlements: Dict[int, Tuple[Entitlement, ...]] = {
            field_index: tuple(dict.fromkeys(states))
            for field_index, states in entitlements.items()
        }
        self._state_sets: Dict[int, FrozenSet[Entitlement]] = {
            field_index: frozenset(states)
            for field_index, states in self._entitlements.items()
        }
        self._key: FrozenSet[Tuple[int, FrozenSet[Entitlement]]] = frozenset(
            self._state_sets.items()
        )

    @classmethod
    def new(cls, model: Model, entitlements: Iterable[EntitlementLike]) -> Pattern:
        """
        Create a pattern from the given entitlements and validate it.

        :param model: Model the entitlements belong to.
        :param entitlements: Entitlements (or variants) making up the pattern.

        :raises PatternError: If the pattern can not be satisfied.
        :return: The validated pattern.
        """
        pattern = cls.unchecked(model, entitlements)
        pattern.validate(model)
        return pattern

    @classmethod
    def unchecked(cls, model: Model, entitlements: Iterable[EntitlementLike]) -> Pattern:
        """
        Create a pattern from the given entitlements without validating it.

        :param model: Model the entitlements belong to.
        :param entitlements: Entitlements (or variants) making up the pattern.
        :return: The pattern.
        """
        grouped: Dict[int, List[Entitlement]] = {}

        for item in entitlements:
            entitlement = Entitlement.of(item)
            grouped.setdefault(entitlement.field(model).index, []).append(entitlement)

        return cls(grouped)

    @property
    def field_indices(self) -> Tuple[int, ...]:
        """Indices of the fields mentioned by the pattern."""
        return tuple(self._entitlements)

    def states(self, field_index: int) -> Tuple[Entitlement, ...]:
        """
        :param field_index: Index of a field mentioned by the pattern.
        :return: The acceptable states of the field.
        """
        return self._entitlements[field_index]

    def as_mapping(self) -> Mapping[int, Tuple[Entitlement, ...]]:
        """Read-only view of the pattern as a mapping from field index to states."""
        return MappingProxyType(self._entitlements)

    def entitlements(self) -> Iterator[Entitlement]:
        """Iterator over every entitlement in the pattern."""
        for states in self._entitlements.values():
            yield from states

    def fields(self, model: Model) -> Iterator[Field]:
        """Iterator over the fields mentioned by the pattern."""
        return (model.field(field_index) for field_index in self._entitlements)

    def validate(self, model: Model) -> None:
        """
        Validate the pattern.

        A pattern is valid if it contradicts neither the ontological entitlement spaces of its
        fields nor the statewise entitlement spaces of its states. In other words, there is at
        least one combination of states that satisfies the pattern.

        :raises PatternError: If the pattern is invalid.
        """
        if not _Search(model).validate_pattern(self):
            raise PatternError(self, self.render(model))

    def is_valid(self, model: Model) -> bool:
        """:return: True if the pattern is valid, see `validate`."""
        return _Search(model).validate_pattern(self)

    def contradicts_space(self, model: Model, space: Space) -> bool:
        """
        Determine if there is no combination of states satisfying both this pattern and the space.
        A pattern contradicts a space if it contradicts all patterns in the space.
        """
        return _Search(model).pattern_contradicts_space(self, space)

    def contradicts_pattern(self, model: Model, other: Pattern) -> bool:
        """
        Determine if there is no combination of states satisfying both patterns.

        Two patterns trivially contradict if there is a field for which the states allowed by each
        pattern are disjoint. Otherwise they contradict if every combination of states from the
        intersection of the two patterns is itself an invalid pattern.
        """
        return _Search(model).pattern_contradicts_pattern(self, other)

    def covers(self, other: Pattern) -> bool:
        """
        Determine if this pattern covers another.

        A pattern covers another if its fields are a subset of the other pattern's fields, and
        for each field the states of this pattern are a superset of the other's states.
        A covered pattern is redundant when it resides in the same space as the covering one.
        """
        for field_index, states in self._state_sets.items():
            other_states = other._state_sets.get(field_index)
            if other_states is None or not other_states <= states:
                return False

        return True

    def intersection_with(self, other: Pattern) -> Dict[int, Tuple[Entitlement, ...]]:
        """
        Field-wise intersection of the two patterns.
        A field mentioned by only one of the patterns keeps that pattern's states.

        :param other: Pattern to intersect with.
        :return: Mapping from field index to the states accepted by both patterns.
        """
        intersection: Dict[int, Tuple[Entitlement, ...]] = {}

        for field_index, states in self._entitlements.items():
            other_states = other._state_sets.get(field_index)
            if other_states is None:
                intersection[field_index] = states
            else:
                intersection[field_index] = tuple(s for s in states if s in other_states)

        for field_index, states in other._entitlements.items():
            if field_index not in intersection:
                intersection[field_index] = states

        return intersection

    def render(self, model: Model) -> str:
        """Human readable representation, e.g. '<p.r.f | A, B>, <p.r.g | X>'."""
        return ", ".join(
            f"<{model.path_of(model.field(field_index))} | "
            f"{', '.join(model.variant(s.index).name for s in states)}>"
            for field_index, states in self._entitlements.items()
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pattern):
            return NotImplemented
        return self._key == other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __len__(self) -> int:
        """:return: Number of fields mentioned by the pattern."""
        return len(self._entitlements)

    def __repr__(self) -> str:
        states_str = ", ".join(
            f"{field_index}: {{{', '.join(str(s.index) for s in states)}}}"
            for field_index, states in self._entitlements.items()
        )
        return f"{self.__class__.__name__}({{{states_str}}})"


class Space:
    """
    A set of patterns. A space is satisfied when any of its patterns is satisfied.

    On construction, patterns covered by other patterns in the space are dropped, so that no
    pattern in the space covers another. This never changes what the space accepts.
    """

    __slots__ = ["_patterns"]

    def __init__(self, patterns: Iterable[Pattern] = ()) -> None:
        """
        :param patterns: Patterns of the space. When two patterns are equal the last one is kept.
        """
        pattern_list: List[Pattern] = []

        for pattern in patterns:
            pattern_list = [
                existing for existing in pattern_list if not pattern.covers(existing)
            ]

            if not any(existing.covers(pattern) for existing in pattern_list):
                pattern_list.append(pattern)

        self._patterns: Tuple[Pattern, ...] = tuple(pattern_list)

    @classmethod
    def from_iter(
        cls, model: Model, entitlements: Iterable[Iterable[EntitlementLike]]
    ) -> Space:
        """
        Create a space from nested entitlements, where each nest is a pattern.

        :raises PatternError: If any of the patterns is invalid.
        """
        return cls([Pattern.new(model, nest) for nest in entitlements])

    @property
    def patterns(self) -> Tuple[Pattern, ...]:
        """The patterns in the space."""
        return self._patterns

    def field_indices(self) -> Iterator[int]:
        """Indices of the fields mentioned in the space. An index may be produced more than once."""
        for pattern in self._patterns:
            yield from pattern.field_indices

    def entitlements(self) -> Iterator[Entitlement]:
        """Iterator over every entitlement in the space."""
        for pattern in self._patterns:
            yield from pattern.entitlements()

    def contradicts(self, model: Model, other: Space) -> bool:
        """
        Determine if there is no combination of states satisfying both spaces.
        A space contradicts another if all of its patterns contradict the other space.
        """
        # Each pattern gets its own search
        return all(pattern.contradicts_space(model, other) for pattern in self._patterns)

    def render(self, model: Model) -> str:
        """Human readable representation of the space."""
        return " or ".join(f"[{pattern.render(model)}]" for pattern in self._patterns)

    def __iter__(self) -> Iterator[Pattern]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Space):
            return NotImplemented
        return frozenset(self._patterns) == frozenset(other._patterns)

    def __hash__(self) -> int:
        return hash(frozenset(self._patterns))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._patterns)!r})"


def iter_combinations(states: FieldStates) -> Iterator[Pattern]:
    """
    Lazily enumerate every pattern that picks exactly one state for each field.
    The first field varies slowest.

    If any field has no states, nothing is produced. If there are no fields at all,
    a single empty pattern is produced.

    :param states: Mapping from field index to acceptable states.
    :return: Iterator over the single-state patterns.
    """
    field_indices = list(states)

    for choice in itertools.product(*(states[i] for i in field_indices)):
        yield Pattern({i: (entitlement,) for i, entitlement in zip(field_indices, choice)})


class _Search:
    """
    State of a single top-level consistency search.

    The search keeps track of the patterns it has started validating. A pattern that is
    encountered again while (or after) being validated is assumed to be valid, which
    terminates the recursion when entitlement spaces reference each other.
    """

    def __init__(self, model: Model) -> None:
        self._model: Model = model
        self._seen: Set[Pattern] = set()

    def validate_pattern(self, pattern: Pattern) -> bool:
        if pattern in self._seen:
            return True

        self._seen.add(pattern)

        for space in self._spaces_of(pattern):
            if self.pattern_contradicts_space(pattern, space):
                regstate.log.debug(
                    f"{pattern!r} contradicts {space!r} and is therefore invalid"
                )
                return False

        return True

    def pattern_contradicts_space(self, pattern: Pattern, space: Space) -> bool:
        return all(
            self.pattern_contradicts_pattern(pattern, other) for other in space.patterns
        )

    def pattern_contradicts_pattern(self, lhs: Pattern, rhs: Pattern) -> bool:
        intersection = lhs.intersection_with(rhs)

        # Trivial contradiction: some field can not inhabit any state allowed by both
        if any(not states for states in intersection.values()):
            return True

        for combination in iter_combinations(intersection):
            if self.validate_pattern(combination):
                return False

        return True

    def _spaces_of(self, pattern: Pattern) -> Iterator[Space]:
        """Ontological spaces of the pattern fields, then statewise spaces of the pattern states."""
        model = self._model

        for field_index in pattern.field_indices:
            space = model.entitlements_for(
                EntitlementKey(EntitlementKind.FIELD, field_index)
            )
            if space is not None:
                yield space

        for entitlement in pattern.entitlements():
            space = model.entitlements_for(
                EntitlementKey(EntitlementKind.VARIANT, entitlement.index)
            )
            if space is not None:
                yield space
