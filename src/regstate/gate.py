# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
Validation of access gates.

An access gate is a single site in generated code where a set of fields is read, written and/or
transitioned to new states. Before code is generated for the site, the states known to hold at
the site must satisfy the entitlements of every field the site touches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import regstate

from .diagnostic import Context, Diagnostic, Diagnostics, Kind
from .entitlement import Entitlement, Pattern
from .errors import GateError, ModelDefinitionError
from .model import Field, Model, Variant


@dataclass(frozen=True)
class FieldAccess:
    """
    A field named at an access gate.

    :param field: The accessed field.
    :param states: States the field is known to inhabit at the gate. Empty if unknown.
    :param transition: State the gate transitions the field to, if any.
    :param write: True if the gate writes the field without tracking a new state.
    """

    field: Field
    states: Optional[Tuple[Variant, ...]] = ()
    transition: Optional[Variant] = None
    write: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "states", tuple(self.states or ()))

        foreign = [v for v in self.states if v.parent != self.field.index]
        if self.transition is not None and self.transition.parent != self.field.index:
            foreign.append(self.transition)

        if foreign:
            raise ModelDefinitionError(
                [self.field, *foreign], "States must be variants of the accessed field"
            )

    @property
    def is_written(self) -> bool:
        """True if the gate writes the field."""
        return self.write or self.transition is not None


def validate_gate(model: Model, accesses: Iterable[FieldAccess]) -> Diagnostics:
    """
    Validate the entitlements of an access gate.

    The following must hold:
    * The known input states are jointly achievable.
    * The input states do not contradict the ontological entitlements of any accessed field.
    * The input states do not contradict the write entitlements of any written field, and no
      field those write entitlements depend on is transitioned by the same gate.
    * The output states (input states with transitions applied) do not contradict the statewise
      entitlements of any state a field is transitioned to.

    :param model: Model the fields belong to.
    :param accesses: Fields accessed by the gate.

    :raises ModelDefinitionError: If a field is written that software cannot write.
    :return: Every problem found with the gate.
    """
    diagnostics = Diagnostics()
    accesses = list(accesses)

    for access in accesses:
        if access.is_written and not access.field.access.is_write:
            raise ModelDefinitionError([access.field], "Field can not be written by software")

    input_pattern = Pattern.unchecked(
        model, [v for access in accesses for v in access.states]
    )

    if not input_pattern.is_valid(model):
        diagnostics.insert(
            Diagnostic.invalid_pattern(model, input_pattern, "gate input", Context())
        )

    transitioned: Dict[int, Field] = {
        access.field.index: access.field
        for access in accesses
        if access.transition is not None
    }

    for access in accesses:
        field = access.field
        context = Context.of(model, field)

        if access.transition is not None and not field.is_resolvable(model):
            diagnostics.insert(Diagnostic.unresolvable_transition(field, context))

        ontological = model.ontological_entitlements(field)
        if ontological is not None and input_pattern.contradicts_space(model, ontological):
            diagnostics.insert(
                Diagnostic.unsatisfied(
                    model,
                    Kind.ONTOLOGICAL_UNSATISFIED,
                    f"ontological entitlements of field [{field.name}]",
                    input_pattern,
                    ontological,
                    context,
                )
            )

        if not access.is_written:
            continue

        write = model.write_entitlements(field)
        if write is None:
            continue

        if input_pattern.contradicts_space(model, write):
            diagnostics.insert(
                Diagnostic.unsatisfied(
                    model,
                    Kind.WRITE_UNSATISFIED,
                    f"write entitlements of field [{field.name}]",
                    input_pattern,
                    write,
                    context,
                )
            )

        for dependency_index in dict.fromkeys(write.field_indices()):
            if dependency_index in transitioned:
                diagnostics.insert(
                    Diagnostic.entitlement_transitioned(
                        transitioned[dependency_index], field, context
                    )
                )

    output_states: List[Entitlement] = []
    for access in accesses:
        if access.transition is not None:
            output_states.append(access.transition.entitlement())
        else:
            output_states.extend(v.entitlement() for v in access.states)

    output_pattern = Pattern.unchecked(model, output_states)

    for access in accesses:
        if access.transition is None:
            continue

        statewise = model.statewise_entitlements(access.transition)
        if statewise is None:
            continue

        if output_pattern.contradicts_space(model, statewise):
            diagnostics.insert(
                Diagnostic.unsatisfied(
                    model,
                    Kind.STATEWISE_UNSATISFIED,
                    f"statewise entitlements of state [{access.transition.name}]",
                    output_pattern,
                    statewise,
                    Context.of(model, access.transition),
                )
            )

    regstate.log.debug(
        f"Gate over {len(accesses)} field(s) emitted {len(diagnostics)} diagnostic(s)"
    )

    return diagnostics


def check_gate(model: Model, accesses: Iterable[FieldAccess]) -> None:
    """
    Like `validate_gate`, but raises if the gate is not permitted.

    :raises GateError: If any error was found with the gate.
    """
    diagnostics = validate_gate(model, accesses)

    if diagnostics.errors:
        raise GateError(diagnostics)
