# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import pytest

from regstate import (
    Access,
    Context,
    FieldAccess,
    GateError,
    Kind,
    Model,
    ModelDefinitionError,
    check_gate,
    validate_gate,
)


def _kinds(diagnostics):
    return [d.kind for d in diagnostics]


@pytest.fixture
def write_model(model: Model, v) -> Model:
    """F1 may only be written while F0 is A."""
    model.add_write_entitlements(v("F1"), [v("F0.A")])
    return model


def test_write_satisfied(write_model: Model, v):
    accesses = [
        FieldAccess(v("F0"), states=[v("F0.A")]),
        FieldAccess(v("F1"), write=True),
    ]

    assert len(validate_gate(write_model, accesses)) == 0
    check_gate(write_model, accesses)


def test_write_unsatisfied(write_model: Model, v):
    accesses = [
        FieldAccess(v("F0"), states=[v("F0.B"), v("F0.C")]),
        FieldAccess(v("F1"), write=True),
    ]

    diagnostics = validate_gate(write_model, accesses)

    assert _kinds(diagnostics) == [Kind.WRITE_UNSATISFIED]
    assert diagnostics.errors[0].context == Context(("P", "R", "F1"))
    assert diagnostics.errors[0].notes == (
        "provided states: [<P.R.F0 | B, C>]",
        "required: [<P.R.F0 | A>]",
    )

    with pytest.raises(GateError) as exc_info:
        check_gate(write_model, accesses)

    assert exc_info.value.diagnostics.errors == diagnostics.errors
    assert "error[E1004]" in str(exc_info.value)


def test_write_with_unknown_states(write_model: Model, v):
    # Nothing is known about F0, so it may well be A
    assert len(validate_gate(write_model, [FieldAccess(v("F1"), write=True)])) == 0


def test_read_ignores_write_entitlements(write_model: Model, v):
    accesses = [
        FieldAccess(v("F0"), states=[v("F0.B")]),
        FieldAccess(v("F1")),
    ]

    assert len(validate_gate(write_model, accesses)) == 0


def test_transition_of_write_dependency(write_model: Model, v):
    accesses = [
        FieldAccess(v("F0"), states=[v("F0.A")], transition=v("F0.B")),
        FieldAccess(v("F1"), states=[v("F1.X")], transition=v("F1.Y")),
    ]

    diagnostics = validate_gate(write_model, accesses)

    assert _kinds(diagnostics) == [Kind.ENTITLEMENT_TRANSITIONED]
    assert diagnostics.errors[0].message == (
        "field [F0] cannot be transitioned while it entitles the write access of field [F1]"
    )


def test_statewise_after_transition(model: Model, v):
    # F1 may only be Zero while F0 is A
    model.add_statewise_entitlements(v("F1.Zero"), [v("F0.A")])

    satisfied = [
        FieldAccess(v("F0"), states=[v("F0.B")], transition=v("F0.A")),
        FieldAccess(v("F1"), states=[v("F1.X")], transition=v("F1.Zero")),
    ]
    assert len(validate_gate(model, satisfied)) == 0

    violated = [
        FieldAccess(v("F0"), states=[v("F0.B")]),
        FieldAccess(v("F1"), states=[v("F1.X")], transition=v("F1.Zero")),
    ]
    diagnostics = validate_gate(model, violated)

    assert _kinds(diagnostics) == [Kind.STATEWISE_UNSATISFIED]
    assert diagnostics.errors[0].context == Context(("P", "R", "F1", "Zero"))


def test_ontological_unsatisfied(model: Model, v):
    # F2 only exists while F0 is C
    model.add_ontological_entitlements(v("F2"), [v("F0.C")])

    accesses = [
        FieldAccess(v("F0"), states=[v("F0.A")]),
        FieldAccess(v("F2")),
    ]

    diagnostics = validate_gate(model, accesses)

    assert _kinds(diagnostics) == [Kind.ONTOLOGICAL_UNSATISFIED]
    assert diagnostics.errors[0].context == Context(("P", "R", "F2"))

    accesses[0] = FieldAccess(v("F0"), states=[v("F0.A"), v("F0.C")])
    assert len(validate_gate(model, accesses)) == 0


def test_invalid_input_states(model: Model, v):
    model.add_statewise_entitlements(v("F1.Zero"), [v("F0.A")])

    accesses = [
        FieldAccess(v("F0"), states=[v("F0.B")]),
        FieldAccess(v("F1"), states=[v("F1.Zero")]),
    ]

    diagnostics = validate_gate(model, accesses)

    assert Kind.INVALID_PATTERN in _kinds(diagnostics)
    assert diagnostics.of_kind(Kind.INVALID_PATTERN)[0].context == Context()


def test_transition_of_unresolvable_field(model: Model, v):
    register = model.register(0)
    busy = model.add_field(register, "BUSY", 8, 1, access=Access.VOLATILE_STORE)
    idle = model.add_variant(busy, "Idle", 0)

    diagnostics = validate_gate(model, [FieldAccess(busy, transition=idle)])

    assert _kinds(diagnostics) == [Kind.UNRESOLVABLE]


def test_write_to_read_only_field(model: Model):
    status = model.add_field(model.register(0), "STATUS", 8, 1, access=Access.READ)

    with pytest.raises(ModelDefinitionError):
        validate_gate(model, [FieldAccess(status, write=True)])


def test_foreign_states_rejected(v):
    with pytest.raises(ModelDefinitionError):
        FieldAccess(v("F0"), states=[v("F1.X")])

    with pytest.raises(ModelDefinitionError):
        FieldAccess(v("F0"), transition=v("F2.On"))

    assert FieldAccess(v("F0"), states=None).states == ()
