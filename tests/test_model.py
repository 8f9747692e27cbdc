# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import pytest

from regstate import (
    Access,
    EntitlementKey,
    EntitlementKind,
    Model,
    ModelDefinitionError,
    ModelIndexError,
    ModelKeyError,
    UnresolvableEntitlementError,
)


def test_access_from_string():
    assert Access("read-write") is Access.READ_WRITE
    assert Access("READ_WRITE") is Access.READ_WRITE
    assert Access("Volatile_Store") is Access.VOLATILE_STORE

    with pytest.raises(ValueError):
        Access("read-only")


def test_access_properties():
    assert Access.READ.is_read and not Access.READ.is_write
    assert Access.WRITE.is_write and not Access.WRITE.is_read
    assert not Access.READ_WRITE.is_store
    assert Access.STORE.is_store and Access.VOLATILE_STORE.is_store


def test_lookup(model: Model, v):
    field = v("F1")
    variant = v("F1.Zero")

    assert model.lookup("P") == model.peripheral(0)
    assert model.lookup("P.R") == model.register(0)
    assert variant.parent == field.index
    assert model.variant(variant.index) == variant
    assert model.variants_of(field) == (v("F1.X"), v("F1.Y"), variant)
    assert model.fields_of(model.register(0)) == (v("F0"), field, v("F2"))
    assert model.parents_of(field) == (model.peripheral(0), model.register(0))
    assert model.path_of(variant) == "P.R.F1.Zero"
    assert model.path_of(model.peripheral(0)) == "P"


def test_lookup_errors(model: Model):
    with pytest.raises(ModelKeyError):
        model.lookup("P.R.F9")

    with pytest.raises(KeyError):
        model.lookup("Q")

    with pytest.raises(ModelKeyError):
        model.lookup("P.R.F0.A.B")

    with pytest.raises(ModelIndexError):
        model.variant(100)

    with pytest.raises(IndexError):
        model.field(-1)


def test_field_properties(model: Model, v):
    field = v("F1")

    assert field.mask == 0b1100
    assert field.domain == range(2, 4)
    assert field.get_reset(0b1000) == 2
    assert "{Field}" in repr(field)


def test_numeric_field(model: Model):
    register = model.register(0)
    numeric = model.add_field(register, "COUNT", 8, 8)

    assert model.variants_of(numeric) == ()
    assert numeric.access is Access.STORE


def test_duplicate_names_rejected(model: Model, v):
    with pytest.raises(ModelDefinitionError):
        model.add_peripheral("P", 0x5000_0000)

    with pytest.raises(ModelDefinitionError):
        model.add_register(model.peripheral(0), "R", 0x4)

    with pytest.raises(ModelDefinitionError):
        model.add_field(model.register(0), "F0", 8, 1)

    with pytest.raises(ModelDefinitionError):
        model.add_variant(v("F0"), "A", 3)


def test_invalid_field_bits_rejected(model: Model):
    register = model.register(0)

    with pytest.raises(ModelDefinitionError):
        model.add_field(register, "EMPTY", 0, 0)

    with pytest.raises(ValueError):
        model.add_field(register, "NEGATIVE", -1, 1)


def test_foreign_parent_rejected(model: Model):
    other = Model()
    peripheral = other.add_peripheral("OTHER", 0x0)

    with pytest.raises(ModelIndexError):
        model.add_register(peripheral, "R", 0x0)


def test_entitlements_absent_empty_and_appended(model: Model, v):
    field = v("F0")

    assert model.write_entitlements(field) is None

    model.add_write_entitlements(field)
    space = model.write_entitlements(field)
    assert space is not None and len(space) == 0

    model.add_write_entitlements(field, [v("F1.X")])
    model.add_write_entitlements(field, [v("F1.Y"), v("F2.On")])

    space = model.write_entitlements(field)
    assert space is not None and len(space) == 2
    assert model.declared_entitlements(EntitlementKey.write(field)) == (
        (v("F1.X").entitlement(),),
        (v("F1.Y").entitlement(), v("F2.On").entitlement()),
    )
    assert model.entitlement_keys() == (EntitlementKey(EntitlementKind.WRITE, field.index),)
    assert model.key_owner(EntitlementKey.write(field)) == field


def test_entitlement_keys(model: Model, v):
    assert EntitlementKey.ontological(model.peripheral(0)).kind is EntitlementKind.PERIPHERAL
    assert EntitlementKey.ontological(v("F0")).kind is EntitlementKind.FIELD
    assert EntitlementKey.statewise(v("F0.A")) == EntitlementKey(EntitlementKind.VARIANT, 0)

    model.add_ontological_entitlements(model.peripheral(0), [v("F2.On")])
    assert model.ontological_entitlements(model.peripheral(0)) is not None
    assert model.ontological_entitlements(v("F2")) is None


def test_unresolvable_entitlement_rejected(model: Model, v):
    register = model.register(0)
    status = model.add_field(register, "STATUS", 8, 1, access=Access.READ)
    ready = model.add_variant(status, "Ready", 1)

    with pytest.raises(UnresolvableEntitlementError):
        model.add_statewise_entitlements(v("F0.A"), [ready])

    with pytest.raises(ModelDefinitionError):
        model.add_write_entitlements(v("F0"), [v("F1.X"), ready])

    # Nothing is registered when the declaration is rejected
    assert model.write_entitlements(v("F0")) is None


def test_entitlement_key_owner_checked(model: Model, v):
    register = model.register(0)
    status = model.add_field(register, "STATUS", 8, 1, access="read")

    with pytest.raises(ModelDefinitionError):
        model.add_write_entitlements(status, [v("F0.A")])

    with pytest.raises(ModelDefinitionError):
        model.add_hardware_write_entitlements(v("F0"), [v("F1.X")])

    with pytest.raises(ModelIndexError):
        model.register_entitlements(EntitlementKey(EntitlementKind.VARIANT, 100), [v("F0.A")])


def test_resolvability(model: Model, v):
    register = model.register(0)

    store = v("F0")
    read = model.add_field(register, "READ", 8, 1, access=Access.READ)
    write = model.add_field(register, "WRITE", 9, 1, access=Access.WRITE)
    read_write = model.add_field(register, "READ_WRITE", 10, 1, access=Access.READ_WRITE)
    volatile = model.add_field(register, "VOLATILE", 11, 1, access=Access.VOLATILE_STORE)

    assert store.is_resolvable(model)
    assert not read.is_resolvable(model)
    assert not write.is_resolvable(model)
    assert not read_write.is_resolvable(model)
    # Hardware may write the field at any time
    assert not volatile.is_resolvable(model)


def test_volatile_store_resolvability(model: Model, v):
    register = model.register(0)

    never = model.add_field(register, "NEVER", 8, 1, access=Access.VOLATILE_STORE)
    model.add_hardware_write_entitlements(never)
    assert never.is_resolvable(model)

    sometimes = model.add_field(register, "SOMETIMES", 9, 1, access=Access.VOLATILE_STORE)
    model.add_hardware_write_entitlements(sometimes, [v("F0.A")], [v("F0.B")])
    assert sometimes.is_resolvable(model)

    always = model.add_field(register, "ALWAYS", 10, 1, access=Access.VOLATILE_STORE)
    model.add_hardware_write_entitlements(always, [v("F2.Off")], [v("F2.On")])
    assert not always.is_resolvable(model)
