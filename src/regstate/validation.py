# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
Model validation.

Checks the physical layout of the model (alignment, overlap, value domains, reset values) and the
logical consistency of its entitlement spaces. Every problem is reported, so that a single run
lists everything that needs fixing in the model.
"""

from __future__ import annotations

from itertools import pairwise
from typing import List

import regstate

from .diagnostic import Context, Diagnostic, Diagnostics
from .entitlement import Pattern
from .model import Access, Field, Model, Peripheral, Register

# Identifiers the accessor code generation reserves for its own use
RESERVED_FIELD_NAMES = ("reset", "_new_state", "_old_state")
RESERVED_VARIANT_NAMES = ("variant", "generic", "preserve", "dynamic")

# Size of a register in bytes
REGISTER_SIZE = 4


def validate_model(model: Model) -> Diagnostics:
    """
    Validate a model.

    :param model: Model to validate.
    :return: Every problem found in the model.
    """
    diagnostics = Diagnostics()

    peripherals = sorted(model.peripherals, key=lambda p: p.base_address)

    for lhs, rhs in pairwise(peripherals):
        lhs_end = lhs.base_address + _peripheral_width(model, lhs)
        if lhs_end > rhs.base_address:
            diagnostics.insert(
                Diagnostic.overlap(
                    lhs.name,
                    rhs.name,
                    f"0x{rhs.base_address:08x}...0x{lhs_end - REGISTER_SIZE:08x}",
                    Context(),
                )
            )

    for peripheral in peripherals:
        diagnostics.extend(_validate_peripheral(model, peripheral))

    diagnostics.extend(_validate_entitlements(model))

    regstate.log.info(
        f"Model validation emitted {len(diagnostics.warnings)} warnings "
        f"and {len(diagnostics.errors)} errors"
    )

    return diagnostics


def _peripheral_width(model: Model, peripheral: Peripheral) -> int:
    """Number of bytes spanned by the registers of the peripheral."""
    offsets = [register.offset for register in model.registers_of(peripheral)]
    return max(offsets) + REGISTER_SIZE if offsets else 0


def _validate_peripheral(model: Model, peripheral: Peripheral) -> Diagnostics:
    diagnostics = Diagnostics()
    context = Context.of(model, peripheral)

    if peripheral.base_address % REGISTER_SIZE != 0:
        diagnostics.insert(Diagnostic.address_unaligned(peripheral.base_address, context))

    registers = sorted(model.registers_of(peripheral), key=lambda r: r.offset)

    for lhs, rhs in pairwise(registers):
        if lhs.offset + REGISTER_SIZE > rhs.offset:
            diagnostics.insert(
                Diagnostic.overlap(
                    lhs.name,
                    rhs.name,
                    f"0x{rhs.offset:x}...0x{lhs.offset + REGISTER_SIZE - 1:x}",
                    context,
                )
            )

    for register in registers:
        diagnostics.extend(_validate_register(model, peripheral, register))

    return diagnostics


def _validate_register(
    model: Model, peripheral: Peripheral, register: Register
) -> Diagnostics:
    diagnostics = Diagnostics()
    context = Context.of(model, register)

    if register.offset % REGISTER_SIZE != 0:
        diagnostics.insert(
            Diagnostic.address_unaligned(
                peripheral.base_address + register.offset, context
            ).with_notes(f"register offset is specified as 0x{register.offset:x}")
        )

    fields = sorted(model.fields_of(register), key=lambda f: f.offset)

    for i, field in enumerate(fields):
        for other in fields[i + 1 :]:
            if field.offset + field.width <= other.offset:
                break

            if _mutually_exclusive(model, field, other):
                continue

            diagnostics.insert(
                Diagnostic.overlap(
                    field.name,
                    other.name,
                    f"{max(field.offset, other.offset)}..."
                    f"{min(field.domain.stop, other.domain.stop) - 1}",
                    context,
                )
            )

    for field in fields:
        if field.domain.stop > REGISTER_SIZE * 8:
            diagnostics.insert(
                Diagnostic.exceeds_domain(
                    field.name,
                    f"{field.domain.start}...{field.domain.stop - 1}",
                    f"0...{REGISTER_SIZE * 8 - 1}",
                    context,
                )
            )

    resolvable = [field for field in fields if field.is_resolvable(model)]

    if register.reset is not None:
        for field in resolvable:
            variants = model.variants_of(field)
            if not variants:
                continue

            field_reset = field.get_reset(register.reset)
            if any(variant.bits == field_reset for variant in variants):
                continue

            diagnostics.insert(
                Diagnostic.invalid_reset(
                    field, variants, field_reset, register.reset, context
                )
            )
    elif resolvable:
        diagnostics.insert(Diagnostic.expected_reset(resolvable, context))

    for field in fields:
        diagnostics.extend(_validate_field(model, field))

    return diagnostics


def _mutually_exclusive(model: Model, lhs: Field, rhs: Field) -> bool:
    """
    Overlapping fields are permitted when they can never exist at the same time,
    i.e. their ontological entitlement spaces contradict each other.
    """
    lhs_space = model.ontological_entitlements(lhs)
    rhs_space = model.ontological_entitlements(rhs)

    if lhs_space is None or rhs_space is None:
        return False

    return lhs_space.contradicts(model, rhs_space)


def _validate_field(model: Model, field: Field) -> Diagnostics:
    diagnostics = Diagnostics()
    context = Context.of(model, field)

    variants = sorted(model.variants_of(field), key=lambda v: v.bits)
    variant_limit = (1 << field.width) - 1

    for variant in variants:
        if variant.bits > variant_limit:
            diagnostics.insert(
                Diagnostic.exceeds_domain(
                    variant.name, variant.bits, f"...0x{variant_limit:x}", context
                )
            )

        if variant.name.lower() in RESERVED_VARIANT_NAMES:
            diagnostics.insert(
                Diagnostic.reserved(
                    variant.name, RESERVED_VARIANT_NAMES, context.child(variant.name)
                )
            )

    for lhs, rhs in pairwise(variants):
        if lhs.bits == rhs.bits:
            diagnostics.insert(Diagnostic.overlap(lhs.name, rhs.name, lhs.bits, context))

    if field.access is Access.READ and any(variant.inert for variant in variants):
        diagnostics.insert(Diagnostic.read_cannot_be_inert(context))

    if field.name.lower() in RESERVED_FIELD_NAMES:
        diagnostics.insert(Diagnostic.reserved(field.name, RESERVED_FIELD_NAMES, context))

    return diagnostics


def _validate_entitlements(model: Model) -> Diagnostics:
    """
    Check that every entitlement targets a resolvable field and that every declared pattern
    can be satisfied.
    """
    diagnostics = Diagnostics()

    for key in model.entitlement_keys():
        context = Context.of(model, model.key_owner(key))
        kind = key.kind.value
        declared = model.declared_entitlements(key)

        if not declared:
            diagnostics.insert(Diagnostic.empty_space(kind, context))
            continue

        invalid: List[Pattern] = []

        for group in declared:
            resolvable = True

            for entitlement in group:
                field = entitlement.field(model)
                if not field.is_resolvable(model):
                    resolvable = False
                    diagnostics.insert(
                        Diagnostic.unresolvable(model, entitlement, field, context)
                    )

            if not resolvable:
                continue

            pattern = Pattern.unchecked(model, group)
            if pattern not in invalid and not pattern.is_valid(model):
                invalid.append(pattern)
                diagnostics.insert(
                    Diagnostic.invalid_pattern(model, pattern, kind, context)
                )

    return diagnostics
