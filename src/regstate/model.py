# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
In-memory representation of a device: peripherals, registers, fields and variants, together with
the entitlement spaces attached to them.

Every element is an immutable record referenced by a stable integer index. Each kind of element
is indexed independently, in registration order. The model is populated once and is then
treated as read-only by the validation passes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from typing_extensions import Self

import regstate

from .entitlement import (
    Entitlement,
    EntitlementKey,
    EntitlementKind,
    EntitlementLike,
    Pattern,
    Space,
)
from .errors import (
    ModelDefinitionError,
    ModelIndexError,
    ModelKeyError,
    UnresolvableEntitlementError,
)

if TYPE_CHECKING:
    from .diagnostic import Diagnostics


@enum.unique
class Access(enum.Enum):
    """
    Access modality of a field.

    | Name           | Software access | Hardware access |
    | -------------- | --------------- | --------------- |
    | READ           | read            | write           |
    | WRITE          | write           | read            |
    | READ_WRITE     | read/write      | read/write      |
    | STORE          | read/write      | read            |
    | VOLATILE_STORE | read/write      | read/write      |

    READ_WRITE fields behave as two independent channels, so the value written is not the value
    read back. STORE fields retain what software writes, so their state can be statically
    tracked. VOLATILE_STORE fields retain what software writes unless hardware writes them.
    """

    READ = "read"
    WRITE = "write"
    READ_WRITE = "read-write"
    STORE = "store"
    VOLATILE_STORE = "volatile-store"

    @classmethod
    def _missing_(cls, value: object) -> Optional[Self]:
        """Handler for string values with mismatched case or underscores."""
        if not isinstance(value, str):
            return None

        normalized = value.lower().replace("_", "-")
        for member in cls:
            if member.value == normalized:
                return member

        return None

    @property
    def is_read(self) -> bool:
        """True if software can read the field."""
        return self is not Access.WRITE

    @property
    def is_write(self) -> bool:
        """True if software can write the field."""
        return self is not Access.READ

    @property
    def is_store(self) -> bool:
        """True if values written by software persist in the field."""
        return self in (Access.STORE, Access.VOLATILE_STORE)


@dataclass(frozen=True)
class Peripheral:
    """A peripheral at a fixed base address."""

    index: int
    name: str
    base_address: int
    docs: Tuple[str, ...] = ()

    def __repr__(self) -> str:
        return element_repr(self.__class__, self.name, address=self.base_address)


@dataclass(frozen=True)
class Register:
    """A 32-bit register at an offset within its peripheral."""

    index: int
    parent: int
    name: str
    offset: int
    reset: Optional[int] = None
    docs: Tuple[str, ...] = ()

    def __repr__(self) -> str:
        return element_repr(
            self.__class__, self.name, offset=self.offset, content=self.reset
        )


@dataclass(frozen=True)
class Field:
    """
    A bit range within a register.

    A field with no variants is numeric; a field with at least one variant is enumerated and its
    state is always exactly one of its variants.
    """

    index: int
    parent: int
    name: str
    offset: int
    width: int
    access: Access = Access.STORE
    docs: Tuple[str, ...] = ()

    @property
    def mask(self) -> int:
        """Bitmask of the field within the register."""
        return ((1 << self.width) - 1) << self.offset

    @property
    def domain(self) -> range:
        """Bit positions the field occupies within the register."""
        return range(self.offset, self.offset + self.width)

    def get_reset(self, register_reset: int) -> int:
        """
        :param register_reset: Reset value of the parent register.
        :return: Reset value of the field.
        """
        return (register_reset & self.mask) >> self.offset

    def is_resolvable(self, model: Model) -> bool:
        """
        Determine whether the state of the field can be statically tracked.

        STORE fields are always resolvable. VOLATILE_STORE fields are resolvable only if there is
        some state in which hardware does not have write access, i.e. the hardware write
        entitlements do not cover every variant of the fields they name.
        """
        if self.access is Access.STORE:
            return True

        if self.access is not Access.VOLATILE_STORE:
            return False

        space = model.hardware_write_entitlements(self)
        if space is None:
            # Hardware may write the field at any time
            return False

        if len(space) == 0:
            # A declared empty space makes hardware writes impossible, so every state of
            # the field is one where hardware does not have write access
            return True

        entitled: Dict[int, Set[Entitlement]] = {}
        for entitlement in space.entitlements():
            entitled.setdefault(entitlement.field(model).index, set()).add(entitlement)

        for field_index, entitlements in entitled.items():
            total = {
                Entitlement(v.index) for v in model.variants_of(model.field(field_index))
            }
            if total - entitlements:
                return True

        return False

    def __repr__(self) -> str:
        return element_repr(
            self.__class__,
            self.name,
            kv_props={"bits": f"{self.offset}..{self.offset + self.width - 1}"},
            bool_props=(self.access.value,),
        )


@dataclass(frozen=True)
class Variant:
    """A named state of an enumerated field."""

    index: int
    parent: int
    name: str
    bits: int
    inert: bool = False
    docs: Tuple[str, ...] = ()

    def entitlement(self) -> Entitlement:
        """Entitlement requiring the parent field to inhabit this variant."""
        return Entitlement(self.index)

    def __repr__(self) -> str:
        bool_props = ("inert",) if self.inert else ()
        return element_repr(
            self.__class__, self.name, content=self.bits, bool_props=bool_props
        )


# Any of the model element records
Element = Union[Peripheral, Register, Field, Variant]

ElementT = TypeVar("ElementT", Peripheral, Register, Field, Variant)


class Model:
    """
    Registry of device elements and the entitlement store.

    Elements are added with the `add_*` methods, which return the new immutable record.
    Entitlement spaces are registered per `EntitlementKey`.
    """

    def __init__(self) -> None:
        self._peripherals: List[Peripheral] = []
        self._registers: List[Register] = []
        self._fields: List[Field] = []
        self._variants: List[Variant] = []

        # Child name -> child index, for each parent
        self._peripheral_names: Dict[str, int] = {}
        self._register_names: List[Dict[str, int]] = []
        self._field_names: List[Dict[str, int]] = []
        self._variant_names: List[Dict[str, int]] = []

        # Declared patterns, in declaration order
        self._entitlements: Dict[EntitlementKey, List[Tuple[Entitlement, ...]]] = {}
        self._spaces: Dict[EntitlementKey, Space] = {}

    def add_peripheral(
        self, name: str, base_address: int, *, docs: Iterable[str] = ()
    ) -> Peripheral:
        """
        Add a peripheral to the model.

        :param name: Peripheral name, unique within the model.
        :param base_address: Base address of the peripheral.
        :param docs: Documentation lines.
        :return: The peripheral record.
        """
        peripheral = Peripheral(
            index=len(self._peripherals),
            name=name,
            base_address=base_address,
            docs=tuple(docs),
        )
        self._add_child(self._peripheral_names, peripheral, self)
        self._peripherals.append(peripheral)
        self._register_names.append({})

        return peripheral

    def add_register(
        self,
        peripheral: Peripheral,
        name: str,
        offset: int,
        *,
        reset: Optional[int] = None,
        docs: Iterable[str] = (),
    ) -> Register:
        """
        Add a register to a peripheral.

        :param peripheral: Parent peripheral.
        :param name: Register name, unique within the peripheral.
        :param offset: Offset of the register from the peripheral base address.
        :param reset: Reset value of the register, if known.
        :param docs: Documentation lines.
        :return: The register record.
        """
        self._check_owned(peripheral, self._peripherals)

        register = Register(
            index=len(self._registers),
            parent=peripheral.index,
            name=name,
            offset=offset,
            reset=reset,
            docs=tuple(docs),
        )
        self._add_child(self._register_names[peripheral.index], register, peripheral)
        self._registers.append(register)
        self._field_names.append({})

        return register

    def add_field(
        self,
        register: Register,
        name: str,
        offset: int,
        width: int,
        *,
        access: Access = Access.STORE,
        docs: Iterable[str] = (),
    ) -> Field:
        """
        Add a field to a register.

        :param register: Parent register.
        :param name: Field name, unique within the register.
        :param offset: Bit offset of the field within the register.
        :param width: Bit width of the field.
        :param access: Access modality of the field.
        :param docs: Documentation lines.
        :return: The field record.
        """
        self._check_owned(register, self._registers)

        field = Field(
            index=len(self._fields),
            parent=register.index,
            name=name,
            offset=offset,
            width=width,
            access=Access(access),
            docs=tuple(docs),
        )

        if width <= 0 or offset < 0:
            raise ModelDefinitionError(
                [register, field], "Field offset must be non-negative and width positive"
            )

        self._add_child(self._field_names[register.index], field, register)
        self._fields.append(field)
        self._variant_names.append({})

        return field

    def add_variant(
        self,
        field: Field,
        name: str,
        bits: int,
        *,
        inert: bool = False,
        docs: Iterable[str] = (),
    ) -> Variant:
        """
        Add a variant to a field, making the field enumerated.

        :param field: Parent field.
        :param name: Variant name, unique within the field.
        :param bits: Value of the field when it inhabits the variant.
        :param inert: True if writing the variant has no effect on the hardware.
        :param docs: Documentation lines.
        :return: The variant record.
        """
        self._check_owned(field, self._fields)

        variant = Variant(
            index=len(self._variants),
            parent=field.index,
            name=name,
            bits=bits,
            inert=inert,
            docs=tuple(docs),
        )
        self._add_child(self._variant_names[field.index], variant, field)
        self._variants.append(variant)

        return variant

    @property
    def peripherals(self) -> Sequence[Peripheral]:
        """Peripherals in registration order."""
        return tuple(self._peripherals)

    def peripheral(self, index: int) -> Peripheral:
        return self._get(self._peripherals, index, "peripheral")

    def register(self, index: int) -> Register:
        return self._get(self._registers, index, "register")

    def field(self, index: int) -> Field:
        return self._get(self._fields, index, "field")

    def variant(self, index: int) -> Variant:
        return self._get(self._variants, index, "variant")

    def registers_of(self, peripheral: Peripheral) -> Sequence[Register]:
        """Registers of the peripheral in registration order."""
        return tuple(
            self._registers[i] for i in self._register_names[peripheral.index].values()
        )

    def fields_of(self, register: Register) -> Sequence[Field]:
        """Fields of the register in registration order."""
        return tuple(self._fields[i] for i in self._field_names[register.index].values())

    def variants_of(self, field: Field) -> Sequence[Variant]:
        """Variants of the field in registration order. Empty for numeric fields."""
        return tuple(
            self._variants[i] for i in self._variant_names[field.index].values()
        )

    def parents_of(self, field: Field) -> Tuple[Peripheral, Register]:
        """The register containing the field, and the peripheral containing that register."""
        register = self.register(field.parent)
        return self.peripheral(register.parent), register

    def lookup(self, path: str) -> Element:
        """
        Look up an element by dotted name path, e.g. "UART0.CONFIG.PARITY.Even".

        :param path: Path of one to four names (peripheral, register, field, variant).
        :raises ModelKeyError: If no element exists at the path.
        :return: The element.
        """
        parts = path.split(".")
        if not 1 <= len(parts) <= 4:
            raise ModelKeyError(path, self, "expected between one and four path segments")

        tables: List[Mapping[str, int]] = [self._peripheral_names]
        storages: List[Sequence[Any]] = [
            self._peripherals,
            self._registers,
            self._fields,
            self._variants,
        ]
        children: List[List[Dict[str, int]]] = [
            self._register_names,
            self._field_names,
            self._variant_names,
        ]

        element: Any = self
        for depth, name in enumerate(parts):
            try:
                index = tables[-1][name]
            except KeyError as e:
                raise ModelKeyError(path, element, f"no element named '{name}'") from e

            element = storages[depth][index]
            if depth < len(children):
                tables.append(children[depth][index])

        return element

    def path_of(self, element: Element) -> str:
        """:return: Dotted name path of the element."""
        parts: List[str] = []
        current: Any = element

        while True:
            parts.append(current.name)
            if isinstance(current, Variant):
                current = self.field(current.parent)
            elif isinstance(current, Field):
                current = self.register(current.parent)
            elif isinstance(current, Register):
                current = self.peripheral(current.parent)
            else:
                break

        return ".".join(reversed(parts))

    def register_entitlements(
        self, key: EntitlementKey, *patterns: Iterable[EntitlementLike]
    ) -> None:
        """
        Declare entitlement patterns at a key. Each pattern is given as an iterable of
        entitlements (or variants). Declaring patterns at a key that already has some extends
        its space. Declaring zero patterns at a key with no space makes the space empty, meaning
        that it can never be satisfied.

        :param key: Entitlement store key.
        :param patterns: Patterns of the space.

        :raises ModelDefinitionError: If the key does not accept entitlements.
        :raises UnresolvableEntitlementError: If an entitlement targets an untrackable field.
        """
        owner = self._key_owner(key)

        declared: List[Tuple[Entitlement, ...]] = []
        for pattern in patterns:
            group = tuple(Entitlement.of(item) for item in pattern)
            for entitlement in group:
                target = self._get(self._variants, entitlement.index, "variant")
                field = self._fields[target.parent]
                if not field.access.is_store:
                    raise UnresolvableEntitlementError(target, field)
            declared.append(group)

        self._entitlements.setdefault(key, []).extend(declared)
        self._spaces.pop(key, None)

        regstate.log.debug(
            f"Registered {len(declared)} {key.kind.value} entitlement pattern(s) "
            f"for {owner!r}"
        )

    def add_ontological_entitlements(
        self, element: Union[Peripheral, Field], *patterns: Iterable[EntitlementLike]
    ) -> None:
        """Declare which states must hold for the peripheral or field to exist."""
        self.register_entitlements(EntitlementKey.ontological(element), *patterns)

    def add_write_entitlements(
        self, field: Field, *patterns: Iterable[EntitlementLike]
    ) -> None:
        """Declare which states must hold to permit writing the field."""
        self.register_entitlements(EntitlementKey.write(field), *patterns)

    def add_hardware_write_entitlements(
        self, field: Field, *patterns: Iterable[EntitlementLike]
    ) -> None:
        """Declare which states must hold for hardware to be able to write the field."""
        self.register_entitlements(EntitlementKey.hardware_write(field), *patterns)

    def add_statewise_entitlements(
        self, variant: Variant, *patterns: Iterable[EntitlementLike]
    ) -> None:
        """Declare which states must hold in other fields while the variant is active."""
        self.register_entitlements(EntitlementKey.statewise(variant), *patterns)

    def entitlements_for(self, key: EntitlementKey) -> Optional[Space]:
        """
        Look up the entitlement space at a key.

        :param key: Entitlement store key.
        :return: The space, or None if nothing was declared at the key. None means that the
            element is unconstrained, while an empty space means it can never be satisfied.
        """
        groups = self._entitlements.get(key)
        if groups is None:
            return None

        space = self._spaces.get(key)
        if space is None:
            space = Space(Pattern.unchecked(self, group) for group in groups)
            self._spaces[key] = space

        return space

    def declared_entitlements(self, key: EntitlementKey) -> Sequence[Tuple[Entitlement, ...]]:
        """The patterns declared at a key, in declaration order and before any reduction."""
        return tuple(self._entitlements.get(key, ()))

    def entitlement_keys(self) -> Sequence[EntitlementKey]:
        """Keys with declared entitlements, in declaration order."""
        return tuple(self._entitlements)

    def key_owner(self, key: EntitlementKey) -> Element:
        """:return: The element an entitlement key refers to."""
        return self._key_owner(key)

    def ontological_entitlements(
        self, element: Union[Peripheral, Field]
    ) -> Optional[Space]:
        return self.entitlements_for(EntitlementKey.ontological(element))

    def write_entitlements(self, field: Field) -> Optional[Space]:
        return self.entitlements_for(EntitlementKey.write(field))

    def hardware_write_entitlements(self, field: Field) -> Optional[Space]:
        return self.entitlements_for(EntitlementKey.hardware_write(field))

    def statewise_entitlements(self, variant: Variant) -> Optional[Space]:
        return self.entitlements_for(EntitlementKey.statewise(variant))

    def validate(self) -> Diagnostics:
        """
        Validate the model. See `regstate.validation.validate_model`.

        :return: Every problem found in the model.
        """
        from .validation import validate_model

        return validate_model(self)

    def _key_owner(self, key: EntitlementKey) -> Element:
        if key.kind is EntitlementKind.PERIPHERAL:
            return self.peripheral(key.index)

        if key.kind is EntitlementKind.VARIANT:
            return self.variant(key.index)

        field = self.field(key.index)

        if key.kind is EntitlementKind.WRITE and not field.access.is_write:
            raise ModelDefinitionError(
                [field], "Write entitlements can only be declared on writable fields"
            )

        if (
            key.kind is EntitlementKind.HARDWARE_WRITE
            and field.access is not Access.VOLATILE_STORE
        ):
            raise ModelDefinitionError(
                [field],
                "Hardware write entitlements can only be declared on volatile store fields",
            )

        return field

    def _get(self, storage: Sequence[ElementT], index: int, kind: str) -> ElementT:
        if not 0 <= index < len(storage):
            raise ModelIndexError(index, self, f"no {kind} with this index")
        return storage[index]

    def _check_owned(self, element: Element, storage: Sequence[Element]) -> None:
        if not 0 <= element.index < len(storage) or storage[element.index] != element:
            raise ModelIndexError(element.index, self, f"{element!r} is not part of the model")

    def _add_child(self, table: Dict[str, int], element: Element, parent: Any) -> None:
        if element.name in table:
            raise ModelDefinitionError(
                [parent, element], f"{parent!s} already contains an element named '{element.name}'"
            )
        table[element.name] = element.index

    def __str__(self) -> str:
        return "model"

    def __repr__(self) -> str:
        return element_repr(self.__class__, "model", length=len(self._peripherals))


def element_repr(
    klass: type,
    name: str,
    /,
    *,
    address: Optional[int] = None,
    offset: Optional[int] = None,
    length: Optional[int] = None,
    content: Optional[int] = None,
    bool_props: Iterable[Any] = (),
    kv_props: Mapping[Any, Any] = MappingProxyType({}),
) -> str:
    """
    Common pretty print function for model elements.

    :param klass: Class of the element.
    :param name: Name of the element.
    :param address: Absolute address of the element.
    :param offset: Offset of the element within its parent.
    :param length: Number of children of the element.
    :param content: Value of the element.
    :param bool_props: Additional arguments to include in the pretty print.
    :param kv_props: Additional keyword arguments to include in the pretty print.

    :return: Pretty printed string representing the element.
    """

    length_str = f"<{length}>" if length is not None else ""
    address_str = f" @ 0x{address:08x}" if address is not None else ""
    offset_str = f" @ +0x{offset:x}" if offset is not None else ""
    value_str = f" = 0x{content:x}" if content is not None else ""

    props = [f"{v!s}" for v in bool_props]
    props.extend(f"{k}: {v!s}" for k, v in kv_props.items())
    props_str = f" ({', '.join(props)})" if props else ""

    return (
        f"[{name}{length_str}{address_str}{offset_str}{value_str}{props_str} "
        f"{{{klass.__name__}}}]"
    )
