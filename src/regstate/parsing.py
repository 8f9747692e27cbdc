# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

"""
Import of device models from CMSIS System View Description (SVD) files, and of entitlement
declarations from JSON-shaped tables.

SVD has no notion of entitlements, so these are declared separately and applied to the imported
model with `apply_entitlements`.
"""

from __future__ import annotations

import dataclasses as dc
import re
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter_ns
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import lxml.etree as ET
from lxml import objectify

import regstate

from .errors import ModelDefinitionError, RegstateParseError
from .model import Access, Field, Model, Peripheral, Register, Variant


@dataclass(frozen=True)
class Options:
    """Options to configure the SVD import behavior."""

    # Access modality given to fields with SVD access 'read-write'.
    # SVD does not distinguish between fields that retain the written value and fields that are
    # separate read and write channels, so this has to be decided by the user.
    read_write_access: Access = Access.STORE

    # Access modality overrides for individual fields.
    # The value should be a dictionary mapping dotted field paths to access modality names,
    # for example {"UART0.STATUS.RXREADY": "volatile-store"}.
    access_overrides: Mapping[str, Access] = dc.field(default_factory=dict)

    # Peripherals to leave out of the model, as a list of peripheral name regex patterns.
    skip_peripherals: Sequence[str] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "read_write_access", Access(self.read_write_access))
        object.__setattr__(
            self,
            "access_overrides",
            {path: Access(access) for path, access in self.access_overrides.items()},
        )
        object.__setattr__(self, "skip_peripherals", tuple(self.skip_peripherals))


def parse(svd_path: Union[str, Path], options: Options = Options()) -> Model:
    """
    Import the device described by a SVD file.

    :param svd_path: Path to the SVD file.
    :param options: Import options.

    :raises FileNotFoundError: If the SVD file does not exist.
    :raises RegstateParseError: If an error occurred while importing the SVD file.

    :return: Model of the device.
    """

    t_parse_start = perf_counter_ns()

    svd_file = Path(svd_path)

    if not svd_file.is_file():
        raise FileNotFoundError(f"No such file: {svd_file.absolute()}")

    try:
        # Note: remove comments as otherwise these are present as nodes in the returned XML tree
        xml_parser = objectify.makeparser(remove_comments=True)

        with open(svd_file, "rb") as f:
            xml_device = objectify.parse(f, parser=xml_parser)

        model = _SvdImporter(options).build(xml_device.getroot())

    except Exception as e:
        raise RegstateParseError(f"Error parsing SVD file {svd_file}") from e

    t_parse = (perf_counter_ns() - t_parse_start) / 1_000_000
    regstate.log.info(f"Imported {svd_file} in {t_parse:.1f} ms")

    return model


def to_int(number: str) -> int:
    """
    Convert a string representation of an integer following the SVD format to its corresponding
    integer representation.

    :param number: String representation of the integer.

    :return: Decoded integer.
    """
    number = number.strip()
    lower = number.lower()

    if lower.startswith("0x"):
        return int(number, base=16)
    if lower.startswith("0b"):
        return int(number[2:], base=2)
    if number.startswith("#"):
        return int(number[1:], base=2)
    return int(number)


def _to_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip() in ("true", "1")


def _docs(element: ET._Element) -> Tuple[str, ...]:
    text = element.findtext("description")
    if not text:
        return ()
    return tuple(line.strip() for line in text.splitlines() if line.strip())


# SVD field access -> model access modality. 'read-write' is decided by the options.
_SVD_ACCESS: Dict[str, Optional[Access]] = {
    "read-only": Access.READ,
    "write-only": Access.WRITE,
    "writeOnce": Access.WRITE,
    "read-write": None,
    "read-writeOnce": None,
}


class _SvdImporter:
    """Builds a model from a parsed SVD document."""

    def __init__(self, options: Options) -> None:
        self._options = options
        self._model = Model()

    def build(self, device: ET._Element) -> Model:
        peripherals: Dict[str, ET._Element] = {}
        for element in device.iterfind("peripherals/peripheral"):
            peripherals[element.findtext("name")] = element

        default_reset = self._opt_int(device.findtext("resetValue"))
        default_access = device.findtext("access")

        for name, element in peripherals.items():
            if any(re.fullmatch(p, name) for p in self._options.skip_peripherals):
                regstate.log.info(f"Skipping peripheral {name}")
                continue

            chain = self._derivation_chain(peripherals, name)

            peripheral = self._model.add_peripheral(
                name,
                to_int(element.findtext("baseAddress")),
                docs=_docs(element) or _docs(chain[-1]),
            )

            # Properties not given on a derived peripheral are taken from its base
            reset = default_reset
            access = default_access
            for source in reversed(chain):
                reset = self._opt_int(source.findtext("resetValue"), reset)
                access = source.findtext("access") or access

            registers = next(
                (s.find("registers") for s in chain if s.find("registers") is not None),
                None,
            )
            if registers is None:
                regstate.log.warning(f"Peripheral {name} has no registers")
                continue

            self._add_registers(peripheral, registers, 0, "", reset, access)

        return self._model

    @staticmethod
    def _derivation_chain(
        peripherals: Mapping[str, ET._Element], name: str
    ) -> List[ET._Element]:
        """
        :return: The peripheral element followed by the elements it derives from, nearest first.
        """
        chain = [peripherals[name]]
        seen = {name}

        while (base := chain[-1].get("derivedFrom")) is not None:
            if base in seen or base not in peripherals:
                raise ValueError(
                    f"Unable to resolve 'derivedFrom' of peripheral {name}. "
                    "This is likely caused either by a cycle in the 'derivedFrom' attributes, "
                    "or a 'derivedFrom' attribute pointing to a nonexistent peripheral."
                )
            seen.add(base)
            chain.append(peripherals[base])

        return chain

    def _add_registers(
        self,
        peripheral: Peripheral,
        parent: ET._Element,
        base_offset: int,
        prefix: str,
        reset: Optional[int],
        access: Optional[str],
    ) -> None:
        """
        Add the registers below a <registers> or <cluster> element.
        Clusters are flattened, with the names of their registers prefixed by the cluster name.
        """
        for element in parent.iterchildren("register", "cluster"):
            element_reset = self._opt_int(element.findtext("resetValue"), reset)
            element_access = element.findtext("access") or access

            for name, offset in _expand_dim(element, base_offset):
                if element.tag == "cluster":
                    self._add_registers(
                        peripheral,
                        element,
                        offset,
                        f"{prefix}{name}_",
                        element_reset,
                        element_access,
                    )
                    continue

                register = self._model.add_register(
                    peripheral,
                    f"{prefix}{name}",
                    offset,
                    reset=element_reset,
                    docs=_docs(element),
                )
                self._add_fields(peripheral, register, element, element_access)

    def _add_fields(
        self,
        peripheral: Peripheral,
        register: Register,
        element: ET._Element,
        access: Optional[str],
    ) -> None:
        for field_element in element.iterfind("fields/field"):
            name = field_element.findtext("name")
            offset, width = _bit_range(field_element)

            path = f"{peripheral.name}.{register.name}.{name}"
            field_access = self._options.access_overrides.get(path)
            if field_access is None:
                field_access = self._map_access(field_element.findtext("access") or access)

            field = self._model.add_field(
                register,
                name,
                offset,
                width,
                access=field_access,
                docs=_docs(field_element),
            )
            self._add_variants(field, field_element)

    def _add_variants(self, field: Field, element: ET._Element) -> None:
        added: Dict[str, Variant] = {}

        for value_element in element.iterfind("enumeratedValues/enumeratedValue"):
            name = value_element.findtext("name")
            value = value_element.findtext("value")
            path = f"{self._model.path_of(field)}.{name}"

            if _to_bool(value_element.findtext("isDefault")) or value is None:
                regstate.log.warning(
                    f"Skipping default enumerated value {path}, which does not map to a "
                    "single state"
                )
                continue

            if "x" in value.lower().removeprefix("0x"):
                regstate.log.warning(
                    f"Skipping enumerated value {path} with don't care bits ({value})"
                )
                continue

            if name in added:
                regstate.log.warning(f"Skipping duplicate enumerated value {path}")
                continue

            added[name] = self._model.add_variant(
                field, name, to_int(value), docs=_docs(value_element)
            )

    def _map_access(self, svd_access: Optional[str]) -> Access:
        if svd_access is None:
            return self._options.read_write_access

        try:
            access = _SVD_ACCESS[svd_access.strip()]
        except KeyError as e:
            raise ValueError(f"Invalid SVD access value '{svd_access}'") from e

        return access if access is not None else self._options.read_write_access

    @staticmethod
    def _opt_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
        return to_int(value) if value is not None else default


def _expand_dim(element: ET._Element, base_offset: int) -> Iterator[Tuple[str, int]]:
    """
    Expand a possibly dimensioned register or cluster element into one name and offset per
    instance.

    :param element: Register or cluster element.
    :param base_offset: Offset of the parent element within the peripheral.
    :return: Iterator over (name, offset) of each instance.
    """
    name = element.findtext("name")
    offset = base_offset + to_int(element.findtext("addressOffset"))

    dim = element.findtext("dim")
    if dim is None:
        yield name, offset
        return

    increment = to_int(element.findtext("dimIncrement"))
    indices = _dim_indices(element.findtext("dimIndex"), to_int(dim))

    for i, index in enumerate(indices):
        instance_name = name.replace("[%s]", index).replace("%s", index)
        yield instance_name, offset + i * increment


def _dim_indices(dim_index: Optional[str], dim: int) -> List[str]:
    """
    :param dim_index: Content of a <dimIndex> element, e.g. "0-3" or "A,B,C", if any.
    :param dim: Number of instances.
    :return: The index string of each instance.
    """
    if dim_index is None:
        return [str(i) for i in range(dim)]

    if (match := re.fullmatch(r"\s*(\d+)\s*-\s*(\d+)\s*", dim_index)) is not None:
        start, end = int(match[1]), int(match[2])
        indices = [str(i) for i in range(start, end + 1)]
    else:
        indices = [i.strip() for i in dim_index.split(",")]

    if len(indices) != dim:
        raise ValueError(
            f"dimIndex '{dim_index}' specifies {len(indices)} indices, but dim is {dim}"
        )

    return indices


def _bit_range(element: ET._Element) -> Tuple[int, int]:
    """
    :param element: Field element.
    :return: Bit offset and bit width of the field.
    """
    if (bit_offset := element.findtext("bitOffset")) is not None:
        bit_width = element.findtext("bitWidth")
        return to_int(bit_offset), to_int(bit_width) if bit_width is not None else 1

    if (lsb := element.findtext("lsb")) is not None:
        msb = to_int(element.findtext("msb"))
        return to_int(lsb), msb - to_int(lsb) + 1

    if (bit_range := element.findtext("bitRange")) is not None:
        match = re.fullmatch(r"\s*\[\s*(\d+)\s*:\s*(\d+)\s*\]\s*", bit_range)
        if match is None:
            raise ValueError(f"Invalid bitRange '{bit_range}'")
        msb, lsb = int(match[1]), int(match[2])
        return lsb, msb - lsb + 1

    raise ValueError(f"Field {element.findtext('name')} has no bit range")


# Entitlement table name -> (accepted element types, registration method)
_ENTITLEMENT_TABLES: Dict[str, Tuple[Tuple[type, ...], Callable[..., None]]] = {
    "ontological": ((Peripheral, Field), Model.add_ontological_entitlements),
    "write": ((Field,), Model.add_write_entitlements),
    "hardware_write": ((Field,), Model.add_hardware_write_entitlements),
    "statewise": ((Variant,), Model.add_statewise_entitlements),
}


def apply_entitlements(
    model: Model, declarations: Mapping[str, Mapping[str, Iterable[Iterable[str]]]]
) -> None:
    """
    Declare entitlements in a model from JSON-shaped tables.

    The declarations contain up to four tables, "ontological", "write", "hardware_write" and
    "statewise". Each table maps the dotted path of an element to a list of patterns, and each
    pattern is a list of dotted variant paths. For example:

        {
            "write": {
                "UART0.CONFIG.PARITY": [["UART0.ENABLE.ENABLE.Disabled"]]
            }
        }

    declares that UART0.CONFIG.PARITY may only be written while UART0.ENABLE.ENABLE is Disabled.
    An empty list of patterns declares a space that can never be satisfied.

    :param model: Model to declare the entitlements in.
    :param declarations: Entitlement tables.

    :raises ValueError: If a table name is not recognized.
    :raises ModelKeyError: If a path does not refer to an element of the model.
    :raises ModelDefinitionError: If a path refers to the wrong kind of element.
    """
    for table_name, table in declarations.items():
        try:
            element_types, register = _ENTITLEMENT_TABLES[table_name]
        except KeyError as e:
            raise ValueError(
                f"Unknown entitlement table '{table_name}', expected one of "
                f"{list(_ENTITLEMENT_TABLES)}"
            ) from e

        for path, patterns in table.items():
            element = model.lookup(path)
            if not isinstance(element, element_types):
                raise ModelDefinitionError(
                    [element], f"{table_name} entitlements cannot be declared on {path}"
                )

            register(model, element, *(_lookup_variants(model, p) for p in patterns))


def _lookup_variants(model: Model, paths: Iterable[str]) -> List[Variant]:
    variants: List[Variant] = []

    for path in paths:
        element = model.lookup(path)
        if not isinstance(element, Variant):
            raise ModelDefinitionError([element], f"{path} is not a variant")
        variants.append(element)

    return variants
