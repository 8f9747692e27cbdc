# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

from regstate import Model, Variant


@pytest.fixture
def model() -> Model:
    """
    Small model with one register holding three store fields:
    F0 (A, B, C), F1 (X, Y, Zero) and F2 (Off, On).
    """
    model = Model()

    peripheral = model.add_peripheral("P", 0x4000_0000)
    register = model.add_register(peripheral, "R", 0x0, reset=0)

    f0 = model.add_field(register, "F0", 0, 2)
    model.add_variant(f0, "A", 0)
    model.add_variant(f0, "B", 1)
    model.add_variant(f0, "C", 2)

    f1 = model.add_field(register, "F1", 2, 2)
    model.add_variant(f1, "X", 0)
    model.add_variant(f1, "Y", 1)
    model.add_variant(f1, "Zero", 2)

    f2 = model.add_field(register, "F2", 4, 1)
    model.add_variant(f2, "Off", 0)
    model.add_variant(f2, "On", 1)

    return model


@pytest.fixture
def v(model: Model) -> Callable[[str], Variant]:
    """Look up an element of the register in the model fixture, e.g. v("F0.A")."""

    def lookup(path: str):
        return model.lookup(f"P.R.{path}")

    return lookup


SVD = """\
<?xml version="1.0" encoding="utf-8"?>
<device schemaVersion="1.3">
  <name>TEST</name>
  <!-- device level defaults -->
  <resetValue>0x00000000</resetValue>
  <peripherals>
    <peripheral>
      <name>UART0</name>
      <description>Universal asynchronous
        receiver/transmitter</description>
      <baseAddress>0x40000000</baseAddress>
      <registers>
        <register>
          <name>ENABLE</name>
          <addressOffset>0x000</addressOffset>
          <fields>
            <field>
              <name>ENABLE</name>
              <bitOffset>0</bitOffset>
              <bitWidth>1</bitWidth>
              <enumeratedValues>
                <enumeratedValue><name>Disabled</name><value>0</value></enumeratedValue>
                <enumeratedValue><name>Enabled</name><value>1</value></enumeratedValue>
              </enumeratedValues>
            </field>
          </fields>
        </register>
        <register>
          <name>CONFIG</name>
          <addressOffset>0x004</addressOffset>
          <resetValue>0x00000002</resetValue>
          <fields>
            <field>
              <name>PARITY</name>
              <lsb>1</lsb>
              <msb>2</msb>
              <enumeratedValues>
                <enumeratedValue><name>None</name><value>#00</value></enumeratedValue>
                <enumeratedValue><name>Even</name><value>0x1</value></enumeratedValue>
                <enumeratedValue><name>Odd</name><value>2</value></enumeratedValue>
                <enumeratedValue><name>Any</name><isDefault>true</isDefault></enumeratedValue>
                <enumeratedValue><name>Masked</name><value>#1x</value></enumeratedValue>
              </enumeratedValues>
            </field>
            <field>
              <name>STOP</name>
              <bitRange>[3:3]</bitRange>
              <access>read-only</access>
            </field>
          </fields>
        </register>
        <cluster>
          <name>PSEL</name>
          <addressOffset>0x010</addressOffset>
          <register>
            <dim>2</dim>
            <dimIncrement>0x4</dimIncrement>
            <name>PIN[%s]</name>
            <addressOffset>0x0</addressOffset>
            <fields>
              <field>
                <name>PIN</name>
                <bitOffset>0</bitOffset>
                <bitWidth>5</bitWidth>
                <access>write-only</access>
              </field>
            </fields>
          </register>
        </cluster>
        <register>
          <dim>2</dim>
          <dimIncrement>0x4</dimIncrement>
          <dimIndex>RX,TX</dimIndex>
          <name>BUF_%s</name>
          <addressOffset>0x020</addressOffset>
        </register>
      </registers>
    </peripheral>
    <peripheral derivedFrom="UART0">
      <name>UART1</name>
      <baseAddress>0x40001000</baseAddress>
    </peripheral>
  </peripherals>
</device>
"""

ENTITLEMENTS = {
    "write": {
        "UART0.CONFIG.PARITY": [["UART0.ENABLE.ENABLE.Disabled"]],
    },
    "statewise": {
        "UART0.CONFIG.PARITY.Odd": [
            ["UART0.ENABLE.ENABLE.Disabled"],
            ["UART1.ENABLE.ENABLE.Enabled"],
        ],
    },
}


@pytest.fixture
def svd_file(tmp_path: Path) -> Path:
    """SVD file with a peripheral, a derived peripheral, a cluster and register arrays."""
    path = tmp_path / "test.svd"
    path.write_text(SVD, encoding="utf-8")
    return path


@pytest.fixture
def entitlements() -> Dict[str, Any]:
    """Entitlement tables for the peripherals in the SVD file fixture."""
    return copy.deepcopy(ENTITLEMENTS)
