# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from .errors import (
    RegstateError,
    RegstateParseError,
    ModelDefinitionError,
    UnresolvableEntitlementError,
    ModelPathError,
    ModelIndexError,
    ModelKeyError,
    PatternError,
    GateError,
)
from .entitlement import (
    Entitlement,
    EntitlementKey,
    EntitlementKind,
    Pattern,
    Space,
    iter_combinations,
)
from .model import (
    Access,
    Peripheral,
    Register,
    Field,
    Variant,
    Model,
)
from .diagnostic import (
    Rank,
    Kind,
    Context,
    Diagnostic,
    Diagnostics,
)
from .validation import validate_model
from .gate import (
    FieldAccess,
    validate_gate,
    check_gate,
)
from .parsing import (
    parse,
    Options,
    apply_entitlements,
)

import importlib.metadata
import logging

__version__ = importlib.metadata.version("regstate")


def _init_logger() -> logging.Logger:
    formatter = logging.Formatter("{message}", style="{")
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logger = logging.getLogger("regstate")
    logger.setLevel(logging.ERROR)
    logger.addHandler(handler)

    return logger


# logging.Logger instance used for log output from regstate
log = _init_logger()

__all__ = [
    # from errors
    "RegstateError",
    "RegstateParseError",
    "ModelDefinitionError",
    "UnresolvableEntitlementError",
    "ModelPathError",
    "ModelIndexError",
    "ModelKeyError",
    "PatternError",
    "GateError",
    # from entitlement
    "Entitlement",
    "EntitlementKey",
    "EntitlementKind",
    "Pattern",
    "Space",
    "iter_combinations",
    # from model
    "Access",
    "Peripheral",
    "Register",
    "Field",
    "Variant",
    "Model",
    # from diagnostic
    "Rank",
    "Kind",
    "Context",
    "Diagnostic",
    "Diagnostics",
    # from validation
    "validate_model",
    # from gate
    "FieldAccess",
    "validate_gate",
    "check_gate",
    # from parsing
    "parse",
    "Options",
    "apply_entitlements",
    # other
    "log",
    "__version__",
]
