"""Precision, quantization and optimizer lookup tables.

Pure computation, no I/O.  Unknown tags raise instead of falling back, so a
typo in a request can never silently turn into an FP32 estimate.  The one
FP32 default lives in the workload configs (``DEFAULT_PRECISION``), where a
missing field is filled before any formula runs.
"""

from __future__ import annotations

from enum import Enum

from vram_estimator.errors import InvalidConfiguration, InvalidPrecision, InvalidQuantization


class _CaseInsensitiveEnum(Enum):
    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


class PrecisionType(_CaseInsensitiveEnum):
    FP32 = "FP32"
    FP16 = "FP16"
    BF16 = "BF16"
    FP8 = "FP8"
    INT8 = "INT8"
    INT4 = "INT4"


class QuantizationType(_CaseInsensitiveEnum):
    NONE = "None"
    INT8 = "INT8"
    INT4 = "INT4"
    FP8 = "FP8"


class OptimizerType(_CaseInsensitiveEnum):
    SGD = "SGD"
    ADAM = "Adam"
    ADAMW = "AdamW"


DEFAULT_PRECISION = PrecisionType.FP32

# Optimizer states are kept in FP32 regardless of the training precision.
OPTIMIZER_STATE_PRECISION = PrecisionType.FP32

_BYTES_PER_PARAMETER: dict[PrecisionType, float] = {
    PrecisionType.FP32: 4.0,
    PrecisionType.FP16: 2.0,
    PrecisionType.BF16: 2.0,
    PrecisionType.FP8: 1.0,
    PrecisionType.INT8: 1.0,
    PrecisionType.INT4: 0.5,
}

# Multiplier applied to the base parameter memory.  FP8 halves an FP16
# checkpoint, which is the common case for FP8 serving.
_QUANTIZATION_RATIO: dict[QuantizationType, float] = {
    QuantizationType.NONE: 1.0,
    QuantizationType.INT8: 0.25,
    QuantizationType.INT4: 0.125,
    QuantizationType.FP8: 0.5,
}

# FP32 buffers held per trainable parameter (momentum for SGD, first and
# second moments for the Adam family).
_OPTIMIZER_MOMENTS: dict[OptimizerType, int] = {
    OptimizerType.SGD: 1,
    OptimizerType.ADAM: 2,
    OptimizerType.ADAMW: 2,
}


def parse_precision(tag: PrecisionType | str) -> PrecisionType:
    try:
        return PrecisionType(tag)
    except ValueError:
        raise InvalidPrecision(tag) from None


def parse_quantization(tag: QuantizationType | str | None) -> QuantizationType:
    # JSON null and the literal "None" mean the same thing
    if tag is None:
        return QuantizationType.NONE
    try:
        return QuantizationType(tag)
    except ValueError:
        raise InvalidQuantization(tag) from None


def bytes_per_parameter(precision: PrecisionType | str) -> float:
    """Return the storage size of one parameter at *precision*."""
    return _BYTES_PER_PARAMETER[parse_precision(precision)]


def quantization_ratio(quantization: QuantizationType | str | None) -> float:
    """Return the factor applied to base parameter memory for *quantization*."""
    return _QUANTIZATION_RATIO[parse_quantization(quantization)]


def optimizer_moments(optimizer: OptimizerType | str) -> int:
    """Return the number of FP32 state buffers *optimizer* keeps per parameter."""
    try:
        return _OPTIMIZER_MOMENTS[OptimizerType(optimizer)]
    except ValueError:
        raise InvalidConfiguration(f"Unknown optimizer '{optimizer}'") from None
