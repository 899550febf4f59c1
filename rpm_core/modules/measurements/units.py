"""
Canonical units and conversions.

Every measurement is stored in exactly one unit per type; conversion happens at
ingestion and never afterwards. Device vendors deliver scaled integers that are
decoded through ``VENDOR_CODE_TABLE`` before the same canonical conversion.
"""

from dataclasses import dataclass
from typing import Callable

from rpm_core.modules.measurements.models import MeasurementType
from rpm_core.shared.exceptions import UnsupportedUnit, ValidationError

KG_PER_POUND = 0.453592

CANONICAL_UNITS: dict[MeasurementType, str] = {
    MeasurementType.WEIGHT: "kg",
    MeasurementType.BP_SYSTOLIC: "mmHg",
    MeasurementType.BP_DIASTOLIC: "mmHg",
    MeasurementType.SPO2: "%",
    MeasurementType.HEART_RATE: "bpm",
    MeasurementType.FAT_FREE_MASS: "kg",
    MeasurementType.FAT_RATIO: "%",
    MeasurementType.FAT_MASS: "kg",
    MeasurementType.MUSCLE_MASS: "kg",
    MeasurementType.HYDRATION: "kg",
    MeasurementType.BONE_MASS: "kg",
    MeasurementType.PULSE_WAVE_VELOCITY: "m/s",
}

ConversionFn = Callable[[float], float]


def _identity(value: float) -> float:
    return value


_MASS: dict[str, ConversionFn] = {
    "kg": _identity,
    "lbs": lambda v: v * KG_PER_POUND,
    "lb": lambda v: v * KG_PER_POUND,
    "pounds": lambda v: v * KG_PER_POUND,
    "g": lambda v: v / 1000,
}
_PRESSURE: dict[str, ConversionFn] = {"mmhg": _identity}
_PERCENT: dict[str, ConversionFn] = {"%": _identity, "percent": _identity}
_RATE: dict[str, ConversionFn] = {"bpm": _identity, "beats/min": _identity}
_VELOCITY: dict[str, ConversionFn] = {"m/s": _identity}

# Keys are lower-cased input units
CONVERSIONS: dict[MeasurementType, dict[str, ConversionFn]] = {
    MeasurementType.WEIGHT: _MASS,
    MeasurementType.BP_SYSTOLIC: _PRESSURE,
    MeasurementType.BP_DIASTOLIC: _PRESSURE,
    MeasurementType.SPO2: _PERCENT,
    MeasurementType.HEART_RATE: _RATE,
    MeasurementType.FAT_FREE_MASS: _MASS,
    MeasurementType.FAT_RATIO: _PERCENT,
    MeasurementType.FAT_MASS: _MASS,
    MeasurementType.MUSCLE_MASS: _MASS,
    MeasurementType.HYDRATION: _MASS,
    MeasurementType.BONE_MASS: _MASS,
    MeasurementType.PULSE_WAVE_VELOCITY: _VELOCITY,
}

DISPLAY_CONVERSIONS: dict[str, ConversionFn] = {
    "lbs": lambda v: v / KG_PER_POUND,
    "lb": lambda v: v / KG_PER_POUND,
}


@dataclass(frozen=True)
class CanonicalValue:
    value: float
    unit: str
    # Original unit when it differed from canonical; kept for audit only
    input_unit: str | None = None


def accepted_units(measurement_type: MeasurementType) -> list[str]:
    return sorted(CONVERSIONS.get(measurement_type, {}))


def to_canonical(
    measurement_type: MeasurementType, value: float, unit: str
) -> CanonicalValue:
    """Convert `value` expressed in `unit` to the canonical unit for the type."""
    normalized = unit.strip().lower()
    converter = CONVERSIONS.get(measurement_type, {}).get(normalized)
    if converter is None:
        raise UnsupportedUnit(
            measurement_type.value, unit, accepted_units(measurement_type)
        )

    canonical_unit = CANONICAL_UNITS[measurement_type]
    input_unit = None if normalized == canonical_unit.lower() else unit.strip()
    return CanonicalValue(
        value=round(converter(float(value)), 4),
        unit=canonical_unit,
        input_unit=input_unit,
    )


def display_unit_for(measurement_type: MeasurementType, requested: str | None) -> str:
    """Unit that `from_canonical` will actually produce for `requested`."""
    canonical = CANONICAL_UNITS[measurement_type]
    if requested and canonical == "kg" and requested.strip().lower() in DISPLAY_CONVERSIONS:
        return requested.strip().lower()
    return canonical


def from_canonical(
    measurement_type: MeasurementType, value: float, display_unit: str | None
) -> float:
    """Convert a stored value to a display unit; unknown display units pass through."""
    if not display_unit:
        return value
    if CANONICAL_UNITS[measurement_type] != "kg":
        return value
    converter = DISPLAY_CONVERSIONS.get(display_unit.strip().lower())
    if converter is None:
        return value
    return round(converter(value), 2)


@dataclass(frozen=True)
class VendorCode:
    type: MeasurementType
    # Multiplier applied after decoding value * 10**exponent
    scale: float = 1.0
    offset: float = 0.0


# Configuration data: vendor measurement codes and how they decode.
VENDOR_CODE_TABLE: dict[str, dict[int, VendorCode]] = {
    "withings": {
        1: VendorCode(MeasurementType.WEIGHT),
        5: VendorCode(MeasurementType.FAT_FREE_MASS),
        6: VendorCode(MeasurementType.FAT_RATIO),
        8: VendorCode(MeasurementType.FAT_MASS),
        9: VendorCode(MeasurementType.BP_DIASTOLIC),
        10: VendorCode(MeasurementType.BP_SYSTOLIC),
        11: VendorCode(MeasurementType.HEART_RATE),
        54: VendorCode(MeasurementType.SPO2),
        76: VendorCode(MeasurementType.MUSCLE_MASS),
        77: VendorCode(MeasurementType.HYDRATION),
        88: VendorCode(MeasurementType.BONE_MASS),
        91: VendorCode(MeasurementType.PULSE_WAVE_VELOCITY),
    },
}


def from_vendor(
    vendor: str, code: int, value: int | float, exponent: int
) -> tuple[MeasurementType, CanonicalValue] | None:
    """
    Decode one vendor measure. Returns None for codes we do not track
    (e.g. temperature), which callers skip rather than reject.
    """
    entry = VENDOR_CODE_TABLE.get(vendor.strip().lower(), {}).get(code)
    if entry is None:
        return None
    decoded = value * (10**exponent) * entry.scale + entry.offset
    canonical_unit = CANONICAL_UNITS[entry.type]
    return entry.type, CanonicalValue(value=round(decoded, 4), unit=canonical_unit)


# Inclusive bounds in canonical units; values outside are rejected at ingestion
PLAUSIBLE_RANGES: dict[MeasurementType, tuple[float, float]] = {
    MeasurementType.WEIGHT: (1.0, 500.0),
    MeasurementType.BP_SYSTOLIC: (40.0, 300.0),
    MeasurementType.BP_DIASTOLIC: (20.0, 200.0),
    MeasurementType.SPO2: (50.0, 100.0),
    MeasurementType.HEART_RATE: (20.0, 300.0),
    MeasurementType.FAT_RATIO: (0.0, 100.0),
    MeasurementType.PULSE_WAVE_VELOCITY: (0.0, 50.0),
}


def check_plausible(measurement_type: MeasurementType, value: float) -> None:
    bounds = PLAUSIBLE_RANGES.get(measurement_type)
    if bounds is None:
        if value < 0:
            raise ValidationError(f"{measurement_type.value} cannot be negative")
        return
    low, high = bounds
    if not low <= value <= high:
        raise ValidationError(
            f"{measurement_type.value} value {value:g} {CANONICAL_UNITS[measurement_type]} "
            f"is outside the accepted range {low:g}-{high:g}"
        )
