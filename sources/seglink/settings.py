r"""
Settings of the segment linker.

Settings are supplied as a plain mapping, validated once with
:func:`validate_settings`, and then frozen into a :class:`LinkerSettings`.
Validation never stops at the first problem: every violation is collected and
reported in a single message.
"""

from __future__ import annotations

import dataclasses as D
import itertools
import numbers
import sys
import types
import typing as T

from .consts import (
    KEY_ALLOW_GAP_CLOSING,
    KEY_ALLOW_TRACK_MERGING,
    KEY_ALLOW_TRACK_SPLITTING,
    KEY_ALTERNATIVE_LINKING_COST_FACTOR,
    KEY_BLOCKING_VALUE,
    KEY_CUTOFF_PERCENTILE,
    KEY_GAP_CLOSING_FEATURE_PENALTIES,
    KEY_GAP_CLOSING_MAX_DISTANCE,
    KEY_GAP_CLOSING_MAX_FRAME_GAP,
    KEY_MERGING_FEATURE_PENALTIES,
    KEY_MERGING_MAX_DISTANCE,
    KEY_SPLITTING_FEATURE_PENALTIES,
    KEY_SPLITTING_MAX_DISTANCE,
)

__all__ = [
    "LinkerSettings",
    "InvalidSettingsError",
    "MANDATORY_KEYS",
    "OPTIONAL_KEYS",
    "DEFAULT_BLOCKING_VALUE",
    "check_settings",
    "validate_settings",
    "default_settings",
    "select_settings",
]

DEFAULT_BLOCKING_VALUE: T.Final = sys.float_info.max

_BOOL: T.Final = "bool"
_REAL: T.Final = "float"
_INT: T.Final = "int"
_PENALTIES: T.Final = "mapping"

MANDATORY_KEYS: T.Final[dict[str, str]] = {
    KEY_ALLOW_GAP_CLOSING: _BOOL,
    KEY_GAP_CLOSING_MAX_DISTANCE: _REAL,
    KEY_GAP_CLOSING_MAX_FRAME_GAP: _INT,
    KEY_ALLOW_TRACK_SPLITTING: _BOOL,
    KEY_SPLITTING_MAX_DISTANCE: _REAL,
    KEY_ALLOW_TRACK_MERGING: _BOOL,
    KEY_MERGING_MAX_DISTANCE: _REAL,
    KEY_ALTERNATIVE_LINKING_COST_FACTOR: _REAL,
    KEY_CUTOFF_PERCENTILE: _REAL,
}

OPTIONAL_KEYS: T.Final[dict[str, str]] = {
    KEY_GAP_CLOSING_FEATURE_PENALTIES: _PENALTIES,
    KEY_SPLITTING_FEATURE_PENALTIES: _PENALTIES,
    KEY_MERGING_FEATURE_PENALTIES: _PENALTIES,
    KEY_BLOCKING_VALUE: _REAL,
}


class InvalidSettingsError(ValueError):
    """
    Raised when a settings mapping is incomplete, ill-typed or inconsistent.
    The message lists every violation.
    """

    def __init__(self, violations: T.Sequence[str]):
        self.violations = list(violations)
        super().__init__("\n".join(self.violations))


@D.dataclass(frozen=True, slots=True)
class LinkerSettings:
    """
    Immutable, validated settings of the segment linker.
    """

    allow_gap_closing: bool
    gap_closing_max_distance: float
    gap_closing_max_frame_gap: int
    allow_track_splitting: bool
    splitting_max_distance: float
    allow_track_merging: bool
    merging_max_distance: float
    alternative_linking_cost_factor: float
    cutoff_percentile: float
    gap_closing_feature_penalties: T.Mapping[str, float] = D.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    splitting_feature_penalties: T.Mapping[str, float] = D.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    merging_feature_penalties: T.Mapping[str, float] = D.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    blocking_value: float = DEFAULT_BLOCKING_VALUE

    @property
    def any_event_allowed(self) -> bool:
        return self.allow_gap_closing or self.allow_track_splitting or self.allow_track_merging

    @property
    def feature_names(self) -> list[str]:
        """
        Names of all features that take part in a penalty, in order of first
        appearance.
        """
        names = itertools.chain(
            self.gap_closing_feature_penalties,
            self.splitting_feature_penalties,
            self.merging_feature_penalties,
        )
        return list(dict.fromkeys(names))

    def as_dict(self) -> dict[str, T.Any]:
        out = {f.name: getattr(self, f.name) for f in D.fields(self)}
        for key, kind in OPTIONAL_KEYS.items():
            if kind == _PENALTIES:
                out[key] = dict(out[key])
        return out


def default_settings() -> dict[str, T.Any]:
    """
    Return a complete and valid settings mapping with default values.
    """
    return {
        KEY_ALLOW_GAP_CLOSING: True,
        KEY_GAP_CLOSING_MAX_DISTANCE: 15.0,
        KEY_GAP_CLOSING_MAX_FRAME_GAP: 2,
        KEY_GAP_CLOSING_FEATURE_PENALTIES: {},
        KEY_ALLOW_TRACK_SPLITTING: False,
        KEY_SPLITTING_MAX_DISTANCE: 15.0,
        KEY_SPLITTING_FEATURE_PENALTIES: {},
        KEY_ALLOW_TRACK_MERGING: False,
        KEY_MERGING_MAX_DISTANCE: 15.0,
        KEY_MERGING_FEATURE_PENALTIES: {},
        KEY_ALTERNATIVE_LINKING_COST_FACTOR: 1.05,
        KEY_CUTOFF_PERCENTILE: 0.9,
        KEY_BLOCKING_VALUE: DEFAULT_BLOCKING_VALUE,
    }


def select_settings(settings: T.Mapping[str, T.Any]) -> dict[str, T.Any]:
    """
    Pick the keys that the segment linker recognizes from a larger settings
    mapping, e.g. one that also configures the frame-to-frame linker. Keys
    that are absent stay absent, such that validation reports them.
    """
    return {
        key: settings[key]
        for key in (*MANDATORY_KEYS, *OPTIONAL_KEYS)
        if key in settings
    }


def _is_real(value: T.Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_int(value: T.Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _check_type(key: str, kind: str, value: T.Any) -> list[str]:
    if kind == _BOOL:
        ok = isinstance(value, bool)
    elif kind == _REAL:
        ok = _is_real(value)
    elif kind == _INT:
        ok = _is_int(value)
    elif kind == _PENALTIES:
        return _check_penalties(key, value)
    else:
        raise NotImplementedError(kind)

    if ok:
        return []
    return [
        f"Value for parameter '{key}' is not of the right type: expected {kind}, "
        f"got {type(value).__name__} ({value!r})."
    ]


def _check_penalties(key: str, value: T.Any) -> list[str]:
    if not isinstance(value, T.Mapping):
        return [
            f"Feature penalties '{key}' must be a mapping of feature names to "
            f"weights, got {type(value).__name__}."
        ]

    out = []
    for feature, weight in value.items():
        if not isinstance(feature, str):
            out.append(
                f"Feature penalties '{key}' has a feature name that is not text: "
                f"{feature!r}."
            )
        if not _is_real(weight):
            out.append(
                f"Feature penalties '{key}' has a non-numeric weight for feature "
                f"{feature!r}: {weight!r}."
            )
    return out


def _check_consistency(settings: T.Mapping[str, T.Any]) -> list[str]:
    out = []

    def real(key: str) -> float | None:
        value = settings.get(key)
        return float(value) if _is_real(value) else None

    for key in (
        KEY_GAP_CLOSING_MAX_DISTANCE,
        KEY_SPLITTING_MAX_DISTANCE,
        KEY_MERGING_MAX_DISTANCE,
    ):
        value = real(key)
        if value is not None and not value >= 0.0:
            out.append(f"Parameter '{key}' must be non-negative, got {value}.")

    gap = settings.get(KEY_GAP_CLOSING_MAX_FRAME_GAP)
    if _is_int(gap) and gap < 1:
        out.append(
            f"Parameter '{KEY_GAP_CLOSING_MAX_FRAME_GAP}' must be at least 1, got {gap}."
        )

    percentile = real(KEY_CUTOFF_PERCENTILE)
    if percentile is not None and not 0.0 < percentile <= 1.0:
        out.append(
            f"Parameter '{KEY_CUTOFF_PERCENTILE}' must be in (0, 1], got {percentile}."
        )

    factor = real(KEY_ALTERNATIVE_LINKING_COST_FACTOR)
    if factor is not None and not factor > 0.0:
        out.append(
            f"Parameter '{KEY_ALTERNATIVE_LINKING_COST_FACTOR}' must be positive, "
            f"got {factor}."
        )

    blocking = real(KEY_BLOCKING_VALUE)
    if blocking is not None and not blocking > 0.0:
        out.append(f"Parameter '{KEY_BLOCKING_VALUE}' must be positive, got {blocking}.")

    return out


def check_settings(settings: T.Mapping[str, T.Any] | None) -> list[str]:
    """
    Collect every violation in a settings mapping.

    Parameters
    ----------
    settings
        Mapping of setting keys to values.

    Returns
    -------
    list[str]
        Human-readable violations, empty if the settings are valid.
    """
    if settings is None:
        return ["Settings map is null."]
    if not isinstance(settings, T.Mapping):
        return [f"Settings must be a mapping, got {type(settings).__name__}."]

    out: list[str] = []
    for key, kind in MANDATORY_KEYS.items():
        if key not in settings:
            out.append(f"Mandatory parameter '{key}' could not be found in settings map.")
            continue
        out += _check_type(key, kind, settings[key])

    for key, kind in OPTIONAL_KEYS.items():
        if key in settings:
            out += _check_type(key, kind, settings[key])

    for key in settings:
        if key not in MANDATORY_KEYS and key not in OPTIONAL_KEYS:
            out.append(f"Settings map contains unexpected parameter '{key}'.")

    return out + _check_consistency(settings)


def validate_settings(settings: T.Mapping[str, T.Any] | None) -> LinkerSettings:
    """
    Validate a settings mapping and freeze it.

    Raises
    ------
    InvalidSettingsError
        If any violation is found, with all violations in its message.
    """
    violations = check_settings(settings)
    if violations:
        raise InvalidSettingsError(violations)
    assert settings is not None

    def penalties(key: str) -> T.Mapping[str, float]:
        value = settings.get(key) or {}
        return types.MappingProxyType({k: float(v) for k, v in value.items()})

    return LinkerSettings(
        allow_gap_closing=settings[KEY_ALLOW_GAP_CLOSING],
        gap_closing_max_distance=float(settings[KEY_GAP_CLOSING_MAX_DISTANCE]),
        gap_closing_max_frame_gap=int(settings[KEY_GAP_CLOSING_MAX_FRAME_GAP]),
        allow_track_splitting=settings[KEY_ALLOW_TRACK_SPLITTING],
        splitting_max_distance=float(settings[KEY_SPLITTING_MAX_DISTANCE]),
        allow_track_merging=settings[KEY_ALLOW_TRACK_MERGING],
        merging_max_distance=float(settings[KEY_MERGING_MAX_DISTANCE]),
        alternative_linking_cost_factor=float(settings[KEY_ALTERNATIVE_LINKING_COST_FACTOR]),
        cutoff_percentile=float(settings[KEY_CUTOFF_PERCENTILE]),
        gap_closing_feature_penalties=penalties(KEY_GAP_CLOSING_FEATURE_PENALTIES),
        splitting_feature_penalties=penalties(KEY_SPLITTING_FEATURE_PENALTIES),
        merging_feature_penalties=penalties(KEY_MERGING_FEATURE_PENALTIES),
        blocking_value=float(settings.get(KEY_BLOCKING_VALUE, DEFAULT_BLOCKING_VALUE)),
    )
