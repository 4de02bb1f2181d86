"""Recovery configuration.

A :class:`RecoveryConfig` is the single value handed to
:func:`~nrfrecover.session.run_recovery`. It can be built directly, from a
mapping, or from a YAML file (``nrfrecover recover --config recover.yaml``).

Example YAML::

    image: build/zephyr/merged.hex
    timeout_ms: 5000
    vendor_id: 0x1366
    product_id: 0x1051
    serial: "001050012345"
    final_reset: line
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .access_port import DEFAULT_SPEED_KHZ
from .interfaces import ProbeSelector
from .registers import DEFAULT_PRODUCT_ID, DEFAULT_TIMEOUT_MS, DEFAULT_VENDOR_ID
from .reset import ResetKind


@dataclass(frozen=True)
class RecoveryConfig:
    """Inputs for one recovery run."""
    image_path: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    force: bool = False
    vendor_id: int = DEFAULT_VENDOR_ID
    product_id: int = DEFAULT_PRODUCT_ID
    serial: Optional[str] = None
    speed_khz: int = DEFAULT_SPEED_KHZ
    soft_reset_after_erase: bool = True
    final_reset: ResetKind = ResetKind.SOFT
    wait_after_reset: bool = True
    settle_ms: int = 100

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.speed_khz <= 0:
            raise ValueError(f"speed_khz must be positive, got {self.speed_khz}")
        if self.settle_ms < 0:
            raise ValueError(f"settle_ms must not be negative, got {self.settle_ms}")
        for name in ("vendor_id", "product_id"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFF:
                raise ValueError(f"{name} out of range: {value:#x}")

    @property
    def selector(self) -> ProbeSelector:
        return ProbeSelector(self.vendor_id, self.product_id, self.serial)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, require_image: bool = True) -> "RecoveryConfig":
        """Build a config from plain keys (YAML / JSON style).

        ``image`` is accepted as an alias of ``image_path``; IDs may be ints
        or hex strings; ``final_reset`` is ``"soft"`` or ``"line"``. With
        ``require_image=False`` (probe-only commands) the image may be absent.

        Raises:
            ValueError: Unknown key, missing image, or a bad value.
        """
        data = dict(data)
        if "image" in data:
            data["image_path"] = data.pop("image")

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")
        if not data.get("image_path"):
            if require_image:
                raise ValueError("Config needs an image path ('image')")
            data["image_path"] = ""

        data["image_path"] = str(data["image_path"])
        for key in ("vendor_id", "product_id"):
            if key in data:
                data[key] = parse_int(data[key], key)
        for key in ("timeout_ms", "speed_khz", "settle_ms"):
            if key in data:
                data[key] = parse_int(data[key], key)
        if data.get("serial") is not None:
            data["serial"] = str(data["serial"])
        if "final_reset" in data and not isinstance(data["final_reset"], ResetKind):
            try:
                data["final_reset"] = ResetKind(str(data["final_reset"]).lower())
            except ValueError:
                choices = ", ".join(k.value for k in ResetKind)
                raise ValueError(
                    f"final_reset must be one of {choices}, got {data['final_reset']!r}"
                ) from None
        for key in ("force", "soft_reset_after_erase", "wait_after_reset"):
            if key in data and not isinstance(data[key], bool):
                raise ValueError(f"{key} must be true or false, got {data[key]!r}")

        return cls(**data)


def parse_int(value: Any, name: str = "value") -> int:
    """Accept ints and decimal / ``0x`` hex strings."""
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 0)
    except ValueError:
        raise ValueError(f"{name}: expected an integer, got {value!r}") from None


def load_config_file(path: str) -> dict[str, Any]:
    """Read a YAML config file into a plain mapping (not yet validated).

    A relative ``image`` path is resolved against the file's directory.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file (expected mapping): {path}")

    for key in ("image", "image_path"):
        if key in data and data[key] is not None:
            image = Path(str(data[key]))
            if not image.is_absolute():
                data[key] = str(Path(path).parent / image)
    return data
