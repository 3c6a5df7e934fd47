"""
Configuration Parser and Validator (YAML)

@requires: Optional YAML configuration matching the structure below
@returns: Structured PipelineConfig object
@errors: ConfigError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .backends.onnxrt_backend import DEFAULT_ACCELERATOR_PROVIDERS
from .exceptions import ConfigError


@dataclass
class ModelSettings:
    """Classifier model settings.

    Attributes:
        path: Default model asset, used when `process` gets no model bytes.
        num_threads: Intra-op thread count hint for CPU execution.
        warmup: Run one dummy inference right after loading.
    """

    path: Path | None = None
    num_threads: int = 4
    warmup: bool = True


@dataclass
class AcceleratorSettings:
    """Hardware accelerator settings.

    Attributes:
        enabled: Probe for and attach an accelerator when the device supports one.
        providers: ONNX Runtime execution providers to probe, in priority order.
    """

    enabled: bool = True
    providers: list[str] = field(
        default_factory=lambda: list(DEFAULT_ACCELERATOR_PROVIDERS)
    )


@dataclass
class DetectionSettings:
    """Face detection settings.

    Attributes:
        min_face_size: Smallest face to report, relative to the shorter image side.
        timeout: Seconds to wait for the detector; None waits forever.
        cascade_path: Haar cascade XML; None uses OpenCV's frontal-face cascade.
    """

    min_face_size: float = 0.1
    timeout: float | None = 10.0
    cascade_path: Path | None = None


@dataclass
class ExtractionSettings:
    """Face crop settings. `padding` is added on every side of the face box."""

    padding: int = 20


@dataclass
class RecoverySettings:
    """Consecutive failures that force a reload of every pipeline component."""

    failure_threshold: int = 2


@dataclass
class PipelineConfig:
    """Complete configuration of an `EmotionPipeline`.

    Every section is optional; omitted sections and keys keep their defaults.

    YAML structure expected:
        model:
          path: "models/emotion.onnx"   # optional
          num_threads: 4
          warmup: true
        accelerator:
          enabled: true
          providers: ["CUDAExecutionProvider", "CoreMLExecutionProvider"]
        detection:
          min_face_size: 0.1            # (0, 1]
          timeout: 10.0                 # seconds, or null
          cascade_path: null
        extraction:
          padding: 20
        recovery:
          failure_threshold: 2

    Example usage:
        cfg = PipelineConfig.from_yaml(Path("emotion.yaml"))
        pipeline = EmotionPipeline(cfg)

    Raises:
        ConfigError: on missing/invalid config file, invalid YAML,
                     unknown keys or out-of-range values.
    """

    model: ModelSettings = field(default_factory=ModelSettings)
    accelerator: AcceleratorSettings = field(default_factory=AcceleratorSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)

    @classmethod
    def from_yaml(cls, config_path: Path) -> PipelineConfig:
        """
        Parse and validate configuration from a YAML file.

        Relative `model.path` and `detection.cascade_path` values are resolved
        against the directory holding the configuration file.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML format: {e}") from e

        return cls.from_dict(data or {}, base_dir=config_path.parent)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], base_dir: Path | None = None
    ) -> PipelineConfig:
        """Build a configuration from an already parsed mapping."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        known = {"model", "accelerator", "detection", "extraction", "recovery"}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

        try:
            model = _parse_model(_section(data, "model"), base_dir)
            accelerator = _parse_accelerator(_section(data, "accelerator"))
            detection = _parse_detection(_section(data, "detection"), base_dir)
            extraction = _parse_extraction(_section(data, "extraction"))
            recovery = _parse_recovery(_section(data, "recovery"))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        return cls(
            model=model,
            accelerator=accelerator,
            detection=detection,
            extraction=extraction,
            recovery=recovery,
        )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


def _check_keys(name: str, section: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(section) - allowed
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {sorted(unknown)}")


def _flag(section: dict[str, Any], name: str, key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{name}.{key} must be true or false, got {value!r}")
    return value


def _resolve(value: Any, base_dir: Path | None) -> Path | None:
    if value is None:
        return None
    path = Path(str(value)).expanduser()
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return path


def _parse_model(section: dict[str, Any], base_dir: Path | None) -> ModelSettings:
    _check_keys("model", section, {"path", "num_threads", "warmup"})
    settings = ModelSettings(
        path=_resolve(section.get("path"), base_dir),
        num_threads=int(section.get("num_threads", 4)),
        warmup=_flag(section, "model", "warmup", True),
    )
    if settings.num_threads < 1:
        raise ConfigError("model.num_threads must be >= 1")
    return settings


def _parse_accelerator(section: dict[str, Any]) -> AcceleratorSettings:
    _check_keys("accelerator", section, {"enabled", "providers"})
    providers = section.get("providers")
    if providers is None:
        providers = list(DEFAULT_ACCELERATOR_PROVIDERS)
    elif isinstance(providers, str) or not isinstance(providers, list):
        raise ConfigError("accelerator.providers must be a list of provider names")
    return AcceleratorSettings(
        enabled=_flag(section, "accelerator", "enabled", True),
        providers=[str(p) for p in providers],
    )


def _parse_detection(
    section: dict[str, Any], base_dir: Path | None
) -> DetectionSettings:
    _check_keys("detection", section, {"min_face_size", "timeout", "cascade_path"})
    timeout = section.get("timeout", 10.0)
    settings = DetectionSettings(
        min_face_size=float(section.get("min_face_size", 0.1)),
        timeout=None if timeout is None else float(timeout),
        cascade_path=_resolve(section.get("cascade_path"), base_dir),
    )
    if not 0.0 < settings.min_face_size <= 1.0:
        raise ConfigError(
            f"detection.min_face_size must be in (0, 1], got {settings.min_face_size}"
        )
    if settings.timeout is not None and settings.timeout <= 0:
        raise ConfigError("detection.timeout must be positive or null")
    return settings


def _parse_extraction(section: dict[str, Any]) -> ExtractionSettings:
    _check_keys("extraction", section, {"padding"})
    settings = ExtractionSettings(padding=int(section.get("padding", 20)))
    if settings.padding < 0:
        raise ConfigError("extraction.padding must be >= 0")
    return settings


def _parse_recovery(section: dict[str, Any]) -> RecoverySettings:
    _check_keys("recovery", section, {"failure_threshold"})
    settings = RecoverySettings(
        failure_threshold=int(section.get("failure_threshold", 2))
    )
    if settings.failure_threshold < 1:
        raise ConfigError("recovery.failure_threshold must be >= 1")
    return settings
