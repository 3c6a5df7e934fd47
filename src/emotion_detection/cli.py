"""
Command-line interface for the emotion detection pipeline.
"""

from __future__ import annotations

import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import colorlog
from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from .config import PipelineConfig
from .exceptions import ConfigError
from .image import Image
from .pipeline import EmotionPipeline
from .results import (
    EmotionError,
    EmotionResult,
    EmotionSuccess,
    ErrorKind,
    NoFacesDetected,
)

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO"):
    """
    Configure the root logger for the application.

    This function clears any pre-existing handlers, sets the requested log
    level, and attaches a single colorized stream handler for console output.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = colorlog.StreamHandler()
    formatter = colorlog.ColoredFormatter(
        "%(log_color)s%(levelname)-8s%(cyan)s[%(name)s]%(reset)s %(message)s",
        reset=True,
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def load_image(path: Path) -> Image:
    """Decode an image file into an RGBA `Image`."""
    with PILImage.open(path) as pil_image:
        return Image.from_pil(pil_image)


def format_result(result: EmotionResult) -> str:
    if isinstance(result, EmotionSuccess):
        return f"{result.label} (confidence {result.confidence:.2%})"
    if isinstance(result, NoFacesDetected):
        return "No faces detected"
    return f"ERROR: {result.describe()}"


def run(
    image_path: Path,
    model_path: Path | None,
    config_path: Path | None = None,
    output_path: Path | None = None,
) -> int:
    """Classify one image file and return the process exit status.

    Returns:
        0 for a classification or "no faces", 1 for any error.
    """
    try:
        config = PipelineConfig.from_yaml(config_path) if config_path else PipelineConfig()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    if model_path is not None:
        config.model.path = model_path
    if config.model.path is None:
        logger.error("No model given: pass --model or set model.path in the config")
        return 1

    try:
        image = load_image(image_path)
    except (OSError, UnidentifiedImageError) as e:
        logger.error("Failed to read image %s: %s", image_path, e)
        print(format_result(EmotionError("Unable to capture image", ErrorKind.INPUT_MISSING, e)))
        return 1

    with EmotionPipeline(config) as pipeline:
        result = pipeline.process(image)

    print(format_result(result))
    if isinstance(result, EmotionError):
        return 1

    if output_path is not None:
        try:
            result.image.to_pil().save(output_path)
            logger.info("Annotated image written to %s", output_path)
        except (OSError, ValueError) as e:
            logger.error("Failed to write %s: %s", output_path, e)
            return 1
    return 0


def main():
    try:
        ver = version("emotion-detection")
    except PackageNotFoundError:
        ver = "0.0.0"

    parser = argparse.ArgumentParser(
        description="Detect the emotion of the most prominent face in an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Classify a photo
  emotion-detect photo.jpg --model models/emotion.onnx

  # Use a config file and save the annotated image
  emotion-detect photo.jpg --config config/emotion.yaml --output annotated.png

  # Check version
  emotion-detect --version
""",
    )

    parser.add_argument("image", type=Path, help="Image file to classify")

    parser.add_argument(
        "--model",
        type=Path,
        help="ONNX emotion model (overrides model.path from the config file)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML configuration file",
    )

    parser.add_argument(
        "--output",
        type=Path,
        help="Write the annotated image here",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {ver}",
        help="Show program's version number and exit",
    )

    args = parser.parse_args()

    setup_logging(args.log_level)

    sys.exit(run(args.image, args.model, args.config, args.output))


if __name__ == "__main__":
    main()
