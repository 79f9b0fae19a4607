"""Detect and redact every face in an image file."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from faceredact.config import AppConfig
from faceredact.core.models import RedactionMethod, SensitivityLevel
from faceredact.detection.base import DetectionUnavailableError
from faceredact.detection.registry import build_registry
from faceredact.pipeline import generate_regions
from faceredact.rendering.renderer import RedactionIncompleteError, RedactionRenderer
from faceredact.utils.image import ImageDecodeError, ImageUtils

logger = logging.getLogger(__name__)


async def redact(
    input_path: Path,
    output_path: Path,
    level: SensitivityLevel,
    method: RedactionMethod,
    config: AppConfig,
) -> int:
    """Run detection and export; returns the number of redacted regions."""
    image = ImageUtils.load_image(input_path)
    registry = build_registry(config.detectors)
    try:
        await registry.initialize()
        regions = await generate_regions(image, level, registry)
    finally:
        registry.dispose()

    renderer = RedactionRenderer(config.render)
    surface = renderer.render_redaction(image, regions, method)
    ImageUtils.save_image(surface, output_path, quality=config.render.export_quality)
    return len(regions)


def main() -> None:
    """Run Main file."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("input", type=Path)
    parser.add_argument("output", type=Path)
    parser.add_argument(
        "--sensitivity",
        choices=[level.value for level in SensitivityLevel],
        default=SensitivityLevel.BALANCED.value,
    )
    parser.add_argument(
        "--method",
        choices=[method.value for method in RedactionMethod],
        default=RedactionMethod.BLUR.value,
    )
    parser.add_argument("--model", type=Path, default=None, help="YuNet ONNX weights")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = AppConfig.from_file(args.config) if args.config else AppConfig()
    if args.model is not None:
        config.detectors.yunet_model_path = args.model

    try:
        count = asyncio.run(
            redact(
                args.input,
                args.output,
                SensitivityLevel(args.sensitivity),
                RedactionMethod(args.method),
                config,
            )
        )
    except (FileNotFoundError, ImageDecodeError) as e:
        logger.error("❌ Cannot read input: %s", e)
        sys.exit(2)
    except DetectionUnavailableError as e:
        logger.error("❌ %s", e)
        sys.exit(3)
    except RedactionIncompleteError:
        logger.exception("❌ Redaction incomplete, output not written")
        sys.exit(4)

    logger.info("✅ Redacted %d regions -> %s", count, args.output)


if __name__ == "__main__":
    main()
