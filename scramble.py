"""
Scramblery — Launcher
======================
Command-line entry point: scramble one image file into another, or
every image of a folder into an output folder.

Usage:
  python scramble.py --input photo.jpg --output out.png --intensity 0.8 --seed 7
  python scramble.py --input photo.jpg --output out.png --faces --background exclude
  python scramble.py --input photo.jpg --output out.png --method block --block-size 32
  python scramble.py --input photo.jpg --output out.png --circle 120 80 40 --ratio 0.7
  python scramble.py --input-dir photos/ --output-dir scrambled/ --seed 7

Exit code 0 on success, 1 on any scramble error.

Part 7 of 7 — Host Integration
"""

import argparse
import logging
import os
import sys
import time

import cv2

from scramble_engine import FourierScrambler
from scramble_face_detector import load_face_detector
from scramble_logger import get_logger
from scramble_types import (
    BackgroundMode,
    FaceRegionOptions,
    InvalidImage,
    InvalidOptions,
    PaddingMode,
    ScrambleError,
    ScrambleMethod,
    ScrambleOptions,
)
from scramble_utils_core import (
    BACKGROUND_MODE,
    CONFIDENCE_THRESHOLD,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_INTENSITY,
    DEFAULT_METHOD,
    DEFAULT_PADDING_MODE,
    DEFAULT_RATIO,
    EXPANSION_FACTOR,
    LOG_LEVEL,
)

_log = logging.getLogger("Scramblery")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scramblery — Fourier phase image scrambler")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", "-i", help="Source image path")
    source.add_argument("--input-dir", help="Scramble every image in this folder")
    parser.add_argument("--output", "-o", help="Destination image path")
    parser.add_argument("--output-dir", help="Destination folder for --input-dir")

    parser.add_argument("--method", choices=[m.value for m in ScrambleMethod],
                        default=DEFAULT_METHOD, help="Scramble method")
    parser.add_argument("--intensity", type=float, default=DEFAULT_INTENSITY,
                        help="Phase randomization strength in [0, 1]")
    parser.add_argument("--padding", choices=[m.value for m in PaddingMode],
                        default=DEFAULT_PADDING_MODE, help="Padding mode")
    parser.add_argument("--no-phase", action="store_true",
                        help="Disable phase scrambling (transform round trip only)")
    parser.add_argument("--ratio", type=float, default=DEFAULT_RATIO,
                        help="Fraction of pixels replaced by noise / circle scrambling")
    parser.add_argument("--block-size", type=int, default=DEFAULT_BLOCK_SIZE,
                        help="Tile side in pixels for block / mosaic")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible output")

    area = parser.add_mutually_exclusive_group()
    area.add_argument("--faces", action="store_true", help="Only scramble detected faces")
    area.add_argument("--circle", type=float, nargs=3, metavar=("X", "Y", "RADIUS"),
                      help="Only scramble a circular area")
    parser.add_argument("--background", choices=[m.value for m in BackgroundMode],
                        default=BACKGROUND_MODE, help="Face mode background handling")
    parser.add_argument("--confidence", type=float, default=CONFIDENCE_THRESHOLD,
                        help="Face detection confidence threshold")
    parser.add_argument("--expansion", type=float, default=EXPANSION_FACTOR,
                        help="Face box expansion factor")
    parser.add_argument("--model", default=None, help="Path to face detector ONNX model")

    parser.add_argument("--audit", action="store_true", help="Write JSONL audit trail")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


# ─── File I/O ─────────────────────────────────────────────────

def read_rgb(path: str):
    img_bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if img_bgr is None:
        raise InvalidImage(f"Cannot read image: {path}")
    return cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)


def write_rgb(path: str, image) -> None:
    if not cv2.imwrite(path, cv2.cvtColor(image, cv2.COLOR_RGB2BGR)):
        raise InvalidImage(f"Cannot write image: {path}")


def list_images(folder: str) -> list:
    """Image files directly inside ``folder``, sorted by name."""
    if not os.path.isdir(folder):
        raise InvalidImage(f"Not a directory: {folder}")
    return sorted(
        os.path.join(folder, name) for name in os.listdir(folder)
        if name.lower().endswith(IMAGE_EXTENSIONS)
        and os.path.isfile(os.path.join(folder, name))
    )


# ─── Run ──────────────────────────────────────────────────────

def _scramble(scrambler, image, args, face_options, session):
    if face_options is not None:
        return scrambler.scramble_with_face_detection(image, face_options, session=session)
    if args.circle is not None:
        x, y, radius = args.circle
        return scrambler.scramble_circle(image, (x, y), radius)
    return scrambler.scramble(image)


def _run_single(args, scrambler, face_options, session) -> None:
    image = read_rgb(args.input)
    height, width = image.shape[:2]

    start = time.perf_counter()
    result = _scramble(scrambler, image, args, face_options, session)
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    write_rgb(args.output, result)

    _log.info("Scrambled %s → %s (%dx%d) in %.1f ms",
              args.input, args.output, width, height, elapsed_ms)
    if args.audit:
        get_logger().log_scramble(args.input, image.shape, scrambler.options, seed=args.seed,
                                  face_options=face_options, elapsed_ms=elapsed_ms)


def _run_batch(args, scrambler, face_options, session) -> None:
    """Scramble every image of --input-dir into --output-dir.

    Files OpenCV cannot read are skipped with a warning. Output files keep
    their source names. With --seed the whole batch is reproducible: one
    random source is consumed file by file in name order.
    """
    paths = list_images(args.input_dir)
    if not paths:
        raise InvalidImage(f"No images found in {args.input_dir}")
    os.makedirs(args.output_dir, exist_ok=True)

    processed = skipped = 0
    for path in paths:
        try:
            image = read_rgb(path)
        except InvalidImage as e:
            _log.warning("Skipping %s", e)
            skipped += 1
            continue

        start = time.perf_counter()
        result = _scramble(scrambler, image, args, face_options, session)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        write_rgb(os.path.join(args.output_dir, os.path.basename(path)), result)
        processed += 1

        _log.debug("Scrambled %s in %.1f ms", path, elapsed_ms)
        if args.audit:
            get_logger().log_scramble(path, image.shape, scrambler.options, seed=args.seed,
                                      face_options=face_options, elapsed_ms=elapsed_ms)

    _log.info("Batch finished: %d scrambled, %d skipped → %s",
              processed, skipped, args.output_dir)
    if args.audit:
        get_logger().log_batch(args.input_dir, args.output_dir, processed, skipped)


def run(args) -> None:
    """Execute the scramble described by parsed CLI arguments."""
    if args.input is not None and not args.output:
        raise InvalidOptions("--input requires --output")
    if args.input_dir is not None and not args.output_dir:
        raise InvalidOptions("--input-dir requires --output-dir")

    options = ScrambleOptions(
        enable_phase_scramble=not args.no_phase,
        intensity=args.intensity,
        padding_mode=args.padding,
        method=args.method,
        ratio=args.ratio,
        block_size=args.block_size,
    )
    scrambler = FourierScrambler(options=options, seed=args.seed)

    face_options = session = None
    if args.faces:
        face_options = FaceRegionOptions(
            confidence_threshold=args.confidence,
            expansion_factor=args.expansion,
            mode=args.background,
        )
        session = load_face_detector(args.model)

    if args.input_dir is not None:
        _run_batch(args, scrambler, face_options, session)
    else:
        _run_single(args, scrambler, face_options, session)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        run(args)
    except ScrambleError as e:
        print(f"[SCRAMBLERY] Error: {e}", file=sys.stderr)
        if args.audit:
            get_logger().error("Scramble failed", exception=e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
