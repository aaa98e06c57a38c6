#!/usr/bin/env python3
"""
Image Collage - Turn a folder of images into one tightly packed collage.

Every image is scaled to a standard width, framed with a white border and
handed to the collage packer, which grows the canvas around them.
"""

import argparse
import os
import sys
from typing import List, Optional

from loguru import logger
from PIL import Image
from tqdm import tqdm

from collage_packer import (
    Canvas,
    CollageBuilder,
    CollageConfig,
    CollageError,
    DecodeErrorPolicy,
    DirectoryReadError,
    EmptyInput,
    ImageDecodeError,
    ImageWriteError,
    PlacementOrder,
    Rectangle,
)


SNAPSHOT_TEMPLATE = 'collage_step_{}.png'


def list_image_files(directory: str, extension: Optional[str] = None) -> List[str]:
    """
    List the files of a directory, optionally keeping one extension only.

    Args:
        directory: Folder to scan (not recursive)
        extension: Extension to keep, e.g. "png" or ".png"; case-sensitive

    Returns:
        Sorted list of file paths
    """
    if extension:
        extension = extension.lstrip('.')

    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        raise DirectoryReadError(f"Cannot read directory {directory}: {e.strerror or e}") from e

    paths = []
    for name in names:
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        if extension and os.path.splitext(name)[1][1:] != extension:
            continue
        paths.append(path)
    return paths


def scale_to_standard_width(image: Image.Image, standard_width: int) -> Image.Image:
    """Resize to standard_width, keeping the aspect ratio."""
    width, height = image.size
    new_height = max(1, int(standard_width / width * height))
    return image.resize((standard_width, new_height), Image.Resampling.LANCZOS)


def add_border(image: Image.Image, border_size: int,
               color=(255, 255, 255)) -> Image.Image:
    """Frame an image with a solid border on all four sides."""
    width, height = image.size
    framed = Image.new('RGBA', (width + 2 * border_size, height + 2 * border_size),
                       tuple(color) + (255,))
    framed.paste(image.convert('RGBA'), (border_size, border_size))
    return framed


def load_rectangle(path: str, config: CollageConfig) -> Rectangle:
    """Decode, scale and frame one image file."""
    try:
        with Image.open(path) as img:
            img = img.convert('RGBA')
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(path, str(e)) from e

    img = scale_to_standard_width(img, config.standard_width)
    img = add_border(img, config.padding, config.border_color)
    return Rectangle.from_image(img, name=os.path.basename(path))


def load_rectangles(directory: str, extension: Optional[str] = None,
                    config: Optional[CollageConfig] = None) -> List[Rectangle]:
    """
    Load every matching image of a folder as a placement-ready rectangle.

    Files that cannot be decoded are skipped with a warning or abort the
    whole load, depending on config.decode_errors.
    """
    config = config or CollageConfig()
    paths = list_image_files(directory, extension)

    rectangles = []
    for path in tqdm(paths, desc="Loading images", unit="img", leave=False):
        try:
            rectangles.append(load_rectangle(path, config))
        except ImageDecodeError as e:
            if config.decode_errors is DecodeErrorPolicy.ABORT:
                raise
            logger.warning("Skipping {}: {}", os.path.basename(path), e.reason)

    return rectangles


def save_canvas(canvas: Canvas, path: str):
    """Write a canvas to disk; formats without alpha get an RGB copy."""
    image = canvas.to_image()
    if os.path.splitext(path)[1].lower() in ('.jpg', '.jpeg', '.bmp'):
        image = image.convert('RGB')
    try:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        image.save(path)
    except (OSError, ValueError) as e:
        raise ImageWriteError(f"Cannot write {path}: {e}") from e


def process_images(directory: str, extension: Optional[str] = None,
                   config: Optional[CollageConfig] = None,
                   snapshot_dir: Optional[str] = None) -> Canvas:
    """
    Build a collage from all images in a folder.

    Args:
        directory: Folder containing the images
        extension: Only use files with this extension
        config: Packing and preprocessing settings
        snapshot_dir: When set, the canvas is saved there after every insertion
            as collage_step_<n>.png

    Returns:
        The finished canvas
    """
    config = config or CollageConfig()
    rectangles = load_rectangles(directory, extension, config)
    if not rectangles:
        raise EmptyInput(f"No images found in {directory}"
                         + (f" with extension '{extension}'" if extension else ''))

    builder = CollageBuilder(config)
    with tqdm(total=len(rectangles), desc="Placing images", unit="img", leave=False) as pbar:
        pbar.update(1)

        def on_step(step: int, canvas: Canvas):
            pbar.set_postfix({'canvas': f'{canvas.width}x{canvas.height}'})
            pbar.update(1)
            if snapshot_dir:
                save_canvas(canvas, os.path.join(snapshot_dir, SNAPSHOT_TEMPLATE.format(step)))

        return builder.build(rectangles, on_step)


def configure_logging(level: str):
    """
    Send loguru output through tqdm so it does not tear progress bars.

    Replaces every loguru sink of the process, not only the ones added here.
    """
    logger.remove()
    logger.add(lambda msg: tqdm.write(msg, file=sys.stderr, end=''), level=level, colorize=False,
               format="{time:HH:mm:ss} | {level: <8} | {message}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Pack a folder of images into a single growing collage.'
    )
    parser.add_argument(
        'folder',
        nargs='?',
        default='input_images',
        help='Path to folder containing images (default: input_images)'
    )
    parser.add_argument(
        '-e', '--extension',
        help='Only use files with this extension, e.g. png (default: all files)'
    )
    parser.add_argument(
        '-o', '--output',
        default='output_images/collage.png',
        help='Output file path (default: output_images/collage.png)'
    )
    parser.add_argument(
        '--standard-width',
        type=int,
        default=500,
        help='Width every image is scaled to before packing (default: 500)'
    )
    parser.add_argument(
        '--padding',
        type=int,
        default=5,
        help='Width of the white border added around each image (default: 5)'
    )
    parser.add_argument(
        '--order',
        choices=[o.value for o in PlacementOrder],
        default=PlacementOrder.AREA.value,
        help='Insert images by descending area or descending width (default: area)'
    )
    parser.add_argument(
        '--on-decode-error',
        choices=[p.value for p in DecodeErrorPolicy],
        default=DecodeErrorPolicy.SKIP.value,
        help='Skip files that are not images, or abort the run (default: skip)'
    )
    parser.add_argument(
        '--snapshot-dir',
        help='Save the canvas after every insertion into this folder'
    )
    parser.add_argument(
        '--max-growth-steps',
        type=int,
        default=64,
        help='Canvas enlargements allowed per image before giving up (default: 64)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='WARNING',
        help='Diagnostic log level (default: WARNING)'
    )

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = CollageConfig(
            standard_width=args.standard_width,
            padding=args.padding,
            order=PlacementOrder(args.order),
            max_growth_steps=args.max_growth_steps,
            decode_errors=DecodeErrorPolicy(args.on_decode_error),
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    print(f"Loading images from {args.folder}...")
    try:
        canvas = process_images(args.folder, args.extension, config, args.snapshot_dir)
    except CollageError as e:
        print(f"Error: {e}")
        return 1

    try:
        save_canvas(canvas, args.output)
    except CollageError as e:
        print(f"Error: {e}")
        return 1
    print(f"Collage saved to {args.output}")
    print(f"Canvas size: {canvas.width}x{canvas.height}, {len(canvas.placements)} images")
    print(f"Canvas coverage: {canvas.coverage * 100:.1f}%")
    return 0


if __name__ == '__main__':
    sys.exit(main())
