"""
Collage Packer - Grow a canvas around a set of images, one image at a time.

Images are inserted largest first. Each new image is anchored next to the
white padding border of something already on the canvas, and the canvas is
enlarged by the smallest amount that makes room when nothing fits.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from loguru import logger
from PIL import Image


Color = Tuple[int, int, int]

BACKGROUND_COLOR: Color = (0, 0, 0)
BORDER_COLOR: Color = (255, 255, 255)


class CollageError(Exception):
    """Base class for every error raised while building a collage."""


class DirectoryReadError(CollageError):
    """The input directory is missing or cannot be listed."""


class ImageDecodeError(CollageError):
    """A file could not be decoded as an image."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not decode {path}: {reason}")
        self.path = path
        self.reason = reason


class ImageWriteError(CollageError):
    """The collage or a snapshot could not be written."""


class EmptyInput(CollageError):
    """There is nothing to build a collage from."""


class PlacementFailure(CollageError):
    """The canvas kept growing without the image ever fitting."""


class PlacementOrder(Enum):
    """Order in which rectangles are inserted."""
    AREA = 'area'
    WIDTH = 'width'


class DecodeErrorPolicy(Enum):
    """What to do with a file that cannot be decoded."""
    SKIP = 'skip'
    ABORT = 'abort'


@dataclass
class CollageConfig:
    """Settings shared by preprocessing and the builder."""
    standard_width: int = 500
    padding: int = 5
    background_color: Color = BACKGROUND_COLOR
    border_color: Color = BORDER_COLOR
    order: PlacementOrder = PlacementOrder.AREA
    max_growth_steps: int = 64
    decode_errors: DecodeErrorPolicy = DecodeErrorPolicy.SKIP

    def __post_init__(self):
        if self.standard_width < 1:
            raise ValueError(f"standard_width must be positive, got {self.standard_width}")
        if self.padding < 1:
            raise ValueError(f"padding must be at least 1 so placed images carry a border, got {self.padding}")
        if self.max_growth_steps < 1:
            raise ValueError(f"max_growth_steps must be at least 1, got {self.max_growth_steps}")
        for name in ('background_color', 'border_color'):
            color = tuple(getattr(self, name))
            if len(color) != 3 or not all(0 <= c <= 255 for c in color):
                raise ValueError(f"{name} must be R,G,B with values 0-255, got {color}")
            setattr(self, name, color)
        if self.background_color == self.border_color:
            raise ValueError("background_color and border_color must differ")
        self.order = PlacementOrder(self.order)
        self.decode_errors = DecodeErrorPolicy(self.decode_errors)


@dataclass(frozen=True, eq=False)
class Rectangle:
    """An image ready for placement, stored as a read-only RGBA array."""
    pixels: np.ndarray
    name: str = ''

    def __post_init__(self):
        pixels = np.array(self.pixels, dtype=np.uint8, copy=True)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Expected an (height, width, 3|4) array, got shape {pixels.shape}")
        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels, alpha], axis=2)
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Rectangle must have a non-zero width and height")
        pixels.setflags(write=False)
        object.__setattr__(self, 'pixels', pixels)

    @classmethod
    def from_image(cls, image: Image.Image, name: str = '') -> 'Rectangle':
        return cls(np.asarray(image.convert('RGBA')), name=name)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class Placement:
    """Where a rectangle ended up on the canvas."""
    name: str
    x: int
    y: int
    width: int
    height: int

    def overlaps(self, other: 'Placement') -> bool:
        return not (self.x + self.width <= other.x or
                    other.x + other.width <= self.x or
                    self.y + self.height <= other.y or
                    other.y + other.height <= self.y)


@dataclass(eq=False)
class Canvas:
    """The collage under construction."""
    pixels: np.ndarray
    placements: List[Placement] = field(default_factory=list)

    @classmethod
    def from_rectangle(cls, rect: Rectangle) -> 'Canvas':
        """Seed a canvas with a rectangle, unchanged, at the origin."""
        return cls(rect.pixels.copy(), [Placement(rect.name, 0, 0, rect.width, rect.height)])

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def coverage(self) -> float:
        """Fraction of the canvas covered by placed rectangles."""
        return sum(p.width * p.height for p in self.placements) / self.area

    def paste(self, rect: Rectangle, x: int, y: int) -> Placement:
        """Copy a rectangle into the canvas in a single write."""
        if x < 0 or y < 0 or x + rect.width > self.width or y + rect.height > self.height:
            raise ValueError(f"{rect.width}x{rect.height} at ({x}, {y}) does not fit "
                             f"in a {self.width}x{self.height} canvas")
        self.pixels[y:y + rect.height, x:x + rect.width] = rect.pixels
        placement = Placement(rect.name, x, y, rect.width, rect.height)
        self.placements.append(placement)
        return placement

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


def _color_mask(pixels: np.ndarray, color: Color) -> np.ndarray:
    # Alpha is ignored when classifying pixels
    return np.all(pixels[:, :, :3] == np.asarray(color, dtype=np.uint8), axis=2)


class EmptySpaceTester:
    """
    Answer "is this footprint all background?" for one canvas.

    A summed-area table of non-background pixels is built once, so each
    query costs four lookups instead of a scan of the footprint.
    """

    def __init__(self, canvas: Canvas, background_color: Color = BACKGROUND_COLOR):
        self.width = canvas.width
        self.height = canvas.height
        self.background = _color_mask(canvas.pixels, background_color)
        occupied = (~self.background).astype(np.int64)
        self._table = np.zeros((self.height + 1, self.width + 1), dtype=np.int64)
        self._table[1:, 1:] = occupied.cumsum(axis=0).cumsum(axis=1)

    def is_empty(self, x: int, y: int, width: int, height: int) -> bool:
        """
        Check whether a footprint holds only background pixels.

        The footprint is clipped to the canvas: the part hanging over the
        edge is ignored rather than counted as occupied.
        """
        if x < 0 or y < 0:
            raise ValueError(f"Footprint origin must be non-negative, got ({x}, {y})")
        x2 = min(x + width, self.width)
        y2 = min(y + height, self.height)
        if x >= x2 or y >= y2:
            return True
        t = self._table
        occupied = t[y2, x2] - t[y, x2] - t[y2, x] + t[y, x]
        return bool(occupied == 0)


def is_empty_space(canvas: Canvas, x: int, y: int, width: int, height: int,
                   background_color: Color = BACKGROUND_COLOR) -> bool:
    """One-off empty-space check; use EmptySpaceTester for repeated queries."""
    return EmptySpaceTester(canvas, background_color).is_empty(x, y, width, height)


def find_anchors(canvas: Canvas, background_color: Color = BACKGROUND_COLOR,
                 border_color: Color = BORDER_COLOR) -> np.ndarray:
    """
    Find background pixels that touch a border-marker pixel.

    Returns:
        (N, 2) array of (y, x) pairs in row-major order
    """
    background = _color_mask(canvas.pixels, background_color)
    border = _color_mask(canvas.pixels, border_color)

    touches_border = np.zeros_like(border)
    touches_border[:, 1:] |= border[:, :-1]   # left neighbour
    touches_border[:, :-1] |= border[:, 1:]   # right neighbour
    touches_border[1:, :] |= border[:-1, :]   # neighbour above
    touches_border[:-1, :] |= border[1:, :]   # neighbour below

    return np.argwhere(background & touches_border)


class PlacementDecision(NamedTuple):
    """
    Outcome of one scan of the canvas.

    x and y are None when no anchor was usable at all. When canvas_width and
    canvas_height equal the current canvas size the rectangle fits as is.
    """
    x: Optional[int]
    y: Optional[int]
    canvas_width: int
    canvas_height: int


def find_placement(canvas: Canvas, width: int, height: int,
                   config: Optional[CollageConfig] = None) -> PlacementDecision:
    """
    Decide where a width x height rectangle goes, or how the canvas must grow.

    Args:
        canvas: Canvas to scan
        width: Width of the rectangle to place
        height: Height of the rectangle to place
        config: Sentinel colours; defaults are used when omitted

    Returns:
        PlacementDecision for the first anchor that fits, otherwise for the
        anchor needing the least extra area, otherwise a fallback growth
        along the canvas' longer side

    Every anchor with an empty footprint is a growth candidate, however much
    area it adds; the longer-side fallback is used only when there is none.
    """
    config = config or CollageConfig()
    tester = EmptySpaceTester(canvas, config.background_color)
    canvas_width, canvas_height = canvas.size
    best = None
    best_delta = None

    for y, x in find_anchors(canvas, config.background_color, config.border_color):
        x, y = int(x), int(y)
        if not tester.is_empty(x, y, width, height):
            continue
        if x + width <= canvas_width and y + height <= canvas_height:
            return PlacementDecision(x, y, canvas_width, canvas_height)

        grown_width = max(x + width + 1, canvas_width)
        grown_height = max(y + height + 1, canvas_height)
        delta = grown_width * grown_height - canvas.area
        if best_delta is None or delta < best_delta:
            best = PlacementDecision(x, y, grown_width, grown_height)
            best_delta = delta

    if best is not None:
        return best

    if canvas_width > canvas_height:
        return PlacementDecision(None, None, canvas_width, canvas_height + height)
    return PlacementDecision(None, None, canvas_width + width, canvas_height)


def grow_canvas(canvas: Canvas, new_width: int, new_height: int,
                background_color: Color = BACKGROUND_COLOR) -> Canvas:
    """
    Return a larger canvas with the old content copied to the origin.

    The new area is filled with opaque background. The old canvas is not
    modified and shares nothing with the new one.
    """
    if new_width < canvas.width or new_height < canvas.height:
        raise ValueError(f"Cannot shrink a {canvas.width}x{canvas.height} canvas "
                         f"to {new_width}x{new_height}")
    pixels = np.empty((new_height, new_width, 4), dtype=np.uint8)
    pixels[:, :, :3] = background_color
    pixels[:, :, 3] = 255
    pixels[:canvas.height, :canvas.width] = canvas.pixels
    return Canvas(pixels, list(canvas.placements))


def place_image(canvas: Canvas, rect: Rectangle,
                config: Optional[CollageConfig] = None) -> Canvas:
    """
    Place a rectangle on the canvas, growing it as many times as needed.

    The canvas passed in is consumed: continue with the returned one.

    Raises:
        PlacementFailure: if the rectangle still does not fit after
            config.max_growth_steps enlargements
    """
    config = config or CollageConfig()

    for step in range(config.max_growth_steps + 1):
        decision = find_placement(canvas, rect.width, rect.height, config)
        if (decision.x is not None and
                (decision.canvas_width, decision.canvas_height) == canvas.size):
            canvas.paste(rect, decision.x, decision.y)
            logger.debug("Placed {} ({}x{}) at ({}, {}) after {} growth step(s)",
                         rect.name or '<unnamed>', rect.width, rect.height,
                         decision.x, decision.y, step)
            return canvas

        if step == config.max_growth_steps:
            break
        logger.debug("Growing canvas {}x{} -> {}x{} for {}",
                     canvas.width, canvas.height,
                     decision.canvas_width, decision.canvas_height,
                     rect.name or '<unnamed>')
        canvas = grow_canvas(canvas, decision.canvas_width, decision.canvas_height,
                             config.background_color)

    raise PlacementFailure(
        f"Could not place {rect.name or 'rectangle'} ({rect.width}x{rect.height}) "
        f"after {config.max_growth_steps} growth steps; canvas is {canvas.width}x{canvas.height}"
    )


def sort_rectangles(rectangles: Sequence[Rectangle],
                    order: PlacementOrder = PlacementOrder.AREA) -> List[Rectangle]:
    """Largest first; equal keys keep their input order."""
    if order is PlacementOrder.WIDTH:
        return sorted(rectangles, key=lambda r: r.width, reverse=True)
    return sorted(rectangles, key=lambda r: r.area, reverse=True)


StepCallback = Callable[[int, Canvas], None]


class CollageBuilder:
    """Insert rectangles one by one into a growing canvas."""

    def __init__(self, config: Optional[CollageConfig] = None):
        self.config = config or CollageConfig()
        self.size_history: List[Tuple[int, int]] = []

    def build(self, rectangles: Sequence[Rectangle],
              on_step: Optional[StepCallback] = None) -> Canvas:
        """
        Build a collage from all rectangles.

        Args:
            rectangles: Rectangles to place, in input order
            on_step: Called as on_step(step, canvas) after every insertion,
                starting at step 1

        Returns:
            The final canvas
        """
        if not rectangles:
            raise EmptyInput("No images to build a collage from")

        ordered = sort_rectangles(rectangles, self.config.order)
        canvas = Canvas.from_rectangle(ordered[0])
        self.size_history = [canvas.size]
        logger.debug("Seeded canvas with {} ({}x{})",
                     ordered[0].name or '<unnamed>', canvas.width, canvas.height)

        for step, rect in enumerate(ordered[1:], 1):
            canvas = place_image(canvas, rect, self.config)
            self.size_history.append(canvas.size)
            if on_step is not None:
                on_step(step, canvas)

        logger.info("Placed {} images on a {}x{} canvas ({:.1f}% coverage)",
                    len(ordered), canvas.width, canvas.height, canvas.coverage * 100)
        return canvas


def create_collage(rectangles: Sequence[Rectangle],
                   config: Optional[CollageConfig] = None,
                   on_step: Optional[StepCallback] = None) -> Canvas:
    return CollageBuilder(config).build(rectangles, on_step)
