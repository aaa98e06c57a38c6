import numpy as np
import pytest
from PIL import Image

from collage_packer import Rectangle


def _framed(width, height, fill=(120, 60, 200), border=1, name=''):
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :] = (255, 255, 255, 255)
    pixels[border:height - border, border:width - border] = tuple(fill) + (255,)
    return Rectangle(pixels, name=name)


@pytest.fixture
def framed():
    """Factory for rectangles with a white one-pixel frame around a solid fill."""
    return _framed


@pytest.fixture
def image_folder(tmp_path):
    """A folder with three PNGs of different shapes and one JPEG."""
    folder = tmp_path / 'images'
    folder.mkdir()
    Image.new('RGB', (40, 20), (200, 30, 30)).save(folder / 'wide.png')
    Image.new('RGB', (20, 40), (30, 200, 30)).save(folder / 'tall.png')
    Image.new('RGB', (40, 40), (30, 30, 200)).save(folder / 'square.png')
    Image.new('RGB', (30, 60), (120, 120, 30)).save(folder / 'photo.jpg')
    return folder
