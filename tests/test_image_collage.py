import itertools
import os

import pytest
from PIL import Image

from collage_packer import (
    CollageConfig,
    DecodeErrorPolicy,
    DirectoryReadError,
    EmptyInput,
    ImageDecodeError,
    ImageWriteError,
)
from image_collage import (
    add_border,
    list_image_files,
    load_rectangles,
    main,
    process_images,
    save_canvas,
    scale_to_standard_width,
)


SMALL = CollageConfig(standard_width=20, padding=2)


def test_list_image_files_filters_by_extension(image_folder):
    (image_folder / 'nested').mkdir()
    names = lambda paths: [os.path.basename(p) for p in paths]

    assert names(list_image_files(str(image_folder))) == \
        ['photo.jpg', 'square.png', 'tall.png', 'wide.png']
    assert names(list_image_files(str(image_folder), 'png')) == ['square.png', 'tall.png', 'wide.png']
    assert names(list_image_files(str(image_folder), '.jpg')) == ['photo.jpg']
    assert list_image_files(str(image_folder), 'PNG') == []


def test_list_image_files_missing_directory(tmp_path):
    with pytest.raises(DirectoryReadError):
        list_image_files(str(tmp_path / 'missing'))


def test_scale_to_standard_width():
    scaled = scale_to_standard_width(Image.new('RGB', (40, 20)), 20)
    assert scaled.size == (20, 10)
    assert scale_to_standard_width(Image.new('RGB', (400, 1)), 20).size == (20, 1)


def test_add_border():
    framed = add_border(Image.new('RGB', (20, 10), (200, 30, 30)), 2)
    assert framed.size == (24, 14)
    assert framed.mode == 'RGBA'
    assert framed.getpixel((0, 0)) == (255, 255, 255, 255)
    assert framed.getpixel((23, 13)) == (255, 255, 255, 255)
    assert framed.getpixel((2, 2)) == (200, 30, 30, 255)


def test_load_rectangles(image_folder):
    rects = load_rectangles(str(image_folder), 'png', SMALL)
    assert [r.name for r in rects] == ['square.png', 'tall.png', 'wide.png']
    assert [(r.width, r.height) for r in rects] == [(24, 24), (24, 44), (24, 14)]
    assert tuple(rects[0].pixels[0, 0]) == (255, 255, 255, 255)


def test_decode_error_policy(image_folder):
    (image_folder / 'broken.png').write_bytes(b'definitely not an image')

    rects = load_rectangles(str(image_folder), 'png', SMALL)
    assert len(rects) == 3

    abort = CollageConfig(standard_width=20, padding=2, decode_errors=DecodeErrorPolicy.ABORT)
    with pytest.raises(ImageDecodeError) as excinfo:
        load_rectangles(str(image_folder), 'png', abort)
    assert excinfo.value.path.endswith('broken.png')


def test_process_images_without_matches(image_folder):
    with pytest.raises(EmptyInput):
        process_images(str(image_folder), 'gif', SMALL)


def test_process_images_writes_snapshots(image_folder, tmp_path):
    snapshots = tmp_path / 'steps'
    canvas = process_images(str(image_folder), 'png', SMALL, snapshot_dir=str(snapshots))

    assert len(canvas.placements) == 3
    for a, b in itertools.combinations(canvas.placements, 2):
        assert not a.overlaps(b)
    assert sorted(os.listdir(snapshots)) == ['collage_step_1.png', 'collage_step_2.png']
    with Image.open(snapshots / 'collage_step_2.png') as last:
        assert last.size == canvas.size


def test_main_writes_collage(image_folder, tmp_path):
    output = tmp_path / 'out' / 'collage.png'
    status = main([str(image_folder), '-o', str(output), '--standard-width', '20', '--padding', '2'])

    assert status == 0
    with Image.open(output) as result:
        assert result.mode == 'RGBA'
        assert result.width >= 24


def test_main_jpeg_output_is_rgb(image_folder, tmp_path):
    output = tmp_path / 'collage.jpg'
    assert main([str(image_folder), '-e', 'png', '-o', str(output), '--standard-width', '20']) == 0
    with Image.open(output) as result:
        assert result.mode == 'RGB'


def test_main_reports_errors(image_folder, tmp_path, capsys):
    assert main([str(tmp_path / 'missing')]) == 1
    assert 'Error:' in capsys.readouterr().out

    assert main([str(image_folder), '-e', 'gif']) == 1
    assert main([str(image_folder), '--padding', '-1']) == 1
    assert main([str(image_folder), '--padding', '0']) == 1


def test_oversized_image_follows_decode_policy(image_folder, monkeypatch):
    real_open = Image.open

    def guarded_open(path, *args, **kwargs):
        if os.path.basename(str(path)) == 'square.png':
            raise Image.DecompressionBombError('too many pixels')
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr(Image, 'open', guarded_open)

    rects = load_rectangles(str(image_folder), 'png', SMALL)
    assert [r.name for r in rects] == ['tall.png', 'wide.png']

    abort = CollageConfig(standard_width=20, padding=2, decode_errors=DecodeErrorPolicy.ABORT)
    with pytest.raises(ImageDecodeError):
        load_rectangles(str(image_folder), 'png', abort)


def test_save_canvas_raises_write_error(image_folder, tmp_path):
    canvas = process_images(str(image_folder), 'png', SMALL)
    with pytest.raises(ImageWriteError):
        save_canvas(canvas, str(tmp_path / 'collage.xyz'))

    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory')
    with pytest.raises(ImageWriteError):
        save_canvas(canvas, str(blocker / 'collage.png'))


def test_unwritable_snapshot_dir(image_folder, tmp_path):
    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory')
    with pytest.raises(ImageWriteError):
        process_images(str(image_folder), 'png', SMALL, snapshot_dir=str(blocker / 'steps'))


def test_main_reports_write_errors(image_folder, tmp_path, capsys):
    status = main([str(image_folder), '-e', 'png', '--standard-width', '20',
                   '-o', str(tmp_path / 'collage.xyz')])
    assert status == 1
    assert 'Error:' in capsys.readouterr().out
