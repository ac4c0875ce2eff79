import math

import numpy as np
import pytest

from macrostack.align import Offset, align_images, alignment_score, detect_keypoints, find_offset
from macrostack.grid import to_gray

from conftest import gray_grid, smooth_texture


def crop(texture, tx, ty, size=160, margin=20):
    """Window of `texture` whose content sits at reference position + (tx, ty)."""
    return texture[margin + ty:margin + ty + size, margin + tx:margin + tx + size]


@pytest.fixture
def texture():
    return smooth_texture(200, 200)


def test_identical_frame_has_zero_offset(texture):
    ref = crop(texture, 0, 0)
    assert alignment_score(ref, ref, 0, 0) == 0
    assert find_offset(ref, ref.copy()) == Offset(0, 0)


@pytest.mark.parametrize("tx, ty", [(10, -5), (-7, 3), (0, 12)])
def test_find_offset_recovers_translation(texture, tx, ty):
    ref = crop(texture, 0, 0)
    frame = crop(texture, tx, ty)

    offset = find_offset(ref, frame)

    assert offset == Offset(tx, ty)
    assert alignment_score(ref, frame, tx, ty) == 0


def test_alignment_score_without_overlap_is_inf():
    gray = np.full((20, 20), 100, dtype=np.uint8)
    assert math.isinf(alignment_score(gray, gray, 25, 0))


def test_flat_frames_keep_identity():
    flat = np.full((80, 80), 90, dtype=np.uint8)
    assert find_offset(flat, flat) == Offset(0, 0)


def test_detect_keypoints_needs_texture(texture):
    flat = np.full((200, 200), 128, dtype=np.uint8)
    assert len(detect_keypoints(flat)) == 0

    points = detect_keypoints(texture)
    assert len(points) > 0
    assert points[:, 0].min() >= 20 and points[:, 1].min() >= 20
    assert points[:, 0].max() < 180 and points[:, 1].max() < 180


def test_align_images_recanvases_frames(texture, reporter):
    ref = gray_grid(crop(texture, 0, 0))
    moved = gray_grid(crop(texture, -7, 3))

    aligned, offsets, keypoints = align_images([ref, moved], reporter)

    assert offsets == [Offset(0, 0), Offset(-7, 3)]
    assert aligned[0] is ref
    assert aligned[1].size == ref.size
    # Content matches the reference where covered, the uncovered strips are sentinel.
    np.testing.assert_array_equal(aligned[1].pixels[3:, :-7], ref.pixels[3:, :-7])
    assert not aligned[1].pixels[:3].any()
    assert not aligned[1].pixels[:, -7:].any()
    assert keypoints > 0


def test_align_images_reports_progress(texture):
    from macrostack.progress import ProgressReporter

    events = []
    frames = [gray_grid(crop(texture, i, 0)) for i in range(4)]
    with ProgressReporter(lambda p, m: events.append((p, m))) as reporter:
        align_images(frames, reporter)

    assert [p for p, _ in events] == [35, 40, 45]
    assert events[-1][1] == "Aligning 4/4"
    assert to_gray(frames[0].pixels).shape == (160, 160)
