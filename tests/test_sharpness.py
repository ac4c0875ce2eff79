import numpy as np

from macrostack.sharpness import depth_sharpness, laplacian, local_contrast


def test_local_contrast_window():
    gray = np.full((9, 9), 100, dtype=np.uint8)
    gray[4, 4] = 160

    contrast = local_contrast(gray, np.ones_like(gray, dtype=bool), 1)
    assert contrast[4, 4] == 60
    assert contrast[3, 3] == 60
    assert contrast[0, 0] == 0
    assert contrast[2, 4] == 0


def test_local_contrast_ignores_sentinel_samples():
    gray = np.full((5, 5), 200, dtype=np.uint8)
    gray[2, 3] = 0
    valid = gray > 0

    contrast = local_contrast(gray, valid, 1)
    assert contrast[2, 2] == 0


def test_local_contrast_all_sentinel_is_zero():
    gray = np.zeros((5, 5), dtype=np.uint8)
    contrast = local_contrast(gray, np.zeros_like(gray, dtype=bool), 2)
    assert not contrast.any()


def test_laplacian_interior_and_border():
    gray = np.full((5, 5), 10, dtype=np.uint8)
    gray[2, 2] = 50
    lap = laplacian(gray)

    assert lap[2, 2] == 160
    assert lap[1, 2] == 40
    assert not lap[0].any() and not lap[-1].any()
    assert not lap[:, 0].any() and not lap[:, -1].any()


def test_depth_sharpness_prefers_texture():
    flat = np.full((20, 20), 120, dtype=np.uint8)
    yy, xx = np.mgrid[0:20, 0:20]
    checker = np.where((xx + yy) % 2 == 0, 200, 50).astype(np.uint8)
    valid = np.ones((20, 20), dtype=bool)

    assert depth_sharpness(checker, valid)[10, 10] > depth_sharpness(flat, valid)[10, 10]
    assert depth_sharpness(flat, valid)[10, 10] == 0
