import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from macrostack.errors import DecodeError
from macrostack.grid import PixelGrid
from macrostack.preprocess import collect_inputs, conform_to_canonical, load_image_stack


def test_collect_inputs_expands_directories(tmp_path):
    shots = tmp_path / "shots"
    shots.mkdir()
    for name in ("b.JPG", "a.png", "notes.txt", "c.nef"):
        (shots / name).write_bytes(b"")
    (shots / "nested").mkdir()
    extra = tmp_path / "extra.tif"

    paths = collect_inputs([shots, str(extra)])

    assert [p.name for p in paths] == ["a.png", "b.JPG", "c.nef", "extra.tif"]


def test_load_keeps_input_order(executor, reporter):
    # Later files finish first.
    def decoder(path):
        index = int(path.stem)
        time.sleep(0.02 * (3 - index))
        return PixelGrid(np.full((2, 2, 3), index + 1, dtype=np.uint8))

    frames = load_image_stack([f"{i}.png" for i in range(4)], executor, reporter, decoder)

    assert [int(f.pixels[0, 0, 0]) for f in frames] == [1, 2, 3, 4]
    assert reporter.percent == 30


def test_load_reports_first_failure_in_input_order(executor, reporter):
    def decoder(path):
        if path.stem in ("1", "2"):
            raise DecodeError(path, "bad data")
        return PixelGrid.blank(2, 2)

    with pytest.raises(DecodeError) as info:
        load_image_stack([f"{i}.png" for i in range(3)], executor, reporter, decoder)
    assert info.value.path.name == "1.png"



def test_load_failure_skips_queued_decodes(reporter):
    started = []
    lock = threading.Lock()

    def decoder(path):
        with lock:
            started.append(path.stem)
        if path.stem == "0":
            raise OSError("truncated file")
        time.sleep(0.01)
        return PixelGrid.blank(2, 2)

    with ThreadPoolExecutor(max_workers=1) as pool:
        with pytest.raises(DecodeError) as info:
            load_image_stack([f"{i}.png" for i in range(30)], pool, reporter, decoder)

    assert info.value.path.name == "0.png"
    assert isinstance(info.value.cause, OSError)
    assert len(started) < 10

def test_conform_to_canonical(textured_frame):
    larger = PixelGrid(np.full((60, 70, 3), 9, dtype=np.uint8))
    smaller = PixelGrid(textured_frame.pixels[:10, :20].copy())

    frames = conform_to_canonical([textured_frame, larger, smaller])

    assert frames[0] is textured_frame
    assert all(f.size == (64, 48) for f in frames)
    assert np.all(frames[1].pixels == 9)
    np.testing.assert_array_equal(frames[2].pixels[:10, :20], textured_frame.pixels[:10, :20])
    assert not frames[2].pixels[10:].any()
