import numpy as np
import pytest
from astropy.io import fits

from macrostack.decode import decode
from macrostack.encode import OutputFormat, encode, with_extension
from macrostack.errors import ConfigError
from macrostack.grid import PixelGrid


def test_fits_round_trip(textured_frame, tmp_path):
    path = encode(textured_frame, tmp_path / "stacked", OutputFormat.FITS)

    assert path.name == "stacked.fits"
    with fits.open(path) as hdul:
        assert len(hdul) == 3
        for i, (hdu, channel) in enumerate(zip(hdul, ("RED", "GREEN", "BLUE"))):
            assert hdu.header["CHANNEL"] == channel
            assert hdu.data.dtype.kind == "f" and hdu.data.dtype.itemsize == 4
            expected = textured_frame.pixels[..., i].astype(np.float32) / 255.0
            np.testing.assert_allclose(hdu.data, expected, rtol=0, atol=1e-6)
            assert hdu.data.min() >= 0.0 and hdu.data.max() <= 1.0


def test_fits_decodes_back_to_pixels(textured_frame, tmp_path):
    path = encode(textured_frame, tmp_path / "stacked.fits", OutputFormat.FITS)
    np.testing.assert_array_equal(decode(path).pixels, textured_frame.pixels)


@pytest.mark.parametrize("fmt", [OutputFormat.PNG, OutputFormat.TIFF])
def test_lossless_raster_round_trip(fmt, textured_frame, tmp_path):
    path = encode(textured_frame, tmp_path / "out", fmt)
    assert path.suffix == fmt.extension
    np.testing.assert_array_equal(decode(path).pixels, textured_frame.pixels)


def test_jpeg_is_close(tmp_path):
    pixels = np.full((32, 32, 3), (200, 120, 40), dtype=np.uint8)
    path = encode(PixelGrid(pixels), tmp_path / "out.jpg", OutputFormat.JPEG)
    assert path.name == "out.jpg"
    decoded = decode(path).pixels.astype(int)
    assert np.abs(decoded - pixels).max() <= 6


def test_cr2_is_written_as_tiff(textured_frame, tmp_path):
    path = encode(textured_frame, tmp_path / "shot", OutputFormat.CR2)
    assert path == tmp_path / "shot.tif"
    assert path.is_file()
    assert not (tmp_path / "shot.cr2").exists()


def test_with_extension():
    assert with_extension("a/b", OutputFormat.PNG).as_posix() == "a/b.png"
    assert with_extension("a/b.PNG", OutputFormat.PNG).as_posix() == "a/b.PNG"
    assert with_extension("a/b.png", OutputFormat.FITS).as_posix() == "a/b.png.fits"


@pytest.mark.parametrize("name, fmt", [("fits", OutputFormat.FITS), (".jpg", OutputFormat.JPEG), ("TIFF", OutputFormat.TIFF)])
def test_parse(name, fmt):
    assert OutputFormat.parse(name) is fmt


def test_parse_unknown():
    with pytest.raises(ConfigError):
        OutputFormat.parse("webp")
