from datetime import datetime, timezone

import pytest

from imaging import pipeline as pipeline_module
from imaging.errors import DecodeError, EncodeError, StoreUnavailable, UnsupportedFormat
from imaging.pipeline import Pipeline
from imaging.pixels import decode


def test_red_png_becomes_gray_and_is_listed(store, red_png):
    started = datetime.now(timezone.utc)
    stored = Pipeline(store).process(red_png, "red.png", "image/png")

    result = decode(store.read(stored.filename), "image/png")
    assert (result.width, result.height) == (2, 2)
    assert result.data.reshape(-1, 4).tolist() == [[85, 85, 85, 255]] * 4

    listed = {o.filename: o for o in store.list()}
    assert stored.filename in listed
    assert listed[stored.filename].created_at >= started


def test_process_reads_staged_upload_without_deleting_it(store, tmp_path, red_png):
    staged = tmp_path / "upload-123"
    staged.write_bytes(red_png)
    stored = Pipeline(store).process(staged, "red.png", "image/png")
    assert stored.path.exists()
    assert staged.exists()


def test_jpeg_input_is_stored_as_png(store, encode_image):
    from PIL import Image  # type: ignore

    jpeg = encode_image(Image.new("RGB", (10, 6), color=(30, 60, 90)), "JPEG")
    stored = Pipeline(store).process(jpeg, "photo.jpeg", "image/jpeg")
    assert stored.filename.endswith("-photo.png")
    result = decode(store.read(stored.filename), "png")
    assert (result.width, result.height) == (10, 6)
    assert (result.data[..., 0] == result.data[..., 2]).all()


def test_custom_transform_is_applied(store, red_png):
    def invert(buffer):
        from imaging.pixels import PixelBuffer

        data = buffer.data.copy()
        data[..., :3] = 255 - data[..., :3]
        return PixelBuffer(buffer.width, buffer.height, data)

    stored = Pipeline(store, transform=invert).process(red_png, "red.png", "image/png")
    result = decode(store.read(stored.filename), "png")
    assert result.data[0, 0].tolist() == [0, 255, 255, 255]


def test_corrupt_bytes_are_decode_error_and_store_nothing(store):
    with pytest.raises(DecodeError):
        Pipeline(store).process(b"not really a png", "fake.png", "image/png")
    assert store.list() == []
    assert list(store.root.iterdir()) == []


def test_unsupported_type_skips_decoding(store, red_png, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("decode must not be attempted")

    monkeypatch.setattr(pipeline_module, "decode", fail)
    with pytest.raises(UnsupportedFormat):
        Pipeline(store).process(red_png, "red.bmp", "image/bmp")
    with pytest.raises(UnsupportedFormat):
        Pipeline(store).process(red_png, "red.png", "image/gif")
    assert store.list() == []


def test_missing_staged_file_is_decode_error(store, tmp_path):
    with pytest.raises(DecodeError):
        Pipeline(store).process(tmp_path / "gone", "gone.png", "image/png")


def test_store_failure_propagates(store, red_png, monkeypatch):
    def broken_save(encoded, original_name):
        raise StoreUnavailable("Could not write to output directory: Read-only file system")

    monkeypatch.setattr(store, "save", broken_save)
    with pytest.raises(StoreUnavailable):
        Pipeline(store).process(red_png, "red.png", "image/png")


def test_encode_failure_stores_nothing(store, red_png, monkeypatch):
    from PIL import Image  # type: ignore

    def broken_save(self, *args, **kwargs):
        raise OSError("encoder error -2")

    monkeypatch.setattr(Image.Image, "save", broken_save)
    with pytest.raises(EncodeError):
        Pipeline(store).process(red_png, "red.png", "image/png")
    assert store.list() == []
    assert list(store.root.iterdir()) == []
