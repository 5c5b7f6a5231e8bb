import cv2
import numpy as np
import pytest
from qr_viewer.core.exceptions import ProcessingError
from qr_viewer.engines.detection.schemas import DecodedSymbol
from qr_viewer.engines.detection.strategies import (
    build_strategies,
    decode_symbols,
    enhance_contrast,
    load_grayscale,
    run_strategy,
)


def test_contrast_zero_is_identity():
    raster = np.array([[0, 64, 127, 128, 200, 255]], dtype=np.uint8)
    assert np.array_equal(enhance_contrast(raster, 0.0), raster)


def test_contrast_half_triples_distance_from_pivot():
    raster = np.array([[100, 127, 140, 200]], dtype=np.uint8)
    # factor 3: floor(3 * (v - 127) + 127), clipped
    assert enhance_contrast(raster, 0.5).tolist() == [[46, 127, 166, 255]]


def test_contrast_one_is_threshold():
    raster = np.array([[0, 127, 128, 255]], dtype=np.uint8)
    assert enhance_contrast(raster, 1.0).tolist() == [[0, 0, 255, 255]]


def test_contrast_rejects_out_of_range_coefficient():
    with pytest.raises(ValueError):
        enhance_contrast(np.zeros((2, 2), dtype=np.uint8), 1.5)


def test_default_strategy_names_and_order():
    assert [s.name for s in build_strategies()] == ["original", "contrast_0.5", "contrast_1"]


def test_run_strategy_reports_decoder_error():
    strategy = build_strategies()[0]

    def broken_decoder(raster):
        raise RuntimeError("decoder exploded")

    result = run_strategy(strategy, np.zeros((10, 10), dtype=np.uint8), broken_decoder)

    assert result.strategy == "original"
    assert result.symbols == []
    assert result.error == "decoder exploded"
    assert not result.ok


def test_run_strategy_passes_transformed_raster_to_decoder():
    strategy = build_strategies([1.0])[1]
    seen = []

    def recording_decoder(raster):
        seen.append(raster)
        return [DecodedSymbol(content="x")]

    result = run_strategy(strategy, np.array([[10, 200]], dtype=np.uint8), recording_decoder)

    assert result.ok
    assert [s.content for s in result.symbols] == ["x"]
    assert seen[0].tolist() == [[0, 255]]


def test_load_grayscale_returns_2d_uint8(tmp_path, qr_png):
    path = tmp_path / "code.png"
    path.write_bytes(qr_png("hello"))

    raster = load_grayscale(path)

    assert raster.ndim == 2
    assert raster.dtype == np.uint8


def test_load_grayscale_rejects_truncated_file(tmp_path, corrupt_png):
    path = tmp_path / "broken.png"
    path.write_bytes(corrupt_png)

    with pytest.raises(ProcessingError):
        load_grayscale(path)


def test_load_grayscale_rejects_missing_file(tmp_path):
    with pytest.raises(ProcessingError):
        load_grayscale(tmp_path / "missing.png")


def test_decode_symbols_reads_payload_verbatim(tmp_path, qr_png):
    path = tmp_path / "code.png"
    path.write_bytes(qr_png("https://example.com"))

    symbols = decode_symbols(load_grayscale(path))

    assert [s.content for s in symbols] == ["https://example.com"]
    assert symbols[0].position is not None
    assert symbols[0].confidence == 1.0


def test_decode_symbols_blank_image(tmp_path, blank_png):
    path = tmp_path / "blank.png"
    path.write_bytes(blank_png)

    assert decode_symbols(load_grayscale(path)) == []


class _ScriptedDetector:
    """Stands in for cv2.QRCodeDetector with canned multi and single results."""

    def __init__(self, multi, single):
        self.multi = multi
        self.single = single

    def detectAndDecodeMulti(self, raster):
        if isinstance(self.multi, Exception):
            raise self.multi
        return self.multi

    def detectAndDecode(self, raster):
        if isinstance(self.single, Exception):
            raise self.single
        return self.single


def _corners(x, y):
    return np.array([[[x, y], [x + 10, y], [x + 10, y + 10], [x, y + 10]]], dtype=np.float32)


def _use_detector(monkeypatch, detector):
    monkeypatch.setattr(cv2, "QRCodeDetector", lambda: detector)


def test_decode_symbols_falls_back_when_multi_decode_errors(monkeypatch):
    _use_detector(monkeypatch, _ScriptedDetector(
        multi=cv2.error("multi decode failed"),
        single=("hello", _corners(1, 2), None),
    ))

    symbols = decode_symbols(np.zeros((20, 20), dtype=np.uint8))

    assert [s.content for s in symbols] == ["hello"]
    assert (symbols[0].position.x, symbols[0].position.y) == (1, 2)


def test_decode_symbols_single_pass_fills_partial_multi_decode(monkeypatch):
    points = np.concatenate([_corners(0, 0), _corners(30, 30)])
    _use_detector(monkeypatch, _ScriptedDetector(
        multi=(True, ("first", ""), points, None),
        single=("second", _corners(30, 30), None),
    ))

    symbols = decode_symbols(np.zeros((20, 20), dtype=np.uint8))

    assert [s.content for s in symbols] == ["first", "second"]


def test_decode_symbols_single_pass_does_not_duplicate(monkeypatch):
    points = np.concatenate([_corners(0, 0), _corners(30, 30)])
    _use_detector(monkeypatch, _ScriptedDetector(
        multi=(True, ("first", ""), points, None),
        single=("first", _corners(0, 0), None),
    ))

    symbols = decode_symbols(np.zeros((20, 20), dtype=np.uint8))

    assert [s.content for s in symbols] == ["first"]


def test_decode_symbols_returns_empty_when_both_passes_error(monkeypatch):
    _use_detector(monkeypatch, _ScriptedDetector(
        multi=cv2.error("multi decode failed"),
        single=cv2.error("single decode failed"),
    ))

    assert decode_symbols(np.zeros((20, 20), dtype=np.uint8)) == []
