import numpy as np
import pytest
from qr_viewer.core.exceptions import ProcessingError
from qr_viewer.engines.detection.schemas import CodePosition, DecodedSymbol, StrategyResult
from qr_viewer.engines.detection.services import QRDetectionService, deduplicate
from qr_viewer.engines.detection.strategies import DetectionStrategy
from qr_viewer.modules.uploads.models import CodeType


def _symbol(content, x=0, y=0):
    return DecodedSymbol(content=content, position=CodePosition(x=x, y=y))


def test_deduplicate_keeps_first_strategy_occurrence():
    results = [
        StrategyResult(strategy="original", symbols=[_symbol("A", 1, 1), _symbol("B", 2, 2)]),
        StrategyResult(strategy="contrast_0.5", symbols=[_symbol("A", 9, 9), _symbol("C", 3, 3)]),
        StrategyResult(strategy="contrast_1", symbols=[_symbol("B", 8, 8)]),
    ]

    unique = deduplicate(results)

    assert [(strategy, s.content) for strategy, s in unique] == [
        ("original", "A"),
        ("original", "B"),
        ("contrast_0.5", "C"),
    ]
    assert unique[0][1].position == CodePosition(x=1, y=1)


def test_deduplicate_skips_failed_strategies():
    results = [
        StrategyResult(strategy="original", error="boom"),
        StrategyResult(strategy="contrast_0.5", symbols=[_symbol("A")]),
    ]
    assert [s.content for _, s in deduplicate(results)] == ["A"]


@pytest.mark.asyncio
async def test_every_strategy_runs_even_after_a_hit(tmp_path, blank_png):
    path = tmp_path / "img.png"
    path.write_bytes(blank_png)
    calls = []

    def decoder(raster):
        calls.append(raster.shape)
        return [_symbol("same payload")]

    service = QRDetectionService(decoder=decoder)

    detected = await service.detect("upload-1", path)

    assert len(calls) == 3
    assert [d.content for d in detected] == ["same payload"]
    assert detected[0].strategy == "original"


@pytest.mark.asyncio
async def test_failing_strategy_does_not_sink_the_others(tmp_path, blank_png):
    path = tmp_path / "img.png"
    path.write_bytes(blank_png)

    def explode(raster):
        raise RuntimeError("transform failed")

    strategies = [
        DetectionStrategy("original", explode),
        DetectionStrategy("inverted", lambda raster: 255 - raster),
    ]
    service = QRDetectionService(strategies=strategies, decoder=lambda raster: [_symbol("tel:123")])

    results = await service.run_strategies(np.zeros((4, 4), dtype=np.uint8))
    detected = await service.detect("upload-2", path)

    assert [r.strategy for r in results] == ["original", "inverted"]
    assert results[0].error == "transform failed"
    assert [(d.content, d.code_type, d.strategy) for d in detected] == [
        ("tel:123", CodeType.PHONE, "inverted"),
    ]


@pytest.mark.asyncio
async def test_detect_raises_for_undecodable_file(tmp_path, corrupt_png):
    path = tmp_path / "broken.png"
    path.write_bytes(corrupt_png)

    with pytest.raises(ProcessingError):
        await QRDetectionService().detect("upload-3", path)


@pytest.mark.asyncio
async def test_detect_real_qr_code(tmp_path, qr_png):
    path = tmp_path / "code.png"
    path.write_bytes(qr_png("https://example.com"))

    detected = await QRDetectionService().detect("upload-4", path)

    assert len(detected) == 1
    assert detected[0].content == "https://example.com"
    assert detected[0].code_type == CodeType.URL
    assert detected[0].confidence == 1.0
