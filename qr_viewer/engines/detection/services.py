import asyncio
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from qr_viewer.core.config import Settings
from qr_viewer.core.logging import get_logger, log_context
from qr_viewer.engines.detection.classifier import classify_content
from qr_viewer.engines.detection.schemas import DecodedSymbol, DetectedSymbol, StrategyResult
from qr_viewer.engines.detection.strategies import (
    Decoder,
    DetectionStrategy,
    build_strategies,
    decode_symbols,
    load_grayscale,
    run_strategy,
)

logger = get_logger(__name__)


def deduplicate(results: Sequence[StrategyResult]) -> List[Tuple[str, DecodedSymbol]]:
    """Collapse identical payload text across strategies.

    Results are walked in strategy order, so the first strategy to report a
    payload supplies its position and confidence.
    """
    seen = set()
    unique = []
    for result in results:
        for symbol in result.symbols:
            if symbol.content in seen:
                continue
            seen.add(symbol.content)
            unique.append((result.strategy, symbol))
    return unique


class QRDetectionService:
    """Multi-strategy QR detection over one stored image.

    Flow:
    1. Decode the file to a grayscale raster (ProcessingError if unreadable)
    2. Run every strategy concurrently on worker threads
    3. Deduplicate by payload text, keeping strategy order
    4. Classify each unique payload
    """

    def __init__(
        self,
        strategies: Optional[List[DetectionStrategy]] = None,
        decoder: Decoder = decode_symbols
    ):
        self.strategies = strategies or build_strategies()
        self.decoder = decoder

    @classmethod
    def from_settings(cls, settings: Settings) -> "QRDetectionService":
        return cls(strategies=build_strategies(settings.contrast_coefficients))

    @property
    def strategy_names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    async def run_strategies(self, raster) -> List[StrategyResult]:
        # gather keeps results in strategy order regardless of finish order
        return list(await asyncio.gather(*[
            asyncio.to_thread(run_strategy, strategy, raster, self.decoder)
            for strategy in self.strategies
        ]))

    async def detect(self, upload_id: str, image_path: Union[str, Path]) -> List[DetectedSymbol]:
        start_time = time.time()

        with log_context(upload_id=upload_id):
            raster = await asyncio.to_thread(load_grayscale, image_path)
            height, width = raster.shape[:2]

            results = await self.run_strategies(raster)
            unique = deduplicate(results)

            detected = [
                DetectedSymbol(
                    content=symbol.content,
                    position=symbol.position,
                    confidence=symbol.confidence,
                    code_type=classify_content(symbol.content),
                    strategy=strategy,
                )
                for strategy, symbol in unique
            ]

            logger.info(
                "detection_finished",
                width=width,
                height=height,
                strategies={result.strategy: len(result.symbols) for result in results},
                failed_strategies=[result.strategy for result in results if not result.ok],
                codes_found=len(detected),
                duration_ms=int((time.time() - start_time) * 1000),
            )
            return detected
