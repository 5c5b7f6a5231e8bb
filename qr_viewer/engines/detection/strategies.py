"""
Detection strategies

A strategy is one raster transform followed by one decode attempt with
OpenCV's QR detector. The default set is the unmodified grayscale raster
plus one contrast-enhanced variant per configured coefficient.

Only loading the image can fail the whole detection (ProcessingError).
A strategy that raises is logged and reported as a StrategyResult with an
error and no symbols.
"""

import functools
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import cv2
import numpy as np
from PIL import Image

from qr_viewer.core.exceptions import ProcessingError
from qr_viewer.core.logging import get_logger
from qr_viewer.core.metrics import track_strategy_latency
from qr_viewer.engines.detection.schemas import CodePosition, DecodedSymbol, StrategyResult

logger = get_logger(__name__)

Decoder = Callable[[np.ndarray], List[DecodedSymbol]]


# =============================================================================
# Raster Loading
# =============================================================================

def load_grayscale(image_path: Union[str, Path]) -> np.ndarray:
    """Decode the stored file and convert it to an 8-bit grayscale array."""
    try:
        with Image.open(image_path) as img:
            img.load()
            gray = img.convert("L")
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ProcessingError(f"Unable to decode image: {e}") from e
    return np.asarray(gray, dtype=np.uint8)


# =============================================================================
# Raster Transforms
# =============================================================================

def enhance_contrast(raster: np.ndarray, coefficient: float) -> np.ndarray:
    """Stretch pixel values away from mid-grey.

    coefficient in [-1, 1]; values are scaled by (1 + c) / (1 - c) around 127
    and clipped. At c = 1 the scale is unbounded, which leaves a hard
    threshold: pixels above 127 become white, the rest black.
    """
    if not -1.0 <= coefficient <= 1.0:
        raise ValueError(f"Contrast coefficient must be between -1 and 1, got {coefficient}")

    if coefficient >= 1.0:
        return np.where(raster > 127, 255, 0).astype(np.uint8)

    factor = (1.0 + coefficient) / (1.0 - coefficient)
    adjusted = np.floor(factor * (raster.astype(np.float32) - 127.0) + 127.0)
    return np.clip(adjusted, 0, 255).astype(np.uint8)


def _identity(raster: np.ndarray) -> np.ndarray:
    return raster


# =============================================================================
# Decoding
# =============================================================================

def _first_corner(corners) -> Optional[CodePosition]:
    if corners is None:
        return None
    points = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
    if points.size == 0:
        return None
    return CodePosition(x=int(round(float(points[0][0]))), y=int(round(float(points[0][1]))))


def decode_symbols(raster: np.ndarray) -> List[DecodedSymbol]:
    """Decode every QR symbol OpenCV can find; payload text is kept as-is."""
    detector = cv2.QRCodeDetector()
    symbols = []

    try:
        found, decoded, points, _ = detector.detectAndDecodeMulti(raster)
    except cv2.error as e:
        logger.debug("multi_decode_failed", error=str(e))
        found, decoded, points = False, (), None

    if found and points is not None:
        for text, corners in zip(decoded, points):
            if text:
                symbols.append(DecodedSymbol(content=text, position=_first_corner(corners)))
        if symbols and all(decoded):
            return symbols

    # Single-symbol pass picks up what the multi pass missed
    try:
        text, corners, _ = detector.detectAndDecode(raster)
    except cv2.error as e:
        logger.debug("single_decode_failed", error=str(e))
        return symbols
    if text and text not in {s.content for s in symbols}:
        symbols.append(DecodedSymbol(content=text, position=_first_corner(corners)))
    return symbols


# =============================================================================
# Strategies
# =============================================================================

@dataclass(frozen=True)
class DetectionStrategy:
    name: str
    transform: Callable[[np.ndarray], np.ndarray]


def build_strategies(contrast_coefficients: Sequence[float] = (0.5, 1.0)) -> List[DetectionStrategy]:
    """Original raster first, then one contrast variant per coefficient, in order."""
    strategies = [DetectionStrategy("original", _identity)]
    for coefficient in contrast_coefficients:
        strategies.append(
            DetectionStrategy(
                f"contrast_{coefficient:g}",
                functools.partial(enhance_contrast, coefficient=coefficient),
            )
        )
    return strategies


def run_strategy(
    strategy: DetectionStrategy,
    raster: np.ndarray,
    decoder: Decoder = decode_symbols
) -> StrategyResult:
    """Apply one strategy. Never raises."""
    start = time.time()
    try:
        with track_strategy_latency(strategy.name):
            symbols = decoder(strategy.transform(raster))
    except Exception as e:
        latency_ms = (time.time() - start) * 1000
        logger.warning(
            "strategy_failed",
            strategy=strategy.name,
            error=str(e),
            error_type=type(e).__name__,
            latency_ms=round(latency_ms, 2),
        )
        return StrategyResult(strategy=strategy.name, error=str(e), latency_ms=latency_ms)

    latency_ms = (time.time() - start) * 1000
    logger.debug(
        "strategy_completed",
        strategy=strategy.name,
        symbols_found=len(symbols),
        latency_ms=round(latency_ms, 2),
    )
    return StrategyResult(strategy=strategy.name, symbols=symbols, latency_ms=latency_ms)
