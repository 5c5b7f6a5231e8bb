from pydantic import BaseModel, Field
from typing import List, Optional

from qr_viewer.modules.uploads.models import CodeType


class CodePosition(BaseModel):
    """Pixel coordinates of the symbol's first corner."""
    x: int
    y: int


class DecodedSymbol(BaseModel):
    """One payload returned by the decoder for one raster."""
    content: str
    position: Optional[CodePosition] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class StrategyResult(BaseModel):
    """Outcome of a single strategy: decoded symbols, or the error that stopped it."""
    strategy: str
    symbols: List[DecodedSymbol] = Field(default_factory=list)
    error: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class DetectedSymbol(DecodedSymbol):
    """A unique, classified payload ready to persist."""
    code_type: CodeType = CodeType.TEXT
    strategy: str
