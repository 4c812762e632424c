# ============================================================================
# Token Feed API Routes Module
# ============================================================================

from app.api.tokens import router as tokens_router
from app.api.stream import router as stream_router

__all__ = ["tokens_router", "stream_router"]
