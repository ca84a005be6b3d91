from .types import (
    ApiMessage,
    ApiStreamChunk,
    ApiStreamTextChunk,
    ApiStreamUsageChunk,
    ModelInfo,
)

__all__ = [
    "ApiMessage",
    "ApiStreamChunk",
    "ApiStreamTextChunk",
    "ApiStreamUsageChunk",
    "ModelInfo",
]
