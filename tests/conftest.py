"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Project root on sys.path (flat module layout)
- Test environment variables, set before the service module loads config at import time
- Helpers for building upstream SSE bodies
"""

import json
import os
import sys
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

os.environ.setdefault("LLM_API_KEY", "test-key")
os.environ.setdefault("LLM_MODELS", "model-a,model-b,model-c")
os.environ.setdefault("LLM_ENDPOINT_URL", "https://upstream.test/v1/chat/completions")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_COLOR", "false")


def sse_delta(text: str) -> str:
    """One chat-delta SSE event."""
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n\n"


def sse_done() -> str:
    return "data: [DONE]\n\n"


@pytest.fixture
def sse_body():
    """Build an upstream SSE body from text deltas, terminated by [DONE]."""

    def _build(*texts: str, done: bool = True) -> bytes:
        out = "".join(sse_delta(t) for t in texts)
        if done:
            out += sse_done()
        return out.encode("utf-8")

    return _build
