import asyncio
from typing import List, Optional

import pytest

from checker.core.prompt import PromptVariant
from config.settings import Settings


class FakeCompletionClient:
    """Records the messages it receives and yields canned fragments."""

    def __init__(self, fragments: List[str], error: Optional[Exception] = None, cancel_after: Optional[int] = None, cancel: Optional[asyncio.Event] = None, delay: float = 0.0):
        self.fragments = fragments
        self.delay = delay
        self.produced = 0
        self.error = error
        self.cancel_after = cancel_after
        self.cancel = cancel
        self.calls: List[list] = []
        self.closed = False

    async def send_request(self, messages):
        self.calls.append(list(messages))
        try:
            for index, fragment in enumerate(self.fragments):
                if self.cancel_after is not None and index == self.cancel_after and self.cancel is not None:
                    self.cancel.set()
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.produced += 1
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class FakeFetcher:
    def __init__(self, content: str = "Rule 1: escape output.", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls = []

    async def __call__(self, location, encoding="utf-8"):
        self.calls.append((location, encoding))
        if self.error is not None:
            raise self.error
        return self.content


@pytest.fixture
def settings():
    return Settings(
        checklist_bucket="security-docs",
        checklist_blob="checklist.md",
        google_api_key="test-key",
        prompt_variant="en",
    )


@pytest.fixture
def variant():
    return PromptVariant(name="test", preamble="PREAMBLE\n{checklist}", source_heading="# Source")
