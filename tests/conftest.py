import asyncio
from unittest.mock import AsyncMock

import pytest

from leaddesk.services.augmentation import ResponseAugmenter
from leaddesk.services.booking_registry import BookingFlowRegistry
from leaddesk.services.scheduling_settings import SchedulingSettings, StaticSettingsProvider
from leaddesk.services.session_controller import SessionController


async def settle(rounds: int = 20) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Simulated time for anything that takes an injectable sleep."""

    def __init__(self):
        self.now = 0.0
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + seconds, future))
        await future

    @property
    def pending_sleeps(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while True:
            due = [(deadline, future) for deadline, future in self._sleepers if deadline <= target and not future.done()]
            if not due:
                break
            deadline, future = min(due, key=lambda item: item[0])
            self._sleepers.remove((deadline, future))
            self.now = deadline
            future.set_result(None)
            await settle()
        self.now = target
        self._sleepers = [(deadline, future) for deadline, future in self._sleepers if not future.done()]
        await settle()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return BookingFlowRegistry()


@pytest.fixture
def scheduling():
    return SchedulingSettings()


@pytest.fixture
def augmenter(registry, scheduling):
    return ResponseAugmenter(registry, settings_provider=StaticSettingsProvider(scheduling))


@pytest.fixture
def api():
    """Mock backend with canned replies."""
    mock = AsyncMock()
    mock.get_conversation.return_value = {
        "lead_id": "lead-1",
        "messages": [],
        "current_step": 0,
        "parsed_fields": {},
    }
    mock.send_message.return_value = {
        "assistant_message": "Thanks, noted.",
        "conversation_id": "conv-1",
    }
    mock.ai_reply.return_value = {"assistant_message": "What size is the job?"}
    return mock


@pytest.fixture
def controller(api, registry, augmenter, clock):
    return SessionController(
        api,
        "lead-1",
        company_id="company-1",
        registry=registry,
        augmenter=augmenter,
        sleep=clock.sleep,
        delay_seconds=5,
        smart_delay=False,
    )
