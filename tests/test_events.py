import pytest
from loguru import logger

from paycall.events import (
    LoguruEventSink,
    MemoryEventSink,
    NegotiationEvent,
    NegotiationEventType,
    NegotiationState,
    NullEventSink,
)


def make_event(event_type, state=NegotiationState.QUOTE_RECEIVED, **data):
    return NegotiationEvent(event_type=event_type, state=state, message=event_type.value, data=data)


@pytest.fixture
def captured_logs():
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.mark.asyncio
async def test_memory_sink_closes_stream_on_terminal_event():
    sink = MemoryEventSink()
    await sink.emit(make_event(NegotiationEventType.REQUEST_SENT))
    await sink.emit(make_event(NegotiationEventType.FAILED, NegotiationState.FAILED))
    await sink.emit(make_event(NegotiationEventType.COMPLETED, NegotiationState.DONE))

    streamed = [event.event_type async for event in sink.stream()]
    assert streamed == [NegotiationEventType.REQUEST_SENT, NegotiationEventType.FAILED]
    assert sink.types()[-1] is NegotiationEventType.COMPLETED


@pytest.mark.asyncio
async def test_null_sink_accepts_events():
    assert await NullEventSink().emit(make_event(NegotiationEventType.COMPLETED)) is None


@pytest.mark.asyncio
async def test_loguru_sink_levels(captured_logs):
    sink = LoguruEventSink()
    await sink.emit(make_event(NegotiationEventType.QUOTE_RECEIVED, amount_atomic=10_000))
    await sink.emit(make_event(NegotiationEventType.WALLET_SUBSTITUTED))
    await sink.emit(make_event(NegotiationEventType.FAILED, NegotiationState.FAILED))

    levels = [record["level"].name for record in captured_logs]
    assert levels == ["INFO", "WARNING", "ERROR"]
    assert "quote_received" in captured_logs[0]["message"]


@pytest.mark.asyncio
async def test_loguru_sink_logs_data_when_verbose(captured_logs):
    await LoguruEventSink(verbose=True).emit(
        make_event(NegotiationEventType.QUOTE_RECEIVED, amount_atomic=10_000)
    )
    assert [record["level"].name for record in captured_logs] == ["INFO", "DEBUG"]
    assert "10000" in captured_logs[1]["message"]
