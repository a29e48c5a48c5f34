from datetime import datetime, timezone

from chat_memory.models.core import BufferedEvent, EventOrigin, TriggerReason
from chat_memory.services.triggers import count_tokens, estimate_tokens, evaluate_triggers, event_tokens
from chat_memory.utils.config import BufferConfig


def _event(content, username='alice'):
    return BufferedEvent(content=content,
                         user_id='1',
                         username=username,
                         channel_id='general',
                         timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
                         origin=EventOrigin.OBSERVED)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens('') == 0
    assert estimate_tokens('abcd') == 1
    assert estimate_tokens('abcde') == 2


def test_event_tokens_include_speaker():
    # "bob: hi" is 7 chars
    assert event_tokens(_event('hi', username='bob')) == 2


def test_count_tokens_sums_events():
    events = [_event('hi', username='bob'), _event('abcd', username='al')]
    assert count_tokens(events) == 2 + 2


def test_volume_threshold_fires_at_exact_count():
    config = BufferConfig(enabled=True, silence_timeout_seconds=60, volume_threshold=3, token_cap=100)
    assert evaluate_triggers(2, 0, config) is None
    assert evaluate_triggers(3, 0, config) == TriggerReason.VOLUME


def test_token_cap_fires_at_cap():
    config = BufferConfig(enabled=True, silence_timeout_seconds=60, volume_threshold=30, token_cap=100)
    assert evaluate_triggers(1, 99, config) is None
    assert evaluate_triggers(1, 100, config) == TriggerReason.TOKEN_CAP


def test_volume_takes_priority_over_token_cap():
    config = BufferConfig(enabled=True, silence_timeout_seconds=60, volume_threshold=2, token_cap=10)
    assert evaluate_triggers(2, 50, config) == TriggerReason.VOLUME
