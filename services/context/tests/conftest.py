from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_conversation():
    return [
        {"role": "system", "content": "You are a helpful assistant with long-term memory."},
        {"role": "user", "content": "I am planning a trip to Lisbon in October."},
        {"role": "assistant", "content": "Lisbon in October is mild. Do you prefer museums or food tours?"},
        {"role": "user", "content": "Food tours, definitely. What neighbourhoods should I stay in?"},
    ]


@pytest.fixture
def sample_fragments(now):
    return [
        {
            "id": "mem-1",
            "content": "The user is vegetarian and avoids seafood.",
            "score": 0.91,
            "timestamp": now - timedelta(days=2),
            "importance": 0.8,
        },
        {
            "id": "mem-2",
            "content": "The user visited Porto last spring and loved the Ribeira district.",
            "score": 0.74,
            "timestamp": now - timedelta(days=300),
        },
        {
            "id": "mem-3",
            "content": "The user prefers walking over public transport.",
            "score": 0.62,
            "metadata": {"source": "chat", "timestamp": "2024-05-20T08:30:00Z"},
        },
    ]
