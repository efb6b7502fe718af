from types import SimpleNamespace

import pytest
from prometheus_client import REGISTRY

from logical_queues.errors import TransportError
from logical_queues.logging_utils import error_fields
from logical_queues.tracing import record_failure
from scripts.move_messages import move


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_publish_counts_by_result(make_client, context):
    client = make_client(queues={"metered": "metered_queue"})
    before = _sample("queue_publish_total", queue="metered", result="ok")
    await client.publish(context, "metered", {"n": 1})
    await client.publish(context, "metered", {"n": 2})
    assert _sample("queue_publish_total", queue="metered", result="ok") == before + 2


def test_error_fields_merges_details():
    error = TransportError("denied", code="AccessDenied", queue_url="http://q")
    assert error_fields(error, logical_name="work") == {
        "error_type": "TransportError",
        "error_message": "denied",
        "error_code": "AccessDenied",
        "queue_url": "http://q",
        "logical_name": "work",
    }


def test_record_failure_marks_span():
    recorded = {}
    span = SimpleNamespace(
        record_exception=lambda exc: recorded.setdefault("exception", exc),
        set_attribute=lambda key, value: recorded.__setitem__(key, value),
    )
    error = TransportError("gone", code="QueueDoesNotExist")
    record_failure(span, error)
    assert recorded == {"exception": error, "error": True, "error.code": "QueueDoesNotExist"}


@pytest.mark.asyncio
async def test_move_script_dry_run_prints_urls(capsys):
    moved = await move(
        "dead_letter_queue",
        "basic_queue",
        5,
        endpoint="http://localhost:9324",
        region="us-east-1",
        account_id="queue",
        wait_time_seconds=1,
        dry_run=True,
    )
    out = capsys.readouterr().out
    assert moved == 0
    assert "http://localhost:9324/queue/dead_letter_queue" in out
    assert "http://localhost:9324/queue/basic_queue" in out
