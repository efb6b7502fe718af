from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError

from logical_queues.config import EndpointConfig
from logical_queues.envelope import AttributeValue, Envelope
from logical_queues.errors import TransportError
from logical_queues.sqs import SqsTransport

URL = "http://localhost:9324/queue/basic_queue"


def make_transport(fake_client):
    transport = SqsTransport(EndpointConfig(endpoint="http://localhost:9324", region="us-east-1"))
    transport._client = fake_client
    return transport


@pytest.mark.asyncio
async def test_send_maps_envelope_and_options():
    calls = []

    def send_message(**params):
        calls.append(params)
        return {"MessageId": "id-1", "MD5OfMessageBody": "abc"}

    transport = make_transport(SimpleNamespace(send_message=send_message))
    envelope = Envelope(body='{"a":1}', attributes={"CorrelationId": AttributeValue("c-1")})

    result = await transport.send(URL, envelope, delay_seconds=5)

    assert result.message_id == "id-1"
    assert calls == [
        {
            "QueueUrl": URL,
            "MessageBody": '{"a":1}',
            "MessageAttributes": {"CorrelationId": {"DataType": "String", "StringValue": "c-1"}},
            "DelaySeconds": 5,
        }
    ]


@pytest.mark.asyncio
async def test_receive_converts_messages_and_clamps_limits():
    calls = []

    def receive_message(**params):
        calls.append(params)
        return {
            "Messages": [
                {
                    "MessageId": "m-1",
                    "ReceiptHandle": "rh-1",
                    "Body": "{}",
                    "MessageAttributes": {"CorrelationId": {"DataType": "String", "StringValue": "c-9"}},
                    "Attributes": {"ApproximateReceiveCount": "3"},
                }
            ]
        }

    transport = make_transport(SimpleNamespace(receive_message=receive_message))
    [message] = await transport.receive(URL, max_messages=50, wait_time_seconds=60, attribute_names=["CorrelationId"])

    assert calls[0]["MaxNumberOfMessages"] == 10
    assert calls[0]["WaitTimeSeconds"] == 20
    assert calls[0]["MessageAttributeNames"] == ["CorrelationId"]
    assert "VisibilityTimeout" not in calls[0]
    assert message.correlation_id == "c-9"
    assert message.system_attributes["ApproximateReceiveCount"] == "3"


@pytest.mark.asyncio
async def test_client_errors_become_transport_errors():
    def delete_message(**params):
        raise ClientError(
            {"Error": {"Code": "ReceiptHandleIsInvalid", "Message": "bad handle"}}, "DeleteMessage"
        )

    transport = make_transport(SimpleNamespace(delete_message=delete_message))
    with pytest.raises(TransportError) as exc:
        await transport.delete(URL, "rh")

    assert exc.value.code == "ReceiptHandleIsInvalid"
    assert exc.value.message == "bad handle"
    assert exc.value.details == {"operation": "delete", "queue_url": URL}
    assert isinstance(exc.value.__cause__, ClientError)


@pytest.mark.asyncio
async def test_binary_attributes_survive_receive_and_send():
    sent = []

    def receive_message(**params):
        return {
            "Messages": [
                {
                    "MessageId": "m-2",
                    "ReceiptHandle": "rh-2",
                    "Body": "{}",
                    "MessageAttributes": {"Signature": {"DataType": "Binary", "BinaryValue": b"\x00\x01"}},
                }
            ]
        }

    def send_message(**params):
        sent.append(params)
        return {"MessageId": "id-2"}

    transport = make_transport(SimpleNamespace(receive_message=receive_message, send_message=send_message))
    [message] = await transport.receive(URL, attribute_names=["All"])
    assert message.attributes["Signature"].binary_value == b"\x00\x01"

    await transport.send(URL, Envelope(body=message.body, attributes=dict(message.attributes)))
    assert sent[0]["MessageAttributes"] == {"Signature": {"DataType": "Binary", "BinaryValue": b"\x00\x01"}}
