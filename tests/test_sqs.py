"""Tests for the SQS transport, using botocore's Stubber."""

import boto3
import pytest
from botocore.stub import Stubber

from jobworker.errors import TransportError
from jobworker.io.sqs import SQSClient

QUEUE = "https://sqs.us-east-1.amazonaws.com/123456789012/jobs"


@pytest.fixture
def stubbed():
    client = boto3.client(
        "sqs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield SQSClient("us-east-1", client=client), stubber
        stubber.assert_no_pending_responses()


def receive_params():
    return {
        "QueueUrl": QUEUE,
        "MaxNumberOfMessages": 1,
        "WaitTimeSeconds": 20,
        "VisibilityTimeout": 450,
        "MessageAttributeNames": ["All"],
        "AttributeNames": ["ApproximateReceiveCount"],
    }


class TestReceive:

    def test_empty_queue(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response("receive_message", {"Messages": []}, receive_params())

        assert sqs.receive_one(QUEUE, wait_seconds=20, visibility_timeout=450) is None

    def test_message(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response(
            "receive_message",
            {
                "Messages": [{
                    "MessageId": "m-1",
                    "ReceiptHandle": "rh-1",
                    "Body": '{"id": "job-1"}',
                    "Attributes": {"ApproximateReceiveCount": "3"},
                }]
            },
            receive_params(),
        )

        msg = sqs.receive_one(QUEUE, wait_seconds=20, visibility_timeout=450)

        assert msg.message_id == "m-1"
        assert msg.receipt_handle == "rh-1"
        assert msg.body == '{"id": "job-1"}'
        assert msg.retained is False
        assert msg.receive_count == 3

    def test_retained_attribute(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response(
            "receive_message",
            {
                "Messages": [{
                    "MessageId": "m-2",
                    "ReceiptHandle": "rh-2",
                    "Body": '{"id": "old"}',
                    "MessageAttributes": {"retained": {"StringValue": "true", "DataType": "String"}},
                }]
            },
            receive_params(),
        )

        assert sqs.receive_one(QUEUE, wait_seconds=20, visibility_timeout=450).retained is True

    def test_client_error_becomes_transport_error(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_client_error("receive_message", service_error_code="AWS.SimpleQueueService.NonExistentQueue")

        with pytest.raises(TransportError):
            sqs.receive_one(QUEUE, wait_seconds=20, visibility_timeout=450)


class TestAcknowledge:

    def test_delete(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response("delete_message", {}, {"QueueUrl": QUEUE, "ReceiptHandle": "rh-1"})

        sqs.delete(QUEUE, "rh-1")

    def test_release_makes_message_visible_again(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response(
            "change_message_visibility",
            {},
            {"QueueUrl": QUEUE, "ReceiptHandle": "rh-1", "VisibilityTimeout": 0},
        )

        sqs.release(QUEUE, "rh-1")

    def test_delete_error(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_client_error("delete_message", service_error_code="ReceiptHandleIsInvalid")

        with pytest.raises(TransportError):
            sqs.delete(QUEUE, "bad")


class TestSend:

    def test_send_raw_with_job_id(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response(
            "send_message",
            {"MessageId": "out-1", "MD5OfMessageBody": "x"},
            {
                "QueueUrl": QUEUE,
                "MessageBody": '{"id": "job-1"}',
                "MessageAttributes": {"job_id": {"StringValue": "job-1", "DataType": "String"}},
            },
        )

        assert sqs.send_raw(QUEUE, '{"id": "job-1"}', job_id="job-1") == "out-1"

    def test_send_batch_splits_in_tens(self, stubbed):
        sqs, stubber = stubbed
        messages = [(f'{{"id": "j{i}"}}', None) for i in range(12)]
        stubber.add_response(
            "send_message_batch",
            {"Successful": [{"Id": str(i), "MessageId": f"m{i}", "MD5OfMessageBody": "x"} for i in range(10)], "Failed": []},
        )
        stubber.add_response(
            "send_message_batch",
            {"Successful": [{"Id": str(i), "MessageId": f"n{i}", "MD5OfMessageBody": "x"} for i in range(2)], "Failed": []},
        )

        assert sqs.send_batch(QUEUE, messages) == 12

    def test_send_batch_partial_failure(self, stubbed):
        sqs, stubber = stubbed
        stubber.add_response(
            "send_message_batch",
            {
                "Successful": [],
                "Failed": [{"Id": "0", "SenderFault": True, "Code": "InvalidMessageContents", "Message": "bad"}],
            },
        )

        with pytest.raises(TransportError):
            sqs.send_batch(QUEUE, [("x", "job-1")])
