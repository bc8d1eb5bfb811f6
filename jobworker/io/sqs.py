from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from jobworker.core.models import QueueMessage
from jobworker.errors import TransportError

# SQS SendMessageBatch accepts at most 10 entries
BATCH_SIZE = 10


class SQSClient:
    """AWS SQS client for the job and result queues."""

    def __init__(self, region: str, endpoint_url: Optional[str] = None, client=None):
        """
        Initialize SQS client.

        Args:
            region: AWS region (e.g., "us-east-1")
            endpoint_url: Optional endpoint override (localstack, elasticmq)
            client: Pre-built boto3 SQS client (tests)
        """
        self.region = region
        if client is None:
            client = boto3.client('sqs', region_name=region, endpoint_url=endpoint_url)
        self.client = client

    def receive_one(
        self,
        queue_url: str,
        wait_seconds: int,
        visibility_timeout: int,
    ) -> Optional[QueueMessage]:
        """
        Long-poll and return a single message or None.

        The body is returned as-is; validating it as a job descriptor is the
        caller's job so a bad payload can still be rejected by receipt handle.

        Args:
            queue_url: SQS queue URL
            wait_seconds: Long polling wait time (0-20 seconds)
            visibility_timeout: How long the message should be hidden from other consumers

        Returns:
            QueueMessage or None if no messages available
        """
        try:
            response = self.client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=visibility_timeout,
                MessageAttributeNames=['All'],
                AttributeNames=['ApproximateReceiveCount'],
            )
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"Failed to receive message from SQS: {e}") from e

        messages = response.get('Messages', [])
        if not messages:
            return None

        msg = messages[0]
        attrs = msg.get('MessageAttributes', {})
        retained = attrs.get('retained', {}).get('StringValue', '').lower() == 'true'
        receive_count = int(msg.get('Attributes', {}).get('ApproximateReceiveCount', 1))

        return QueueMessage(
            message_id=msg['MessageId'],
            receipt_handle=msg['ReceiptHandle'],
            body=msg.get('Body', ''),
            retained=retained,
            receive_count=receive_count,
        )

    def delete(self, queue_url: str, receipt_handle: str) -> None:
        """
        Delete a message from the queue (acknowledge).

        Args:
            queue_url: SQS queue URL
            receipt_handle: Receipt handle from received message
        """
        try:
            self.client.delete_message(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle
            )
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"Failed to delete SQS message: {e}") from e

    def release(self, queue_url: str, receipt_handle: str) -> None:
        """
        Negative-acknowledge: make the message visible again right away so it
        can be redelivered (or moved to the DLQ by the redrive policy).
        """
        self.change_visibility(queue_url, receipt_handle, 0)

    def change_visibility(
        self,
        queue_url: str,
        receipt_handle: str,
        timeout_seconds: int,
    ) -> None:
        """
        Change the visibility timeout of a message.

        This is useful for extending the processing time of a long-running job.

        Args:
            queue_url: SQS queue URL
            receipt_handle: Receipt handle from received message
            timeout_seconds: New visibility timeout in seconds (0-43200)
        """
        try:
            self.client.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=timeout_seconds
            )
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"Failed to change visibility: {e}") from e

    def send_raw(self, queue_url: str, body: str, job_id: Optional[str] = None) -> str:
        """
        Send a raw message to the queue.

        Args:
            queue_url: SQS queue URL
            body: Message body (typically JSON string)
            job_id: Optional job id (added as message attribute)

        Returns:
            The SQS MessageId
        """
        kwargs = {
            'QueueUrl': queue_url,
            'MessageBody': body
        }
        if job_id:
            kwargs['MessageAttributes'] = _job_id_attribute(job_id)

        try:
            response = self.client.send_message(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"Failed to send SQS message: {e}") from e
        return response.get('MessageId', '')

    def send_batch(self, queue_url: str, messages: Iterable[Tuple[str, Optional[str]]]) -> int:
        """
        Send (body, job_id) pairs in batches of 10.

        Returns:
            Count of messages accepted by SQS
        """
        pending = list(messages)
        sent = 0
        for start in range(0, len(pending), BATCH_SIZE):
            entries: List[Dict] = []
            for offset, (body, job_id) in enumerate(pending[start:start + BATCH_SIZE]):
                entry = {'Id': str(offset), 'MessageBody': body}
                if job_id:
                    entry['MessageAttributes'] = _job_id_attribute(job_id)
                entries.append(entry)

            try:
                response = self.client.send_message_batch(QueueUrl=queue_url, Entries=entries)
            except (ClientError, BotoCoreError) as e:
                raise TransportError(f"Failed to send SQS message batch: {e}") from e

            failed = response.get('Failed', [])
            if failed:
                raise TransportError(f"{len(failed)} message(s) rejected by SQS: {failed[0].get('Message', '')}")
            sent += len(response.get('Successful', []))
        return sent

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.client.close()

    def get_queue_attributes(self, queue_url: str) -> Dict[str, str]:
        try:
            response = self.client.get_queue_attributes(
                QueueUrl=queue_url,
                AttributeNames=['All']
            )
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"Failed to get queue attributes: {e}") from e
        return response.get('Attributes', {})


def _job_id_attribute(job_id: str) -> Dict:
    return {
        'job_id': {
            'StringValue': job_id,
            'DataType': 'String'
        }
    }
