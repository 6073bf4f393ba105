"""Progress publisher for pub/sub event publishing."""

import logging
from typing import Callable
from pubsub import pub
from ..models.transcription import ProgressEvent

logger = logging.getLogger(__name__)

PROGRESS_TOPIC = "transcription.progress"


class ProgressPublisher:
    """Publishes orchestrator progress using pubsub.pub."""

    def __init__(self, topic: str = PROGRESS_TOPIC):
        """Initialize progress publisher.

        Args:
            topic: Pub/sub topic name for progress events
        """
        self.topic = topic
        logger.info(f"ProgressPublisher initialized with topic: {topic}")

    def publish_progress(self, event: ProgressEvent) -> None:
        """Publish a progress event to the pub/sub topic.

        Args:
            event: ProgressEvent to publish
        """
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published progress: {event.phase} {event.value:.2f}")

    def get_callback(self) -> Callable[[ProgressEvent], None]:
        """Get callback function for the orchestrator to use.

        Returns:
            Callback function that publishes progress events
        """
        return self.publish_progress
