"""Level publisher for the live waveform feed."""

import logging
from pubsub import pub
from ..models.audio import LevelEvent

logger = logging.getLogger(__name__)

LEVEL_TOPIC = "capture.level"


class LevelPublisher:
    """Publishes level events using pubsub.pub."""

    def __init__(self, topic: str = LEVEL_TOPIC):
        """Initialize level publisher.

        Args:
            topic: Pub/sub topic name for level events
        """
        self.topic = topic
        logger.info(f"LevelPublisher initialized with topic: {topic}")

    def publish_level(self, event: LevelEvent) -> None:
        """Publish a level event to the pub/sub topic.

        Args:
            event: LevelEvent to publish
        """
        pub.sendMessage(self.topic, event=event)
