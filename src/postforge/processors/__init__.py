"""Job-type handlers registered with the scheduler."""

from postforge.processors.info_blog import InfoBlogPayload, InfoBlogProcessor
from postforge.processors.topic import TopicPayload, TopicProcessor, TopicResult

__all__ = [
    "InfoBlogPayload",
    "InfoBlogProcessor",
    "TopicPayload",
    "TopicProcessor",
    "TopicResult",
]
