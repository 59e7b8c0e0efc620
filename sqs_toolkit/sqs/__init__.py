"""SQS queue session and consumer engine."""

from .consumer import SqsConsumer  # noqa: F401
from .events import EventEmitter  # noqa: F401
from .scheduler import ProcessingWindow  # noqa: F401
from .session import QueueSession  # noqa: F401
