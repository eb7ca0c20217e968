from .sequence import SequenceCounter
from .batch_queue import BatchQueue, BatchQueues
from .domain_events import DomainEventRules, SafetyProtocol
from .processor import PriorityProcessor
from .dispatcher import MessageDispatcher, normalize_payload

__all__ = [
    "SequenceCounter",
    "BatchQueue",
    "BatchQueues",
    "DomainEventRules",
    "SafetyProtocol",
    "PriorityProcessor",
    "MessageDispatcher",
    "normalize_payload",
]
