"""Domain events emitted by the signature workflow."""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

from pactlink_api.celery_client import SIGNATURE_COMPLETED_TASK, enqueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureCompleted:
    """A party has signed; downstream layers trigger emails and document generation."""

    deal_id: str
    role: str
    fully_executed: bool

    def to_payload(self) -> dict:
        return asdict(self)


class EventPublisher(ABC):
    @abstractmethod
    def publish(self, event: SignatureCompleted) -> None:
        pass


class CeleryEventPublisher(EventPublisher):
    """Forward events to the worker, which fans them out to subscribers."""

    def publish(self, event: SignatureCompleted) -> None:
        enqueue(SIGNATURE_COMPLETED_TASK, event.to_payload())
        logger.info(
            "SignatureCompleted published",
            extra={"deal_id": event.deal_id, "role": event.role, "fully_executed": event.fully_executed},
        )
