"""
services/review/events.py
Events raised when the set of reviews for a target changes.
"""

import uuid
from dataclasses import dataclass

from shared.events import DomainEvent, EventBus
from services.review.targets import ReviewTarget


@dataclass(frozen=True)
class ReviewCreated(DomainEvent):
    review_id: uuid.UUID
    target: ReviewTarget


@dataclass(frozen=True)
class ReviewUpdated(DomainEvent):
    review_id: uuid.UUID
    target: ReviewTarget


@dataclass(frozen=True)
class ReviewDeleted(DomainEvent):
    review_id: uuid.UUID
    target: ReviewTarget


review_events = EventBus()
