from dataclasses import dataclass
from typing import List, Optional
import logging
import uuid

from . import repository
from .errors import RecipientUnresolved
from .schemas import DeliveryChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    channel: DeliveryChannel
    destination_id: str
    group_id: Optional[uuid.UUID] = None


class RecipientResolver:
    """Group channels take priority; the personal channel is only a fallback.

    A patient in one or more active groups is notified in every such group
    and never directly, so caregivers and patient see a single message.
    """

    def __init__(self, session_factory, allow_direct: bool = True):
        self.session_factory = session_factory
        self.allow_direct = allow_direct

    def resolve(self, patient_id: uuid.UUID) -> List[Recipient]:
        with self.session_factory() as db:
            groups = repository.get_group_channels(db, patient_id)
            if groups:
                return [
                    Recipient(channel=DeliveryChannel.GROUP, destination_id=line_group_id, group_id=group_id)
                    for group_id, line_group_id in groups
                ]
            if self.allow_direct:
                line_user_id = repository.get_direct_channel(db, patient_id)
                if line_user_id:
                    logger.debug(f"[Recipients] {patient_id} has no active group; using direct channel")
                    return [Recipient(channel=DeliveryChannel.DIRECT, destination_id=line_user_id)]
        raise RecipientUnresolved(patient_id)
