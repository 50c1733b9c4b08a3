"""
cmdb/notify.py -- Notification collaborator for committed transitions.

CMDBStore.subscribe(TransitionNotifier()) routes every committed
TransitionRecord here. Lost and Disposed transitions raise warning-level
alerts (overdue reminders and write-off notices); everything else is logged
at info. Mail/webhook delivery plugs in by passing a sender callable.
"""

import logging
from typing import Callable, Optional

from core.models import AssetState, TransitionRecord

logger = logging.getLogger("itam.notify")

_ALERT_STATES = {AssetState.LOST.value, AssetState.DISPOSED.value}


class TransitionNotifier:
    def __init__(self, sender: Optional[Callable[[str, TransitionRecord], None]] = None) -> None:
        self.sender = sender

    def __call__(self, record: TransitionRecord) -> None:
        message = f"Asset {record.asset_id} moved {record.from_state} -> {record.to_state} by {record.performed_by}"
        if record.reason:
            message += f" ({record.reason})"

        if record.to_state in _ALERT_STATES:
            logger.warning("ALERT %s", message)
            if self.sender is not None:
                self.sender(message, record)
        else:
            logger.info("%s", message)
