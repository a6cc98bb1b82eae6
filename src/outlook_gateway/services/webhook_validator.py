"""clientState validation for Graph notification batches."""

import hmac
from typing import List, Literal, Optional

from outlook_gateway.models.notifications import ChangeNotification
from outlook_gateway.utils.errors import ValidationFailed
from outlook_gateway.utils.logging import get_logger

logger = get_logger("webhook_validator")

MismatchPolicy = Literal["drop", "reject"]


def client_state_matches(client_state: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time comparison of an item's clientState with the secret.

    With no secret configured nothing matches.
    """
    if not secret or client_state is None:
        return False
    return hmac.compare_digest(client_state.encode("utf-8"), secret.encode("utf-8"))


class WebhookValidator:
    """Authenticates notification items against the deployment secret."""

    def __init__(self, secret: Optional[str], policy: MismatchPolicy = "drop"):
        self.secret = secret
        self.policy = policy
        if not secret:
            logger.warning(
                "MICROSOFT_WEBHOOK_SECRET is not set; every notification will be dropped"
            )

    def authenticate(self, items: List[ChangeNotification]) -> List[ChangeNotification]:
        """Return the items whose clientState matches.

        Under the ``reject`` policy a single mismatch raises ``ValidationFailed``
        for the whole batch. Under ``drop`` mismatches are discarded silently.
        """
        valid: List[ChangeNotification] = []
        dropped = 0
        for item in items:
            if client_state_matches(item.clientState, self.secret):
                valid.append(item)
            else:
                dropped += 1

        if dropped:
            if self.policy == "reject":
                logger.warning(f"Rejecting notification batch: {dropped} item(s) failed clientState check")
                raise ValidationFailed("Notification clientState mismatch")
            logger.info(f"Dropped {dropped} notification item(s) with mismatched clientState")

        return valid
