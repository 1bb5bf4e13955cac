"""
Sender / recipient allow-list.

Runs on the SendGrid envelope before the message body is parsed, so spam and
misdirected mail cost as little as possible. All comparisons ignore case.
"""

from typing import Iterable, Optional


class AllowList:
    """Immutable allow-list built once from configuration."""

    def __init__(
        self,
        allowed_senders: Iterable[str],
        required_recipient: Optional[str] = None,
    ):
        self._senders = frozenset(s.strip().lower() for s in allowed_senders if s.strip())
        recipient = (required_recipient or "").strip().lower()
        self._recipient: Optional[str] = recipient or None

    @property
    def allowed_senders(self) -> frozenset[str]:
        return self._senders

    @property
    def required_recipient(self) -> Optional[str]:
        return self._recipient

    def rejection_reason(self, sender: str, recipients: Iterable[str]) -> Optional[str]:
        """
        Return why an envelope is refused, or None when it is allowed.

        "sender"     the sender is not on the list.
        "recipient"  a required recipient is configured and none of the
                     envelope recipients match it.
        """
        if sender.strip().lower() not in self._senders:
            return "sender"

        if self._recipient is not None:
            if not any(r.strip().lower() == self._recipient for r in recipients):
                return "recipient"

        return None

    def is_allowed(self, sender: str, recipients: Iterable[str]) -> bool:
        return self.rejection_reason(sender, recipients) is None
