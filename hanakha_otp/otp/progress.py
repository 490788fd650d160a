"""
Verification Progress
=====================
Composes per-channel verifications into an account-level policy
(email and/or mobile required, or either one).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .models import Channel


@dataclass
class VerificationRequirement:
    """Which channels must be verified before the account is usable."""
    email_required: bool = False
    mobile_required: bool = False
    either_required: bool = False

    @property
    def required_channels(self) -> List[Channel]:
        if self.either_required:
            return [Channel.EMAIL, Channel.MOBILE]
        channels = []
        if self.email_required:
            channels.append(Channel.EMAIL)
        if self.mobile_required:
            channels.append(Channel.MOBILE)
        return channels

    def allows(self, channel: Channel) -> bool:
        return channel in self.required_channels


@dataclass
class VerificationProgress:
    """Tracks completed channels against a requirement."""
    requirement: VerificationRequirement
    completed: Set[Channel] = field(default_factory=set)

    def mark_completed(self, channel: Channel) -> None:
        self.completed.add(Channel(channel))

    def is_completed(self, channel: Channel) -> bool:
        return Channel(channel) in self.completed

    @property
    def is_complete(self) -> bool:
        req = self.requirement
        if req.either_required:
            return bool(self.completed)
        return all(channel in self.completed for channel in req.required_channels)

    def next_channel(self) -> Optional[Channel]:
        """The next channel to verify, email first. None when nothing is pending."""
        if self.is_complete:
            return None
        for channel in self.requirement.required_channels:
            if channel not in self.completed:
                return channel
        return None

    def can_switch_to(self, channel: Channel, contacts: Dict[Channel, str]) -> bool:
        """Switching is only offered when more than one channel is in play."""
        req = self.requirement
        if not (req.either_required or (req.email_required and req.mobile_required)):
            return False
        contact = contacts.get(Channel(channel), "")
        return bool(contact and contact.strip()) and not self.is_completed(channel)

    def step(self) -> Tuple[int, int, str]:
        """
        Current step, total steps and step name for a progress indicator.
        """
        req = self.requirement
        if req.either_required:
            return 1, 1, "Choose Verification Method"

        total = len(req.required_channels)
        if req.email_required and req.mobile_required:
            if Channel.EMAIL in self.completed and Channel.MOBILE in self.completed:
                return total, total, "Complete"
            if Channel.EMAIL in self.completed:
                return 2, total, "Verify Mobile"
            return 1, total, "Verify Email"
        if req.email_required:
            return 1, total, "Verify Email"
        if req.mobile_required:
            return 1, total, "Verify Mobile"
        return 1, total, "Verify Account"
