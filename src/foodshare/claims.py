from datetime import datetime
from enum import Enum


class ClaimDecision(str, Enum):
    ALLOW = "allow"
    EXPIRED = "expired"
    FULL = "full"
    DUPLICATE = "duplicate"


REJECT_MESSAGES = {
    ClaimDecision.EXPIRED: "This listing has expired.",
    ClaimDecision.FULL: "This listing is fully claimed.",
    ClaimDecision.DUPLICATE: "You have already claimed this listing.",
}


def evaluate_claim(listing, receiver_id: int, now: datetime) -> ClaimDecision:
    """Decide whether ``receiver_id`` may take a slot on ``listing``.

    Parameters
    ----------
    listing:
        Object exposing ``expiry_time``, ``max_claims`` and ``claims``, where
        each claim has a ``receiver_id``.
    receiver_id: int
        Identity of the requesting receiver.
    now: datetime
        Current naive UTC time.

    Returns
    -------
    ClaimDecision
        ``EXPIRED``, ``FULL`` and ``DUPLICATE`` are checked in that order;
        the first that applies wins. ``ALLOW`` otherwise.
    """
    if now >= listing.expiry_time:
        return ClaimDecision.EXPIRED
    claims = list(listing.claims)
    if len(claims) >= listing.max_claims:
        return ClaimDecision.FULL
    if any(claim.receiver_id == receiver_id for claim in claims):
        return ClaimDecision.DUPLICATE
    return ClaimDecision.ALLOW
