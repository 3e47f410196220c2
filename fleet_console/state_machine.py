from enum import Enum


class ProvisioningState(str, Enum):
    IDLE = "IDLE"
    SUBMITTING = "SUBMITTING"
    AWAITING_AGENT = "AWAITING_AGENT"
    INSTALLED = "INSTALLED"


class PollOutcome(str, Enum):
    PENDING = "PENDING"
    INSTALLED = "INSTALLED"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    ProvisioningState.IDLE.value: {
        ProvisioningState.SUBMITTING.value,
        ProvisioningState.AWAITING_AGENT.value,
    },
    ProvisioningState.SUBMITTING.value: {
        ProvisioningState.AWAITING_AGENT.value,
        ProvisioningState.IDLE.value,
    },
    ProvisioningState.AWAITING_AGENT.value: {
        ProvisioningState.INSTALLED.value,
        ProvisioningState.IDLE.value,
    },
    ProvisioningState.INSTALLED.value: {ProvisioningState.IDLE.value},
}

TOKEN_INSTALLED = 1
TOKEN_EXPIRED = -2


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    # reset() may return to IDLE from anywhere
    if target == ProvisioningState.IDLE.value:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def decode_poll_status(raw: object) -> PollOutcome:
    """Map the polling endpoint's integer code onto a PollOutcome.

    ``1`` means the agent consumed the token, ``-2`` means the token
    expired, any other negative number means the token is unusable for
    another reason. Everything else, including non-numeric bodies, is
    still pending.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return PollOutcome.PENDING
    if raw == TOKEN_INSTALLED:
        return PollOutcome.INSTALLED
    if raw == TOKEN_EXPIRED:
        return PollOutcome.EXPIRED
    if raw < 0:
        return PollOutcome.INVALID
    return PollOutcome.PENDING
