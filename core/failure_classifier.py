"""Maps raw provider failure text to a FailureReason and user-facing copy"""

import re
from typing import Optional

from models.job_record import FailureReason

# Replicate's safety-checker error code
_SENSITIVE_CODE = re.compile(r"\(E005\)")

_POLICY_PHRASES = (
    "flagged as sensitive",
    "sensitive content",
    "content policy",
    "nsfw",
    "inappropriate",
    "safety filter",
    "safety checker",
    "safety system",
)

USER_MESSAGES = {
    FailureReason.QUOTA_EXCEEDED: "You've reached your limit for this billing period. Upgrade or wait for your plan to renew.",
    FailureReason.PROVIDER_UNAVAILABLE: "The generation service is temporarily unavailable. Please try again in a moment.",
    FailureReason.CONTENT_POLICY_VIOLATION: "This image can't be processed because it was flagged by the content safety filter. Try a different photo.",
    FailureReason.TIMEOUT: "This is taking longer than expected. Your credit has been returned; please try again.",
    FailureReason.CANCELLED: "Generation cancelled. Your credit has been returned.",
    FailureReason.PROVIDER_ERROR: "Something went wrong while generating. Your credit has been returned; please try again.",
    FailureReason.EXPIRED: "This generation expired before it finished. Your credit has been returned.",
}


def classify_failure(error_text: Optional[str]) -> FailureReason:
    """Content-policy rejections get their own reason; everything else is a provider error"""
    if not error_text:
        return FailureReason.PROVIDER_ERROR

    if _SENSITIVE_CODE.search(error_text):
        return FailureReason.CONTENT_POLICY_VIOLATION

    lowered = error_text.lower()
    if any(phrase in lowered for phrase in _POLICY_PHRASES):
        return FailureReason.CONTENT_POLICY_VIOLATION

    return FailureReason.PROVIDER_ERROR


def user_message(reason: FailureReason) -> str:
    return USER_MESSAGES[FailureReason(reason)]
