"""Deterministic agent failure classification and retry backoff."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from enum import Enum

_MAX_BACKOFF_EXPONENT = 62


class AgentFailureClass(str, Enum):
    """Normalized failure classes used by the agent retry policy."""

    MALFORMED_OUTPUT = "malformed_output"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    INTERNAL_ERROR = "internal_error"
    PERMANENT = "permanent"


@dataclass(frozen=True, slots=True)
class TransientRule:
    """One tagged pattern in the transient error catalogue."""

    failure_class: AgentFailureClass
    name: str
    pattern: re.Pattern[str]


def _rule(
    failure_class: AgentFailureClass,
    name: str,
    pattern: str,
    *,
    ignore_case: bool = True,
) -> TransientRule:
    flags = re.IGNORECASE if ignore_case else 0
    return TransientRule(failure_class=failure_class, name=name, pattern=re.compile(pattern, flags))


# Order matters: the first matching rule names the classification.
TRANSIENT_RULES: tuple[TransientRule, ...] = (
    # The agent crashed mid-stream and left truncated JSON behind.
    _rule(AgentFailureClass.MALFORMED_OUTPUT, "json_syntax_error", r"SyntaxError:.*JSON"),
    _rule(AgentFailureClass.MALFORMED_OUTPUT, "unexpected_json", r"Unexpected.*JSON"),
    _rule(AgentFailureClass.MALFORMED_OUTPUT, "unexpected_token", r"Unexpected token"),
    _rule(AgentFailureClass.MALFORMED_OUTPUT, "unexpected_end", r"Unexpected end of"),
    _rule(AgentFailureClass.NETWORK, "connection_reset", r"ECONNRESET"),
    _rule(AgentFailureClass.NETWORK, "connection_timeout", r"ETIMEDOUT"),
    _rule(AgentFailureClass.NETWORK, "connection_refused", r"ECONNREFUSED"),
    _rule(AgentFailureClass.NETWORK, "socket_hang_up", r"socket hang up"),
    _rule(AgentFailureClass.NETWORK, "network_error", r"NetworkError"),
    _rule(AgentFailureClass.NETWORK, "fetch_failed", r"Failed to fetch"),
    _rule(AgentFailureClass.NETWORK, "request_failed", r"request to.*failed"),
    _rule(AgentFailureClass.RATE_LIMIT, "rate_limit", r"rate limit"),
    _rule(AgentFailureClass.RATE_LIMIT, "http_429", r"429", ignore_case=False),
    _rule(AgentFailureClass.RATE_LIMIT, "too_many_requests", r"too many requests"),
    _rule(AgentFailureClass.RATE_LIMIT, "overload", r"overload"),
    _rule(AgentFailureClass.RATE_LIMIT, "http_503", r"503", ignore_case=False),
    _rule(AgentFailureClass.RATE_LIMIT, "service_unavailable", r"service unavailable"),
    _rule(AgentFailureClass.INTERNAL_ERROR, "internal_error", r"internal_error"),
    _rule(AgentFailureClass.INTERNAL_ERROR, "internal_error_class", r"InternalError"),
    _rule(AgentFailureClass.INTERNAL_ERROR, "http_500", r"500.*Internal"),
)


@dataclass(slots=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    failure_class: AgentFailureClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class != AgentFailureClass.PERMANENT


def classify_agent_error(error_text: str) -> AgentFailureClassification:
    """Classify agent error text into a transient class or permanent."""

    if not error_text or not error_text.strip():
        return AgentFailureClassification(
            failure_class=AgentFailureClass.PERMANENT,
            matched_rule="empty_error",
            matched_pattern=None,
        )

    for rule in TRANSIENT_RULES:
        if rule.pattern.search(error_text):
            return AgentFailureClassification(
                failure_class=rule.failure_class,
                matched_rule=rule.name,
                matched_pattern=rule.pattern.pattern,
            )

    return AgentFailureClassification(
        failure_class=AgentFailureClass.PERMANENT,
        matched_rule="fallback_permanent",
        matched_pattern=None,
    )


def is_transient(error_text: str) -> bool:
    """Return True for crashes, network blips, rate limits and overload."""

    return classify_agent_error(error_text).transient


def backoff_delay(
    attempt: int,
    *,
    base_seconds: float = 1.0,
    cap_seconds: float = 30.0,
    rng: random.Random | None = None,
) -> float:
    """Exponential backoff in seconds with up to 25% additive jitter.

    ``attempt`` is zero-indexed: 1s, 2s, 4s, 8s, 16s, then capped.
    """

    # Larger powers overflow the float multiply; the cap is reached long before.
    exponent = min(max(attempt, 0), _MAX_BACKOFF_EXPONENT)
    delay = min(base_seconds * (2**exponent), cap_seconds)
    uniform = rng.uniform if rng is not None else random.uniform  # noqa: S311
    return delay + uniform(0, delay * 0.25)
