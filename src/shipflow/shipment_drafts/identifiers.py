"""Human-readable shipment identifiers.

Format: ``<COMPANY>-<CUSTOMER>-<SUFFIX>``, e.g. ``ACME-CUST01-7KQ2MX``.

Two strategies:
- primary_generate: random base32 suffix, checked for uniqueness against the
  draft store (any status) and against identifiers this process has issued
  but not yet persisted.
- fallback_generate: epoch-millisecond suffix, used when the store lookup
  fails or every primary candidate collided. Never checks the store.

generate() never raises for store failures; callers always get a value.
"""

import re
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional, Set

from ..observability.logging_config import get_logger
from ..observability.metrics import identifier_collisions_total, identifier_fallbacks_total
from .exceptions import DraftStoreError

logger = get_logger(__name__)

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
TOKEN_LENGTH = 6
DEFAULT_COMPANY_TOKEN = "SHIP"

STRATEGY_PRIMARY = "primary"
STRATEGY_FALLBACK = "fallback"

REASON_DEPENDENCY_ERROR = "dependency_error"
REASON_COLLISIONS_EXHAUSTED = "collisions_exhausted"


@dataclass(frozen=True)
class GeneratedIdentifier:
    """Result of one generate() call."""
    value: str
    strategy: str
    attempts: int
    reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.strategy == STRATEGY_FALLBACK


def normalize_token(value: Optional[str], length: int = TOKEN_LENGTH) -> str:
    """Upper-cased alphanumerics of value, truncated to length."""
    if not value:
        return ""
    return re.sub(r"[^A-Za-z0-9]", "", str(value)).upper()[:length]


def build_prefix(company_key: str, customer_key: Optional[str] = None) -> str:
    company = normalize_token(company_key) or DEFAULT_COMPANY_TOKEN
    customer = normalize_token(customer_key)
    return f"{company}-{customer}" if customer else company


def random_suffix(length: int) -> str:
    return "".join(secrets.choice(BASE32_ALPHABET) for _ in range(length))


def epoch_millis() -> int:
    return int(time.time() * 1000)


class ShipmentIdGenerator:
    """Generates unique shipment identifiers for one process.

    The store is any object exposing ``async human_id_exists(human_id, company_key)``.
    """

    def __init__(
        self,
        store,
        max_attempts: int = 5,
        suffix_length: int = 6,
        clock: Callable[[], int] = epoch_millis,
        suffix_factory: Callable[[int], str] = random_suffix,
    ):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.suffix_length = suffix_length
        self._clock = clock
        self._suffix_factory = suffix_factory
        # Issued but not yet persisted
        self._issued: Set[str] = set()

    async def generate(
        self,
        company_key: str,
        customer_key: Optional[str] = None
    ) -> GeneratedIdentifier:
        """Generate an identifier, falling back to the timestamp strategy.

        Args:
            company_key: Owning company
            customer_key: Destination customer, if already known

        Returns:
            GeneratedIdentifier with the strategy used and attempt count
        """
        try:
            result = await self.primary_generate(company_key, customer_key)
        except DraftStoreError as e:
            logger.warning(
                f"Identifier uniqueness check failed: {e}",
                extra={"company_key": company_key, "reason": REASON_DEPENDENCY_ERROR},
            )
            return self.fallback_generate(company_key, customer_key, REASON_DEPENDENCY_ERROR)

        if result is None:
            return self.fallback_generate(
                company_key,
                customer_key,
                REASON_COLLISIONS_EXHAUSTED,
                attempts=self.max_attempts,
            )
        return result

    async def primary_generate(
        self,
        company_key: str,
        customer_key: Optional[str] = None
    ) -> Optional[GeneratedIdentifier]:
        """Random-suffix strategy.

        Returns:
            GeneratedIdentifier, or None when every attempt collided

        Raises:
            DraftStoreError: if the uniqueness lookup fails
        """
        prefix = build_prefix(company_key, customer_key)

        for attempt in range(1, self.max_attempts + 1):
            candidate = f"{prefix}-{self._suffix_factory(self.suffix_length)}"
            if candidate in self._issued:
                identifier_collisions_total.inc()
                continue

            # Reserve before awaiting so a concurrent call in this process
            # cannot pick the same candidate.
            self._issued.add(candidate)
            try:
                taken = await self.store.human_id_exists(candidate, company_key)
            except Exception:
                self._issued.discard(candidate)
                raise

            if taken:
                self._issued.discard(candidate)
                identifier_collisions_total.inc()
                logger.debug(
                    f"Identifier candidate {candidate} already taken",
                    extra={"company_key": company_key, "human_id": candidate},
                )
                continue

            return GeneratedIdentifier(
                value=candidate,
                strategy=STRATEGY_PRIMARY,
                attempts=attempt,
            )

        return None

    def fallback_generate(
        self,
        company_key: str,
        customer_key: Optional[str] = None,
        reason: str = REASON_DEPENDENCY_ERROR,
        attempts: int = 0,
    ) -> GeneratedIdentifier:
        """Timestamp strategy. Emits the ``identifier_fallback_used`` event."""
        prefix = build_prefix(company_key, customer_key)
        millis = self._clock()
        candidate = f"{prefix}-{millis}"
        while candidate in self._issued:
            millis += 1
            candidate = f"{prefix}-{millis}"
        self._issued.add(candidate)

        identifier_fallbacks_total.labels(reason=reason).inc()
        logger.warning(
            "identifier_fallback_used",
            extra={
                "company_key": company_key,
                "human_id": candidate,
                "strategy": STRATEGY_FALLBACK,
                "reason": reason,
            },
        )

        return GeneratedIdentifier(
            value=candidate,
            strategy=STRATEGY_FALLBACK,
            attempts=attempts,
            reason=reason,
        )

    def release(self, value: str) -> None:
        """Forget an issued identifier once it is persisted (or abandoned)."""
        self._issued.discard(value)

    def is_reserved(self, value: str) -> bool:
        return value in self._issued
