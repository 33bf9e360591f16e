"""
Bill extraction pipeline.

Order of operations for one extraction:
1. Image check - a malformed data URI is rejected before anything is spent
2. Rate limit check - a full window aborts before any provider call
3. Record the request - the slot is spent even if the call later fails
4. Provider dispatch - chosen by the settings' provider tag
5. Normalization - one schema check for every provider
6. Identity - fresh id and UTC timestamp

No step is retried. The returned record belongs to the caller; the pipeline
keeps no reference to it.
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from ai_bill_reader.logging_config import get_logger
from ai_bill_reader.providers.base import ProviderAdapter, split_data_uri
from ai_bill_reader.providers.factory import build_adapters, resolve_provider
from ai_bill_reader.storage.models import AiProvider, AiSettings, BillRecord

from .errors import ConfigurationError, RateLimitExceeded, ValidationError
from .normalizer import normalize
from .rate_governor import RateGovernor

log = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class ExtractionPipeline:
    """Turns a bill image into a BillRecord.

    Safe to call from several threads: the governor lock covers the check
    and the record, so two callers cannot both take the last slot. Concurrent
    calls are not deduplicated.
    """

    def __init__(
        self,
        governor: RateGovernor,
        adapters: Optional[Mapping[AiProvider, ProviderAdapter]] = None,
        now: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_id,
    ):
        """
        Args:
            governor: Shared request limiter
            adapters: Adapter per provider (defaults to the built-in providers)
            now: Returns the current time, stamped as analyzed_at
            id_factory: Returns a fresh unique record id
        """
        self.governor = governor
        self.adapters = dict(adapters) if adapters is not None else build_adapters()
        self._now = now
        self._id_factory = id_factory

    def _reserve_slot(self) -> None:
        with self.governor.critical_section():
            decision = self.governor.check_limit()
            if not decision.allowed:
                raise RateLimitExceeded(decision.retry_after_seconds)
            self.governor.record_request()

    def analyze_bill(self, image_data_uri: str, settings: AiSettings) -> BillRecord:
        """Extract a bill from an image.

        Args:
            image_data_uri: Image as ``data:<mime>;base64,<payload>``
            settings: Active provider and its credentials/endpoint

        Returns:
            A new BillRecord

        Raises:
            InvalidImageError: If the image is not a base64 data URI
            RateLimitExceeded: If the request window is full
            ConfigurationError: If the provider is unknown or not configured
            AnalysisFailedError: If the provider fails or returns an invalid bill
        """
        split_data_uri(image_data_uri)
        self._reserve_slot()

        provider = resolve_provider(settings.provider)
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for provider '{provider.value}'")

        raw = adapter.analyze(image_data_uri, settings)
        try:
            bill = normalize(raw)
        except ValidationError as e:
            log.error(f"Provider '{provider.value}' returned an invalid bill: {e}")
            raise

        record = BillRecord(
            id=self._id_factory(),
            analyzed_at=self._now().isoformat(),
            bill=bill,
        )
        log.info(f"Analyzed bill {record.id} with provider '{provider.value}'")
        return record
