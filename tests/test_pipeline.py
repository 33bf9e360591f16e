"""
Tests for the extraction pipeline.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from ai_bill_reader.core.errors import (
    AnalysisFailedError,
    ConfigurationError,
    InvalidImageError,
    ProviderTransportError,
    RateLimitExceeded,
    ValidationError,
)
from ai_bill_reader.core.pipeline import ExtractionPipeline
from ai_bill_reader.core.rate_governor import MAX_REQUESTS, RateGovernor
from ai_bill_reader.storage.kv_store import InMemoryKeyValueStore
from ai_bill_reader.storage.models import AiProvider, AiSettings

IMAGE = "data:image/png;base64,iVBORw0KGgo="

PAYLOAD = {
    "accountNumber": "A1",
    "accountName": "Jane Doe",
    "statementDate": "October 5, 2017",
    "totalCurrentCharges": "$1,234.56",
    "confidenceScore": 0.5,
    "usageCharts": [
        {"title": "Usage", "unit": "kWh", "data": [{"month": "Oct", "usage": [{"year": "2017", "value": 300}]}]}
    ],
    "lineItems": [{"description": "Energy", "amount": 1234.56}],
}


class StubAdapter:
    """Adapter returning a fixed payload and remembering its calls."""

    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else dict(PAYLOAD)
        self.error = error
        self.calls = []

    def analyze(self, image_data_uri, settings):
        self.calls.append((image_data_uri, settings))
        if self.error:
            raise self.error
        return self.payload


@pytest.fixture
def governor():
    return RateGovernor(InMemoryKeyValueStore(), clock=lambda: 1_700_000_000.0)


@pytest.fixture
def cloud_settings():
    return AiSettings(provider=AiProvider.CLOUD, gemini_api_key="test-key")


def make_pipeline(governor, cloud=None, local=None, **kwargs):
    adapters = {
        AiProvider.CLOUD: cloud or StubAdapter(),
        AiProvider.LOCAL: local or StubAdapter(),
    }
    return ExtractionPipeline(governor, adapters=adapters, **kwargs)


class TestAnalyzeBill:
    """Test the happy path."""

    def test_returns_identified_record(self, governor, cloud_settings):
        """Test end-to-end extraction with a stub cloud adapter."""
        pipeline = make_pipeline(governor)
        record = pipeline.analyze_bill(IMAGE, cloud_settings)

        assert record.id
        parsed = datetime.fromisoformat(record.analyzed_at)
        assert parsed.tzinfo is not None
        assert record.bill.total_current_charges == pytest.approx(1234.56)
        assert record.bill.confidence_score == 0.5
        assert record.bill.account_name == "Jane Doe"
        assert record.bill.statement_date == "October 5, 2017"

        expected = dict(PAYLOAD, totalCurrentCharges=1234.56)
        data = record.to_dict()
        for key, value in expected.items():
            assert data[key] == value

    def test_ids_are_fresh(self, governor, cloud_settings):
        """Test each extraction gets its own id."""
        pipeline = make_pipeline(governor)
        first = pipeline.analyze_bill(IMAGE, cloud_settings)
        second = pipeline.analyze_bill(IMAGE, cloud_settings)
        assert first.id != second.id

    def test_injected_id_and_clock(self, governor, cloud_settings):
        """Test identity comes from the injected factories."""
        fixed = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        pipeline = make_pipeline(governor, now=lambda: fixed, id_factory=lambda: "bill-1")
        record = pipeline.analyze_bill(IMAGE, cloud_settings)
        assert record.id == "bill-1"
        assert record.analyzed_at == "2024-01-02T03:04:05+00:00"

    def test_dispatches_by_provider(self, governor):
        """Test the local adapter handles local settings."""
        cloud, local = StubAdapter(), StubAdapter()
        pipeline = make_pipeline(governor, cloud=cloud, local=local)
        settings = AiSettings(provider=AiProvider.LOCAL, ollama_url="http://localhost:11434", ollama_model="llava")

        pipeline.analyze_bill(IMAGE, settings)

        assert cloud.calls == []
        assert local.calls == [(IMAGE, settings)]

    def test_records_request(self, governor, cloud_settings):
        """Test each extraction consumes one slot."""
        make_pipeline(governor).analyze_bill(IMAGE, cloud_settings)
        assert len(governor.window_usage()) == 1


class TestRateLimiting:
    """Test the governor gates the provider."""

    def test_rate_limited_call_skips_provider(self, governor, cloud_settings):
        """Test no provider call or record happens when the window is full."""
        for _ in range(MAX_REQUESTS):
            governor.record_request()
        adapter = StubAdapter()
        pipeline = make_pipeline(governor, cloud=adapter)

        with pytest.raises(RateLimitExceeded) as excinfo:
            pipeline.analyze_bill(IMAGE, cloud_settings)

        assert excinfo.value.retry_after_seconds > 0
        assert adapter.calls == []
        assert len(governor.window_usage()) == MAX_REQUESTS

    def test_sixth_call_is_rejected(self, governor, cloud_settings):
        pipeline = make_pipeline(governor)
        for _ in range(MAX_REQUESTS):
            pipeline.analyze_bill(IMAGE, cloud_settings)
        with pytest.raises(RateLimitExceeded):
            pipeline.analyze_bill(IMAGE, cloud_settings)

    def test_failed_call_still_counts(self, governor, cloud_settings):
        """Test a failing provider call is not refunded or retried."""
        adapter = StubAdapter(error=ProviderTransportError("down"))
        pipeline = make_pipeline(governor, cloud=adapter)

        with pytest.raises(ProviderTransportError):
            pipeline.analyze_bill(IMAGE, cloud_settings)

        assert len(adapter.calls) == 1
        assert len(governor.window_usage()) == 1


class TestFailures:
    """Test error propagation."""

    def test_unknown_provider(self, governor):
        """Test an unrecognized provider tag is a configuration error."""
        settings = Mock(provider="watsonx")
        with pytest.raises(ConfigurationError, match="Invalid AI provider"):
            make_pipeline(governor).analyze_bill(IMAGE, settings)

    def test_provider_without_adapter(self, governor, cloud_settings):
        pipeline = ExtractionPipeline(governor, adapters={AiProvider.LOCAL: StubAdapter()})
        with pytest.raises(ConfigurationError):
            pipeline.analyze_bill(IMAGE, cloud_settings)

    def test_invalid_payload(self, governor, cloud_settings):
        """Test validation failures surface as analysis failures."""
        adapter = StubAdapter(payload={"accountNumber": "A1"})
        with pytest.raises(ValidationError) as excinfo:
            make_pipeline(governor, cloud=adapter).analyze_bill(IMAGE, cloud_settings)
        assert isinstance(excinfo.value, AnalysisFailedError)

    def test_configuration_error_from_adapter(self, governor):
        adapter = StubAdapter(error=ConfigurationError("Gemini API Key is not configured."))
        with pytest.raises(ConfigurationError):
            make_pipeline(governor, cloud=adapter).analyze_bill(IMAGE, AiSettings())

    @pytest.mark.parametrize("provider", [AiProvider.CLOUD, AiProvider.LOCAL])
    def test_malformed_image_spends_nothing(self, governor, provider):
        """Test a bad data URI is rejected the same way for every provider."""
        adapter = StubAdapter()
        pipeline = make_pipeline(governor, cloud=adapter, local=adapter)
        settings = AiSettings(provider=provider, gemini_api_key="test-key")

        with pytest.raises(InvalidImageError, match="data URI"):
            pipeline.analyze_bill("not-a-data-uri", settings)

        assert adapter.calls == []
        assert governor.window_usage() == []
