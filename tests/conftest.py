import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from store_insights.models.schemas import (
    AnalysisRequest,
    CouponRecord,
    OrderItem,
    OrderRecord,
    PreviousSuggestion,
    ProductRecord,
    StoreSnapshot,
)

SAMPLES_DIR = Path(__file__).resolve().parent.parent / "samples"


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.app_env = "development"
    settings.log_level = "INFO"
    settings.log_json = False

    settings.ai_provider = "gemini"
    settings.provider_api_key.return_value = None
    settings.is_provider_configured.return_value = False
    settings.configured_providers.return_value = []

    for provider in ("openai", "gemini", "anthropic"):
        setattr(settings, f"{provider}_model", f"{provider}-test-model")
        setattr(settings, f"{provider}_max_tokens", 4096)
        setattr(settings, f"{provider}_temperature", 0.7)
        setattr(settings, f"{provider}_timeout_seconds", 30)

    settings.provider_max_retries = 3
    settings.provider_retry_delays = [0, 0, 0]
    settings.rate_limit_retry_delays = [0, 0, 0]

    settings.embedding_provider = "gemini"
    settings.embedding_model = None
    settings.embedding_dimensions = None
    settings.embedding_timeout_seconds = 30

    settings.similarity_threshold = 0.85
    settings.analysis_period_days = 15
    settings.lite_analysis_period_days = 7
    settings.stage_timeout_seconds = 5
    settings.stage_max_retries = 3
    settings.stage_retry_delays = [0, 0, 0]
    return settings


@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Globally patch get_settings to return mock_settings."""
    targets = [
        "store_insights.config.settings.get_settings",
        "store_insights.services.ai_manager.get_settings",
        "store_insights.services.ai_providers.get_settings",
        "store_insights.services.embedding_service.get_settings",
        "store_insights.pipeline.orchestrator.get_settings",
        "store_insights.pipeline.lite.get_settings",
        "store_insights.main.get_settings",
    ]
    patchers = [patch(target, return_value=mock_settings) for target in targets]
    for patcher in patchers:
        patcher.start()
    yield mock_settings
    for patcher in reversed(patchers):
        patcher.stop()


class ScriptedAIManager:
    """Stands in for AIManager, replying from a queue in call order."""

    def __init__(self, responses: list[Any]):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, provider=None, disable_fallback=False, **options):
        self.calls.append({"messages": list(messages), "options": options})
        if not self.responses:
            raise AssertionError("Unexpected chat call")
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return "```json\n" + json.dumps(reply) + "\n```"
        return reply

    async def close(self):
        pass


@pytest.fixture
def scripted_ai():
    return ScriptedAIManager


@pytest.fixture
def now():
    return datetime.utcnow()


@pytest.fixture
def sample_store(now):
    return StoreSnapshot(
        id=7,
        name="Bella Moda Boutique",
        url="https://bellamoda.example.com",
        products=[
            ProductRecord(id="p1", name="Linen Dress", price=189.9, cost=80, stock_quantity=14, categories=["Dresses", "Women"]),
            ProductRecord(id="p2", name="Denim Jacket", price=249.0, cost=110, stock_quantity=3, categories=["Jackets", "Women"]),
            ProductRecord(id="p3", name="Basic Tee", price=59.9, cost=18, stock_quantity=140, categories=["T-Shirts"]),
            ProductRecord(id="p4", name="Leather Belt", price=79.9, cost=30, stock_quantity=0, categories=["Accessories"]),
            ProductRecord(id="p5", name="Silk Scarf", price=99.0, cost=35, stock_quantity=22, categories=["Accessories"]),
        ],
        orders=[
            OrderRecord(
                id="o1", created_at=now - timedelta(days=2), total=249.8, customer_id="c1",
                items=[OrderItem(product_id="p1", quantity=1, unit_price=189.9), OrderItem(product_id="p3", quantity=1, unit_price=59.9)],
            ),
            OrderRecord(
                id="o2", created_at=now - timedelta(days=3), total=200.0, discount=20.0, coupon_code="WELCOME10", customer_id="c2",
                items=[OrderItem(product_id="p2", quantity=1, unit_price=249.0)],
            ),
            OrderRecord(
                id="o3", created_at=now - timedelta(days=5), total=100.0, customer_id="c1",
                items=[OrderItem(product_id="p3", quantity=2, unit_price=50.0)],
            ),
            OrderRecord(
                id="o4", created_at=now - timedelta(days=6), total=79.9, payment_status="refunded", status="cancelled", customer_id="c3",
                items=[OrderItem(product_id="p4", quantity=1, unit_price=79.9)],
            ),
            OrderRecord(
                id="o5", created_at=now - timedelta(days=40), total=150.0, customer_id="c4",
                items=[OrderItem(product_id="p5", quantity=1, unit_price=150.0)],
            ),
        ],
        coupons=[
            CouponRecord(code="WELCOME10"),
            CouponRecord(code="OLD", is_active=False, expires_at=now - timedelta(days=30)),
        ],
    )


@pytest.fixture
def sample_request(sample_store):
    return AnalysisRequest(
        analysis_id="analysis-1",
        store=sample_store,
        previous_suggestions=[
            PreviousSuggestion(title="Launch a loyalty program", description="Points for repeat buyers", status="completed"),
        ],
    )


# =============================================================================
# Canned agent replies
# =============================================================================

@pytest.fixture
def profile_reply():
    return {
        "store_profile": {"name": "Bella Moda Boutique", "estimated_size": "small", "target_audience": "women 25-40"},
        "analysis_context": {"initial_observations": "Growing fashion store"},
    }


@pytest.fixture
def collector_reply():
    return {
        "historical_summary": {"previous_analyses": 0},
        "success_patterns": [],
        "suggestions_to_avoid": ["loyalty program"],
        "relevant_benchmarks": {"average_ticket": "150-250"},
        "identified_gaps": ["No post-purchase flow"],
        "special_context": {},
    }


@pytest.fixture
def analyst_reply():
    return {
        "metrics": {"sales": {"total": 649.8, "trend": "growing"}},
        "anomalies": [
            {"type": "critical_stock", "description": "Denim Jacket has 3 units left", "severity": "high"},
            {"type": "cancellation_rate", "description": "One order refunded", "severity": "low"},
        ],
        "identified_patterns": [
            {"type": "cross_sell", "description": "Dresses sell with tees", "potential_revenue": 1200},
        ],
        "overall_health": {"score": 72, "classification": "healthy", "main_points": ["Sales are growing"]},
    }


def make_suggestion(title: str, impact: str, description: str = None) -> dict[str, Any]:
    return {
        "category": "conversion",
        "title": title,
        "description": description or f"{title} to grow revenue",
        "recommended_action": f"Do {title.lower()}",
        "expected_impact": impact,
        "target_metrics": ["conversion_rate"],
        "data_justification": "Based on period orders",
    }


@pytest.fixture
def strategist_reply():
    return {
        "suggestions": [
            make_suggestion("Bundle dresses with tees", "high"),
            make_suggestion("Restock the denim jacket", "high"),
            make_suggestion("Add size guide to product pages", "medium"),
            make_suggestion("Publish outfit lookbook", "low"),
        ],
        "general_observations": "Focus on average ticket",
    }


@pytest.fixture
def critic_reply(strategist_reply):
    return {
        "approved_suggestions": [
            {"original": s, "final_version": s, "review": {"quality_score": 8 - i}}
            for i, s in enumerate(strategist_reply["suggestions"])
        ],
        "removed_suggestions": [],
        "general_analysis": {"total_received": 4, "observations": "Solid batch"},
    }
