"""
Analysis type routing.

Resolves an analysis type to the prompt specialization bundle each agent
receives. General, not-yet-implemented and unknown types all resolve to the
empty, non-specialized config, under which every agent behaves generically.
"""

from __future__ import annotations

from typing import Callable

from store_insights.models.schemas import AnalysisType, ModuleConfig


def _financial() -> ModuleConfig:
    return ModuleConfig(
        analysis_type=AnalysisType.FINANCIAL.value,
        is_specialized=True,
        collector_focus={
            "priority_data": (
                "revenue, gross margin, net margin, average ticket, CAC, LTV, "
                "shipping cost, repeat purchase rate"
            ),
            "required_metrics": ["monthly_revenue", "average_ticket", "margin", "acquisition_cost", "ltv"],
        },
        analyst_keywords={
            "keywords": (
                "margin, average ticket, CAC, LTV, revenue, pricing, shipping cost, "
                "financial seasonality, product mix by profitability, operating cost"
            ),
            "analysis_focus": (
                "Focus on financial health and pricing and margin optimization. "
                "Identify the products with the best and worst margins."
            ),
        },
        strategist_config={
            "focus": "financial optimization, pricing, margin and cost reduction",
            "good_example": (
                "Bundle the two products with margin above 40% (Product A 45%, Product B 42%) "
                "into a kit priced at $X, projecting average ticket growth from $185 to $215. "
                "{niche} stores using strategic bundles raise average ticket by 12-18%."
            ),
            "bad_example": "Raise your prices to improve margin.",
        },
        critic_config={
            "extra_criteria": (
                "Every financial suggestion must cite the store's real numbers. Check that margin, "
                "average ticket and revenue projections are arithmetically correct. Reject pricing "
                "suggestions that ignore the niche's competitive positioning."
            ),
        },
    )


def _conversion() -> ModuleConfig:
    return ModuleConfig(
        analysis_type=AnalysisType.CONVERSION.value,
        is_specialized=True,
        collector_focus={
            "priority_data": (
                "overall conversion rate, conversion by device, cart abandonment rate, "
                "funnel steps, bounce rate, exit pages, page speed"
            ),
            "required_metrics": ["conversion_rate", "cart_abandonment_rate", "mobile_vs_desktop_visitors", "bounce_rate"],
        },
        analyst_keywords={
            "keywords": (
                "conversion, cart abandonment, sales funnel, checkout, product page, UX, "
                "mobile, speed, bounce rate, CTAs, forms, navigation"
            ),
            "analysis_focus": (
                "Focus on friction points in the conversion funnel. Identify where visitors "
                "drop off and why. Compare mobile and desktop performance."
            ),
        },
        strategist_config={
            "focus": "conversion optimization, abandonment reduction, UX and checkout improvements",
            "good_example": (
                "Remove the optional 'company' checkout field (94% of customers are individuals). "
                "Abandonment is 73%, 15 points above the {niche} benchmark (~58%). Steps: 1) remove "
                "optional fields 2) autofill address from postal code 3) add a progress indicator. "
                "Target: 60% abandonment, about 25 extra sales per month."
            ),
            "bad_example": "Improve the checkout experience to convert more customers.",
        },
        critic_config={
            "extra_criteria": (
                "Conversion suggestions must include concrete implementation steps. Check that "
                "cited rates match the collected data. Reject suggestions that do not say where "
                "in the funnel (top, middle, bottom) they act."
            ),
        },
    )


def _competitors() -> ModuleConfig:
    return ModuleConfig(
        analysis_type=AnalysisType.COMPETITORS.value,
        is_specialized=True,
        collector_focus={
            "priority_data": (
                "competitor data (prices, differentiators, categories, promotions, reviews, catalog), "
                "store price positioning against the market, feature gaps, unexplored categories"
            ),
            "required_metrics": [
                "average_ticket_vs_competitors",
                "category_overlap",
                "missing_differentiators",
                "promotion_comparison",
                "market_price_range",
            ],
        },
        analyst_keywords={
            "keywords": (
                "competitive positioning, missing differentiators, competitive advantages, market gaps, "
                "competitive pricing, category overlap, unique value proposition, competitive threats"
            ),
            "analysis_focus": (
                "Compare the store against competitors on PRICE, PRODUCT, EXPERIENCE and PROMOTIONS, "
                "classifying the store as ABOVE, PAR or BELOW on each dimension."
            ),
        },
        strategist_config={
            "focus": "competitive advantage, market differentiation and exploiting competitor gaps",
            "good_example": (
                "Competitor 'Natural Beauty' offers a personalized quiz (4.8/5, 230 reviews) and this "
                "store does not. Build an 8-question quiz over the 84 active products. Competitor "
                "ticket is $259 against $185 here; target $220 (+19%)."
            ),
            "bad_example": "Copy what competitors do so you don't fall behind.",
        },
        critic_config={
            "extra_criteria": (
                "Every HIGH priority suggestion must name at least one competitor with a specific "
                "number. Reject generic 'competitors do X' suggestions. Suggestions must propose "
                "differentiation, not imitation. Without competitor data, downgrade competitive "
                "suggestions to LOW."
            ),
        },
    )


_RESOLVERS: dict[str, Callable[[], ModuleConfig]] = {
    AnalysisType.FINANCIAL.value: _financial,
    AnalysisType.CONVERSION.value: _conversion,
    AnalysisType.COMPETITORS.value: _competitors,
}


class AnalysisRouter:
    """Maps analysis types to agent specialization bundles."""

    def resolve(self, analysis_type: str) -> ModuleConfig:
        resolver = _RESOLVERS.get((analysis_type or "").strip().lower())
        return resolver() if resolver else ModuleConfig.general()

    @staticmethod
    def specialized_types() -> list[str]:
        return list(_RESOLVERS)


__all__ = ["AnalysisRouter"]
