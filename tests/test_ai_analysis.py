"""
AI Analysis Tests

Provider selection, recommendation guardrails, confidence and fallback.
"""

import pytest
from unittest.mock import AsyncMock, patch

from pump_trader.ai_analysis import (
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
    AIAnalyzer,
    AnalysisSource,
    Recommendation,
)
from pump_trader.config import ConfigError
from pump_trader.token_validator import TokenMetadata, TokenValidation

MINT = "3WPtHU8HPDrYcrKiiq2n9XQrK9q9TW3aVteSfes8pump"


def _validation(risk=2, liquidity=1000.0, market_cap=5000.0, can_mint=False, can_freeze=False, reasons=None):
    return TokenValidation(
        is_valid=risk <= 7,
        risk_score=risk,
        liquidity=liquidity,
        market_cap=market_cap,
        can_mint=can_mint,
        can_freeze=can_freeze,
        reasons=reasons or ["⚠️ Few holders: 4"],
    )


@pytest.fixture
def analyzer(config):
    return AIAnalyzer(config)


class TestProviderSelection:

    def test_openrouter_preferred(self, make_config):
        analyzer = AIAnalyzer(make_config(openrouter_api_key="or", openai_api_key="oa"))

        assert analyzer.base_url == OPENROUTER_BASE_URL
        assert analyzer.model == "meta-llama/llama-3.3-70b-instruct"
        assert "X-Title" in analyzer.extra_headers

    def test_openai_fallback(self, make_config):
        analyzer = AIAnalyzer(make_config(openrouter_api_key="", openai_api_key="oa"))

        assert analyzer.base_url == OPENAI_BASE_URL
        assert analyzer.model == "gpt-4-turbo-preview"

    def test_model_override(self, make_config):
        analyzer = AIAnalyzer(make_config(ai_model="custom/model"))

        assert analyzer.model == "custom/model"

    def test_no_key_raises(self, make_config):
        with pytest.raises(ConfigError):
            AIAnalyzer(make_config(openrouter_api_key="", openai_api_key=""))


class TestRecommendation:

    @pytest.mark.parametrize("text,risk,expected", [
        ("STRONG BUY, send it", 8, Recommendation.AVOID),
        ("BUY", 7, Recommendation.AVOID),
        ("STRONG BUY", 6, Recommendation.BUY),
        ("Decent setup. BUY", 3, Recommendation.BUY),
        ("Risky. AVOID", 2, Recommendation.AVOID),
        ("Rug vibes. AVOID", 4, Recommendation.AVOID),
        ("Could pump. BUY", 5, Recommendation.BUY),
        ("Could pump. BUY", 6, Recommendation.HOLD),
        ("Meh. HOLD", 2, Recommendation.HOLD),
    ])
    def test_rules(self, text, risk, expected):
        assert AIAnalyzer.extract_recommendation(text, _validation(risk=risk)) == expected

    def test_buy_substring_counts(self):
        # "buying" contains "buy"
        assert AIAnalyzer.extract_recommendation("worth buying", _validation(risk=1)) == Recommendation.BUY


class TestConfidence:

    def test_base_from_risk(self, analyzer):
        validation = _validation(risk=4, can_mint=True)

        assert analyzer.calculate_confidence(validation) == 60

    def test_bonuses(self, analyzer):
        validation = _validation(risk=4, liquidity=3000, market_cap=15000)

        assert analyzer.calculate_confidence(validation) == 60 + 10 + 10 + 15

    def test_clamped_high(self, analyzer):
        validation = _validation(risk=0, liquidity=1e9, market_cap=1e9)

        assert analyzer.calculate_confidence(validation) == 100

    def test_clamped_low(self, analyzer):
        validation = _validation(risk=10, can_mint=True, can_freeze=True)

        assert analyzer.calculate_confidence(validation) == 0


class TestKeyPoints:

    def test_extracts_structured_lines(self):
        text = (
            "Honestly mid.\n"
            "1. Liquidity is thin\n"
            "- Dev holds a bag\n"
            "Risk: high\n"
            "* Chart looks botted\n"
            "* One more\n"
        )

        points = AIAnalyzer.extract_key_points(text)

        assert points == [
            "1. Liquidity is thin",
            "- Dev holds a bag",
            "Risk: high",
            "* Chart looks botted",
        ]

    def test_plain_prose_has_none(self):
        assert AIAnalyzer.extract_key_points("Just vibes here\nnothing else") == []


class TestAnalyzeToken:

    @pytest.mark.asyncio
    async def test_model_response(self, analyzer):
        metadata = TokenMetadata(name="Pump", symbol="PUMP")
        validation = _validation(risk=2)

        with patch.object(analyzer, "_chat_completion", AsyncMock(return_value="1. Fresh launch\nBUY")):
            analysis = await analyzer.analyze_token(MINT, metadata, validation)

        assert analysis.source == AnalysisSource.MODEL
        assert analysis.recommendation == Recommendation.BUY
        assert analysis.summary == "1. Fresh launch\nBUY"
        assert analysis.key_points == ["1. Fresh launch"]
        assert analysis.confidence == analyzer.calculate_confidence(validation)

    @pytest.mark.asyncio
    async def test_prompt_contains_market_data(self, analyzer):
        captured = {}

        async def fake_completion(prompt):
            captured["prompt"] = prompt
            return "HOLD"

        with patch.object(analyzer, "_chat_completion", fake_completion):
            await analyzer.analyze_token(MINT, TokenMetadata(name="Pump", symbol="PUMP"), _validation(risk=5))

        prompt = captured["prompt"]
        assert MINT in prompt
        assert "Pump (PUMP)" in prompt
        assert "Risk Score: 5/10" in prompt
        assert prompt.endswith("End with one of: STRONG BUY, BUY, HOLD, or AVOID.")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("risk,expected,label", [
        (8, Recommendation.AVOID, "HIGH RISK"),
        (2, Recommendation.BUY, "LOW RISK"),
        (5, Recommendation.HOLD, "MEDIUM RISK"),
    ])
    async def test_fallback_on_failure(self, analyzer, risk, expected, label):
        validation = _validation(risk=risk, reasons=["⚠️ Low liquidity: $10"])

        with patch.object(analyzer, "_chat_completion", AsyncMock(side_effect=RuntimeError("503"))):
            analysis = await analyzer.analyze_token(MINT, TokenMetadata(), validation)

        assert analysis.source == AnalysisSource.FALLBACK
        assert analysis.is_fallback
        assert analysis.recommendation == expected
        assert label in analysis.summary
        assert analysis.key_points == ["⚠️ Low liquidity: $10"]
