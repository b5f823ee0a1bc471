"""
AI token analysis via an OpenAI-compatible chat completion endpoint.

The model writes the summary; the recommendation is keyword-matched from its
text with the risk score as a guardrail, and confidence is computed from the
validation alone. Inference failures fall back to a rule-based summary.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from .config import ConfigError
from .token_validator import TokenMetadata, TokenValidation

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_MODEL = "meta-llama/llama-3.3-70b-instruct"
OPENAI_MODEL = "gpt-4-turbo-preview"

SYSTEM_PROMPT = (
    "You are a Wojak-style crypto analyst. Provide brutally honest, slightly "
    "pessimistic but insightful analysis of tokens. Be concise and use crypto "
    "slang where appropriate."
)

# Risk guardrails for the recommendation
FORCE_AVOID_RISK = 7
BUY_MAX_RISK = 3
SOFT_BUY_MAX_RISK = 5
MAX_KEY_POINTS = 4


class Recommendation(Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    AVOID = "AVOID"


class AnalysisSource(Enum):
    MODEL = "model"         # language model answered
    FALLBACK = "fallback"   # rule-based, inference unavailable


@dataclass
class TokenAnalysis:
    """Structured analysis result."""
    summary: str
    recommendation: Recommendation
    confidence: int  # 0-100
    key_points: List[str] = field(default_factory=list)
    source: AnalysisSource = AnalysisSource.MODEL

    @property
    def is_fallback(self) -> bool:
        return self.source == AnalysisSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'recommendation': self.recommendation.value,
            'confidence': self.confidence,
            'key_points': list(self.key_points),
            'source': self.source.value,
        }


class AIAnalyzer:
    """Token analyst backed by OpenRouter or OpenAI."""

    def __init__(self, config):
        self.config = config

        if config.openrouter_api_key:
            self.base_url = OPENROUTER_BASE_URL
            self.api_key = config.openrouter_api_key
            self.model = config.ai_model or OPENROUTER_MODEL
            self.extra_headers = {
                'HTTP-Referer': 'https://github.com/pump-trader',
                'X-Title': 'Pump Trader',
            }
        elif config.openai_api_key:
            self.base_url = OPENAI_BASE_URL
            self.api_key = config.openai_api_key
            self.model = config.ai_model or OPENAI_MODEL
            self.extra_headers = {}
        else:
            raise ConfigError("No AI API key configured. Set OPENROUTER_API_KEY or OPENAI_API_KEY")

        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def analyze_token(
        self,
        token_mint: str,
        metadata: TokenMetadata,
        validation: TokenValidation,
    ) -> TokenAnalysis:
        """Analyze a token; never raises."""
        logger.info(f"AI analyzing token: {metadata.symbol}...")

        prompt = self.build_analysis_prompt(token_mint, metadata, validation)

        try:
            analysis = await self._chat_completion(prompt)
        except Exception as e:
            logger.error(f"AI analysis failed: {e}")
            return self.fallback_analysis(validation)

        return TokenAnalysis(
            summary=analysis,
            recommendation=self.extract_recommendation(analysis, validation),
            confidence=self.calculate_confidence(validation),
            key_points=self.extract_key_points(analysis),
            source=AnalysisSource.MODEL,
        )

    async def _chat_completion(self, prompt: str) -> str:
        session = await self._get_session()
        headers = {'Authorization': f'Bearer {self.api_key}', **self.extra_headers}
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ],
            'temperature': 0.7,
            'max_tokens': 500,
        }

        try:
            async with session.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=payload,
            ) as resp:
                if resp.status != 200:
                    error = await resp.text()
                    raise RuntimeError(f"Chat completion failed: {resp.status} - {error[:200]}")
                data = await resp.json()
        except asyncio.TimeoutError as e:
            raise RuntimeError("Chat completion timed out") from e

        content = data["choices"][0]["message"].get("content") or ""
        if not content.strip():
            raise RuntimeError("Chat completion returned empty content")
        return content

    def build_analysis_prompt(
        self,
        token_mint: str,
        metadata: TokenMetadata,
        validation: TokenValidation,
    ) -> str:
        reasons = "\n".join(validation.reasons)
        return f"""Analyze this Pump.fun token for trading:

Token: {metadata.name} ({metadata.symbol})
Contract: {token_mint}

Market Data:
- Market Cap: ${validation.market_cap:,.0f}
- Liquidity: ${validation.liquidity:,.0f}
- Holders: {validation.holder_count}
- Top Holder: {validation.top_holder_percent:.1f}%

Risk Factors:
- Risk Score: {validation.risk_score}/10
- Can Mint: {'Yes ⚠️' if validation.can_mint else 'No ✓'}
- Can Freeze: {'Yes ⚠️' if validation.can_freeze else 'No ✓'}

Issues/Signals:
{reasons}

Provide a brief analysis (2-3 sentences) focusing on:
1. Is this worth aping into?
2. Main risks
3. Quick profit potential

End with one of: STRONG BUY, BUY, HOLD, or AVOID."""

    @staticmethod
    def extract_recommendation(analysis: str, validation: TokenValidation) -> Recommendation:
        """Keyword match on the model text, bounded by the risk score."""
        text = analysis.lower()
        risk = validation.risk_score

        if risk >= FORCE_AVOID_RISK:
            return Recommendation.AVOID

        if 'strong buy' in text or ('buy' in text and risk <= BUY_MAX_RISK):
            return Recommendation.BUY

        if 'avoid' in text:
            return Recommendation.AVOID

        if 'buy' in text and risk <= SOFT_BUY_MAX_RISK:
            return Recommendation.BUY

        return Recommendation.HOLD

    def calculate_confidence(self, validation: TokenValidation) -> int:
        """Confidence from risk score plus liquidity/market cap/authority bonuses."""
        confidence = 100 - validation.risk_score * 10

        if validation.liquidity >= self.config.min_liquidity * 3:
            confidence += 10
        if validation.market_cap >= self.config.min_market_cap * 3:
            confidence += 10
        if not validation.can_mint and not validation.can_freeze:
            confidence += 15

        return int(min(100, max(0, confidence)))

    @staticmethod
    def extract_key_points(analysis: str) -> List[str]:
        points = []
        for line in analysis.splitlines():
            line = line.strip()
            if not line:
                continue
            if line[0].isdigit() or line[0] in '.-*' or ':' in line:
                points.append(line)
        return points[:MAX_KEY_POINTS]

    def fallback_analysis(self, validation: TokenValidation) -> TokenAnalysis:
        """Three-tier rule-based summary keyed on the risk score."""
        summary = '⚠️ AI analysis unavailable. Using rule-based assessment:\n\n'

        if validation.risk_score >= FORCE_AVOID_RISK:
            summary += 'HIGH RISK token. Multiple red flags detected. Proceed with extreme caution.'
            recommendation = Recommendation.AVOID
        elif validation.risk_score <= BUY_MAX_RISK:
            summary += 'LOW RISK token. Looks relatively safe. Consider buying with proper position sizing.'
            recommendation = Recommendation.BUY
        else:
            summary += 'MEDIUM RISK token. Some concerns but potentially tradeable. Use tight stop loss.'
            recommendation = Recommendation.HOLD

        return TokenAnalysis(
            summary=summary,
            recommendation=recommendation,
            confidence=self.calculate_confidence(validation),
            key_points=list(validation.reasons),
            source=AnalysisSource.FALLBACK,
        )
