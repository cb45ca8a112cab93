"""
Narrative augmentation for admitted analytics results.

Providers are tried in order. Every narrative is validated before it is
attached: sentences citing no metric or an unknown metric are dropped, and
any figure that does not come from the result rejects the narrative.
"""
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import anthropic
import openai

from ..config import NarrativeConfig
from ..errors import NarrativeRejectedError, ProviderError, ProviderTimeoutError
from ..types import AnalyticsResult, Narrative, QualityTier
from .cost_tracker import CostTracker, UsageRecord

logger = logging.getLogger(__name__)

DISCLAIMERS = {
    QualityTier.LOW: (
        "Limited data: these figures rest on small samples and may not reflect how this judge "
        "typically rules. They are not legal advice."
    ),
    QualityTier.GOOD: (
        "These statistics come from a moderate sample of decided cases and are indicative, "
        "not predictive. They are not legal advice."
    ),
    QualityTier.HIGH: (
        "These statistics come from a substantial sample of decided cases. Past outcomes do not "
        "guarantee future results and this is not legal advice."
    ),
}

CITATION_RE = re.compile(r'\[([a-z_]+\.[a-z_]+)\]')
SENTENCE_SPLIT_RE = re.compile(r'(?<=[.!?])\s+')
NUMBER_RE = re.compile(r'(?<![\w.])(\d{1,3}(?:,\d{3})+|\d+)(\.\d+)?\s*(%|percent(?:age points?)?)?', re.IGNORECASE)

# Rounding slack when a figure is quoted (62% for 0.6178)
FIGURE_TOLERANCE = 0.5


@dataclass
class ProviderResponse:
    text: str
    model: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


def format_facts(facts: Dict[str, Any]) -> str:
    lines = []
    for key, value in facts.items():
        if isinstance(value, float) and key.endswith(("_rate", "_deviation")):
            lines.append(f"- {key} = {value} ({value * 100:.1f}%)")
        else:
            lines.append(f"- {key} = {value}")
    return "\n".join(lines)


def build_prompt(facts: Dict[str, Any], tier: QualityTier) -> str:
    return f"""Write a short, neutral summary (3-5 sentences) of a judge's case statistics.

Statistics (quality tier: {tier.value}):
{format_facts(facts)}

Rules:
- Use only the figures listed above. Do not introduce any other numbers, years or counts.
- After each figure, cite its key in square brackets, e.g. [civil.settlement_rate].
- Every sentence must cite at least one key. Sentences without a citation are removed.
- Express rates as whole-number percentages.
- Do not speculate about bias, motives or how future cases will be decided.

Respond with the summary text only."""


class NarrativeProvider(ABC):
    """Turns structured metrics into prose."""

    name = "base"
    billable = True

    @abstractmethod
    def generate(self, facts: Dict[str, Any], tier: QualityTier) -> ProviderResponse:
        """Raises ProviderError on failure."""


class AnthropicNarrativeProvider(NarrativeProvider):
    name = "anthropic"

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514",
                 max_tokens: int = 400, timeout: float = 30.0, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=1)

    def generate(self, facts, tier):
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[{"role": "user", "content": build_prompt(facts, tier)}],
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeoutError(f"Anthropic timeout: {e}", self.name) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic error: {e}", self.name) from e

        text = "".join(getattr(block, "text", "") for block in response.content).strip()
        if not text:
            raise ProviderError("Anthropic returned an empty response", self.name)
        return ProviderResponse(
            text=text,
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


class OpenAINarrativeProvider(NarrativeProvider):
    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 max_tokens: int = 400, timeout: float = 30.0, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    def generate(self, facts, tier):
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[{"role": "user", "content": build_prompt(facts, tier)}],
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"OpenAI timeout: {e}", self.name) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"OpenAI error: {e}", self.name) from e

        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise ProviderError("OpenAI returned an empty response", self.name)
        usage = response.usage
        return ProviderResponse(
            text=text,
            model=self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def _pct(rate: float) -> str:
    return f"{rate * 100:.0f}%"


class TemplateNarrativeProvider(NarrativeProvider):
    """Rule-based prose built directly from the metrics. Never fails."""

    name = "template"
    billable = False

    def generate(self, facts, tier):
        sentences = []
        if "overall.total_decided" in facts:
            sentences.append(
                f"This profile is based on {facts['overall.total_decided']} decided cases [overall.total_decided]."
            )

        categories = sorted({k.split(".")[0] for k in facts if not k.startswith("overall.")})
        for category in categories:
            metric = {k.split(".", 1)[1]: v for k, v in facts.items() if k.startswith(f"{category}.")}
            get = metric.get
            label = category.capitalize()

            if get("settlement_rate") is not None and get("sample_size") is not None:
                sentences.append(
                    f"{label} cases settled at a rate of {_pct(get('settlement_rate'))} "
                    f"[{category}.settlement_rate] across {get('sample_size')} decided cases [{category}.sample_size]."
                )
            if get("motion_grant_rate") is not None:
                sentences.append(
                    f"Motions in {category} cases were granted {_pct(get('motion_grant_rate'))} "
                    f"of the time [{category}.motion_grant_rate]."
                )
            if get("median_days_to_decision") is not None:
                sentences.append(
                    f"The median {category} case took {get('median_days_to_decision'):.0f} days "
                    f"from filing to decision [{category}.median_days_to_decision]."
                )
            if get("baseline_deviation") is not None and get("baseline_rate") is not None:
                deviation = get("baseline_deviation")
                if abs(deviation) < 0.005:
                    sentences.append(
                        f"That is in line with the jurisdiction baseline of {_pct(get('baseline_rate'))} "
                        f"[{category}.baseline_rate]."
                    )
                else:
                    direction = "above" if deviation > 0 else "below"
                    sentences.append(
                        f"That is {abs(deviation) * 100:.0f} percentage points {direction} the jurisdiction "
                        f"baseline of {_pct(get('baseline_rate'))} [{category}.baseline_deviation] "
                        f"[{category}.baseline_rate]."
                    )
            if get("high_value_settlement_rate") is not None and get("low_value_settlement_rate") is not None:
                sentences.append(
                    f"High-value {category} cases settled {_pct(get('high_value_settlement_rate'))} of the time "
                    f"[{category}.high_value_settlement_rate] against {_pct(get('low_value_settlement_rate'))} "
                    f"for low-value cases [{category}.low_value_settlement_rate]."
                )
            if get("trend") is not None and get("trend") != "stable":
                sentences.append(f"The {category} settlement rate has been {get('trend')} [{category}.trend].")

        return ProviderResponse(text=" ".join(sentences), model=None)


class NarrativeValidator:
    """Enforces citation and figure rules on generated prose."""

    def validate(self, text: str, facts: Dict[str, Any], tier: QualityTier,
                 provider: str, model: Optional[str] = None) -> Narrative:
        kept = []
        citations: List[str] = []
        for sentence in SENTENCE_SPLIT_RE.split(text.strip()):
            sentence = sentence.strip()
            if not sentence:
                continue
            cited = CITATION_RE.findall(sentence)
            if not cited:
                logger.debug(f"Dropping uncited sentence: {sentence!r}")
                continue
            unknown = [c for c in cited if c not in facts]
            if unknown:
                logger.debug(f"Dropping sentence citing unknown metrics {unknown}")
                continue
            self._check_figures(sentence, facts, provider)
            kept.append(sentence)
            citations.extend(c for c in cited if c not in citations)

        if not kept:
            raise NarrativeRejectedError("narrative has no valid sentences", provider)

        return Narrative(
            text=" ".join(kept),
            citations=citations,
            disclaimer=DISCLAIMERS[tier],
            provider=provider,
            model=model,
        )

    def _check_figures(self, sentence: str, facts: Dict[str, Any], provider: str):
        numeric = [abs(float(v)) for v in facts.values()
                   if isinstance(v, (int, float)) and not isinstance(v, bool)]
        bare = CITATION_RE.sub("", sentence)
        for match in NUMBER_RE.finditer(bare):
            figure = float(match.group(1).replace(",", "") + (match.group(2) or ""))
            if match.group(3):
                candidates = numeric + [v * 100 for v in numeric]
            else:
                candidates = numeric
            if not any(abs(figure - c) <= FIGURE_TOLERANCE for c in candidates):
                raise NarrativeRejectedError(f"figure {match.group(0).strip()!r} not found in metrics", provider)


class NarrativeAdapter:
    """Runs providers in order until one yields a valid narrative."""

    def __init__(self, providers: List[NarrativeProvider], validator: NarrativeValidator = None,
                 cost_tracker: CostTracker = None, timeout_seconds: float = 30.0, rate_limiter=None):
        self.providers = list(providers)
        self.validator = validator or NarrativeValidator()
        self.cost_tracker = cost_tracker
        self.timeout_seconds = timeout_seconds
        self.rate_limiter = rate_limiter
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="narrative")

    def _call(self, provider: NarrativeProvider, facts: Dict[str, Any], tier: QualityTier) -> ProviderResponse:
        future = self._executor.submit(provider.generate, facts, tier)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise ProviderTimeoutError(f"no response within {self.timeout_seconds}s", provider.name)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}", provider.name) from e

    def _record(self, provider: NarrativeProvider, judge_id: str, response: Optional[ProviderResponse],
                error: Optional[str] = None):
        if self.cost_tracker is None or not provider.billable:
            return
        self.cost_tracker.record(UsageRecord(
            provider=provider.name,
            model=response.model if response else getattr(provider, "model", None),
            input_tokens=response.input_tokens if response else 0,
            output_tokens=response.output_tokens if response else 0,
            success=error is None,
            judge_id=judge_id,
            error=error,
        ))

    def augment(self, result: AnalyticsResult, cancel_event=None) -> AnalyticsResult:
        """Attach a narrative, or mark it unavailable. Withheld results pass through."""
        if result.withheld:
            return result

        facts = result.metric_values()
        tier = result.lowest_tier()
        errors: List[str] = []

        for provider in self.providers:
            if provider.billable:
                if self.cost_tracker is not None and not self.cost_tracker.can_spend():
                    logger.warning(f"Skipping {provider.name} narrative for {result.judge_id}: daily budget exhausted")
                    errors.append(f"{provider.name}: daily budget exhausted")
                    continue
                if self.rate_limiter is not None and not self.rate_limiter.acquire(cancel_event=cancel_event):
                    logger.info(f"Skipping {provider.name} narrative for {result.judge_id}: batch cancelled")
                    errors.append(f"{provider.name}: cancelled")
                    continue

            response = None
            try:
                response = self._call(provider, facts, tier)
                narrative = self.validator.validate(response.text, facts, tier, provider.name, response.model)
            except ProviderError as e:
                logger.warning(f"Narrative provider {provider.name} failed for {result.judge_id}: {e}")
                errors.append(f"{provider.name}: {e}")
                self._record(provider, result.judge_id, response, error=str(e))
                continue

            self._record(provider, result.judge_id, response)
            result.narrative = narrative
            result.narrative_unavailable = False
            result.narrative_errors = errors
            return result

        result.narrative = None
        result.narrative_unavailable = True
        result.narrative_errors = errors
        return result

    def shutdown(self):
        self._executor.shutdown(wait=False)


def build_narrative_adapter(config: NarrativeConfig, cost_tracker: CostTracker = None,
                            rate_limiter=None) -> Optional[NarrativeAdapter]:
    """Providers named in config, skipping those without credentials."""
    if not config.enabled:
        return None

    providers: List[NarrativeProvider] = []
    for name in config.providers:
        if name == "anthropic":
            if config.anthropic_api_key:
                providers.append(AnthropicNarrativeProvider(
                    config.anthropic_api_key, config.anthropic_model, config.max_tokens, config.timeout_seconds,
                ))
        elif name == "openai":
            if config.openai_api_key:
                providers.append(OpenAINarrativeProvider(
                    config.openai_api_key, config.openai_model, config.max_tokens, config.timeout_seconds,
                ))
        elif name == "template":
            providers.append(TemplateNarrativeProvider())
        else:
            logger.warning(f"Unknown narrative provider {name!r}")

    if not providers:
        logger.warning("Narrative augmentation enabled but no provider is configured")
    return NarrativeAdapter(
        providers,
        cost_tracker=cost_tracker,
        timeout_seconds=config.timeout_seconds,
        rate_limiter=rate_limiter,
    )
