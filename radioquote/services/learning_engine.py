"""
Learning engine: mines won/lost quote outcomes for patterns and replays them
into future recommendations.

Pattern families (one accumulator per pattern key):

1. product_combination, key "a|b": radio x repeater model, radio model x
   accessory subcategory, frequency band x system type. Won quotes only.
2. industry_preference, key = industry: radio model and accessory
   subcategory tallies, win rate, blended price per user. Won quotes only.
3. price_sensitivity, key "{industry}_{user range}": outcomes per
   price-per-user bucket (budget/mid_range/premium/enterprise). Won and lost.
4. configuration_success, key "{system type}_installation": estimated vs
   actual installation hours (accuracy = 1 - |est - actual| / est) and issue
   tag tallies. Won quotes only.

Accumulator state lives in ``ai_learning_accumulators``; this class keeps a
read-through/write-back cache in front of it. Updates to one key are
serialized by a per-key asyncio.Lock and only reach the cache after the store
write succeeds. ``invalidate()`` drops cached state so the next access reloads
from the store.

Accumulators with sample_size >= minimum_sample_size are flushed to
``ai_learning_patterns`` by store_learning_patterns(), with confidence
recomputed at flush time.

Blended price per user is an exponential moving average with alpha = 0.5
(avg = (avg + new) / 2), seeded by the first sample.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

import numpy as np
from pydantic import BaseModel

from radioquote.core.errors import LearningError
from radioquote.models.enums import OutcomeType, PatternType, PriceRange
from radioquote.models.schemas import (
    CombinationAccumulator,
    ConfigurationAccumulator,
    ConfigurationSuccessData,
    FeedbackAccumulator,
    FeedbackRequest,
    FeedbackSummary,
    IndustryAccumulator,
    IndustryPreferenceData,
    LearningContext,
    LearningPattern,
    LineItem,
    OutcomeReport,
    PriceBucket,
    PriceBucketStats,
    PriceOutcome,
    PriceSensitivityAccumulator,
    PriceSensitivityData,
    ProductCombinationData,
    UserRange,
)
from radioquote.services.store import QuoteStore, StoreSession

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

RADIO_CATEGORIES = {'Portable Radios', 'Mobile Radios'}
ACCESSORY_CATEGORY = 'Accessories'
REPEATER_CATEGORY = 'Repeaters'

TOP_RADIOS = 3
TOP_ACCESSORIES = 5
MAX_RELEVANT_PATTERNS = 10

# Combinations above this success rate are suggested to the recommender
SUGGESTION_SUCCESS_RATE = 0.7

FEEDBACK_FAMILY = 'user_feedback'
LOW_SATISFACTION = 3

ACCUMULATOR_MODELS: Dict[str, Type[BaseModel]] = {
    PatternType.PRODUCT_COMBINATION.value: CombinationAccumulator,
    PatternType.INDUSTRY_PREFERENCE.value: IndustryAccumulator,
    PatternType.PRICE_SENSITIVITY.value: PriceSensitivityAccumulator,
    PatternType.CONFIGURATION_SUCCESS.value: ConfigurationAccumulator,
    FEEDBACK_FAMILY: FeedbackAccumulator,
}

AccumulatorKey = Tuple[str, str]


# =============================================================================
# Bucketing Helpers
# =============================================================================

def user_count_range(user_count: int) -> str:
    if user_count <= 25:
        return '1-25'
    if user_count <= 50:
        return '26-50'
    if user_count <= 100:
        return '51-100'
    if user_count <= 200:
        return '101-200'
    return '200+'


def price_range(price_per_user: float) -> PriceRange:
    if price_per_user < 500:
        return PriceRange.BUDGET
    if price_per_user < 800:
        return PriceRange.MID_RANGE
    if price_per_user < 1200:
        return PriceRange.PREMIUM
    return PriceRange.ENTERPRISE


def blend(current: Optional[float], new: float) -> float:
    """Two-sample blend, i.e. an EMA with alpha 0.5 seeded by the first sample."""
    if current is None:
        return new
    return (current + new) / 2


def parse_issues(issues: Any) -> List[str]:
    """
    Normalize reported issues into tags.

    Accepts a list, a JSON array string, or a plain string (one tag).
    """
    if not issues:
        return []
    if isinstance(issues, list):
        return [str(i) for i in issues if i]
    if isinstance(issues, str):
        try:
            parsed = json.loads(issues)
        except ValueError:
            return [issues]
        if isinstance(parsed, list):
            return [str(i) for i in parsed if i]
        return [str(parsed)]
    raise ValueError(f"Unsupported issues payload: {type(issues).__name__}")


def generate_product_combinations(items: Iterable[LineItem]) -> List[List[str]]:
    """
    Candidate product pairs for one quote, deduplicated.

    Pairs are drawn within related groups only: radio x repeater, radio x
    accessory subcategory, and frequency band x system type.
    """
    items = list(items)
    radios = [i for i in items if i.category in RADIO_CATEGORIES]
    repeaters = [i for i in items if i.category == REPEATER_CATEGORY]
    accessories = [i for i in items if i.category == ACCESSORY_CATEGORY]

    combinations: List[List[str]] = []
    seen = set()

    def add(a: Optional[str], b: Optional[str]) -> None:
        if a and b and (a, b) not in seen:
            seen.add((a, b))
            combinations.append([a, b])

    for radio in radios:
        for repeater in repeaters:
            add(radio.model or radio.sku, repeater.model or repeater.sku)
    for radio in radios:
        for accessory in accessories:
            add(radio.model or radio.sku, accessory.subcategory)

    bands = sorted({i.frequency_band for i in items if i.frequency_band})
    systems = sorted({i.system_type for i in items if i.system_type})
    for band in bands:
        for system in systems:
            add(band, system)

    return combinations


def _top(tallies: Dict[str, int], limit: int) -> List[str]:
    ranked = sorted(tallies.items(), key=lambda kv: (-kv[1], kv[0]))
    return [name for name, _ in ranked[:limit]]


class QuoteFacts(BaseModel):
    """The parts of a quote the learning families read."""
    quote_id: int
    system_type: Optional[str] = None
    total_amount: float = 0.0
    industry: Optional[str] = None
    user_count: int = 0
    items: List[LineItem] = []

    @property
    def catalog_items(self) -> List[LineItem]:
        return [i for i in self.items if i.part_id is not None]

    @property
    def price_per_user(self) -> Optional[float]:
        if self.user_count > 0:
            return self.total_amount / self.user_count
        return None


class LearningEngine:
    """
    Pattern extraction, persistence, retrieval and application.

    Args:
        store: Relational store holding accumulators and patterns.
        confidence_threshold: Minimum confidence for retrieval.
        minimum_sample_size: Minimum samples for persistence and retrieval.
    """

    def __init__(
        self,
        store: QuoteStore,
        confidence_threshold: float = 0.6,
        minimum_sample_size: int = 3,
    ):
        self.store = store
        self.confidence_threshold = confidence_threshold
        self.minimum_sample_size = minimum_sample_size
        self._cache: Dict[AccumulatorKey, BaseModel] = {}
        self._locks: Dict[AccumulatorKey, asyncio.Lock] = {}

    # =========================================================================
    # Accumulator Cache
    # =========================================================================

    def invalidate(self, pattern_type: Optional[str] = None) -> None:
        """Drop cached accumulators (all, or one pattern type)."""
        if pattern_type is None:
            self._cache.clear()
        else:
            for key in [k for k in self._cache if k[0] == pattern_type]:
                del self._cache[key]

    def _lock_for(self, key: AccumulatorKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _load(
        self,
        session: StoreSession,
        key: AccumulatorKey,
        factory: Callable[[], BaseModel],
    ) -> BaseModel:
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        state = await session.load_accumulator(*key)
        if state is None:
            accumulator = factory()
        else:
            accumulator = ACCUMULATOR_MODELS[key[0]].model_validate(state)
        self._cache[key] = accumulator
        return accumulator

    async def _update(
        self,
        session: StoreSession,
        pattern_type: str,
        pattern_key: str,
        factory: Callable[[], BaseModel],
        mutate: Callable[[Any], None],
    ) -> BaseModel:
        """
        Read-modify-write one accumulator under its key lock.

        The mutation is applied to a copy; the cache only sees it once the
        store write succeeded.
        """
        key = (pattern_type, pattern_key)
        async with self._lock_for(key):
            current = await self._load(session, key, factory)
            updated = current.model_copy(deep=True)
            mutate(updated)
            await session.save_accumulator(pattern_type, pattern_key, updated.model_dump(mode='json'))
            self._cache[key] = updated
            return updated

    # =========================================================================
    # Learning From Outcomes
    # =========================================================================

    async def learn_from_successful_quote(
        self,
        quote_id: int,
        outcome: OutcomeReport,
    ) -> Dict[str, str]:
        """
        Update every pattern family from one quote outcome, then flush.

        A failing family is logged and reported as "failed"; the others
        still run.

        Returns:
            Mapping of family name to "updated", "skipped" or "failed".
        """
        logger.info(f"Learning from {outcome.outcome.value} quote #{quote_id}")

        async with self.store.session() as session:
            row = await session.learning_quote(quote_id)
            if row is None:
                logger.warning(f"Could not find quote {quote_id} for learning")
                return {}

            facts = QuoteFacts(
                quote_id=quote_id,
                system_type=row.get('system_type'),
                total_amount=row.get('total_amount') or 0.0,
                industry=row.get('industry'),
                user_count=row.get('user_count') or 0,
                items=await session.quote_items(quote_id),
            )

            families = (
                (PatternType.PRODUCT_COMBINATION, self.extract_product_combination_patterns),
                (PatternType.INDUSTRY_PREFERENCE, self.extract_industry_preferences),
                (PatternType.PRICE_SENSITIVITY, self.extract_price_sensitivity_patterns),
                (PatternType.CONFIGURATION_SUCCESS, self.extract_configuration_success_patterns),
            )

            results: Dict[str, str] = {}
            for family, extract in families:
                try:
                    changed = await extract(session, facts, outcome)
                    results[family.value] = 'updated' if changed else 'skipped'
                except Exception as e:
                    error = LearningError(family.value, e)
                    logger.error(str(error), exc_info=True)
                    results[family.value] = 'failed'

            try:
                await self.store_learning_patterns(session)
            except Exception as e:
                logger.error(f"Failed to flush learning patterns: {e}", exc_info=True)

        logger.info(f"Learning completed for quote #{quote_id}: {results}")
        return results

    async def extract_product_combination_patterns(
        self,
        session: StoreSession,
        facts: QuoteFacts,
        outcome: OutcomeReport,
    ) -> bool:
        if outcome.outcome != OutcomeType.WON:
            return False

        combinations = generate_product_combinations(facts.catalog_items)
        ppu = facts.price_per_user

        for combination in combinations:
            def mutate(acc: CombinationAccumulator) -> None:
                acc.success_count += 1
                acc.total_count += 1
                if facts.industry and facts.industry not in acc.industries:
                    acc.industries.append(facts.industry)
                acc.user_counts.append(facts.user_count)
                if ppu is not None:
                    acc.avg_price_per_user = blend(acc.avg_price_per_user, ppu)

            await self._update(
                session,
                PatternType.PRODUCT_COMBINATION.value,
                '|'.join(combination),
                lambda c=combination: CombinationAccumulator(products=c),
                mutate,
            )

        return bool(combinations)

    async def extract_industry_preferences(
        self,
        session: StoreSession,
        facts: QuoteFacts,
        outcome: OutcomeReport,
    ) -> bool:
        if outcome.outcome != OutcomeType.WON or not facts.industry:
            return False

        ppu = facts.price_per_user

        def mutate(acc: IndustryAccumulator) -> None:
            acc.total_quotes += 1
            acc.won_quotes += 1
            for item in facts.catalog_items:
                if item.category in RADIO_CATEGORIES:
                    model = item.model or item.sku
                    acc.preferred_radios[model] = acc.preferred_radios.get(model, 0) + 1
                elif item.category == ACCESSORY_CATEGORY and item.subcategory:
                    sub = item.subcategory
                    acc.preferred_accessories[sub] = acc.preferred_accessories.get(sub, 0) + 1
            acc.user_counts.append(facts.user_count)
            if ppu is not None:
                acc.avg_price_per_user = blend(acc.avg_price_per_user, ppu)

        await self._update(
            session,
            PatternType.INDUSTRY_PREFERENCE.value,
            facts.industry,
            lambda: IndustryAccumulator(industry=facts.industry),
            mutate,
        )
        return True

    async def extract_price_sensitivity_patterns(
        self,
        session: StoreSession,
        facts: QuoteFacts,
        outcome: OutcomeReport,
    ) -> bool:
        ppu = facts.price_per_user
        if ppu is None:
            return False

        user_range = user_count_range(facts.user_count)
        bucket = price_range(ppu).value
        won = outcome.outcome == OutcomeType.WON

        def mutate(acc: PriceSensitivityAccumulator) -> None:
            acc.outcomes.append(PriceOutcome(
                price_per_user=ppu,
                outcome=outcome.outcome,
                performance_rating=outcome.performance_rating or 0,
            ))
            stats = acc.win_rates_by_price.setdefault(bucket, PriceBucket())
            stats.total += 1
            if won:
                stats.wins += 1

        await self._update(
            session,
            PatternType.PRICE_SENSITIVITY.value,
            f"{facts.industry or 'Unknown'}_{user_range}",
            lambda: PriceSensitivityAccumulator(industry=facts.industry, user_range=user_range),
            mutate,
        )
        return True

    async def extract_configuration_success_patterns(
        self,
        session: StoreSession,
        facts: QuoteFacts,
        outcome: OutcomeReport,
    ) -> bool:
        if outcome.outcome != OutcomeType.WON or not outcome.actual_installation_time:
            return False

        # labor_hours on a line item is already the line total
        estimated = float(sum(item.labor_hours for item in facts.items))
        if estimated <= 0:
            logger.info(f"Quote {facts.quote_id} has no estimated hours, skipping accuracy")
            return False

        actual = outcome.actual_installation_time
        accuracy = 1 - abs(estimated - actual) / estimated
        issues = parse_issues(outcome.issues_encountered)

        def mutate(acc: ConfigurationAccumulator) -> None:
            acc.time_estimates.append(estimated)
            acc.actual_times.append(actual)
            acc.accuracy_scores.append(accuracy)
            acc.performance_ratings.append(outcome.performance_rating or 0)
            for issue in issues:
                acc.common_issues[issue] = acc.common_issues.get(issue, 0) + 1

        await self._update(
            session,
            PatternType.CONFIGURATION_SUCCESS.value,
            f"{facts.system_type or 'Unknown'}_installation",
            lambda: ConfigurationAccumulator(system_type=facts.system_type),
            mutate,
        )
        return True

    # =========================================================================
    # Persistence
    # =========================================================================

    async def store_learning_patterns(self, session: Optional[StoreSession] = None) -> int:
        """
        Flush every accumulator with enough samples as a pattern row.

        Returns:
            Number of patterns upserted.
        """
        if session is None:
            async with self.store.session() as own:
                return await self.store_learning_patterns(own)

        pattern_types = [t.value for t in PatternType]
        rows = await session.accumulators_by_type(pattern_types)

        stored = 0
        for pattern_type, pattern_key, state in rows:
            accumulator = ACCUMULATOR_MODELS[pattern_type].model_validate(state)
            if accumulator.sample_size < self.minimum_sample_size:
                continue

            pattern = self.build_pattern(PatternType(pattern_type), pattern_key, accumulator)
            await session.upsert_pattern(pattern)
            stored += 1

        logger.info(f"Stored {stored} learning patterns")
        return stored

    def build_pattern(
        self,
        pattern_type: PatternType,
        pattern_key: str,
        acc: BaseModel,
    ) -> LearningPattern:
        """Turn an accumulator into a pattern row, recomputing confidence."""
        industry = None
        user_range = None

        if pattern_type == PatternType.PRODUCT_COMBINATION:
            confidence = acc.success_count / acc.total_count
            data = ProductCombinationData(
                combination=acc.products,
                success_rate=confidence,
                industries=acc.industries,
                avg_user_count=float(np.mean(acc.user_counts)) if acc.user_counts else 0.0,
                avg_price_per_user=acc.avg_price_per_user,
            )
            success_rate = confidence

        elif pattern_type == PatternType.INDUSTRY_PREFERENCE:
            confidence = acc.success_rate
            typical = None
            if acc.user_counts:
                typical = UserRange(
                    min=min(acc.user_counts),
                    max=max(acc.user_counts),
                    avg=float(np.mean(acc.user_counts)),
                )
            data = IndustryPreferenceData(
                industry=acc.industry,
                preferred_radios=_top(acc.preferred_radios, TOP_RADIOS),
                preferred_accessories=_top(acc.preferred_accessories, TOP_ACCESSORIES),
                typical_user_range=typical,
                avg_price_per_user=acc.avg_price_per_user,
                success_rate=confidence,
            )
            success_rate = confidence
            industry = acc.industry

        elif pattern_type == PatternType.PRICE_SENSITIVITY:
            win_rates = [
                PriceBucketStats(
                    price_range=bucket.value,
                    win_rate=stats.wins / stats.total,
                    sample_size=stats.total,
                )
                for bucket in PriceRange
                for stats in [acc.win_rates_by_price.get(bucket.value)]
                if stats is not None and stats.total > 0
            ]
            wins = sum(1 for o in acc.outcomes if o.outcome == OutcomeType.WON)
            confidence = wins / len(acc.outcomes)
            data = PriceSensitivityData(
                industry=acc.industry,
                user_range=acc.user_range,
                win_rates_by_price=win_rates,
                optimal_price_range=self.find_optimal_price_range(win_rates),
            )
            success_rate = confidence
            industry = acc.industry
            user_range = acc.user_range

        else:
            mean_accuracy = float(np.mean(acc.accuracy_scores))
            confidence = min(1.0, max(0.0, mean_accuracy))
            data = ConfigurationSuccessData(
                system_type=acc.system_type,
                avg_accuracy=mean_accuracy,
                avg_estimated_hours=float(np.mean(acc.time_estimates)),
                avg_actual_hours=float(np.mean(acc.actual_times)),
                avg_performance_rating=float(np.mean(acc.performance_ratings)),
                common_issues=acc.common_issues,
            )
            success_rate = confidence

        return LearningPattern(
            pattern_type=pattern_type,
            pattern_key=pattern_key,
            pattern_data=data,
            confidence_score=confidence,
            success_rate=success_rate,
            sample_size=acc.sample_size,
            industry=industry,
            user_count_range=user_range,
        )

    @staticmethod
    def find_optimal_price_range(win_rates: List[PriceBucketStats]) -> Optional[str]:
        best = None
        for stats in win_rates:
            if best is None or stats.win_rate > best.win_rate:
                best = stats
        return best.price_range if best else None

    # =========================================================================
    # Retrieval & Application
    # =========================================================================

    async def get_relevant_patterns(
        self,
        industry: Optional[str],
        user_count: int,
        request_type: Optional[str] = None,
    ) -> List[LearningPattern]:
        """
        Patterns that apply to an industry and fleet size.

        Only patterns with confidence >= threshold and sample_size >= minimum
        are returned, industry-specific or global, ordered by confidence then
        sample size, at most 10. ``request_type`` is accepted for callers that
        pass it but does not filter.
        """
        bucket = user_count_range(user_count)
        async with self.store.session() as session:
            patterns = await session.relevant_patterns(
                self.confidence_threshold,
                self.minimum_sample_size,
                industry,
                bucket,
                MAX_RELEVANT_PATTERNS,
            )

        return [
            p for p in patterns
            if p.confidence_score >= self.confidence_threshold
            and p.sample_size >= self.minimum_sample_size
        ][:MAX_RELEVANT_PATTERNS]

    async def apply_learning_to_recommendation(
        self,
        base_recommendation: Dict[str, Any],
        context: LearningContext,
    ) -> Dict[str, Any]:
        """
        Merge relevant patterns into a recommendation.

        Patterns are applied in relevance order; for single-valued fields the
        most confident pattern wins. ``learning_applied`` always lists the
        patterns considered.
        """
        patterns = await self.get_relevant_patterns(
            context.industry, context.user_count, context.request_type
        )
        enhanced = dict(base_recommendation)
        overridden = set()

        def override(field: str, value: Any) -> None:
            if field not in overridden:
                enhanced[field] = value
                overridden.add(field)

        for pattern in patterns:
            data = pattern.pattern_data

            if isinstance(data, ProductCombinationData):
                if data.success_rate > SUGGESTION_SUCCESS_RATE:
                    enhanced.setdefault('suggested_combinations', [])
                    enhanced['suggested_combinations'].append({
                        'products': data.combination,
                        'success_rate': data.success_rate,
                        'reason': 'proven_combination',
                    })

            elif isinstance(data, IndustryPreferenceData):
                if data.preferred_radios:
                    override('preferred_radios', data.preferred_radios)
                    override(
                        'industry_insight',
                        f"Based on {pattern.sample_size} successful {data.industry} installations",
                    )
                if data.preferred_accessories:
                    override('recommended_accessories', data.preferred_accessories)
                if data.avg_price_per_user:
                    override('target_price_per_user', data.avg_price_per_user)

            elif isinstance(data, PriceSensitivityData):
                if data.optimal_price_range:
                    override('optimal_price_range', data.optimal_price_range)
                    override(
                        'pricing_insight',
                        f"Optimal pricing based on {pattern.sample_size} similar quotes",
                    )

        enhanced['learning_applied'] = [
            {
                'type': p.pattern_type.value,
                'confidence': p.confidence_score,
                'sample_size': p.sample_size,
            }
            for p in patterns
        ]
        return enhanced

    # =========================================================================
    # Feedback
    # =========================================================================

    async def record_user_feedback(
        self,
        feedback: FeedbackRequest,
    ) -> Optional[FeedbackSummary]:
        """
        Store satisfaction on the session's latest interaction and update the
        running feedback summary for that interaction's intent.

        Returns:
            The updated summary, or None when the session has no interaction.
        """
        async with self.store.session() as session:
            interaction = await session.update_latest_interaction(
                feedback.session_id,
                feedback.satisfaction,
                feedback.follow_up_required,
            )
            if interaction is None:
                logger.warning(f"No interaction found for session {feedback.session_id}")
                return None

            intent = interaction.get('intent_classification') or 'unknown'

            def mutate(acc: FeedbackAccumulator) -> None:
                acc.feedback_scores.append(feedback.satisfaction)
                if feedback.satisfaction < LOW_SATISFACTION and feedback.improvement_area:
                    area = feedback.improvement_area
                    acc.improvement_areas[area] = acc.improvement_areas.get(area, 0) + 1

            acc = await self._update(
                session,
                FEEDBACK_FAMILY,
                f"{intent}_feedback",
                lambda: FeedbackAccumulator(intent=intent),
                mutate,
            )

        return FeedbackSummary(
            session_id=feedback.session_id,
            intent=intent,
            feedback_count=len(acc.feedback_scores),
            avg_satisfaction=float(np.mean(acc.feedback_scores)),
            improvement_areas=acc.improvement_areas,
        )
