"""Evidence-driven arbitration between rule and model classifications"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from .config import Settings
from .models import ClassificationResult, Decision, DecisionSource, EvidenceProfile, RuleId

logger = structlog.get_logger(__name__)

CLARIFICATION_SUGGESTION = (
    "Sorry, I didn't quite catch that. You can say things like "
    "\"add a piano lesson for Emma every Monday at 4pm\", "
    "\"cancel the math class\" or \"what's on the schedule tomorrow\"."
)

Predicate = Callable[["DecisionInputs"], bool]
Resolver = Callable[["DecisionInputs"], Decision]


class DecisionInputs:
    """Everything one cascade evaluation looks at"""

    def __init__(self, rule: ClassificationResult, model: Optional[ClassificationResult],
                 evidence: EvidenceProfile, settings: Settings):
        self.rule = rule
        self.model = model
        self.evidence = evidence
        self.settings = settings

    @property
    def rule_conf(self) -> float:
        return self.rule.confidence

    @property
    def model_conf(self) -> float:
        # A missing model result counts as zero confidence
        return self.model.confidence if self.model is not None else 0.0


def is_mutating_intent(intent: str, settings: Settings) -> bool:
    return any(intent.startswith(prefix) for prefix in settings.mutating_intent_prefixes)


def fallback_guard(inputs: DecisionInputs) -> bool:
    s = inputs.settings
    return inputs.model_conf < s.fallback_model_threshold and inputs.rule_conf < s.fallback_rule_threshold


def mood_on_mutating_intent(inputs: DecisionInputs) -> bool:
    return (
        inputs.model is not None
        and inputs.evidence.has_mood_or_question
        and is_mutating_intent(inputs.rule.intent, inputs.settings)
    )


def temporal_on_blind_rule(inputs: DecisionInputs) -> bool:
    return inputs.model is not None and bool(inputs.evidence.temporal_clues) and inputs.rule.temporal_blind


def confident_model(inputs: DecisionInputs) -> bool:
    s = inputs.settings
    if inputs.model is None:
        return False
    if inputs.model_conf > s.model_override_threshold:
        return True
    return inputs.model.reasoning_steps >= s.reasoning_min_steps and inputs.model_conf > s.reasoning_chain_threshold


def strong_unambiguous_rule(inputs: DecisionInputs) -> bool:
    s = inputs.settings
    return (
        inputs.rule_conf > s.rule_strong_threshold
        and not inputs.evidence.ambiguous_terms
        and inputs.model_conf < s.rule_weak_model_threshold
    )


def always(inputs: DecisionInputs) -> bool:
    return True


def _merge_entities(primary: Dict[str, Any], secondary: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(secondary)
    merged.update({k: v for k, v in primary.items() if v is not None})
    return merged


def _from_model(rule_id: RuleId, reason: str) -> Resolver:
    def resolve(inputs: DecisionInputs) -> Decision:
        return Decision(
            final_intent=inputs.model.intent,
            source=DecisionSource.MODEL,
            rule_id=rule_id,
            confidence=inputs.model.confidence,
            entities=_merge_entities(inputs.model.entities, inputs.rule.entities),
            reason=reason,
        )
    return resolve


def _from_rule(rule_id: RuleId, reason: str) -> Resolver:
    def resolve(inputs: DecisionInputs) -> Decision:
        model_entities = inputs.model.entities if inputs.model is not None else {}
        return Decision(
            final_intent=inputs.rule.intent,
            source=DecisionSource.RULE,
            rule_id=rule_id,
            confidence=inputs.rule.confidence,
            entities=_merge_entities(inputs.rule.entities, model_entities),
            reason=reason,
        )
    return resolve


def _fallback(rule_id: RuleId, reason: str) -> Resolver:
    def resolve(inputs: DecisionInputs) -> Decision:
        return Decision(
            final_intent="unknown",
            source=DecisionSource.FALLBACK,
            rule_id=rule_id,
            confidence=max(inputs.rule_conf, inputs.model_conf),
            entities={},
            reason=reason,
            suggestion=CLARIFICATION_SUGGESTION,
        )
    return resolve


def default_resolver(inputs: DecisionInputs) -> Decision:
    """Model if available, else rule, else unknown"""
    if inputs.model is not None and not inputs.model.is_unknown:
        return _from_model(RuleId.P5, "Default: model result preferred")(inputs)
    if not inputs.rule.is_unknown:
        return _from_rule(RuleId.P5, "Default: no usable model result, using rule result")(inputs)
    return _fallback(RuleId.P5, "Default: neither classifier produced an intent")(inputs)


CASCADE: List[Tuple[RuleId, Predicate, Resolver]] = [
    (RuleId.FALLBACK, fallback_guard,
     _fallback(RuleId.FALLBACK, "Both rule and model confidence below thresholds")),
    (RuleId.P1, mood_on_mutating_intent,
     _from_model(RuleId.P1, "Question or mood markers on a mutating intent, model preferred")),
    (RuleId.P2, temporal_on_blind_rule,
     _from_model(RuleId.P2, "Temporal reference the matched rule cannot interpret, model preferred")),
    (RuleId.P3, confident_model,
     _from_model(RuleId.P3, "High model confidence or multi-step reasoning, model preferred")),
    (RuleId.P4, strong_unambiguous_rule,
     _from_rule(RuleId.P4, "Strong unambiguous rule match with weak model, rule preferred")),
    (RuleId.P5, always, default_resolver),
]


class DecisionEngine:
    """Ordered P1..P5 cascade behind a fallback guard"""

    def __init__(self, settings: Settings, steps: Optional[List[Tuple[RuleId, Predicate, Resolver]]] = None):
        self.settings = settings
        self.steps = steps or CASCADE

    def decide(self, rule: ClassificationResult, model: Optional[ClassificationResult],
               evidence: EvidenceProfile) -> Decision:
        """Evaluate the cascade; the first matching step is terminal"""
        inputs = DecisionInputs(rule, model, evidence, self.settings)
        path: List[str] = []

        for rule_id, predicate, resolver in self.steps:
            if not predicate(inputs):
                path.append(f"{rule_id.value}:skip")
                continue
            path.append(f"{rule_id.value}:match")
            decision = resolver(inputs)
            decision.decision_path = path

            logger.debug(
                "Decision made",
                rule_id=decision.rule_id.value,
                final_intent=decision.final_intent,
                source=decision.source.value,
                rule_confidence=inputs.rule_conf,
                model_confidence=inputs.model_conf,
            )
            return decision

        # The default step always matches; reached only with a custom step list
        return _fallback(RuleId.FALLBACK, "No cascade step matched")(inputs)

    def requires_model(self, rule: ClassificationResult, evidence: EvidenceProfile) -> bool:
        """True when evidence would route the decision to the model (P1/P2)"""
        if evidence.has_mood_or_question and is_mutating_intent(rule.intent, self.settings):
            return True
        return bool(evidence.temporal_clues) and rule.temporal_blind
