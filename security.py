"""Rule-based risk scoring of user prompts and auditing of model output."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

RiskRule = Tuple[str, re.Pattern]

PROMPT_RULES: Tuple[RiskRule, ...] = (
    ("override_instruction", re.compile(r"\b(ignore|bypass)\b.*\b(instructions|rules|guardrails)\b", re.I)),
    ("jailbreak_marker", re.compile(r"\b(do anything now|dan|dev mode)\b", re.I)),
    ("data_exfiltration", re.compile(r"\b(leak|export|share|exfiltrate)\b.*\b(passwords?|keys?|tokens?|secrets?)\b", re.I)),
    ("prompt_injection", re.compile(r"\b(system|developer)\s+prompt\b.*\b(reveal|print|show)\b", re.I)),
    ("pii_request", re.compile(r"\b(ssn|social security|身份证号|银行卡号|cvv|住址)\b", re.I)),
)

# Coarse PII / toxicity checks on generated text.
OUTPUT_RULES: Tuple[RiskRule, ...] = (
    ("pii", re.compile(r"\b(\d{16}|\d{3}-\d{2}-\d{4}|身份证号|银行卡号|cvv|地址|phone|手机号)\b", re.I)),
    ("toxic", re.compile(r"\b(dumb|stupid|idiot|垃圾|蠢)\b", re.I)),
)

PROMPT_HIT_WEIGHT = 0.25
OUTPUT_HIT_WEIGHT = 0.2


@dataclass(frozen=True)
class RuleHit:
    type: str
    snippet: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "snippet": self.snippet}


@dataclass(frozen=True)
class RiskAssessment:
    """Pre-dispatch score of the last user message."""

    score: float
    hits: List[RuleHit] = field(default_factory=list)

    def header_value(self) -> str:
        """Score as sent in the X-Risk-Score header ("0", "0.25", "1")."""
        return f"{self.score:g}"


@dataclass(frozen=True)
class AuditResult:
    """Post-response audit of the full generated text."""

    score: float
    hits: List[RuleHit] = field(default_factory=list)
    note: str = "OK"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "hits": [h.to_dict() for h in self.hits],
            "note": self.note,
        }


def _scan(text: str, rules: Tuple[RiskRule, ...]) -> List[RuleHit]:
    hits: List[RuleHit] = []
    for rule_type, pattern in rules:
        m = pattern.search(text or "")
        if m:
            hits.append(RuleHit(type=rule_type, snippet=m.group(0)))
    return hits


def _weighted_score(hits: List[RuleHit], weight: float) -> float:
    return round(min(1.0, len(hits) * weight), 4)


def analyze_prompt(text: str) -> RiskAssessment:
    """Score a user prompt against the prompt-injection rules, in rule order."""
    hits = _scan(text, PROMPT_RULES)
    return RiskAssessment(score=_weighted_score(hits, PROMPT_HIT_WEIGHT), hits=hits)


def audit_output(text: str) -> AuditResult:
    """Audit generated text for sensitive or toxic content."""
    hits = _scan(text, OUTPUT_RULES)
    note = "Potential sensitive content detected." if hits else "OK"
    return AuditResult(score=_weighted_score(hits, OUTPUT_HIT_WEIGHT), hits=hits, note=note)
