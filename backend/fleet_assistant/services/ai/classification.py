"""
Deterministic domain classification.

Case-insensitive substring matching over domain vocabularies. A message can
match several domains; one that matches none goes to the "general" domain.
Only some domains have a specialist agent; the coordinator reports the rest
as warnings.
"""
from typing import Dict, List, Optional, Sequence, Tuple

GENERAL_DOMAIN = "general"

DOMAIN_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("fuel", ("fuel", "gas", "mpg", "efficiency")),
    ("maintenance", ("maintenance", "repair", "service")),
    ("safety", ("safety", "driver", "behavior", "compliance")),
    ("location", ("location", "route", "tracking", "gps")),
    ("insurance", ("insurance", "coverage", "claim")),
    ("financial", ("tax", "depreciation", "tco", "cost")),
)


class KeywordDomainClassifier:
    def __init__(self, vocabulary: Optional[Sequence[Tuple[str, Sequence[str]]]] = None):
        self.vocabulary: Dict[str, Tuple[str, ...]] = {
            domain: tuple(k.lower() for k in keywords)
            for domain, keywords in (vocabulary or DOMAIN_KEYWORDS)
        }

    def classify(self, message: str) -> List[str]:
        """Matched domains in vocabulary order, or [GENERAL_DOMAIN]."""
        text = message.lower()
        domains = [
            domain
            for domain, keywords in self.vocabulary.items()
            if any(keyword in text for keyword in keywords)
        ]
        return domains or [GENERAL_DOMAIN]
