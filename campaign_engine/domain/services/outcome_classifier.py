"""
Outcome Classifier
Applies tenant-defined disposition rules to a finished call.
"""
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)


class OutcomeClassifier:
    """
    First matching rule wins; rules are tried in descending priority.

    A rule is a case-insensitive regex over the call summary (or the
    transcript when there is no summary) and the label it assigns.
    """

    def __init__(self, calls):
        self.calls = calls

    async def classify(self, organization_id: str, text: Optional[str], default: Optional[str]) -> Optional[str]:
        if not text:
            return default

        rules = await self.calls.get_outcome_rules(organization_id)
        for rule in rules:
            pattern = rule.get("trigger_pattern")
            if not pattern:
                continue
            try:
                if re.search(pattern, text, re.IGNORECASE):
                    return rule.get("outcome_label") or default
            except re.error:
                logger.warning(f"Invalid outcome rule pattern (rule {rule.get('id')}): {pattern}")

        return default
