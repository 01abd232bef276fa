"""
Safety classification for Bragent.

Scores proposed browser actions against an ordered table of URL, element
text and form field rules. Actions rated high or critical must be confirmed
by the user before they are dispatched.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .tool_schemas import BrowserActionRequest, ClickAction, NavigateAction, TypeTextAction
from .utils import truncate_text


class RiskLevel(str, Enum):
    """Risk level for an action, ordered low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def max(cls, *levels: "RiskLevel") -> "RiskLevel":
        """Highest of the given levels (LOW when none given)."""
        return max(levels, key=lambda level: level.severity, default=cls.LOW)


_SEVERITY = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RuleFamily(str, Enum):
    """What a rule is matched against."""
    URL = "url"
    ELEMENT_TEXT = "element_text"
    FIELD = "field"


@dataclass(frozen=True)
class SecurityRule:
    """One predicate -> severity entry of the rule table.

    Attributes:
        family: Which input the pattern is tested against
        pattern: Case-insensitive regular expression
        level: Severity when the pattern matches
        reason: Message template, ``{subject}`` is the matched input
    """
    family: RuleFamily
    pattern: str
    level: RiskLevel
    reason: str
    _compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_compiled", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, subject: str) -> bool:
        return bool(subject) and self._compiled.search(subject) is not None

    def describe(self, subject: str) -> str:
        return self.reason.format(subject=truncate_text(subject, 120))


# Ordered per family from the most to the least severe. The first matching
# rule of a family decides that family's level.
SECURITY_RULES: tuple[SecurityRule, ...] = (
    # Target URL
    SecurityRule(
        RuleFamily.URL,
        r"payment|checkout|pay/",
        RiskLevel.CRITICAL,
        "Payment page: {subject}",
    ),
    SecurityRule(
        RuleFamily.URL,
        r"delete|remove|cancel|terminate",
        RiskLevel.HIGH,
        "Deletion or cancellation page: {subject}",
    ),
    SecurityRule(
        RuleFamily.URL,
        r"purchase|buy|order/confirm|unsubscribe|close.?account",
        RiskLevel.MEDIUM,
        "Potentially dangerous URL: {subject}",
    ),
    # Text of the clicked element
    SecurityRule(
        RuleFamily.ELEMENT_TEXT,
        r"\bpay|\bbuy\b|purchase|send.*money|оплатить|купить|отправить.*деньги",
        RiskLevel.CRITICAL,
        'Payment or purchase button: "{subject}"',
    ),
    SecurityRule(
        RuleFamily.ELEMENT_TEXT,
        r"delete|remove|cancel|terminate|unsubscribe|close.*account"
        r"|удалить|отменить|отписаться|закрыть.*аккаунт",
        RiskLevel.HIGH,
        'Delete or cancel button: "{subject}"',
    ),
    SecurityRule(
        RuleFamily.ELEMENT_TEXT,
        r"confirm|\bsend\b|transfer|place.*order|подтвердить|отправить|перевести|заказать",
        RiskLevel.MEDIUM,
        'Confirmation button: "{subject}"',
    ),
    # Selector of the field receiving typed text
    SecurityRule(
        RuleFamily.FIELD,
        r"card|cvv|cvc|credit|номер.*карты|кредитная.*карта",
        RiskLevel.CRITICAL,
        "Card data typed into field: {subject}",
    ),
    SecurityRule(
        RuleFamily.FIELD,
        r"password|passwd|пароль",
        RiskLevel.HIGH,
        "Password typed into field: {subject}",
    ),
    SecurityRule(
        RuleFamily.FIELD,
        r"\bpin\b|ssn|passport|expir|\bпин\b",
        RiskLevel.MEDIUM,
        "Sensitive data typed into field: {subject}",
    ),
)


@dataclass(frozen=True)
class PageMeta:
    """What the classifier knows about the page an action runs on."""
    url: str = ""
    element_text: str = ""


@dataclass(frozen=True)
class SecurityVerdict:
    """Risk assessment of one proposed action.

    Derived per action, never stored.
    """
    risk_level: RiskLevel
    reason: str
    action: Optional[BrowserActionRequest] = None

    @property
    def requires_confirmation(self) -> bool:
        return self.risk_level.severity >= RiskLevel.HIGH.severity

    def format_warning(self) -> str:
        """Render the verdict as a confirmation prompt for the user."""
        lines = [
            "SECURITY WARNING",
            "",
            f"Risk level: {self.risk_level.value}",
            f"Reason: {self.reason}",
        ]
        if self.action is not None:
            wire = self.action.to_wire()
            lines.append("")
            lines.append(f"Action: {wire['type']}")
            if wire.get("selector"):
                lines.append(f"Element: {wire['selector']}")
            if wire.get("url"):
                lines.append(f"URL: {wire['url']}")
            if wire.get("value"):
                lines.append(f"Value: {truncate_text(wire['value'], 50)}")
        lines.append("")
        lines.append("Do you want to continue?")
        return "\n".join(lines)


class SecurityClassifier:
    """Classifies the risk level of browser actions.

    A pure function of the action, the page metadata and the rule table.
    """

    def __init__(self, rules: tuple[SecurityRule, ...] = SECURITY_RULES):
        self.rules = rules

    def classify(
        self,
        action: BrowserActionRequest,
        page_meta: Optional[PageMeta] = None,
    ) -> SecurityVerdict:
        """Classify the risk level of an action.

        Args:
            action: The browser action about to be dispatched
            page_meta: Current page URL and the target element's text

        Returns:
            Verdict with the maximum severity over every family that fired
        """
        page_meta = page_meta or PageMeta()
        findings: list[tuple[RiskLevel, str]] = []

        if isinstance(action, NavigateAction):
            findings.append(self._match_family(RuleFamily.URL, action.url))

        if isinstance(action, ClickAction):
            findings.append(self._match_family(RuleFamily.ELEMENT_TEXT, page_meta.element_text))

        if isinstance(action, TypeTextAction):
            findings.append(self._match_family(RuleFamily.FIELD, action.selector))

        # Anything done while on a payment page is at least high risk
        page_level, page_reason = self._match_family(RuleFamily.URL, page_meta.url)
        if page_level == RiskLevel.CRITICAL:
            findings.append((RiskLevel.HIGH, f"Currently on a {page_reason[0].lower()}{page_reason[1:]}"))

        level = RiskLevel.LOW
        reason = ""
        for found_level, found_reason in findings:
            # Strictly greater keeps the reason of the first highest finding
            if found_level.severity > level.severity:
                level, reason = found_level, found_reason

        return SecurityVerdict(risk_level=level, reason=reason, action=action)

    def _match_family(self, family: RuleFamily, subject: str) -> tuple[RiskLevel, str]:
        for rule in self.rules:
            if rule.family == family and rule.matches(subject):
                return rule.level, rule.describe(subject)
        return RiskLevel.LOW, ""


def classify_risk(
    action: BrowserActionRequest,
    current_url: str = "",
    element_text: str = "",
) -> SecurityVerdict:
    """Convenience function to classify action risk.

    Args:
        action: The browser action
        current_url: Current page URL
        element_text: Visible text of the target element

    Returns:
        Security verdict
    """
    classifier = SecurityClassifier()
    return classifier.classify(action, PageMeta(url=current_url, element_text=element_text))
