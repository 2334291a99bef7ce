"""Intent adapter contract and the default rule-based intent parser."""

import logging
import re
from collections.abc import Callable
from typing import Protocol

from ..models import (
    ConfidenceLevel,
    ConversationContext,
    Entity,
    Intent,
    IntentType,
    ParseResult,
)
from .rules import normalize_text

logger = logging.getLogger(__name__)

EntityExtractor = Callable[[re.Match[str]], str | None]

_CONFIDENCE_ORDER = [
    ConfidenceLevel.VERY_LOW,
    ConfidenceLevel.LOW,
    ConfidenceLevel.MEDIUM,
    ConfidenceLevel.HIGH,
    ConfidenceLevel.VERY_HIGH,
]

_OCTET = r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
_IPV4 = rf"(?:{_OCTET}\.){{3}}{_OCTET}"

_NETWORK_RANGE_RE = re.compile(rf"\b{_IPV4}/(?:3[0-2]|[12][0-9]|[0-9])\b")
_IP_ADDRESS_RE = re.compile(rf"\b{_IPV4}\b")
_URL_RE = re.compile(r"https?://[\w.-]+(?::\d+)?(?:/[\w/.-]*)?")
_DOMAIN_RE = re.compile(r"\b(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}\b")
_HASH_RE = re.compile(r"\b[a-f0-9]{32,64}\b")
_SEVERITY_RE = re.compile(r"\b(low|medium|high|critical|minor|major)\b")
_SCAN_WORD_RE = re.compile(r"\bscan")
_SCAN_TYPE_RE = re.compile(r"\b(quick|fast|basic|deep|thorough|full|comprehensive)\b")
_TIME_RANGE_RE = re.compile(
    r"\b(today|yesterday|last (?:hour|day|week|month)"
    r"|(?:past|last) \d+ (?:minute|hour|day|week|month)s?)\b"
)
_THREAT_TYPE_RE = re.compile(
    r"\b(malware|phishing|intrusion|anomaly|vulnerability|suspicious|ransomware)\b"
)
_OUTPUT_FORMAT_RE = re.compile(r"\b(?:as|in|output|format)\s+(table|json|yaml|text|csv)\b")
_PORT_RE = re.compile(r"\bports?\s+(\d[\d,-]*)")
_USERNAME_RE = re.compile(
    r"\b(?:for|of|by) user ([a-z0-9][\w.@-]*)"
    r"|\busername ([a-z0-9][\w.@-]*)"
    r"|\blog ?in as ([a-z0-9][\w.@-]*)"
)

_SEVERITY_ALIASES = {"minor": "low", "major": "high"}

_UNKNOWN_PROMPT = (
    "I'm not sure what you'd like me to do. Could you try rephrasing that? For example:\n"
    "- 'scan my network for threats'\n"
    "- 'show system status'\n"
    "- 'list critical alerts'"
)
_INTEL_PROMPT = (
    "I can help you query threat intelligence, but I need something to look up. "
    "Could you provide an IP address, domain, URL, or file hash?"
)


def _first_group(match: re.Match[str]) -> str | None:
    return next((group for group in match.groups() if group), None)


def _group(index: int) -> EntityExtractor:
    return lambda m: m.group(index)


class IntentAdapter(Protocol):
    """Protocol for intent adapters.

    Identical text and context must yield the same intent type; confidence
    may vary between implementations.
    """

    async def parse(self, text: str, context: ConversationContext | None = None) -> ParseResult:
        """Classify text into an intent with extracted entities."""
        ...


class RuleBasedIntentParser:
    """Classify text with ordered regex rules. The first matching rule wins."""

    def __init__(self) -> None:
        """Initialize the parser with pattern rules."""
        # Pattern rules: (regex, intent, confidence, entity_extractors)
        self.patterns: list[
            tuple[re.Pattern[str], IntentType, ConfidenceLevel, dict[str, EntityExtractor]]
        ] = [
            # Bare yes/no answers
            (
                re.compile(
                    r"^(?:yes|yeah|yep|y|sure|ok|okay|confirm|proceed|go ahead|do it"
                    r"|no|nope|n|cancel|abort|stop)$"
                ),
                IntentType.CONVERSATION_CONTINUE,
                ConfidenceLevel.HIGH,
                {},
            ),
            # Help
            (
                re.compile(
                    r"\bhelp\s+(?:with\s+|on\s+|for\s+)?"
                    r"(auth|threat|network|behavior|intel|config|status)\b"
                ),
                IntentType.HELP_COMMAND,
                ConfidenceLevel.HIGH,
                {"command": _group(1)},
            ),
            (re.compile(r"^(?:help|commands|usage)$"), IntentType.HELP_GENERAL, ConfidenceLevel.VERY_HIGH, {}),
            (
                re.compile(
                    r"\b(?:help|how do i|what can (?:you|i) do|available commands|usage)\b"
                ),
                IntentType.HELP_GENERAL,
                ConfidenceLevel.HIGH,
                {},
            ),
            # Authentication
            (
                re.compile(r"\b(?:log ?out|sign ?out)\b"),
                IntentType.AUTH_LOGOUT,
                ConfidenceLevel.VERY_HIGH,
                {},
            ),
            (
                re.compile(
                    r"\bauth(?:entication)?\b.*\bstatus\b|\blogin status\b"
                    r"|\bam i (?:logged in|authenticated)\b|\bcheck (?:my )?credentials\b"
                    r"|\bwho am i\b"
                ),
                IntentType.AUTH_STATUS,
                ConfidenceLevel.VERY_HIGH,
                {},
            ),
            (
                re.compile(r"\b(?:log ?in|log me in|sign ?in|sign me in|authenticate)\b"),
                IntentType.AUTH_LOGIN,
                ConfidenceLevel.HIGH,
                {},
            ),
            # Configuration
            (
                re.compile(r"\bconfig(?:uration)? set ([a-z][\w.-]*) (?:to )?(\S+)$"),
                IntentType.CONFIG_SET,
                ConfidenceLevel.HIGH,
                {"config_key": _group(1), "config_value": _group(2)},
            ),
            (
                re.compile(
                    r"\bset (?:the )?(?:config(?:uration)? )?(?:key )?([a-z][\w.-]*) to (\S+)$"
                ),
                IntentType.CONFIG_SET,
                ConfidenceLevel.HIGH,
                {"config_key": _group(1), "config_value": _group(2)},
            ),
            (
                re.compile(r"\bset config(?:uration)? (?:key )?([a-z][\w.-]*) (\S+)$"),
                IntentType.CONFIG_SET,
                ConfidenceLevel.HIGH,
                {"config_key": _group(1), "config_value": _group(2)},
            ),
            (
                re.compile(
                    r"\b(?:list|show) (?:all )?(?:the )?(?:config|configuration|settings)$"
                    r"|\bconfig(?:uration)? list\b"
                ),
                IntentType.CONFIG_LIST,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\bconfig(?:uration)? get ([a-z][\w.-]*)"
                    r"|\b(?:get|show|what is) (?:the )?(?:config(?:uration)? )?"
                    r"(?:value (?:of|for) )?(?:key )?([a-z][\w-]*\.[\w.-]+)"
                ),
                IntentType.CONFIG_GET,
                ConfidenceLevel.MEDIUM,
                {"config_key": _first_group},
            ),
            # Threat intelligence
            (
                re.compile(
                    r"\b(?:ioc|indicator) lookup\b|\blook ?up (?:the )?(?:ioc|indicator|hash)\b"
                ),
                IntentType.INTEL_IOC_LOOKUP,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(r"\b(?:intel(?:ligence)?|threat) feeds?\b|\bfeeds? status\b"),
                IntentType.INTEL_FEEDS,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\b(?:reputation|intel|intelligence)\b"
                    r"|\b(?:look ?up|query|check) (?:the )?(?:hash|domain|ip|url)\b"
                ),
                IntentType.INTEL_QUERY,
                ConfidenceLevel.HIGH,
                {},
            ),
            # Behavioral analysis
            (
                re.compile(r"\bbaseline\b"),
                IntentType.BEHAVIOR_BASELINE,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(r"\bbehaviou?r(?:al)? patterns?\b|\b(?:usage|activity|login) patterns?\b"),
                IntentType.BEHAVIOR_PATTERNS,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\b(?:analy[sz]e|investigate|review)\b.*\b(?:behaviou?r|activity)\b"
                    r"|\bbehaviou?r(?:al)? analysis\b|\buser behaviou?r\b"
                ),
                IntentType.BEHAVIOR_ANALYZE,
                ConfidenceLevel.HIGH,
                {},
            ),
            # Network
            (
                re.compile(
                    r"\bnetwork scan\b|\bport scan\b|\bscan (?:the |all )?(?:open )?ports?\b"
                    r"|\bscan\b.*\bports? \d"
                ),
                IntentType.NETWORK_SCAN,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\b(?:monitor|watch) (?:the |my )?(?:network|traffic)\b"
                    r"|\bnetwork (?:monitor|monitoring|traffic)\b"
                ),
                IntentType.NETWORK_MONITOR,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(r"\bnetwork status\b|\bis the network (?:up|ok|reachable)\b"),
                IntentType.NETWORK_STATUS,
                ConfidenceLevel.VERY_HIGH,
                {},
            ),
            # System
            (
                re.compile(r"\b(?:system |performance )?metrics\b|\bperformance stats\b"),
                IntentType.SYSTEM_METRICS,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\bsystem health\b(?! check)|\bare (?:all )?(?:the )?services (?:healthy|up)\b"
                ),
                IntentType.SYSTEM_HEALTH,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\b(?:system|platform|service|api) status\b|\bhealth[\s-]check\b"
                    r"|\bstatus of the system\b"
                ),
                IntentType.SYSTEM_STATUS,
                ConfidenceLevel.VERY_HIGH,
                {},
            ),
            # Threats
            (
                re.compile(
                    r"\b(?:details|info|information) (?:for|on|of|about) "
                    r"(?:threat|incident|alert) (?:id )?([a-z]{0,4}-?\d+)\b"
                    r"|\b(?:threat|incident|alert) ([a-z]{0,4}-?\d+) details\b"
                ),
                IntentType.THREAT_DETAILS,
                ConfidenceLevel.HIGH,
                {"threat_id": _first_group},
            ),
            (
                re.compile(
                    r"\b(?:monitor|watch)\b.*\b(?:threats?|alerts?|events?|attacks?)\b"
                    r"|\blive (?:threat )?monitoring\b|\bstream (?:security )?events\b"
                    r"|\bwatch\b.*\breal[\s-]?time\b|\bcontinuous(?:ly)? scan"
                ),
                IntentType.THREAT_WATCH,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\bscan\b.*\b(?:threats?|malware|vulnerabilit(?:y|ies))\b"
                    r"|\bcheck\b.*\bvulnerabilit(?:y|ies)\b|\bsearch\b.*\bmalware\b"
                    r"|\bthreat detection\b|\bsecurity scan\b"
                ),
                IntentType.THREAT_SCAN,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(
                    r"\b(?:show|list|display|get)\b.*\b(?:threats?|alerts?|incidents?)\b"
                    r"|\bwhat\b.*\bthreats?\b|\brecent\b.*\battacks?\b"
                ),
                IntentType.THREAT_LIST,
                ConfidenceLevel.HIGH,
                {},
            ),
            (
                re.compile(r"\bscan \S"),
                IntentType.THREAT_SCAN,
                ConfidenceLevel.MEDIUM,
                {},
            ),
            # Conversation
            (
                re.compile(
                    r"\b(?:what do you mean|can you explain|i don ?t understand"
                    r"|what does that mean|clarify)\b"
                ),
                IntentType.CONVERSATION_CLARIFY,
                ConfidenceLevel.MEDIUM,
                {},
            ),
        ]

        # Keyword fallback, checked in order, always low confidence
        self.keywords: tuple[tuple[re.Pattern[str], IntentType], ...] = (
            (re.compile(r"\bscan"), IntentType.THREAT_SCAN),
            (re.compile(r"\bthreats?\b"), IntentType.THREAT_LIST),
            (re.compile(r"\b(?:monitor|watch)"), IntentType.THREAT_WATCH),
            (re.compile(r"\b(?:status|health)\b"), IntentType.SYSTEM_STATUS),
            (re.compile(r"\blogin\b"), IntentType.AUTH_LOGIN),
            (re.compile(r"\blogout\b"), IntentType.AUTH_LOGOUT),
            (re.compile(r"\bauth"), IntentType.AUTH_STATUS),
        )

    async def parse(self, text: str, context: ConversationContext | None = None) -> ParseResult:
        return self.classify(text, context)

    def classify(self, text: str, context: ConversationContext | None = None) -> ParseResult:
        """Parse text into a structured intent.

        Args:
            text: User input text.
            context: Conversation context, used to boost confidence for intents
                that continue the recent conversation flow.

        Returns:
            ParseResult with the intent, extracted entities and, when the text
            could not be classified confidently, a clarification prompt.
        """
        normalized = normalize_text(text)
        entities = self.extract_entities(normalized)

        intent_type = IntentType.CONVERSATION_UNKNOWN
        confidence = ConfidenceLevel.VERY_LOW

        for pattern, pattern_intent, pattern_confidence, extractors in self.patterns:
            match = pattern.search(normalized)
            if not match:
                continue
            intent_type = pattern_intent
            confidence = pattern_confidence
            for entity_type, extractor in extractors.items():
                value = extractor(match)
                if value:
                    entities.append(Entity(type=entity_type, value=value))
            break
        else:
            for keyword, keyword_intent in self.keywords:
                if keyword.search(normalized):
                    intent_type = keyword_intent
                    confidence = ConfidenceLevel.LOW
                    break

        if (
            context is not None
            and intent_type != IntentType.CONVERSATION_UNKNOWN
            and intent_type in context.recent_intents
        ):
            confidence = _boost(confidence)

        entities = _deduplicate(entities)
        logger.debug(
            "Classified input as %s (%s) with %d entities",
            intent_type.value,
            confidence.value,
            len(entities),
        )

        return ParseResult(
            intent=Intent(type=intent_type, confidence=confidence),
            entities=entities,
            original_text=text,
            clarification_prompt=_clarification_prompt(intent_type, confidence, entities),
        )

    def extract_entities(self, normalized: str) -> list[Entity]:
        """Extract typed entities from normalized text in a stable order."""
        entities: list[Entity] = []

        ranges = list(_NETWORK_RANGE_RE.finditer(normalized))
        entities.extend(Entity(type="network_range", value=m.group(0)) for m in ranges)
        for match in _IP_ADDRESS_RE.finditer(normalized):
            if not _inside(match, ranges):
                entities.append(Entity(type="ip_address", value=match.group(0)))

        urls = list(_URL_RE.finditer(normalized))
        entities.extend(Entity(type="url", value=m.group(0)) for m in urls)
        for match in _DOMAIN_RE.finditer(normalized):
            if not _inside(match, urls):
                entities.append(Entity(type="domain", value=match.group(0)))

        entities.extend(Entity(type="hash", value=m.group(0)) for m in _HASH_RE.finditer(normalized))

        for match in _SEVERITY_RE.finditer(normalized):
            value = match.group(1)
            entities.append(Entity(type="severity", value=_SEVERITY_ALIASES.get(value, value)))

        # A bare intensity word only counts as a scan type in a scan request
        if _SCAN_WORD_RE.search(normalized):
            entities.extend(
                Entity(type="scan_type", value=m.group(1))
                for m in _SCAN_TYPE_RE.finditer(normalized)
            )

        entities.extend(
            Entity(type="time_range", value=m.group(1))
            for m in _TIME_RANGE_RE.finditer(normalized)
        )
        entities.extend(
            Entity(type="threat_type", value=m.group(1))
            for m in _THREAT_TYPE_RE.finditer(normalized)
        )
        entities.extend(
            Entity(type="output_format", value=m.group(1))
            for m in _OUTPUT_FORMAT_RE.finditer(normalized)
        )
        entities.extend(
            Entity(type="port", value=m.group(1).strip(",-"))
            for m in _PORT_RE.finditer(normalized)
        )
        for match in _USERNAME_RE.finditer(normalized):
            entities.append(Entity(type="username", value=_first_group(match) or ""))

        return [entity for entity in entities if entity.value]


def _inside(match: re.Match[str], containers: list[re.Match[str]]) -> bool:
    return any(c.start() <= match.start() and match.end() <= c.end() for c in containers)


def _deduplicate(entities: list[Entity]) -> list[Entity]:
    seen: set[tuple[str, str]] = set()
    unique = []
    for entity in entities:
        key = (entity.type, entity.value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entity)
    return unique


def _boost(confidence: ConfidenceLevel) -> ConfidenceLevel:
    index = _CONFIDENCE_ORDER.index(confidence)
    return _CONFIDENCE_ORDER[min(index + 1, len(_CONFIDENCE_ORDER) - 1)]


def _clarification_prompt(
    intent_type: IntentType, confidence: ConfidenceLevel, entities: list[Entity]
) -> str | None:
    if intent_type == IntentType.CONVERSATION_UNKNOWN:
        return _UNKNOWN_PROMPT
    if intent_type == IntentType.INTEL_QUERY and not any(
        e.type in ("hash", "ip_address", "domain", "url") for e in entities
    ):
        return _INTEL_PROMPT
    if confidence.is_low:
        return (
            f"I think you want to {intent_type.label}, but I'm not completely sure. "
            "Could you be more specific about what you'd like me to do?"
        )
    return None
