"""Immutable rule tables shared by the synthesizer, validator and router.

Everything here is built once at import time and handed to the pipeline
components by reference. Nothing in this module is mutated at runtime.
"""

import ipaddress
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from ..models import IntentType, SafetyLevel

AUTO_DETECT_NETWORK = "$(auto-detect-network)"

TARGET_ENTITY_TYPES = ("ip_address", "network_range", "domain")

SCAN_TYPES = frozenset({"quick", "deep", "full"})
INTENSIVE_SCAN_TYPES = frozenset({"deep", "full"})
SCAN_TYPE_ALIASES = MappingProxyType(
    {
        "quick": "quick",
        "fast": "quick",
        "basic": "quick",
        "deep": "deep",
        "thorough": "deep",
        "full": "full",
        "comprehensive": "full",
    }
)

SEVERITIES = frozenset({"low", "medium", "high", "critical"})
OUTPUT_FORMATS = frozenset({"table", "json", "yaml", "text", "csv"})
HELP_TOPICS = frozenset({"auth", "threat", "network", "behavior", "intel", "config", "status"})


@dataclass(frozen=True)
class ParameterSpec:
    """One parameter of a command family's closed schema."""

    name: str
    multi: bool = False
    required: bool = False
    choices: frozenset[str] | None = None
    entity_types: tuple[str, ...] = ()

    def accepts(self, value: str) -> bool:
        return self.choices is None or value in self.choices


@dataclass(frozen=True)
class CommandRule:
    """Static mapping from an intent to a command and its parameter schema."""

    intent: IntentType
    command_type: str
    sub_action: str
    parameters: tuple[ParameterSpec, ...] = ()
    flags: frozenset[str] = frozenset()
    safety_level: SafetyLevel = SafetyLevel.SAFE
    requires_confirmation: bool = False

    def parameter(self, name: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None

    def parameter_for_entity(self, entity_type: str) -> ParameterSpec | None:
        for spec in self.parameters:
            if entity_type in spec.entity_types:
                return spec
        return None

    @property
    def family(self) -> str:
        return self.command_type


@dataclass(frozen=True)
class DestructivePattern:
    """A catastrophic command fragment and the label reported when it matches."""

    label: str
    pattern: re.Pattern[str]


def _targets(required: bool = False) -> ParameterSpec:
    return ParameterSpec("targets", multi=True, required=required, entity_types=TARGET_ENTITY_TYPES)


def _output() -> ParameterSpec:
    return ParameterSpec("output", choices=OUTPUT_FORMATS, entity_types=("output_format",))


def _scan_type() -> ParameterSpec:
    return ParameterSpec("scan-type", choices=SCAN_TYPES, entity_types=("scan_type",))


def _severity(multi: bool = True) -> ParameterSpec:
    return ParameterSpec("severity", multi=multi, choices=SEVERITIES, entity_types=("severity",))


def _user() -> ParameterSpec:
    return ParameterSpec("user", entity_types=("user_id", "username"))


def _time_range(name: str) -> ParameterSpec:
    return ParameterSpec(name, entity_types=("time_range",))


def _indicator() -> ParameterSpec:
    return ParameterSpec(
        "indicator", required=True, entity_types=("hash", "ip_address", "domain", "url")
    )


_RULES = (
    CommandRule(
        IntentType.AUTH_LOGIN,
        "auth",
        "login",
        parameters=(_user(),),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(IntentType.AUTH_LOGOUT, "auth", "logout", safety_level=SafetyLevel.LOW),
    CommandRule(
        IntentType.AUTH_STATUS,
        "auth",
        "status",
        parameters=(_output(),),
        flags=frozenset({"verbose"}),
    ),
    CommandRule(
        IntentType.THREAT_SCAN,
        "threat",
        "scan",
        parameters=(_targets(required=True), _scan_type(), _output()),
        flags=frozenset({"verbose", "quiet", "aggressive"}),
        safety_level=SafetyLevel.MEDIUM,
    ),
    CommandRule(
        IntentType.THREAT_LIST,
        "threat",
        "list",
        parameters=(
            _severity(),
            _time_range("since"),
            ParameterSpec("threat-type", entity_types=("threat_type",)),
            _output(),
        ),
        flags=frozenset({"verbose", "quiet"}),
    ),
    CommandRule(
        IntentType.THREAT_WATCH,
        "threat",
        "watch",
        parameters=(
            _severity(),
            ParameterSpec("threat-type", entity_types=("threat_type",)),
            _output(),
        ),
        flags=frozenset({"follow", "verbose", "quiet"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.THREAT_DETAILS,
        "threat",
        "details",
        parameters=(ParameterSpec("threat-id", entity_types=("threat_id",)), _output()),
        flags=frozenset({"verbose"}),
    ),
    CommandRule(
        IntentType.BEHAVIOR_ANALYZE,
        "behavior",
        "analyze",
        parameters=(_user(), _time_range("time-range"), _output()),
        flags=frozenset({"verbose", "quiet"}),
        safety_level=SafetyLevel.MEDIUM,
    ),
    CommandRule(
        IntentType.BEHAVIOR_PATTERNS,
        "behavior",
        "patterns",
        parameters=(_user(), _time_range("time-range"), _output()),
        flags=frozenset({"verbose"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.BEHAVIOR_BASELINE,
        "behavior",
        "baseline",
        parameters=(_user(), _time_range("time-range")),
        flags=frozenset({"verbose"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.NETWORK_SCAN,
        "network",
        "scan",
        parameters=(
            _targets(required=True),
            ParameterSpec("ports", entity_types=("port",)),
            _scan_type(),
            _output(),
        ),
        flags=frozenset({"verbose", "quiet", "aggressive"}),
        safety_level=SafetyLevel.MEDIUM,
    ),
    CommandRule(
        IntentType.NETWORK_MONITOR,
        "network",
        "monitor",
        parameters=(_targets(), _output()),
        flags=frozenset({"follow", "verbose", "quiet"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.NETWORK_STATUS,
        "network",
        "status",
        parameters=(_output(),),
        flags=frozenset({"verbose"}),
    ),
    CommandRule(
        IntentType.INTEL_QUERY,
        "intel",
        "query",
        parameters=(_indicator(), ParameterSpec("source"), _output()),
        flags=frozenset({"verbose", "upload"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.INTEL_FEEDS,
        "intel",
        "feeds",
        parameters=(ParameterSpec("source"), _output()),
        flags=frozenset({"verbose"}),
    ),
    CommandRule(
        IntentType.INTEL_IOC_LOOKUP,
        "intel",
        "ioc-lookup",
        parameters=(_indicator(), _output()),
        flags=frozenset({"verbose", "upload"}),
        safety_level=SafetyLevel.LOW,
    ),
    CommandRule(
        IntentType.CONFIG_SET,
        "config",
        "set",
        parameters=(
            ParameterSpec("key", required=True, entity_types=("config_key",)),
            ParameterSpec("value", required=True, entity_types=("config_value",)),
        ),
        safety_level=SafetyLevel.MEDIUM,
        requires_confirmation=True,
    ),
    CommandRule(
        IntentType.CONFIG_GET,
        "config",
        "get",
        parameters=(ParameterSpec("key", entity_types=("config_key",)), _output()),
    ),
    CommandRule(IntentType.CONFIG_LIST, "config", "list", parameters=(_output(),)),
    CommandRule(
        IntentType.SYSTEM_STATUS,
        "status",
        "system",
        parameters=(_output(),),
        flags=frozenset({"health-check", "verbose", "skip-auth"}),
    ),
    CommandRule(
        IntentType.SYSTEM_HEALTH,
        "status",
        "health",
        parameters=(_output(),),
        flags=frozenset({"verbose", "skip-auth"}),
    ),
    CommandRule(
        IntentType.SYSTEM_METRICS,
        "status",
        "metrics",
        parameters=(_output(),),
        flags=frozenset({"verbose"}),
    ),
    CommandRule(
        IntentType.HELP_COMMAND,
        "help",
        "command",
        parameters=(ParameterSpec("topic", choices=HELP_TOPICS, entity_types=("command",)),),
        flags=frozenset({"skip-auth"}),
    ),
)


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


# Extractors run against normalized (lower-cased) text. Group 1 is the value.
_TIME_RANGE_PATTERNS = _compile(
    r"\b(?:since|from|in the last|over the last)\s+(today|yesterday|last (?:hour|day|week|month))\b",
    r"\b(today|yesterday)\b",
    r"\b((?:past|last)\s+\d+\s+(?:minute|hour|day|week|month)s?)\b",
    r"\b(last (?:hour|day|week|month))\b",
)

_PARAMETER_PATTERNS = MappingProxyType(
    {
        "targets": _compile(
            r"\b((?:\d{1,3}\.){3}\d{1,3}(?:/\d{1,2})?)\b",
            r"\b((?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,})\b",
            r"\b(?:host|server)\s+([a-z][a-z0-9-]*\d[a-z0-9-]*)\b",
        ),
        "severity": _compile(
            r"\b(?:severity|level|priority)\s+(low|medium|high|critical)\b",
            r"\b(low|medium|high|critical)\b",
        ),
        "since": _TIME_RANGE_PATTERNS,
        "time-range": _TIME_RANGE_PATTERNS,
        "scan-type": _compile(
            r"\b(?:scan[\s-]?type|mode)\s+(quick|fast|basic|deep|thorough|full|comprehensive)\b",
            r"\b(quick|fast|basic|deep|thorough|full|comprehensive)\s+(?:\w+\s+)?scan",
        ),
        "output": _compile(
            r"\b(?:output|format|display)\s+(?:as\s+)?(table|json|csv|yaml|text)\b",
            r"\b(table|json|csv|yaml|text)\s+format\b",
        ),
        "user": _compile(
            r"\b(?:for|of|by)\s+user\s+([a-z0-9][\w.@-]*)",
            r"\busername\s+([a-z0-9][\w.@-]*)",
        ),
        "indicator": _compile(
            r"\b(?:indicator|ioc)\s+(\S+)",
            r"\b(?:hash|md5|sha1|sha256)\s+([a-f0-9]{32,64})\b",
            r"\b([a-f0-9]{32,64})\b",
        ),
        "ports": _compile(r"\bports?\s+(\d[\d,-]*)"),
        "key": _compile(
            r"\bset\s+(?:config\s+)?(?:key\s+)?([a-z][\w.-]*)\s+(?:to\s+)?\S",
            r"\b(?:get|show)\s+(?:config\s+)?(?:key\s+)?([a-z][\w-]*\.[\w.-]+)",
            r"\bkey\s+([a-z][\w.-]*)",
        ),
        "value": _compile(
            r"\bto\s+(\S+)$",
            r"\bset\s+(?:config\s+)?(?:key\s+)?[a-z][\w.-]*\s+(\S+)$",
        ),
        "threat-id": _compile(r"\b(?:threat|incident|alert)\s+(?:id\s+)?([a-z]{0,4}-?\d+)\b"),
        "threat-type": _compile(
            r"\b(malware|phishing|intrusion|anomaly|vulnerability|ransomware)\b"
        ),
        "topic": _compile(
            r"\bhelp\s+(?:with\s+|on\s+|for\s+)?(auth|threat|network|behavior|intel|config|status)\b",
            r"\b(auth|threat|network|behavior|intel|config|status)\s+help\b",
        ),
        "source": _compile(r"\bsource\s+([a-z0-9][\w.-]*)"),
    }
)

_FLAG_PATTERNS = MappingProxyType(
    {
        "verbose": _compile(
            r"\b(?:verbose|detailed)\s+(?:output|information)\b",
            r"\b(?:show|include)\s+(?:all\s+)?details\b",
            r"\bin detail\b",
        ),
        "follow": _compile(
            r"\b(?:continuously|keep running|follow|tail)\b",
            r"\b(?:real[\s-]?time|live)\s+(?:updates|monitoring)\b",
            r"\b(?:dont stop|keep watching)\b",
        ),
        "health-check": _compile(
            r"\bhealth[\s-]check\b",
            r"\b(?:including|plus)\s+health\b",
            r"\bcomprehensive\s+(?:check|status)\b",
        ),
        "aggressive": _compile(
            r"\baggressive(?:ly)?\b",
            r"\b(?:intensive|thorough|comprehensive)\s+(?:scan|check)\b",
            r"\ball\s+(?:ports|services)\b",
        ),
        "quiet": _compile(
            r"\b(?:quietly|silent(?:ly)?|no output)\b",
            r"\b(?:minimal|brief)\s+output\b",
            r"\b(?:dont show|hide)\s+(?:details|output)\b",
        ),
        "upload": _compile(r"\b(?:upload|share|submit)\b"),
    }
)

# Adverbial phrases mapped to a flag ("--quiet") or a parameter value.
_PHRASE_FLAGS: tuple[tuple[str, str, str | None], ...] = (
    ("quickly", "scan-type", "quick"),
    ("fast", "scan-type", "quick"),
    ("thoroughly", "scan-type", "deep"),
    ("comprehensively", "scan-type", "full"),
    ("silently", "quiet", None),
    ("quietly", "quiet", None),
    ("verbosely", "verbose", None),
    ("in detail", "verbose", None),
    ("continuously", "follow", None),
    ("live", "follow", None),
    ("real-time", "follow", None),
    ("as json", "output", "json"),
    ("as table", "output", "table"),
    ("as csv", "output", "csv"),
    ("as yaml", "output", "yaml"),
)

_DESTRUCTIVE_PATTERNS = (
    DestructivePattern("recursive delete of root", re.compile(r"rm\s+-rf?\s+/")),
    DestructivePattern("filesystem format", re.compile(r"format\s+[a-z]:", re.IGNORECASE)),
    DestructivePattern("recursive forced delete", re.compile(r"del\s+/[sq]\s+\*")),
    DestructivePattern(
        "forced shutdown", re.compile(r"shutdown\s+(?:-[a-z]\s+)*now", re.IGNORECASE)
    ),
    DestructivePattern("forced reboot", re.compile(r"reboot\s+(?:-[a-z]\s+)*now", re.IGNORECASE)),
    DestructivePattern("raw device write", re.compile(r"dd\s+if=.*of=/dev/")),
    DestructivePattern("filesystem creation on device", re.compile(r"mkfs(?:\.\w+)?\s+/dev/")),
    DestructivePattern("partition table edit", re.compile(r"fdisk\s+/dev/")),
)

_SENSITIVE_PATTERNS = _compile(
    r"(?i)password[=\s:]+\S+",
    r"(?i)api[_-]?key[=\s:]+\S+",
    r"(?i)secret[=\s:]+\S+",
    r"(?i)token[=\s:]+\S+",
    r"(?i)private[\s_-]?key",
)

_INTENSE_SCAN_PATTERNS = _compile(
    r"--aggressive",
    r"--scan-delay\s+0",
    r"-T[45]\b",
    r"--max-rate\s+\d{4,}",
    r"--host-timeout\s+\d+ms",
)

# Final guard applied by the execution router, independent of the validator.
_BLOCKED_PATTERNS = _compile(
    r"rm\s+-rf",
    r"sudo\s+rm",
    r"delete\s+\*",
    r"(?i)drop\s+database",
)

# First octets of well-known public cloud allocations.
_CLOUD_PREFIXES = ("52", "54", "23", "107", "13", "40", "104", "35", "34")


@dataclass(frozen=True)
class RuleSet:
    """All static tables the pipeline consults, bundled for injection."""

    rules: Mapping[IntentType, CommandRule]
    parameter_patterns: Mapping[str, tuple[re.Pattern[str], ...]]
    flag_patterns: Mapping[str, tuple[re.Pattern[str], ...]]
    phrase_flags: tuple[tuple[str, str, str | None], ...]
    destructive_patterns: tuple[DestructivePattern, ...]
    sensitive_patterns: tuple[re.Pattern[str], ...]
    intense_scan_patterns: tuple[re.Pattern[str], ...]
    blocked_patterns: tuple[re.Pattern[str], ...]
    cloud_prefixes: tuple[str, ...]
    scan_intents: frozenset[IntentType] = frozenset(
        {IntentType.THREAT_SCAN, IntentType.NETWORK_SCAN}
    )
    monitoring_intents: frozenset[IntentType] = frozenset(
        {IntentType.THREAT_WATCH, IntentType.NETWORK_MONITOR}
    )
    recon_sequence: tuple[IntentType, ...] = (
        IntentType.SYSTEM_STATUS,
        IntentType.THREAT_SCAN,
        IntentType.NETWORK_SCAN,
    )
    priority_keywords: tuple[str, ...] = (
        "destructive",
        "delete",
        "format",
        "external",
        "privilege",
    )
    high_impact_keywords: tuple[str, ...] = (
        "destructive",
        "delete",
        "format",
        "external",
        "all systems",
    )
    connectivity_keys: tuple[str, ...] = ("api", "url", "endpoint", "host", "proxy")

    def rule_for(self, intent: IntentType) -> CommandRule | None:
        return self.rules.get(intent)


DEFAULT_RULE_SET = RuleSet(
    rules=MappingProxyType({rule.intent: rule for rule in _RULES}),
    parameter_patterns=_PARAMETER_PATTERNS,
    flag_patterns=_FLAG_PATTERNS,
    phrase_flags=_PHRASE_FLAGS,
    destructive_patterns=_DESTRUCTIVE_PATTERNS,
    sensitive_patterns=_SENSITIVE_PATTERNS,
    intense_scan_patterns=_INTENSE_SCAN_PATTERNS,
    blocked_patterns=_BLOCKED_PATTERNS,
    cloud_prefixes=_CLOUD_PREFIXES,
)


def normalize_text(text: str) -> str:
    """Lower-case text and collapse everything except word chars, . / : - into spaces."""
    text = re.sub(r"[^\w\s./:-]", " ", text.lower().strip())
    return re.sub(r"\s+", " ", text).strip()


def normalize_scan_type(value: str) -> str | None:
    return SCAN_TYPE_ALIASES.get(value.lower())


def _network_of(target: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
    try:
        return ipaddress.ip_network(target, strict=False)
    except ValueError:
        return None


def cidr_prefix(target: str) -> int | None:
    """Return the prefix length of a CIDR target, or None for single hosts and names."""
    if "/" not in target:
        return None
    network = _network_of(target)
    return network.prefixlen if network is not None else None


def is_internal_target(target: str) -> bool:
    """Whether a target stays inside private, loopback or link-local space."""
    if target == AUTO_DETECT_NETWORK:
        return True
    lowered = target.lower()
    if lowered == "localhost" or lowered.endswith(".localhost") or lowered.endswith(".local"):
        return True
    network = _network_of(target)
    if network is None:
        return False
    return network.is_private or network.is_loopback or network.is_link_local


def is_cloud_address(target: str, cloud_prefixes: tuple[str, ...] = _CLOUD_PREFIXES) -> bool:
    """Whether a target's first octet falls in a well-known cloud allocation."""
    host = target.split("/")[0]
    if _network_of(target) is None:
        return False
    return host.split(".")[0] in cloud_prefixes


def is_broadcast_or_wildcard(target: str) -> bool:
    return "*" in target or target.split("/")[0].endswith(".255")
