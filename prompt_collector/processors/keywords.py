# prompt_collector/processors/keywords.py
"""
Keyword classifiers used by the analyzer and the insight miner.

Each classifier is a small strategy object with a single method
`detect(content) -> bool`, so the word lists can be tuned or replaced
(e.g. per deployment, or in tests) without touching the call sites.
Matching is case-insensitive substring membership.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Tuple


class SignalDetector(Protocol):
    name: str

    def detect(self, content: str) -> bool:
        ...


@dataclass(frozen=True)
class KeywordDetector:
    name: str
    keywords: Tuple[str, ...]

    def detect(self, content: str) -> bool:
        lowered = content.lower()
        return any(k in lowered for k in self.keywords)

    def extended(self, extra: Iterable[str], name: Optional[str] = None) -> "KeywordDetector":
        return KeywordDetector(name=name or self.name, keywords=self.keywords + tuple(extra))


CONTEXT = KeywordDetector("context", (
    "context", "background", "situation", "scenario", "given that",
    "assuming", "consider", "in the context of", "for this project",
    "working on", "building", "creating",
))

EXAMPLES = KeywordDetector("examples", (
    "example", "for instance", "such as", "like this", "here's an example",
    "e.g.", "for example", "including", "sample", "demo",
))

CONSTRAINTS = KeywordDetector("constraints", (
    "must", "should", "cannot", "don't", "avoid", "only", "exactly",
    "within", "limit", "constraint", "requirement", "ensure", "make sure",
))

EXPECTED_OUTPUT = KeywordDetector("expected_output", (
    "output", "result", "response", "format", "structure", "return",
    "provide", "give me", "i want", "i need", "show me", "list",
    "explain", "describe", "write", "create", "generate",
))

AMBIGUITY = KeywordDetector("ambiguity", (
    "something", "anything", "stuff", "things", "some", "any",
    "maybe", "perhaps", "might", "could be", "sort of", "kind of",
))

BIAS = KeywordDetector("bias", (
    "obviously", "clearly", "everyone knows", "it's common sense",
    "normal people", "typical", "standard",
))

TECHNICAL = KeywordDetector("technical", (
    "code", "function", "algorithm", "api", "database", "sql",
    "programming", "development", "technical", "implementation",
    "architecture", "design pattern", "framework", "library",
))

# The miner's notion of "uses context" also counts first-person framing.
CONTEXT_USAGE = CONTEXT.extended(("i am", "i have", "my project"), name="context_usage")


@dataclass(frozen=True)
class DetectorSet:
    """The full set of classifiers the analysis pipeline consults."""
    context: SignalDetector = CONTEXT
    examples: SignalDetector = EXAMPLES
    constraints: SignalDetector = CONSTRAINTS
    expected_output: SignalDetector = EXPECTED_OUTPUT
    ambiguity: SignalDetector = AMBIGUITY
    bias: SignalDetector = BIAS
    technical: SignalDetector = TECHNICAL


DEFAULT_DETECTORS = DetectorSet()


# Words ignored by the miner's vocabulary scan.
STOP_WORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "may",
    "might", "can", "shall", "must", "i", "you", "he", "she", "it", "we",
    "they", "this", "that", "these", "those",
])
