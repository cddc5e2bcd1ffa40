# prompt_collector/processors/analyzer.py
"""
Heuristic prompt analyzer.

Turns raw prompt text into an `Analysis`:
- structural signals (context / examples / constraints / expected output) + clarity score
- flagged issues with severity
- complexity tier (simple | moderate | complex)
- recommended prompting technique + rationale
- bounded quality score (0.0 - 10.0, one decimal)

The stages are plain functions threaded through one immutable
`AnalysisContext`; each stage reads only what earlier stages produced.
Everything here is deterministic and free of I/O, and any `str` input
(including "" and multi-megabyte text) produces a result.
"""

import re
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple

from prompt_collector.processors.keywords import DEFAULT_DETECTORS, DetectorSet
from prompt_collector.schemas import Analysis, Issue, StructuralSignals

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_EXCESSIVE_PUNCTUATION = re.compile(r"[!?]{2,}")
_EXCESSIVE_CAPS = re.compile(r"[A-Z]{5,}")

SIMPLE = "simple"
MODERATE = "moderate"
COMPLEX = "complex"

TECHNIQUE_RATIONALES = {
    "Zero-Shot": "Simple, direct prompt suitable for straightforward requests",
    "Direct Question": "Clear question format with expected output specified",
    "Few-Shot": "Examples provided to guide the model's response format",
    "Chain of Thought": "Moderate complexity requiring step-by-step reasoning",
    "Role-Based": "Context suggests specific expertise or perspective needed",
    "Tree of Thoughts": "Complex problem requiring exploration of multiple approaches",
    "ReAct": "Complex task with constraints requiring reasoning and action",
    "Multi-Step Reasoning": "Complex multi-part problem requiring structured approach",
}
GENERIC_RATIONALE = "Selected based on prompt complexity and structure"

# points deducted from the quality score per issue severity
SEVERITY_PENALTY = {"high": 2.0, "medium": 1.0, "low": 0.5}


def tokenize(content: str) -> List[str]:
    return content.split()


def split_sentences(content: str) -> List[str]:
    return [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]


# ---------------------------------------------------------------------------
# Stage 1: structure
# ---------------------------------------------------------------------------

def clarity_score(content: str) -> float:
    tokens = tokenize(content)
    sentences = split_sentences(content)
    n_tokens = len(tokens)

    score = 10.0
    if n_tokens < 10:
        score -= 2
    if n_tokens > 500:
        score -= 1

    avg_per_sentence = n_tokens / len(sentences) if sentences else n_tokens
    if avg_per_sentence > 30:
        score -= 1

    if "\n" in content or "1." in content or "-" in content:
        score += 1

    runs = len(_EXCESSIVE_PUNCTUATION.findall(content)) + len(_EXCESSIVE_CAPS.findall(content))
    score -= runs * 0.5

    return max(0.0, min(10.0, score))


def analyze_structure(content: str, detectors: DetectorSet = DEFAULT_DETECTORS) -> StructuralSignals:
    return StructuralSignals(
        has_context=detectors.context.detect(content),
        has_examples=detectors.examples.detect(content),
        has_constraints=detectors.constraints.detect(content),
        has_expected_output=detectors.expected_output.detect(content),
        clarity_score=clarity_score(content),
    )


# ---------------------------------------------------------------------------
# Stage 2: issues
# ---------------------------------------------------------------------------

def detect_issues(content: str, structure: StructuralSignals,
                  detectors: DetectorSet = DEFAULT_DETECTORS) -> List[Issue]:
    """Each issue type fires at most once; order is declaration order."""
    issues: List[Issue] = []

    if not structure.has_context and len(content) > 100:
        issues.append(Issue(
            type="missing_context",
            description="Prompt lacks sufficient context for complex request",
            severity="medium",
        ))

    if len(content) < 20:
        issues.append(Issue(
            type="too_broad",
            description="Prompt is very short and may be too broad",
            severity="high",
        ))

    if detectors.ambiguity.detect(content):
        issues.append(Issue(
            type="ambiguity",
            description="Prompt contains ambiguous language that may lead to unclear responses",
            severity="medium",
        ))

    if detectors.bias.detect(content):
        issues.append(Issue(
            type="bias",
            description="Prompt may contain biased language or assumptions",
            severity="low",
        ))

    return issues


# ---------------------------------------------------------------------------
# Stage 3: complexity
# ---------------------------------------------------------------------------

def complexity_points(content: str, structure: StructuralSignals,
                      detectors: DetectorSet = DEFAULT_DETECTORS) -> int:
    points = 0

    n_tokens = len(tokenize(content))
    if n_tokens > 100:
        points += 1
    if n_tokens > 200:
        points += 1

    # has_expected_output deliberately does not count here
    points += sum([structure.has_context, structure.has_examples, structure.has_constraints])

    if " and " in content or ", " in content or "\n" in content:
        points += 1

    if detectors.technical.detect(content):
        points += 1

    return points


def classify_complexity(content: str, structure: StructuralSignals,
                        detectors: DetectorSet = DEFAULT_DETECTORS) -> str:
    points = complexity_points(content, structure, detectors)
    if points <= 2:
        return SIMPLE
    if points <= 4:
        return MODERATE
    return COMPLEX


# ---------------------------------------------------------------------------
# Stage 4: technique
# ---------------------------------------------------------------------------

def select_technique(complexity: str, structure: StructuralSignals) -> str:
    if complexity == SIMPLE:
        return "Direct Question" if structure.has_expected_output else "Zero-Shot"

    if complexity == MODERATE:
        if structure.has_examples:
            return "Few-Shot"
        if structure.has_context:
            return "Role-Based"
        return "Chain of Thought"

    if structure.has_constraints and structure.has_context:
        return "ReAct"
    if structure.has_constraints and structure.has_expected_output:
        return "Multi-Step Reasoning"
    return "Tree of Thoughts"


def technique_rationale(technique: str) -> str:
    return TECHNIQUE_RATIONALES.get(technique, GENERIC_RATIONALE)


# ---------------------------------------------------------------------------
# Stage 5: score
# ---------------------------------------------------------------------------

def score_quality(structure: StructuralSignals, issues: Sequence[Issue]) -> float:
    score = 10.0

    if not structure.has_context:
        score -= 1.5
    if not structure.has_examples:
        score -= 0.5
    if not structure.has_constraints:
        score -= 0.5
    if not structure.has_expected_output:
        score -= 1.0

    for issue in issues:
        score -= SEVERITY_PENALTY.get(issue.severity, 0.0)

    score += (structure.clarity_score / 10) * 2

    return round(max(0.0, min(10.0, score)), 1)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisContext:
    content: str
    detectors: DetectorSet = DEFAULT_DETECTORS
    structure: Optional[StructuralSignals] = None
    issues: Tuple[Issue, ...] = ()
    complexity: Optional[str] = None
    technique: Optional[str] = None
    quality_score: Optional[float] = None


def _structure_stage(ctx: AnalysisContext) -> AnalysisContext:
    return replace(ctx, structure=analyze_structure(ctx.content, ctx.detectors))


def _issues_stage(ctx: AnalysisContext) -> AnalysisContext:
    return replace(ctx, issues=tuple(detect_issues(ctx.content, ctx.structure, ctx.detectors)))


def _complexity_stage(ctx: AnalysisContext) -> AnalysisContext:
    return replace(ctx, complexity=classify_complexity(ctx.content, ctx.structure, ctx.detectors))


def _technique_stage(ctx: AnalysisContext) -> AnalysisContext:
    return replace(ctx, technique=select_technique(ctx.complexity, ctx.structure))


def _score_stage(ctx: AnalysisContext) -> AnalysisContext:
    return replace(ctx, quality_score=score_quality(ctx.structure, ctx.issues))


PIPELINE: Tuple[Callable[[AnalysisContext], AnalysisContext], ...] = (
    _structure_stage,
    _issues_stage,
    _complexity_stage,
    _technique_stage,
    _score_stage,
)


def analyze(content: str, detectors: Optional[DetectorSet] = None) -> Analysis:
    ctx = AnalysisContext(content=content, detectors=detectors or DEFAULT_DETECTORS)
    for stage in PIPELINE:
        ctx = stage(ctx)

    return Analysis(
        quality_score=ctx.quality_score,
        complexity=ctx.complexity,
        structure=ctx.structure,
        issues=list(ctx.issues),
        suggested_technique=ctx.technique,
        technique_rationale=technique_rationale(ctx.technique),
    )


def suggest_improvements(analysis: Analysis, goal: Optional[str] = None) -> List[str]:
    """Concrete authoring suggestions for whatever structural elements are missing."""
    s = analysis.structure
    suggestions: List[str] = []
    if not s.has_context:
        suggestions.append("Add more context about your situation or what you're working on")
    if not s.has_examples:
        suggestions.append("Include examples of what you're looking for")
    if not s.has_constraints:
        suggestions.append("Specify any constraints or requirements")
    if not s.has_expected_output:
        suggestions.append("Clearly state what format or type of response you want")
    if goal:
        suggestions.append(f'For your goal of "{goal}", be specific about the outcome you want to achieve')
    return suggestions
