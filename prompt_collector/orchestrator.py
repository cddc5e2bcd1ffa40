# prompt_collector/orchestrator.py
import time
from typing import Dict, Any, Optional, List

# Import modules (not bare functions) so monkeypatching in tests works correctly
import prompt_collector.processors.analyzer as _analyzer
from prompt_collector import monitoring
from prompt_collector import db as dbmod
from prompt_collector.errors import ValidationError


class PromptOrchestrator:
    """Inbound entry point: store a prompt, analyze it, record the analysis."""

    def analyze_and_store(self, content: str, context: Optional[str] = None,
                          tags: Optional[List[str]] = None,
                          conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """
        1. Validate input (nothing is written for blank content)
        2. Persist the prompt with empty analysis
        3. Analyze (pure, never fails for a str)
        4. Record the analysis on the stored prompt
        Returns {id, quality_score, complexity, technique, rationale, issues}.
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content is required and must be non-empty")

        start = time.time()
        prompt_id = dbmod.save_prompt({
            "content": content,
            "context": context,
            "conversation_id": conversation_id,
            "metadata": {"tags": list(tags or [])},
        })

        analysis = _analyzer.analyze(content)
        dbmod.update_analysis(
            prompt_id,
            analysis.quality_score,
            analysis.complexity,
            analysis.suggested_technique,
        )
        monitoring.observe_analysis(start, analysis.complexity, analysis.quality_score)
        monitoring.logger.info(
            "Prompt analyzed",
            extra={
                "prompt_id": prompt_id,
                "quality_score": analysis.quality_score,
                "complexity": analysis.complexity,
                "issues": len(analysis.issues),
            },
        )

        return {
            "id": prompt_id,
            "quality_score": analysis.quality_score,
            "complexity": analysis.complexity,
            "technique": analysis.suggested_technique,
            "rationale": analysis.technique_rationale,
            "issues": [i.model_dump() for i in analysis.issues],
        }

    def improve(self, content: str, goal: Optional[str] = None) -> Dict[str, Any]:
        """Analyze without storing and return concrete improvement suggestions."""
        analysis = _analyzer.analyze(content)
        return {
            "analysis": analysis.model_dump(),
            "suggestions": _analyzer.suggest_improvements(analysis, goal),
        }

    def prompt_with_responses(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        rec = dbmod.get_prompt(prompt_id)
        if rec is None:
            return None
        rec["responses"] = dbmod.get_responses_by_prompt(prompt_id)
        return rec
