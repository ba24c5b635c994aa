"""
Design pipeline — eight linear phases that turn a PRD into a design manifest.

    functional_summary → project_scope → context_gaps → design_brief →
    visual_system → component_hierarchy → implementation_plan → design_intent

Every AI phase asks the provider chain for a JSON object and has a
rule-based fallback (activities.design_rules), so the pipeline completes
even with no provider reachable. context_gaps is rule-only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import config
from activities import design_rules
from models.errors import GeneratorError
from models.schemas import PipelineResult, StepContext, StepDescriptor
from utils.providers import ProviderChain, get_provider_chain
from workflows.fallback import FallbackStrategy

log = logging.getLogger(__name__)

PIPELINE_NAME = "design"
MANIFEST_VERSION = "1.0.0"
MANIFEST_FILENAME = "design-manifest.json"


def _dump(data) -> str:
    return json.dumps(data, indent=2)


# ── Prompts ───────────────────────────────────────────────────────────

def _summary_prompt(ctx: StepContext) -> str:
    return f"""You are a product analyst. Parse this PRD into a structured functional summary.

PRD:
{ctx.inputs.get("prd", "")}

Output JSON with this exact structure:
{{
  "app_name": "string",
  "core_purpose": "string",
  "key_features": ["feature1", "feature2"],
  "primary_user_actions": ["action1", "action2"],
  "platform": "string",
  "technical_requirements": ["req1", "req2"],
  "complexity_level": "low|medium|high",
  "user_personas": ["persona1"],
  "business_goals": ["goal1"],
  "success_metrics": ["metric1"]
}}

Focus on extracting the core essence and user value proposition."""


def _scope_prompt(ctx: StepContext) -> str:
    return f"""Classify this project's build scope based on the functional summary.

Summary: {_dump(ctx.result("functional_summary"))}

Options:
- single_component: One reusable component
- ui_page: Single page/screen with multiple components
- full_app: Multi-screen application

Return JSON with keys build_scope, reason, expected_outputs, estimated_screens,
estimated_components, development_phases, technical_complexity (simple|moderate|complex)."""


def _brief_prompt(ctx: StepContext) -> str:
    summary = ctx.result("functional_summary", {})
    gaps = ctx.result("context_gaps", {})
    branding = ctx.inputs.get("branding") or "(none supplied)"
    return f"""Create a design inspiration brief for this project.

Project: {summary.get("app_name")}
Purpose: {summary.get("core_purpose")}
Features: {", ".join(summary.get("key_features", []))}
Platform: {summary.get("platform")}
Complexity: {summary.get("complexity_level")}
Branding: {branding}

Missing context: {", ".join(gaps.get("missing", []))}

Generate 3 distinct visual directions, then blend the best elements.

Output JSON with keys theme (dark|light|mixed), inspiration_sources
[{{name, style, reasoning}}], blended_style, primary_color (#hex),
support_colors [#hex], typography {{heading, body, mono}}, ui_principles,
motion_style, personality_keywords, emotional_tone, target_audience,
accessibility_focus."""


def _visual_prompt(ctx: StepContext) -> str:
    return f"""Create a complete design token system based on this design brief.

Brief: {_dump(ctx.result("design_brief"))}

Output JSON with keys colors (primary, secondary, accent, background, surface,
text, text_muted, border, success, warning, error, info as #hex), typography
{{font_families, scale, weights}}, spacing, radii, shadows, motion
{{duration, easing}}, breakpoints."""


def _hierarchy_prompt(ctx: StepContext) -> str:
    summary = ctx.result("functional_summary", {})
    brief = ctx.result("design_brief", {})
    components = ctx.inputs.get("component_list") or "(none supplied)"
    return f"""Define the component hierarchy for this project.

Project: {summary.get("app_name")}
Features: {", ".join(summary.get("key_features", []))}
User Actions: {", ".join(summary.get("primary_user_actions", []))}
Platform: {summary.get("platform")}
Design Principles: {", ".join(brief.get("ui_principles", []))}
Known components: {components}

Output JSON with keys screens [{{name, description, purpose, components,
layout_type, navigation_flow, user_journey_position}}], components [{{name,
description, type, props, interactions, states, accessibility_requirements,
responsive_behavior, related_components}}], design_patterns,
interaction_flows, state_management, data_flow."""


def _plan_prompt(ctx: StepContext) -> str:
    summary = ctx.result("functional_summary", {})
    hierarchy = ctx.result("component_hierarchy", {})
    return f"""Create an implementation plan for this project.

Project: {summary.get("app_name")}
Platform: {summary.get("platform")}
Screens: {len(hierarchy.get("screens", []))}
Components: {len(hierarchy.get("components", []))}
Complexity: {summary.get("complexity_level")}
Types: {ctx.inputs.get("types") or "(none supplied)"}

Output JSON with keys framework, pages, state_management, build_requirements,
data_persistence, notifications, authentication, api_integration,
deployment_strategy, performance_optimizations, accessibility_implementation,
testing_strategy, monitoring_analytics."""


def _intent_prompt(ctx: StepContext) -> str:
    summary = ctx.result("functional_summary", {})
    visual = ctx.result("visual_system", {})
    return f"""Synthesize the complete design intent for this project.

Design Brief: {_dump(ctx.result("design_brief"))}
Visual System: {_dump(visual.get("colors", {}))}
Project: {summary.get("app_name")} - {summary.get("core_purpose")}

Create a final design philosophy that guides all design decisions.

Output JSON with keys visual_philosophy, design_anchors, user_experience_goals,
brand_alignment, technical_constraints, scalability_considerations,
maintenance_guidelines, success_criteria."""


# ── Phase table ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Phase:
    id: str
    name: str
    confidence: float
    prompt: Callable[[StepContext], str] | None
    required_keys: tuple[str, ...] = ()
    temperature: float = 0.3
    max_tokens: int = 1000


PHASES = [
    Phase("functional_summary", "Functional Summary", 0.9, _summary_prompt,
          ("app_name", "key_features"), 0.3, 1000),
    Phase("project_scope", "Project Scope", 0.8, _scope_prompt,
          ("build_scope", "reason"), 0.2, 500),
    Phase("context_gaps", "Context Gaps", 0.7, None),
    Phase("design_brief", "Design Brief", 0.8, _brief_prompt,
          ("theme", "primary_color", "typography", "ui_principles"), 0.7, 1500),
    Phase("visual_system", "Visual System", 0.9, _visual_prompt,
          ("colors", "typography", "spacing"), 0.4, 2000),
    Phase("component_hierarchy", "Component Hierarchy", 0.8, _hierarchy_prompt,
          ("screens", "components"), 0.5, 2000),
    Phase("implementation_plan", "Implementation Plan", 0.7, _plan_prompt,
          ("framework", "pages"), 0.3, 1000),
    Phase("design_intent", "Design Intent", 0.8, _intent_prompt,
          ("visual_philosophy", "design_anchors"), 0.6, 800),
]

PHASE_IDS = [p.id for p in PHASES]


def _ai_phase(phase: Phase, chain_factory: Callable[[], ProviderChain]):
    def run(ctx: StepContext) -> dict:
        data = chain_factory().generate_json(
            phase.prompt(ctx), temperature=phase.temperature, max_tokens=phase.max_tokens,
        )
        missing = [k for k in phase.required_keys if k not in data]
        if missing:
            raise GeneratorError(f"{phase.id} response is missing keys: {', '.join(missing)}")
        if phase.id == "functional_summary":
            return design_rules.validate_functional_summary(data)
        return data
    return run


def build_design_steps(chain: ProviderChain | None = None) -> list[StepDescriptor]:
    """One descriptor per phase; each depends on the phase before it."""
    chain_factory = (lambda: chain) if chain is not None else get_provider_chain
    steps = []
    previous: str | None = None
    for phase in PHASES:
        if phase.prompt is None:
            run, allow_fallback = design_rules.gaps_step, False
        else:
            run, allow_fallback = _ai_phase(phase, chain_factory), True
        steps.append(StepDescriptor(
            id=phase.id,
            run=run,
            name=phase.name,
            depends_on={previous} if previous else frozenset(),
            allow_fallback=allow_fallback,
            confidence=phase.confidence,
        ))
        previous = phase.id
    return steps


def design_fallbacks() -> FallbackStrategy:
    return FallbackStrategy(design_rules.RULES)


def build_manifest(result: PipelineResult) -> dict:
    """Assemble the design manifest from a (possibly partly rule-based) run."""
    phases = {pid: result.results.get(pid) for pid in PHASE_IDS}
    summary = phases["functional_summary"] or {}
    return {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "project_name": summary.get("app_name", "Unknown Project"),
        "phases": phases,
        "metadata": {
            "ai_model_used": "provider-chain",
            "confidence_scores": {pid: result.confidence[pid] for pid in PHASE_IDS if pid in result.confidence},
            "fallbacks_used": list(result.fallbacks_used),
            "generation_time_ms": int(result.duration_sec * 1000),
        },
    }


def save_manifest(project_path: str, manifest: dict) -> Path:
    path = Path(project_path) / config.CHECKPOINT_DIRNAME / MANIFEST_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2))
    log.info("Design manifest written: %s", path)
    return path
