"""
Rule-based design phases — offline substitutes for every AI design phase.

Each ``*_by_rules`` function derives a structurally complete phase result
from the PRD text and earlier phase results alone. They are registered as
fallbacks by activities.design and never touch the network.
"""

from __future__ import annotations

import re

from models.schemas import StepContext

DEFAULT_APP_NAME = "MyApp"

ACTION_KEYWORDS = ["click", "select", "input", "submit", "view", "create", "edit", "delete"]
TECH_KEYWORDS = ["api", "database", "auth", "responsive", "pwa", "offline"]
PERSONA_KEYWORDS = ["user", "customer", "admin", "manager", "developer"]
FEATURE_MARKERS = ("feature", "functionality", "capability")

TYPE_SCALE = {
    "xs": "12px", "sm": "14px", "md": "16px", "lg": "18px",
    "xl": "20px", "2xl": "24px", "3xl": "30px", "4xl": "36px",
}
FONT_WEIGHTS = {"normal": "400", "medium": "500", "semibold": "600", "bold": "700"}
SPACING = {
    "xs": "4px", "sm": "8px", "md": "16px", "lg": "24px",
    "xl": "32px", "2xl": "48px", "3xl": "64px", "4xl": "96px",
}
RADII = {"none": "0px", "sm": "4px", "md": "8px", "lg": "12px", "xl": "16px", "full": "9999px"}
SHADOWS = {
    "sm": "0 1px 2px rgba(0,0,0,0.05)",
    "md": "0 4px 6px rgba(0,0,0,0.1)",
    "lg": "0 10px 15px rgba(0,0,0,0.1)",
    "xl": "0 20px 25px rgba(0,0,0,0.1)",
}
MOTION = {
    "duration": {"fast": "150ms", "normal": "300ms", "slow": "500ms"},
    "easing": {
        "linear": "linear",
        "ease_in": "cubic-bezier(0.4,0,1,1)",
        "ease_out": "cubic-bezier(0,0,0.2,1)",
        "ease_in_out": "cubic-bezier(0.4,0,0.2,1)",
    },
}
BREAKPOINTS = {"sm": "640px", "md": "768px", "lg": "1024px", "xl": "1280px"}


# ── PRD extraction ────────────────────────────────────────────────────

def extract_app_name(prd: str) -> str:
    match = re.search(r"#\s*(.+)", prd)
    if match:
        return match.group(1).strip() or DEFAULT_APP_NAME
    first_line = prd.split("\n")[0]
    return re.sub(r"[#*]", "", first_line).strip() or DEFAULT_APP_NAME


def extract_features(prd: str) -> list[str]:
    features = []
    for line in prd.split("\n"):
        if line.lstrip().startswith("#"):
            continue
        if any(marker in line.lower() for marker in FEATURE_MARKERS):
            clean = re.sub(r"[-*•]\s*", "", line, count=1).strip()
            if len(clean) > 5:
                features.append(clean)
    return features or ["User interface", "Data management"]


def extract_purpose(prd: str) -> str:
    match = re.search(r"purpose[:\s]+(.+)", prd, re.IGNORECASE)
    if match:
        return match.group(1).strip() or "Application for user needs"
    first_paragraph = prd.split("\n\n")[0]
    return re.sub(r"[#*]", "", first_paragraph).strip() or "Application for user needs"


def _keywords_present(prd: str, keywords: list[str]) -> list[str]:
    lower = prd.lower()
    return [k for k in keywords if k in lower]


def extract_user_actions(prd: str) -> list[str]:
    actions = [k.capitalize() for k in _keywords_present(prd, ACTION_KEYWORDS)]
    return actions or ["View content", "Interact with interface"]


def infer_platform(prd: str) -> str:
    lower = prd.lower()
    if "mobile" in lower or "app" in lower:
        return "Mobile PWA"
    if "dashboard" in lower or "admin" in lower:
        return "Web Dashboard"
    return "Web Application"


def extract_technical_requirements(prd: str) -> list[str]:
    requirements = [k.upper() for k in _keywords_present(prd, TECH_KEYWORDS)]
    return requirements or ["Responsive Design", "Modern Browser Support"]


def assess_complexity(feature_count: int) -> str:
    if feature_count <= 3:
        return "low"
    if feature_count <= 6:
        return "medium"
    return "high"


def extract_personas(prd: str) -> list[str]:
    personas = [k.capitalize() for k in _keywords_present(prd, PERSONA_KEYWORDS)]
    return personas or ["End User"]


def extract_functional_summary(prd: str) -> dict:
    features = extract_features(prd)
    return {
        "app_name": extract_app_name(prd),
        "core_purpose": extract_purpose(prd),
        "key_features": features,
        "primary_user_actions": extract_user_actions(prd),
        "platform": infer_platform(prd),
        "technical_requirements": extract_technical_requirements(prd),
        "complexity_level": assess_complexity(len(features)),
        "user_personas": extract_personas(prd),
        "business_goals": ["User engagement", "Task completion", "User satisfaction"],
        "success_metrics": ["User adoption", "Task completion rate", "User satisfaction score"],
    }


def validate_functional_summary(data: dict) -> dict:
    """Fill the gaps of a model-produced summary with safe defaults."""

    def as_list(key, default):
        value = data.get(key)
        return value if isinstance(value, list) else default

    complexity = data.get("complexity_level")
    return {
        "app_name": data.get("app_name") or DEFAULT_APP_NAME,
        "core_purpose": data.get("core_purpose") or "Application purpose",
        "key_features": as_list("key_features", ["Feature 1"]),
        "primary_user_actions": as_list("primary_user_actions", ["Action 1"]),
        "platform": data.get("platform") or "Web Application",
        "technical_requirements": as_list("technical_requirements", ["Requirement 1"]),
        "complexity_level": complexity if complexity in ("low", "medium", "high") else "medium",
        "user_personas": as_list("user_personas", None),
        "business_goals": as_list("business_goals", None),
        "success_metrics": as_list("success_metrics", None),
    }


# ── Phase rules ───────────────────────────────────────────────────────

def classify_scope_by_rules(summary: dict) -> dict:
    features = summary.get("key_features") or []
    complexity = summary.get("complexity_level", "medium")
    many_screens = len(summary.get("primary_user_actions") or []) > 3

    if len(features) <= 2 and not many_screens:
        build_scope = "single_component"
    elif len(features) <= 5 and complexity != "high":
        build_scope = "ui_page"
    else:
        build_scope = "full_app"
    full_app = build_scope == "full_app"

    return {
        "build_scope": build_scope,
        "reason": f"Based on {len(features)} features and {complexity} complexity",
        "expected_outputs": (
            ["design brief", "color palette", "component hierarchy", "screen wireframes"]
            if full_app else ["design tokens", "component specs"]
        ),
        "estimated_screens": max(3, len(features)) if full_app else 1,
        "estimated_components": max(5, len(features) * 2),
        "development_phases": ["Foundation", "Core Features", "Polish"] if full_app else ["Design", "Implementation"],
        "technical_complexity": {"low": "simple", "medium": "moderate", "high": "complex"}.get(complexity, "moderate"),
    }


def detect_gaps(inputs: dict) -> dict:
    """Context gaps are derived from which inputs were supplied; there is no AI variant."""
    def supplied(key: str) -> bool:
        return len(inputs.get(key) or "") > 50

    has_branding = supplied("branding")
    missing = []
    if not has_branding:
        missing += ["visual direction", "brand personality", "color palette"]
    if not supplied("types"):
        missing += ["data structures", "type definitions"]
    if not supplied("component_list"):
        missing += ["component specifications", "UI patterns"]
    missing += ["tone guidance", "accessibility requirements", "interaction patterns"]

    return {
        "missing": missing,
        "recommended_next_action": (
            "Generate comprehensive design brief with AI assistance"
            if len(missing) > 3
            else "Proceed with existing context and fill gaps during design generation"
        ),
        "visual_direction_needed": not has_branding,
        "tone_guidance_needed": True,
        "accessibility_requirements": ["WCAG 2.1 AA compliance", "keyboard navigation", "screen reader support"],
        "interaction_patterns": ["hover states", "loading states", "error handling"],
        "brand_consistency": [] if has_branding else ["color usage", "typography", "spacing"],
    }


def design_brief_by_rules(summary: dict) -> dict:
    features = [f.lower() for f in summary.get("key_features") or []]
    data_focused = any("dashboard" in f or "analytics" in f for f in features)
    consumer = any("social" in f or "community" in f for f in features)
    personas = summary.get("user_personas") or []

    return {
        "theme": "dark" if data_focused else "light",
        "inspiration_sources": [
            {"name": "Modern SaaS", "style": "clean, professional, data-focused"},
            {"name": "Material Design", "style": "accessible, consistent, intuitive"},
            {"name": "Tailwind UI", "style": "utility-first, component-based"},
        ],
        "blended_style": "Clean, modern interface with strong visual hierarchy and consistent spacing",
        "primary_color": "#3B82F6" if consumer else "#6366F1",
        "support_colors": ["#F8FAFC", "#1E293B", "#64748B", "#E2E8F0"],
        "typography": {"heading": "Inter", "body": "Inter", "mono": "JetBrains Mono"},
        "ui_principles": ["clarity", "consistency", "accessibility", "performance"],
        "motion_style": "smooth, purposeful transitions with easing",
        "personality_keywords": ["professional", "clean", "intuitive", "reliable"],
        "emotional_tone": "confident and approachable",
        "target_audience": personas[0] if personas else "professional users",
        "accessibility_focus": ["high contrast", "keyboard navigation", "screen reader support"],
    }


def visual_system_by_rules(brief: dict) -> dict:
    dark = brief.get("theme") == "dark"
    support = brief.get("support_colors") or []
    typography = brief.get("typography") or {}

    return {
        "colors": {
            "primary": brief.get("primary_color", "#6366F1"),
            "secondary": support[1] if len(support) > 1 else "#64748B",
            "accent": support[2] if len(support) > 2 else "#3B82F6",
            "background": "#0F172A" if dark else "#FFFFFF",
            "surface": "#1E293B" if dark else "#F8FAFC",
            "text": "#F8FAFC" if dark else "#0F172A",
            "text_muted": "#94A3B8" if dark else "#64748B",
            "border": "#334155" if dark else "#E2E8F0",
            "success": "#10B981",
            "warning": "#F59E0B",
            "error": "#EF4444",
            "info": "#3B82F6",
        },
        "typography": {
            "font_families": {
                "heading": typography.get("heading", "Inter"),
                "body": typography.get("body", "Inter"),
                "mono": typography.get("mono") or "JetBrains Mono",
            },
            "scale": dict(TYPE_SCALE),
            "weights": dict(FONT_WEIGHTS),
        },
        "spacing": dict(SPACING),
        "radii": dict(RADII),
        "shadows": dict(SHADOWS),
        "motion": {k: dict(v) for k, v in MOTION.items()},
        "breakpoints": dict(BREAKPOINTS),
    }


def screens_from_features(features: list[str]) -> list[dict]:
    screens = [{
        "name": "Home",
        "description": "Main landing screen",
        "purpose": "Provide overview and navigation",
        "components": ["Header", "Navigation", "ContentArea"],
        "layout_type": "single_column",
        "navigation_flow": ["Settings"],
        "user_journey_position": "entry",
    }]
    if any("dashboard" in f.lower() for f in features):
        screens.append({
            "name": "Dashboard",
            "description": "Data overview and analytics",
            "purpose": "Display key metrics and insights",
            "components": ["MetricsCard", "Chart", "DataTable"],
            "layout_type": "dashboard",
            "navigation_flow": ["Home", "Details"],
            "user_journey_position": "main",
        })
    return screens


def components_from_actions(actions: list[str]) -> list[dict]:
    components = [{
        "name": "Button",
        "description": "Primary action button",
        "type": "form",
        "props": [
            {"name": "children", "type": "ReactNode", "required": True, "description": "Button content"},
            {"name": "onClick", "type": "() => void", "required": True, "description": "Click handler"},
        ],
        "interactions": ["click", "hover"],
        "states": ["default", "loading", "disabled"],
        "accessibility_requirements": ["aria-label", "keyboard navigation"],
        "responsive_behavior": "Maintains size across breakpoints",
        "related_components": ["IconButton", "LinkButton"],
    }]
    if any("input" in a.lower() for a in actions):
        components.append({
            "name": "Input",
            "description": "Text input field",
            "type": "form",
            "props": [
                {"name": "value", "type": "string", "required": True, "description": "Input value"},
                {"name": "onChange", "type": "(value: string) => void", "required": True,
                 "description": "Change handler"},
            ],
            "interactions": ["focus", "blur", "input"],
            "states": ["default", "focused", "error", "disabled"],
            "accessibility_requirements": ["aria-label", "aria-invalid"],
            "responsive_behavior": "Full width on mobile",
            "related_components": ["TextArea", "Select"],
        })
    return components


def hierarchy_by_rules(summary: dict) -> dict:
    return {
        "screens": screens_from_features(summary.get("key_features") or []),
        "components": components_from_actions(summary.get("primary_user_actions") or []),
        "design_patterns": ["card-based layout", "progressive disclosure", "responsive grid"],
        "interaction_flows": ["user onboarding", "primary task completion", "error recovery"],
        "state_management": ["React hooks", "local storage", "context API"],
        "data_flow": ["Unidirectional data flow with props and callbacks"],
    }


def implementation_plan_by_rules(summary: dict, hierarchy: dict) -> dict:
    complex_app = summary.get("complexity_level") == "high"
    mobile = "mobile" in (summary.get("platform") or "").lower()

    return {
        "framework": "Next.js",
        "pages": [re.sub(r"\s+", "-", s.get("name", "").lower()) for s in hierarchy.get("screens") or []],
        "state_management": "Zustand" if complex_app else "useState + Context",
        "build_requirements": [
            "TypeScript", "Tailwind CSS", "shadcn/ui",
            "PWA manifest" if mobile else "SEO optimization",
        ],
        "data_persistence": "API + Database" if complex_app else "localStorage",
        "notifications": "Web Push" if mobile else "In-app",
        "authentication": "NextAuth.js" if complex_app else "Simple JWT",
        "api_integration": "tRPC" if complex_app else "REST",
        "deployment_strategy": "Vercel",
        "performance_optimizations": ["Image optimization", "Code splitting", "Lazy loading", "Bundle analysis"],
        "accessibility_implementation": [
            "WCAG 2.1 AA compliance", "Keyboard navigation",
            "Screen reader support", "Color contrast validation",
        ],
        "testing_strategy": ["Jest unit tests", "React Testing Library", "Playwright e2e tests"],
        "monitoring_analytics": ["Vercel Analytics", "Sentry error tracking"],
    }


def design_intent_by_rules(brief: dict, summary: dict) -> dict:
    keywords = ", ".join(brief.get("personality_keywords") or [])
    principles = brief.get("ui_principles") or ["clarity", "consistency", "accessibility"]
    heading_font = (brief.get("typography") or {}).get("heading", "Inter")

    return {
        "visual_philosophy": (
            f"{summary.get('app_name', DEFAULT_APP_NAME)} embodies a {keywords} design approach "
            f"that prioritizes {', '.join(principles)} to create an "
            f"{brief.get('emotional_tone', 'approachable')} user experience."
        ),
        "design_anchors": principles[:3],
        "user_experience_goals": [
            "Intuitive navigation and task completion",
            "Accessible and inclusive design",
            "Consistent and predictable interactions",
        ],
        "brand_alignment": (
            f"Design reflects {keywords} values through {brief.get('primary_color', '#6366F1')} "
            f"primary color and {heading_font} typography."
        ),
        "technical_constraints": ["Mobile-first responsive design", "Performance optimization",
                                  "Cross-browser compatibility"],
        "scalability_considerations": ["Component reusability", "Design token consistency", "Modular architecture"],
        "maintenance_guidelines": ["Follow established design patterns", "Maintain design token usage",
                                   "Regular accessibility audits"],
        "success_criteria": ["User task completion rate > 90%", "Accessibility score > 95", "Performance score > 90"],
    }


# ── Fallback rules keyed by phase id ──────────────────────────────────

RULES = {
    "functional_summary": lambda ctx: extract_functional_summary(ctx.inputs.get("prd", "")),
    "project_scope": lambda ctx: classify_scope_by_rules(ctx.result("functional_summary", {})),
    "design_brief": lambda ctx: design_brief_by_rules(ctx.result("functional_summary", {})),
    "visual_system": lambda ctx: visual_system_by_rules(ctx.result("design_brief", {})),
    "component_hierarchy": lambda ctx: hierarchy_by_rules(ctx.result("functional_summary", {})),
    "implementation_plan": lambda ctx: implementation_plan_by_rules(
        ctx.result("functional_summary", {}), ctx.result("component_hierarchy", {}),
    ),
    "design_intent": lambda ctx: design_intent_by_rules(
        ctx.result("design_brief", {}), ctx.result("functional_summary", {}),
    ),
}


def gaps_step(ctx: StepContext) -> dict:
    return detect_gaps(ctx.inputs)
