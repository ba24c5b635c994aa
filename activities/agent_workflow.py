"""
Agent workflow (build-app) — scaffolds an application from a description.

    project-setup ─┬─ gather-requirements
                   └─ generate-context → compile-prd ─┬─ generate-types ───┐
                                                      └─ generate-branding ┴─ plan-components
    plan-components → generate-components ─┬─ quality-check ─────────┬─ final-review
                                           └─ generate-documentation ┘

Generator steps produce files under the project directory. Each has a
template rule as fallback; the rule builds the content and the registered
fallback writes it, so a run without connectivity still leaves a complete
(if generic) scaffold.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Callable

from activities import design_rules
from models.errors import GeneratorError, QualityCheckError
from models.schemas import StepContext, StepDescriptor
from utils.providers import ProviderChain, get_provider_chain
from workflows.fallback import FallbackStrategy

log = logging.getLogger(__name__)

PIPELINE_NAME = "build-app"

CONTEXT_FILE = "context/project-context.md"
PRD_FILE = "context/prd.md"
TYPES_FILE = "src/types/index.ts"
BRANDING_FILE = "context/branding.json"
DOCS_FILE = "docs/components.md"
COMPONENTS_DIR = "src/components"

_PASCAL = re.compile(r"^[A-Z][A-Za-z0-9]*$")


# ── Helpers ───────────────────────────────────────────────────────────

def write_artifacts(project_path: str, files: dict[str, str]) -> list[str]:
    """Write generated files relative to the project; returns the written paths."""
    root = Path(project_path)
    written = []
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        written.append(rel)
    return written


def _materialize(produce: Callable[[StepContext], dict]) -> Callable[[StepContext], dict]:
    """Wrap a producer of {"files": {...}, ...} so its files land on disk."""
    def run(ctx: StepContext) -> dict:
        result = produce(ctx)
        files = result.pop("files", {})
        result["written"] = write_artifacts(ctx.project_path, files)
        result["contents"] = files
        return result
    return run


def _content(ctx: StepContext, step_id: str, rel: str) -> str:
    return (ctx.result(step_id) or {}).get("contents", {}).get(rel, "")


def _pascal(name: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", name)
    result = "".join(w[:1].upper() + w[1:] for w in words)
    return result if result[:1].isalpha() else f"Component{result}"


def _description(ctx: StepContext) -> str:
    text = ctx.inputs.get("description", "")
    requirements = ctx.inputs.get("requirements")
    if requirements:
        text += f"\n\nRequirements:\n{requirements}"
    return text


# ── Local steps ───────────────────────────────────────────────────────

def project_setup(ctx: StepContext) -> dict:
    root = Path(ctx.project_path)
    created = []
    for rel in ("context", "docs", COMPONENTS_DIR, "src/types"):
        (root / rel).mkdir(parents=True, exist_ok=True)
        created.append(rel)
    log.info("Project scaffold ready at %s", root)
    return {
        "project_name": ctx.inputs.get("project_name") or root.name,
        "framework": ctx.inputs.get("framework", "nextjs"),
        "directories": created,
    }


def gather_requirements(ctx: StepContext) -> dict:
    lines = [ln.strip(" -*•\t") for ln in (ctx.inputs.get("requirements") or "").splitlines()]
    return {"requirements": [ln for ln in lines if ln]}


def quality_check(ctx: StepContext) -> dict:
    generated = (ctx.result("generate-components") or {}).get("written", [])
    root = Path(ctx.project_path)
    issues = []
    for rel in generated:
        path = root / rel
        if not path.exists() or not path.read_text().strip():
            issues.append(f"{rel}: missing or empty")
            continue
        stem = path.name.split(".")[0]
        if not _PASCAL.match(stem):
            issues.append(f"{rel}: component file name is not PascalCase")
    if not generated:
        issues.append("no component files were generated")
    if issues:
        raise QualityCheckError(f"Quality check failed: {'; '.join(issues)}", {"issues": issues})
    return {"passed": True, "checked": len(generated), "standards": ["typescript", "react", "accessibility"]}


def final_review(ctx: StepContext) -> dict:
    written = []
    for step_id in ("generate-context", "compile-prd", "generate-types", "generate-branding",
                    "generate-components", "generate-documentation"):
        written += (ctx.result(step_id) or {}).get("written", [])
    return {
        "approved": True,
        "files": written,
        "quality": ctx.result("quality-check") or {"passed": None},
    }


# ── Template rules (fallbacks) ────────────────────────────────────────

def context_by_rules(ctx: StepContext) -> dict:
    name = ctx.inputs.get("project_name") or Path(ctx.project_path).name
    body = (
        f"# {name}\n\n"
        f"## Purpose\n\n{ctx.inputs.get('description', '')}\n\n"
        "## Features\n\n"
        + "".join(f"- {r} feature\n" for r in gather_requirements(ctx)["requirements"])
        + "\n## Users\n\nEnd users of the application.\n"
    )
    return {"files": {CONTEXT_FILE: body}}


def prd_by_rules(ctx: StepContext) -> dict:
    context = _content(ctx, "generate-context", CONTEXT_FILE) or _description(ctx)
    return {"files": {PRD_FILE: f"# Product Requirements\n\n{context}\n"}}


def types_by_rules(ctx: StepContext) -> dict:
    summary = design_rules.extract_functional_summary(_content(ctx, "compile-prd", PRD_FILE))
    lines = ["export interface AppConfig {", f'  name: "{summary["app_name"]}";', "}", ""]
    lines += ["export interface User {", "  id: string;", "  name: string;", "  email: string;", "}", ""]
    return {"files": {TYPES_FILE: "\n".join(lines)}}


def branding_by_rules(ctx: StepContext) -> dict:
    summary = design_rules.extract_functional_summary(_content(ctx, "compile-prd", PRD_FILE))
    brief = design_rules.design_brief_by_rules(summary)
    tokens = design_rules.visual_system_by_rules(brief)
    return {"files": {BRANDING_FILE: json.dumps({"brief": brief, "tokens": tokens}, indent=2)}}


def plan_by_rules(ctx: StepContext) -> dict:
    summary = design_rules.extract_functional_summary(_content(ctx, "compile-prd", PRD_FILE))
    hierarchy = design_rules.hierarchy_by_rules(summary)
    names = []
    for screen in hierarchy["screens"]:
        names += screen["components"]
    names += [c["name"] for c in hierarchy["components"]]
    return {"components": list(dict.fromkeys(_pascal(n) for n in names))}


def component_template(name: str) -> str:
    return (
        'import React from "react";\n\n'
        f"export interface {name}Props {{\n  className?: string;\n}}\n\n"
        f"export function {name}({{ className }}: {name}Props) {{\n"
        f'  return <div className={{className}} data-component="{name}">{name}</div>;\n'
        "}\n"
    )


def component_test_template(name: str) -> str:
    return (
        'import { render, screen } from "@testing-library/react";\n'
        f'import {{ {name} }} from "./{name}";\n\n'
        f'test("renders {name}", () => {{\n'
        f"  render(<{name} />);\n"
        f'  expect(screen.getByText("{name}")).toBeInTheDocument();\n'
        "});\n"
    )


def components_by_rules(ctx: StepContext) -> dict:
    files = {}
    for name in (ctx.result("plan-components") or {}).get("components", []):
        files[f"{COMPONENTS_DIR}/{name}.tsx"] = component_template(name)
        if ctx.inputs.get("with_tests"):
            files[f"{COMPONENTS_DIR}/{name}.test.tsx"] = component_test_template(name)
    return {"files": files}


def docs_by_rules(ctx: StepContext) -> dict:
    components = (ctx.result("plan-components") or {}).get("components", [])
    body = "# Components\n\n" + "".join(f"## {c}\n\nSee `{COMPONENTS_DIR}/{c}.tsx`.\n\n" for c in components)
    return {"files": {DOCS_FILE: body}}


# ── Generator steps ───────────────────────────────────────────────────

class _Generators:
    """Provider-backed step bodies; each returns the same shape as its rule."""

    def __init__(self, chain_factory: Callable[[], ProviderChain]):
        self.chain_factory = chain_factory

    def _text(self, prompt: str) -> str:
        return self.chain_factory().generate(prompt, temperature=0.4, max_tokens=2000)

    def _json(self, prompt: str) -> dict:
        return self.chain_factory().generate_json(prompt, temperature=0.3, max_tokens=4000)

    def context(self, ctx: StepContext) -> dict:
        text = self._text(
            "Write a project context document in Markdown (purpose, features, users, "
            f"constraints) for this application:\n\n{_description(ctx)}"
        )
        return {"files": {CONTEXT_FILE: text}}

    def prd(self, ctx: StepContext) -> dict:
        text = self._text(
            "Compile a Product Requirements Document in Markdown from this context. "
            "Start with a '# <App Name>' title and include a Purpose line and a feature list.\n\n"
            + _content(ctx, "generate-context", CONTEXT_FILE)
        )
        return {"files": {PRD_FILE: text}}

    def types(self, ctx: StepContext) -> dict:
        text = self._text(
            "Generate TypeScript type definitions (interfaces only, no prose) for this PRD:\n\n"
            + _content(ctx, "compile-prd", PRD_FILE)
        )
        return {"files": {TYPES_FILE: text}}

    def branding(self, ctx: StepContext) -> dict:
        data = self._json(
            "Create a brand kit as JSON with keys brief (theme, primary_color, typography, "
            "personality_keywords) and tokens (colors, spacing, radii) for this PRD:\n\n"
            + _content(ctx, "compile-prd", PRD_FILE)
        )
        return {"files": {BRANDING_FILE: json.dumps(data, indent=2)}}

    def plan(self, ctx: StepContext) -> dict:
        data = self._json(
            'Plan the React component architecture. Return JSON {"components": ["PascalCaseName", ...]}.\n\n'
            f"Types:\n{_content(ctx, 'generate-types', TYPES_FILE)}\n\n"
            f"Branding:\n{_content(ctx, 'generate-branding', BRANDING_FILE)}"
        )
        names = data.get("components")
        if not isinstance(names, list) or not names:
            raise GeneratorError("Component plan is empty")
        return {"components": list(dict.fromkeys(_pascal(str(n)) for n in names))}

    def components(self, ctx: StepContext) -> dict:
        names = (ctx.result("plan-components") or {}).get("components", [])
        with_tests = bool(ctx.inputs.get("with_tests"))
        data = self._json(
            "Generate production-ready React + TypeScript components. Return JSON "
            '{"files": {"<Name>.tsx": "<code>"' + (', "<Name>.test.tsx": "<code>"' if with_tests else "")
            + "}}.\n\nComponents: " + ", ".join(names)
        )
        files = data.get("files")
        if not isinstance(files, dict) or not files:
            raise GeneratorError("No component files in response")
        return {"files": {f"{COMPONENTS_DIR}/{Path(k).name}": str(v) for k, v in files.items()}}

    def docs(self, ctx: StepContext) -> dict:
        names = (ctx.result("plan-components") or {}).get("components", [])
        text = self._text("Write Markdown documentation (one section per component) for: " + ", ".join(names))
        return {"files": {DOCS_FILE: text}}


def build_agent_steps(options: dict | None = None, chain: ProviderChain | None = None) -> list[StepDescriptor]:
    """The build-app step graph. ``options`` are the run inputs (interactive, skip_validation...)."""
    options = options or {}
    interactive = bool(options.get("interactive"))
    gen = _Generators((lambda: chain) if chain is not None else get_provider_chain)

    return [
        StepDescriptor("project-setup", project_setup, "Project Setup", allow_fallback=False),
        StepDescriptor(
            "gather-requirements", gather_requirements, "Gather Requirements",
            depends_on={"project-setup"}, required=interactive,
            skip=lambda ctx: not ctx.inputs.get("requirements"),
        ),
        StepDescriptor("generate-context", _materialize(gen.context), "Generate Context Files",
                       depends_on={"project-setup"}),
        StepDescriptor("compile-prd", _materialize(gen.prd), "Compile PRD",
                       depends_on={"generate-context"}),
        StepDescriptor("generate-types", _materialize(gen.types), "Generate Types",
                       depends_on={"compile-prd"}),
        StepDescriptor("generate-branding", _materialize(gen.branding), "Generate Branding",
                       depends_on={"compile-prd"}),
        StepDescriptor("plan-components", gen.plan, "Plan Components",
                       depends_on={"generate-types", "generate-branding"}),
        StepDescriptor("generate-components", _materialize(gen.components), "Generate Components",
                       depends_on={"plan-components"}),
        StepDescriptor(
            "quality-check", quality_check, "Quality Assurance",
            depends_on={"generate-components"}, allow_fallback=False,
            skip=lambda ctx: bool(ctx.inputs.get("skip_validation")),
        ),
        StepDescriptor("generate-documentation", _materialize(gen.docs), "Generate Documentation",
                       depends_on={"generate-components"}),
        StepDescriptor(
            "final-review", final_review, "Final Review",
            depends_on={"quality-check", "generate-documentation"},
            required=interactive, retryable=False, allow_fallback=False,
            skip=lambda ctx: not ctx.inputs.get("interactive"),
        ),
    ]


def agent_fallbacks() -> FallbackStrategy:
    return FallbackStrategy({
        "generate-context": _materialize(context_by_rules),
        "compile-prd": _materialize(prd_by_rules),
        "generate-types": _materialize(types_by_rules),
        "generate-branding": _materialize(branding_by_rules),
        "plan-components": plan_by_rules,
        "generate-components": _materialize(components_by_rules),
        "generate-documentation": _materialize(docs_by_rules),
    })
