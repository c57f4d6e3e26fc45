from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional
import logging
import re

import jinja2
from jinja2 import meta, nodes

from .errors import MalformedTemplate, TemplateMissing, UnresolvedVariable
from .types import Check, OperationSpec, Playbook, RenderedOperation

logger = logging.getLogger(__name__)

UNDEFINED_RE = re.compile(r"'([^']+)' is undefined")
# Filters and tests that accept an undefined variable under StrictUndefined.
OPTIONAL_FILTERS = {"default", "d"}
OPTIONAL_TESTS = {"defined", "undefined"}


class Renderer:
    """Expands a playbook's templated fields against a set of variable bindings.

    Rendering is pure: it reads template sources from the control host but never
    touches a managed host, so every error surfaces before any side effect.
    """

    def __init__(self, template_dirs: Iterable[Path] = ()):
        self.template_dirs = [Path(d) for d in template_dirs]

    def render(self, playbook: Playbook, bindings: Mapping[str, Any]) -> list[RenderedOperation]:
        frozen = MappingProxyType(dict(bindings))
        env = self._environment(playbook)
        rendered: list[RenderedOperation] = []
        for index, spec in enumerate(playbook.operations):
            rendered.append(self._render_operation(env, index, spec, frozen))
        logger.debug("playbook=%s rendered=%d operations", playbook.name, len(rendered))
        return rendered

    def _environment(self, playbook: Playbook) -> jinja2.Environment:
        search = []
        if playbook.source_dir is not None:
            search.append(playbook.source_dir / "templates")
        search.extend(self.template_dirs)
        return jinja2.Environment(
            loader=jinja2.FileSystemLoader([str(path) for path in search]),
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def _render_operation(
        self,
        env: jinja2.Environment,
        index: int,
        spec: OperationSpec,
        bindings: Mapping[str, Any],
    ) -> RenderedOperation:
        label = f"operations[{index}]"
        name = self._render_text(env, spec.name, bindings, f"{label}.name")
        data = self._render_value(env, spec.data, bindings, f"{label}")
        if spec.type == "template":
            data["content"] = self._render_source(env, str(data.get("src", "")), bindings, f"{label}.src")
        guard = self._render_check(env, spec.guard, bindings, f"{label}.guard") if spec.guard else None
        return RenderedOperation(
            index=index,
            name=name,
            type=spec.type,
            data=data,
            guard=guard,
            on_failure=spec.on_failure,
        )

    def _render_check(
        self, env: jinja2.Environment, check: Check, bindings: Mapping[str, Any], field: str
    ) -> Check:
        params = self._render_value(env, check.params, bindings, field)
        if check.kind == "all":
            params["checks"] = [
                self._render_check(env, nested, bindings, f"{field}.checks[{pos}]")
                for pos, nested in enumerate(check.params.get("checks", []))
            ]
        return Check(kind=check.kind, params=params, negate=check.negate)

    def _render_value(self, env: jinja2.Environment, value: Any, bindings: Mapping[str, Any], field: str) -> Any:
        if isinstance(value, str):
            return self._render_text(env, value, bindings, field)
        if isinstance(value, dict):
            result: dict[str, Any] = {}
            for key, item in value.items():
                # Loader metadata such as _playbook_dir is never templated.
                if key.startswith("_") or isinstance(item, Check):
                    result[key] = item
                else:
                    result[key] = self._render_value(env, item, bindings, f"{field}.{key}")
            return result
        if isinstance(value, (list, tuple)):
            return [self._render_value(env, item, bindings, f"{field}[{pos}]") for pos, item in enumerate(value)]
        return value

    def _render_text(self, env: jinja2.Environment, text: str, bindings: Mapping[str, Any], field: Optional[str]) -> str:
        if "{" not in text:
            return text
        try:
            template = env.from_string(text)
        except jinja2.TemplateSyntaxError as exc:
            raise MalformedTemplate(exc.message or str(exc), field=field, line=exc.lineno) from None
        self._check_bindings(env, text, bindings, field)
        return self._run(template, bindings, field)

    def _render_source(self, env: jinja2.Environment, source: str, bindings: Mapping[str, Any], field: str) -> str:
        if not source:
            raise MalformedTemplate("template operation has no src", field=field)
        try:
            template = env.get_template(source)
        except jinja2.TemplateNotFound:
            raise TemplateMissing(source, field=field) from None
        except jinja2.TemplateSyntaxError as exc:
            raise MalformedTemplate(exc.message or str(exc), field=source, line=exc.lineno) from None
        if template.filename:
            self._check_bindings(env, Path(template.filename).read_text(), bindings, source)
        return self._run(template, bindings, source)

    @staticmethod
    def _check_bindings(env: jinja2.Environment, text: str, bindings: Mapping[str, Any], field: Optional[str]) -> None:
        ast = env.parse(text)
        declared = set(bindings) | set(env.globals) | _optional_names(ast)
        missing = sorted(meta.find_undeclared_variables(ast) - declared)
        if missing:
            raise UnresolvedVariable(missing[0], field=field)

    @staticmethod
    def _run(template: jinja2.Template, bindings: Mapping[str, Any], field: Optional[str]) -> str:
        try:
            return template.render(**bindings)
        except jinja2.UndefinedError as exc:
            match = UNDEFINED_RE.search(str(exc))
            raise UnresolvedVariable(match.group(1) if match else str(exc), field=field) from None


def _optional_names(ast: nodes.Template) -> set[str]:
    names = set()
    for node in ast.find_all((nodes.Filter, nodes.Test)):
        allowed = OPTIONAL_FILTERS if isinstance(node, nodes.Filter) else OPTIONAL_TESTS
        if node.name in allowed and isinstance(node.node, nodes.Name):
            names.add(node.node.name)
    return names
