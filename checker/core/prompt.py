from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from checker.errors import ConfigurationError
from config.settings import Settings


CHECKLIST_PLACEHOLDER = "{checklist}"


@dataclass(frozen=True)
class PromptVariant:
    """Preamble wording and the heading used for the attached source code."""

    name: str
    preamble: str
    source_heading: str

    def render_preamble(self, checklist: str) -> str:
        return self.preamble.replace(CHECKLIST_PLACEHOLDER, checklist)


JA_PREAMBLE = (
    "あなたはウェブアプリ開発におけるセキュリティの専門家です。"
    "以下の {# チェックリスト} を参考にし、セキュリティ上の問題点を指摘してください。"
    "問題点がある場合は、修正案も提示してください。\n\n"
    "# チェックリスト\n\n"
    f"{CHECKLIST_PLACEHOLDER}"
)

EN_PREAMBLE = (
    "You are a security expert in web application development. "
    "Using the {# Checklist} below as a reference, point out any security issues. "
    "If there are issues, also propose fixes.\n\n"
    "# Checklist\n\n"
    f"{CHECKLIST_PLACEHOLDER}"
)

PROMPT_VARIANTS: Dict[str, PromptVariant] = {
    "ja": PromptVariant(name="ja", preamble=JA_PREAMBLE, source_heading="# ソース コード"),
    "en": PromptVariant(name="en", preamble=EN_PREAMBLE, source_heading="# Source Code"),
}


def load_template_file(path: str, base: PromptVariant) -> PromptVariant:
    try:
        with open(path, encoding="utf-8") as f:
            template = f.read()
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read preamble template: {path}", details={"path": path}
        ) from exc

    if CHECKLIST_PLACEHOLDER not in template:
        raise ConfigurationError(
            f"Preamble template {path} has no {CHECKLIST_PLACEHOLDER} placeholder",
            details={"path": path},
        )
    return PromptVariant(name=path, preamble=template, source_heading=base.source_heading)


def get_prompt_variant(name: str, template_file: Optional[str] = None) -> PromptVariant:
    """Resolve a built-in variant, optionally overriding its preamble from a file.

    The variant still supplies the source-code heading when a template file
    replaces the preamble.
    """
    variant = PROMPT_VARIANTS.get(name)
    if variant is None:
        raise ConfigurationError(
            f"Unknown prompt variant: {name}. Available: {sorted(PROMPT_VARIANTS)}",
            details={"variant": name},
        )
    if template_file:
        return load_template_file(template_file, variant)
    return variant


def load_prompt_variant(settings: Settings) -> PromptVariant:
    return get_prompt_variant(settings.prompt_variant, settings.preamble_template_file)
