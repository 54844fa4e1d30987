"""App generator — asks Claude for a Next.js scaffold and parses the file list."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from src.errors import GenerationFormatError, SankaError
from src.tools.archive import GeneratedFile, encoding_for, file_from_bytes, normalize_path

logger = logging.getLogger("sanka")

SCAFFOLD_SYSTEM_PROMPT = """You are a Next.js 14 scaffold generator.
You must ONLY output a single JSON object that strictly follows this schema:

{"files": [{"path": string, "content": string}]}

Rules:
- Output ONLY valid JSON. No comments, no explanations, no markdown fences.
- Only generate files inside app/[route]/page.tsx and components/[...].tsx.
- Use TypeScript (.tsx) and Tailwind CSS in all components and pages.
- Do NOT generate config files (tailwind.config.js, tsconfig.json, package.json, ...).
- If any file uses React hooks or event handlers, its first line must be "use client" (with the double quotes).
- All components must be valid functional React components that compile without syntax errors.
- Paths are relative to the project root and never start with "/" or contain "..".
- Images, if any, must carry base64 content and "encoding": "base64"."""

USER_PROMPT = """Generate a fully working Next.js 14 app with Tailwind CSS named "{name}".
It should include at least:
- app/page.tsx with basic UI related to {name}
- components/ directory for modular UI
- utils/ directory if needed
Return a JSON with "files": [{{"path": "file path", "content": "file content"}}]"""

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def build_model(api_key: str, model: str) -> ChatAnthropic:
    """Deterministic Claude client used for scaffolding."""
    return ChatAnthropic(model=model, api_key=api_key, temperature=0, max_tokens=8192)


class AppGenerator:
    """Turns an app name into an ordered list of :class:`GeneratedFile`.

    With *template_dir* set the generated files are laid over the files of
    that directory (generated files win on collision) and the merged tree is
    returned; otherwise only the generated files are returned.
    """

    def __init__(self, model: ChatAnthropic, template_dir: str | None = None) -> None:
        self.model = model
        self.template_dir = template_dir or None

    async def generate(self, app_name: str) -> list[GeneratedFile]:
        response = await self.model.ainvoke(
            [
                SystemMessage(content=SCAFFOLD_SYSTEM_PROMPT),
                HumanMessage(content=USER_PROMPT.format(name=app_name)),
            ]
        )
        files = self._extract_files(_message_text(response.content))
        logger.info("Generated %d files for %r", len(files), app_name)
        if self.template_dir:
            return await asyncio.to_thread(overlay_template, self.template_dir, files)
        return files

    def _extract_files(self, text: str) -> list[GeneratedFile]:
        """Parse the ``files`` array out of the model response."""
        text = text.strip()
        # Strip markdown fences if present
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        match = JSON_OBJECT_PATTERN.search(text)
        if not match:
            raise GenerationFormatError("No valid JSON object found in response")
        try:
            config = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise GenerationFormatError(f"Invalid JSON in response: {e.msg}") from e

        if not isinstance(config, dict) or not isinstance(config.get("files"), list):
            raise GenerationFormatError("Invalid response: files is not an array")

        files: list[GeneratedFile] = []
        seen: dict[str, int] = {}
        for entry in config["files"]:
            f = _to_generated_file(entry)
            # A later entry for the same path replaces the earlier one
            if f.path in seen:
                files[seen[f.path]] = f
            else:
                seen[f.path] = len(files)
                files.append(f)
        return files


def _to_generated_file(entry: Any) -> GeneratedFile:
    if not isinstance(entry, dict):
        raise GenerationFormatError("Invalid response: file entry is not an object")
    path, content = entry.get("path"), entry.get("content")
    if not isinstance(path, str) or not isinstance(content, str):
        raise GenerationFormatError("Invalid response: file entry needs string path and content")
    clean = normalize_path(path)
    if clean is None:
        raise GenerationFormatError(f"Invalid response: path {path!r} escapes the project root")

    encoding = encoding_for(clean)
    if encoding == "base64":
        try:
            base64.b64decode(content, validate=True)
        except ValueError as e:
            raise GenerationFormatError(f"Invalid response: {clean} is not valid base64") from e
    return GeneratedFile(clean, content, encoding)


def _message_text(content: Any) -> str:
    """Flatten Anthropic content blocks into plain text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def read_tree(root: str) -> list[GeneratedFile]:
    """Read every file under *root* as a :class:`GeneratedFile`, sorted by path."""
    files: list[GeneratedFile] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in (".git", "node_modules", ".next")]
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            with open(full, "rb") as fh:
                files.append(file_from_bytes(rel, fh.read()))
    files.sort(key=lambda f: f.path)
    return files


def overlay_template(template_dir: str, generated: list[GeneratedFile]) -> list[GeneratedFile]:
    """Merge *generated* over the template tree at *template_dir*."""
    if not os.path.isdir(template_dir):
        raise SankaError(f"Template directory not found: {template_dir}")
    merged = {f.path: f for f in read_tree(template_dir)}
    for f in generated:
        merged[f.path] = f
    return [merged[path] for path in sorted(merged)]
