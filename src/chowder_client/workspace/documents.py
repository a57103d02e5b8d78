"""Workspace documents: IDENTITY.md and USER.md.

The gateway's workspace files are authoritative; these records are the
client-side cache. Both use the same markdown subset, one field per line:

    - **Name:** Chowder
    * **Vibe:** warm
    **Emoji:** 🦦

USER.md additionally carries a free-form ``## Context`` section that runs to
the end of the file.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from pydantic import BaseModel

IDENTITY_FILENAME = "IDENTITY.md"
PROFILE_FILENAME = "USER.md"


def _extract_value(line: str, label: str) -> str | None:
    """Value of a ``- **Label:** value`` line, or None if the line is another field."""
    trimmed = line.strip()
    for prefix in (f"- **{label}:**", f"* **{label}:**", f"**{label}:**"):
        if trimmed.startswith(prefix):
            return trimmed[len(prefix) :].strip()
    return None


class WorkspaceDocument(BaseModel):
    """Base for the key-value workspace documents."""

    FILENAME: ClassVar[str]
    # (field name, markdown label), in file order
    FIELDS: ClassVar[tuple[tuple[str, str], ...]]

    @classmethod
    def _parse_fields(cls, lines: list[str]) -> dict[str, str]:
        values: dict[str, str] = {}
        for line in lines:
            for field_name, label in cls.FIELDS:
                value = _extract_value(line, label)
                if value is not None:
                    values[field_name] = value
                    break
        return values

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WorkspaceDocument:
        """Build from a mapping keyed by field names or markdown labels (any case)."""
        lookup: dict[str, str] = {}
        for field_name, label in cls.FIELDS:
            lookup[field_name.lower()] = field_name
            lookup[label.lower()] = field_name
        values = {}
        for key, value in data.items():
            field_name = lookup.get(str(key).strip().lower())
            if field_name is not None and value is not None:
                values[field_name] = str(value).strip()
        return cls(**values)

    def _field_lines(self) -> str:
        return "\n".join(f"- **{label}:** {getattr(self, field_name)}" for field_name, label in self.FIELDS)

    def is_empty(self) -> bool:
        return not any(getattr(self, field_name) for field_name in type(self).model_fields)


class IdentityRecord(WorkspaceDocument):
    """The agent's identity (IDENTITY.md)."""

    FILENAME: ClassVar[str] = IDENTITY_FILENAME
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("name", "Name"),
        ("creature", "Creature"),
        ("vibe", "Vibe"),
        ("emoji", "Emoji"),
        ("avatar", "Avatar"),
    )

    name: str = ""
    creature: str = ""
    vibe: str = ""
    emoji: str = ""
    avatar: str = ""  # workspace-relative path, URL, or data URI

    @classmethod
    def from_markdown(cls, markdown: str) -> IdentityRecord:
        return cls(**cls._parse_fields(markdown.splitlines()))

    def to_markdown(self) -> str:
        return (
            "# IDENTITY.md - Who Am I?\n"
            "\n"
            f"{self._field_lines()}\n"
            "\n"
            "This isn't just metadata. It's the start of figuring out who you are.\n"
        )


class ProfileRecord(WorkspaceDocument):
    """What the agent knows about its user (USER.md)."""

    FILENAME: ClassVar[str] = PROFILE_FILENAME
    FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("name", "Name"),
        ("call_name", "What to call them"),
        ("pronouns", "Pronouns"),
        ("timezone", "Timezone"),
        ("notes", "Notes"),
    )

    name: str = ""
    call_name: str = ""
    pronouns: str = ""
    timezone: str = ""
    notes: str = ""
    context: str = ""

    @classmethod
    def from_markdown(cls, markdown: str) -> ProfileRecord:
        lines = markdown.splitlines()
        field_lines = lines
        context_lines: list[str] = []
        for index, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith("## Context") or stripped.startswith("# Context"):
                field_lines = lines[:index]
                context_lines = lines[index + 1 :]
                break

        values = cls._parse_fields(field_lines)
        values["context"] = "\n".join(context_lines).strip()
        return cls(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProfileRecord:
        profile = super().from_mapping(data)
        context = data.get("context", data.get("Context"))
        if context:
            profile.context = str(context).strip()
        return profile

    def to_markdown(self) -> str:
        markdown = f"# USER.md - About Your Human\n\n{self._field_lines()}\n\n## Context\n\n"
        if self.context:
            markdown += f"{self.context}\n"
        return markdown
