"""Typed page/block graph for persisted IVR scripts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from outreach.core.errors import ScriptValidationError
from outreach.services.ivr.validator import validate_script


class Option(BaseModel):
    """Answer choice of a block."""

    model_config = ConfigDict(extra="allow")

    value: str = ""
    next: str | None = None
    content: str | None = None

    @field_validator("value", "next", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> Any:
        """Scripts store numeric DTMF values as numbers."""
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v


class Block(BaseModel):
    """One prompt in a page: spoken or recorded audio plus optional options."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    type: str | None = None
    title: str | None = None
    content: str | None = None
    audio_file: str | None = Field(default=None, alias="audioFile")
    options: list[Option] = Field(default_factory=list)

    @property
    def is_recorded(self) -> bool:
        return self.type == "recorded"

    @property
    def audio(self) -> str:
        """Text to speak, or the stored file name for recorded blocks."""
        return self.audio_file or self.content or ""


class Page(BaseModel):
    """Ordered list of block ids."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    title: str | None = None
    blocks: list[str] = Field(default_factory=list)
    speech_type: str | None = Field(default=None, alias="speechType")
    say: str | None = None


class Script(BaseModel):
    """Parsed script document. Page order is the document's key order."""

    pages: dict[str, Page]
    blocks: dict[str, Block]

    @property
    def page_ids(self) -> list[str]:
        return list(self.pages)

    def first_location(self) -> tuple[str, str] | None:
        """First block of the first page that has any blocks."""
        for page_id, page in self.pages.items():
            if page.blocks:
                return page_id, page.blocks[0]
        return None

    def find_page_by_title(self, title: str) -> tuple[str, Page] | None:
        wanted = title.strip().casefold()
        for page_id, page in self.pages.items():
            if (page.title or "").strip().casefold() == wanted:
                return page_id, page
        return None


def parse_script(steps: dict[str, Any] | None) -> Script:
    """Parse a raw script document without checking graph integrity.

    Raises:
        ScriptValidationError: If the document does not have the expected shape.
    """
    if not steps:
        raise ScriptValidationError(['Missing "pages" property', 'Missing "blocks" property'])
    try:
        return Script.model_validate(steps)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ScriptValidationError(errors) from e


def load_script(steps: dict[str, Any] | None) -> Script:
    """Validate a raw script document and return the typed graph.

    Raises:
        ScriptValidationError: If validation reports any error.
    """
    report = validate_script(steps)
    if not report.is_valid:
        raise ScriptValidationError(report.errors, report.warnings)
    return parse_script(steps)


__all__ = ["Block", "Option", "Page", "Script", "load_script", "parse_script"]
