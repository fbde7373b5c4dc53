"""
Transient domain shapes produced by the language-model adapters.

These are never persisted; the gateway consumes them immediately.
"""

from dataclasses import dataclass, field


@dataclass(slots=True)
class ExtractionResult:
    """Structured fields pulled out of a free-text note."""

    name: str | None = None
    phone_number: str | None = None
    email: str | None = None
    description: str | None = None
    source: str = "model"  # "model" or "fallback"

    @property
    def used_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass(slots=True)
class LabelSuggestion:
    """Label names proposed by the model for a description."""

    existing_label_names: list[str] = field(default_factory=list)
    new_label_names: list[str] = field(default_factory=list)
