"""Classification of backend failure text.

iptables has no machine-readable error channel: a failed call leaves an
exit status and free-form stderr. Whether a failure means "the chain or
rule is not there" is decided here, by substring search against a phrase
table that ships as ``iptkit/data/phrases.yaml`` and can be replaced
through the ``phrases_file`` setting. The text test here is pure;
``BackendError.is_not_exist`` additionally requires exit status 1, since
parameter problems (status 2) can quote the same phrases.
"""

import re
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Optional, Pattern

import yaml
from pydantic import BaseModel, PrivateAttr, ValidationError, field_validator

from iptkit.core.exceptions import ConfigurationError


class PhraseTable(BaseModel):
    """Versioned set of known backend phrasings."""

    version: int
    lock_warnings: list[str] = []
    not_exist: list[str]

    _lock_pattern: Optional[Pattern[str]] = PrivateAttr(default=None)

    @field_validator("lock_warnings")
    @classmethod
    def validate_lock_warnings(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid lock warning pattern {pattern!r}: {e}") from e
        return v

    @field_validator("not_exist")
    @classmethod
    def validate_not_exist(cls, v: list[str]) -> list[str]:
        if not v or any(not phrase for phrase in v):
            raise ValueError("not_exist must list at least one non-empty phrase")
        return v

    def model_post_init(self, __context: object) -> None:
        if self.lock_warnings:
            alternatives = "|".join(f"(?:{p})" for p in self.lock_warnings)
            self._lock_pattern = re.compile(f"^(?:{alternatives})+")

    @property
    def lock_pattern(self) -> Optional[Pattern[str]]:
        """Pattern matching a run of leading lock warnings."""
        return self._lock_pattern


def load_phrase_table(path: Path) -> PhraseTable:
    """Load a phrase table from a YAML file.

    Args:
        path: YAML file with version, lock_warnings and not_exist keys

    Returns:
        Parsed phrase table

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Phrase table not found: {path}",
            hint="Fix phrases_file in the configuration or remove it to use the bundled table",
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in phrase table: {path}",
            details=[str(e)],
        ) from e

    return _build_table(data, str(path))


@lru_cache(maxsize=1)
def default_phrase_table() -> PhraseTable:
    """Get the phrase table bundled with the package."""
    text = resources.files("iptkit").joinpath("data/phrases.yaml").read_text()
    return _build_table(yaml.safe_load(text), "bundled phrases.yaml")


def _build_table(data: object, source: str) -> PhraseTable:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid phrase table: {source} must contain a mapping")
    try:
        return PhraseTable(**data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid phrase table: {source}",
            details=[str(e)],
        ) from e


def strip_lock_warnings(text: str, phrases: Optional[PhraseTable] = None) -> str:
    """Remove leading xtables lock-contention warnings from backend output.

    Args:
        text: Raw stderr text
        phrases: Phrase table (bundled table if None)

    Returns:
        The text without its leading lock warnings
    """
    pattern = (phrases or default_phrase_table()).lock_pattern
    if pattern is None:
        return text
    return pattern.sub("", text, count=1)


def is_not_exist(text: str, phrases: Optional[PhraseTable] = None) -> bool:
    """Check whether backend failure text means a missing chain or rule.

    Args:
        text: Raw stderr text
        phrases: Phrase table (bundled table if None)

    Returns:
        True if a known not-exists phrase follows any lock warnings
    """
    table = phrases or default_phrase_table()
    remainder = strip_lock_warnings(text, table)
    return any(phrase in remainder for phrase in table.not_exist)
