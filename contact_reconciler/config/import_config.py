"""
Import configuration for directory imports.

Controls duplicate handling, record selection and tag rewriting for a
single import job. Configuration can be supplied as a dictionary (camelCase
or snake_case keys) or as a JSON file:

    {
        "skipDuplicates": true,
        "updateExisting": false,
        "selectedExternalIds": ["people/c123", "people/c456"],
        "tagMapping": {"myContacts": "personal"},
        "excludeTags": ["starred"],
        "preserveOriginalTags": false,
        "folderFilter": "AAMkAGI2..."
    }

Notes:
    - skipDuplicates and updateExisting are required; everything else is
      optional
    - Tag rules run in a fixed order: rename via tagMapping, union with the
      original tags when preserveOriginalTags is set, then drop excludeTags
    - folderFilter matches a Graph contact folder id or a Google contact
      group id
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contact_reconciler.sync.records import ContactRecord

logger = logging.getLogger(__name__)

# Accepted spellings for each field, first one is canonical
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "skip_duplicates": ("skip_duplicates", "skipDuplicates"),
    "update_existing": ("update_existing", "updateExisting"),
    "selected_external_ids": (
        "selected_external_ids",
        "selectedExternalIds",
        "selectedContactIds",
    ),
    "tag_mapping": ("tag_mapping", "tagMapping"),
    "exclude_tags": ("exclude_tags", "excludeTags", "excludeLabels"),
    "preserve_original_tags": ("preserve_original_tags", "preserveOriginalTags"),
    "folder_filter": ("folder_filter", "folderFilter"),
}


class ImportConfigError(Exception):
    """Raised when import configuration loading or validation fails."""

    pass


def _lookup(data: dict[str, Any], name: str) -> tuple[bool, Any]:
    for key in FIELD_ALIASES[name]:
        if key in data:
            return True, data[key]
    return False, None


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ImportConfigError(
            f"{name} must be a boolean, got {type(value).__name__}"
        )
    return value


def _require_str_list(name: str, value: Any) -> list[str]:
    if not isinstance(value, list):
        raise ImportConfigError(f"{name} must be a list, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, str):
            raise ImportConfigError(
                f"{name} entries must be strings, got {type(item).__name__}"
            )
    return list(value)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


@dataclass
class ImportConfig:
    """
    Options for one import job.

    Attributes:
        skip_duplicates: Skip records that match an existing contact
        update_existing: Update matched contacts in place (wins over skip)
        selected_external_ids: Import only these external ids (None = all)
        tag_mapping: Rename provider tags to local tags
        exclude_tags: Tags dropped after mapping
        preserve_original_tags: Keep provider tags alongside mapped ones
        folder_filter: Import only records from this folder or group

    Usage:
        config = ImportConfig(skip_duplicates=True, update_existing=False)
        config = ImportConfig.from_dict({"skipDuplicates": True,
                                         "updateExisting": True})
        tags = config.apply_tag_rules(record.tags)
    """

    skip_duplicates: bool
    update_existing: bool
    selected_external_ids: list[str] | None = None
    tag_mapping: dict[str, str] = field(default_factory=dict)
    exclude_tags: list[str] = field(default_factory=list)
    preserve_original_tags: bool = False
    folder_filter: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImportConfig:
        """
        Create ImportConfig from a dictionary.

        Raises:
            ImportConfigError: If a required flag is missing or a value has
                the wrong type
        """
        if not isinstance(data, dict):
            raise ImportConfigError(
                f"Import configuration must be a dictionary, "
                f"got {type(data).__name__}"
            )

        values: dict[str, Any] = {}
        for name in ("skip_duplicates", "update_existing"):
            found, value = _lookup(data, name)
            if not found:
                raise ImportConfigError(f"{FIELD_ALIASES[name][1]} is required")
            values[name] = _require_bool(name, value)

        found, value = _lookup(data, "selected_external_ids")
        if found and value is not None:
            values["selected_external_ids"] = _require_str_list(
                "selected_external_ids", value
            )

        found, value = _lookup(data, "tag_mapping")
        if found and value is not None:
            if not isinstance(value, dict):
                raise ImportConfigError(
                    f"tag_mapping must be a dictionary, got {type(value).__name__}"
                )
            for source, target in value.items():
                if not isinstance(source, str) or not isinstance(target, str):
                    raise ImportConfigError("tag_mapping keys and values must be strings")
            values["tag_mapping"] = dict(value)

        found, value = _lookup(data, "exclude_tags")
        if found and value is not None:
            values["exclude_tags"] = _require_str_list("exclude_tags", value)

        found, value = _lookup(data, "preserve_original_tags")
        if found and value is not None:
            values["preserve_original_tags"] = _require_bool(
                "preserve_original_tags", value
            )

        found, value = _lookup(data, "folder_filter")
        if found and value is not None:
            if not isinstance(value, str):
                raise ImportConfigError(
                    f"folder_filter must be a string, got {type(value).__name__}"
                )
            values["folder_filter"] = value.strip() or None

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase dictionary format."""
        result: dict[str, Any] = {
            "skipDuplicates": self.skip_duplicates,
            "updateExisting": self.update_existing,
            "tagMapping": dict(self.tag_mapping),
            "excludeTags": list(self.exclude_tags),
            "preserveOriginalTags": self.preserve_original_tags,
        }
        if self.selected_external_ids is not None:
            result["selectedExternalIds"] = list(self.selected_external_ids)
        if self.folder_filter:
            result["folderFilter"] = self.folder_filter
        return result

    def apply_tag_rules(self, tags: list[str]) -> list[str]:
        """
        Rewrite a provider tag list into local tags.

        Args:
            tags: Tags copied verbatim from the provider

        Returns:
            Mapped tags (plus originals when preserving), minus excluded
            tags, de-duplicated in first-seen order
        """
        result = [self.tag_mapping.get(tag, tag) for tag in tags]
        if self.preserve_original_tags:
            result.extend(tags)

        excluded = set(self.exclude_tags)
        return _dedupe([tag for tag in result if tag and tag not in excluded])

    def has_selection(self) -> bool:
        return self.selected_external_ids is not None

    def accepts(self, record: ContactRecord) -> bool:
        """
        Check whether a fetched record passes the selection and folder filter.

        Returns:
            False when the record is outside the selected ids, or outside
            the requested folder/group
        """
        if self.has_selection() and record.external_id not in set(
            self.selected_external_ids or []
        ):
            return False

        if self.folder_filter:
            folder_id = (record.metadata or {}).get("folderId")
            if folder_id != self.folder_filter and self.folder_filter not in record.tags:
                return False

        return True

    def __repr__(self) -> str:
        selected = (
            len(self.selected_external_ids)
            if self.selected_external_ids is not None
            else "all"
        )
        return (
            f"ImportConfig(skip_duplicates={self.skip_duplicates}, "
            f"update_existing={self.update_existing}, selected={selected}, "
            f"tag_mapping={len(self.tag_mapping)}, "
            f"exclude_tags={self.exclude_tags!r}, "
            f"folder_filter={self.folder_filter!r})"
        )


def load_import_config(path: Path | str) -> ImportConfig:
    """
    Load an import configuration from a JSON file.

    Raises:
        ImportConfigError: If the file is missing, unreadable, not valid JSON
            or fails validation
    """
    path = Path(path).expanduser()

    if not path.exists():
        raise ImportConfigError(f"Import config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ImportConfigError(
            f"Failed to parse import config JSON at {path}: {e}"
        ) from e
    except OSError as e:
        raise ImportConfigError(f"Failed to read import config file: {e}") from e

    logger.debug(f"Loaded import config from {path}")
    return ImportConfig.from_dict(data)
