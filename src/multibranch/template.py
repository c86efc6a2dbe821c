"""
Template Store for the canonical child configuration of a project.

The template is never built: its source is always None and it is always
disabled. These invariants are re-asserted whenever the template is
loaded or updated, so a template edited directly on disk heals itself.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from .errors import ConfigCorruptionError
from .interfaces import JobKind
from .models import JobConfig
from .storage import ProjectStore, atomic_write_json, read_json


logger = logging.getLogger(__name__)

# Fields owned by the parent project, never settable on the template
PARENT_OWNED_FIELDS = frozenset({"name", "display_name", "disabled", "scm"})


class TemplateStore:
    """Owns the template configuration of one project."""

    def __init__(self, store: ProjectStore, job_kind: JobKind):
        self._store = store
        self._job_kind = job_kind
        self._template: Optional[JobConfig] = None

    def load_or_create(self) -> JobConfig:
        """
        Load the persisted template or create a default one.

        An unreadable template is replaced by a default instead of failing
        the project load.

        Returns:
            The template configuration
        """
        path = self._store.template_file
        template: Optional[JobConfig] = None
        dirty = False

        if path.exists():
            try:
                template = JobConfig(**read_json(path))
            except (ConfigCorruptionError, ValidationError, TypeError) as e:
                logger.warning(
                    f"Failed to load template {path}, falling back to defaults: {e}"
                )

        if template is None:
            template = self._job_kind.new_template_config()
            dirty = True

        self._template = template
        if self.enforce_invariants() or dirty:
            self._save()

        return self._template

    def get(self) -> JobConfig:
        if self._template is None:
            return self.load_or_create()
        return self._template

    def enforce_invariants(self) -> bool:
        """
        Force the template to have no source and be disabled.

        Returns:
            True if anything had to be corrected
        """
        if self._template is None:
            # Loading enforces the invariants itself
            self.load_or_create()
            return False

        template = self._template
        changed = False

        if template.scm is not None:
            logger.warning(f"Template of {self._store.name} had a source; removing it")
            template.scm = None
            changed = True

        if not template.disabled:
            template.disabled = True
            changed = True

        return changed

    def update(self, submitted: Mapping[str, Any]) -> JobConfig:
        """
        Apply a configuration submission to the template only.

        Args:
            submitted: Submitted configuration fields

        Returns:
            The updated template

        Raises:
            pydantic.ValidationError: If the submission is not a valid configuration
        """
        data: Dict[str, Any] = {
            key: value
            for key, value in submitted.items()
            if key not in PARENT_OWNED_FIELDS
        }
        ignored = sorted(set(submitted) & PARENT_OWNED_FIELDS)
        if ignored:
            logger.debug(f"Ignoring parent-owned template fields: {', '.join(ignored)}")

        template = JobConfig(**data)
        self._template = template
        self.enforce_invariants()
        self._save()
        logger.info(f"Updated template of {self._store.name}")
        return template

    def copy_from(self, other: JobConfig) -> JobConfig:
        """Replace the template with a copy of another project's template."""
        self._template = other.model_copy(deep=True)
        self.enforce_invariants()
        self._save()
        return self._template

    def _save(self) -> None:
        if self._template is None:
            return
        atomic_write_json(self._store.template_file, self._template.model_dump(mode="json"))
