"""Section accumulator: the in-memory working copy of a draft's sections.

One accumulator belongs to one open workspace. It is created explicitly and
handed to the navigator and orchestrator, never shared at module level.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from .exceptions import SectionValidationError
from .sections import (
    OBJECT_SECTIONS,
    DraftSections,
    SectionName,
    SectionValue,
    coerce_section_name,
    dump_section,
    parse_object_section,
    parse_packages,
)
from ..observability.logging_config import get_logger

logger = get_logger(__name__)


class SectionAccumulator:
    """Holds the typed value of every section.

    Object sections (info, origin, destination, rate_ref) take a shallow
    merge: keys present in the partial replace the current value, others are
    kept. rate_ref's fields are opaque, so a new rate_snapshot replaces the
    old one as a whole. The packages section is replaced wholesale.

    Every update is validated before it is applied; a rejected update leaves
    the accumulator exactly as it was.
    """

    def __init__(self, sections: Optional[DraftSections] = None):
        self._sections = sections.model_copy(deep=True) if sections else DraftSections()

    @property
    def sections(self) -> DraftSections:
        return self._sections

    def get(self, section: Union[str, SectionName]) -> SectionValue:
        name = coerce_section_name(section)
        return getattr(self._sections, name.value)

    def update(self, section: Union[str, SectionName], partial: Any) -> SectionValue:
        """Merge a partial payload into one section and return the new value.

        Raises:
            SectionValidationError: unknown section or malformed payload
        """
        name = coerce_section_name(section)

        if name in OBJECT_SECTIONS:
            new_value = self._merge_object(name, partial)
        else:
            new_value = parse_packages(partial)

        setattr(self._sections, name.value, new_value)
        return new_value

    def _merge_object(self, name: SectionName, partial: Any):
        if partial is None:
            partial = {}
        # Parse the partial on its own first so camelCase keys are resolved
        # to field names before merging.
        incoming = parse_object_section(name, partial)
        changes = incoming.model_dump(exclude_unset=True)

        current = getattr(self._sections, name.value).model_dump()
        current.update(changes)
        return parse_object_section(name, current)

    def restore(self, section: Union[str, SectionName], value: SectionValue) -> None:
        """Put back a value previously read with get()."""
        name = coerce_section_name(section)
        setattr(self._sections, name.value, value)

    def reset(self) -> None:
        """Restore the canonical empty shape."""
        self._sections = DraftSections()

    def load(self, persisted: Mapping[str, Any]) -> List[str]:
        """Hydrate from persisted sections.

        A section that no longer parses (schema drift, hand-edited rows) falls
        back to its default so the draft stays usable. The names of such
        sections are returned.

        Returns:
            List of section names that were reset to their default
        """
        fresh = DraftSections()
        rejected = []

        for name in SectionName:
            raw = persisted.get(name.value) if persisted else None
            if raw is None or raw == {} or raw == []:
                continue
            try:
                if name in OBJECT_SECTIONS:
                    value = parse_object_section(name, raw)
                else:
                    value = parse_packages(raw)
            except SectionValidationError as e:
                logger.warning(
                    f"Persisted section '{name.value}' is malformed, using default: {e}",
                    extra={"section": name.value},
                )
                rejected.append(name.value)
                continue
            setattr(fresh, name.value, value)

        self._sections = fresh
        return rejected

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready copy of every section."""
        return {
            name.value: dump_section(getattr(self._sections, name.value))
            for name in SectionName
        }

    def section_payload(self, section: Union[str, SectionName]) -> Any:
        """JSON-ready copy of one section, as written to the store."""
        return dump_section(self.get(section))

