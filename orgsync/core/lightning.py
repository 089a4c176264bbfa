"""Lightning component definitions for the ``.lightning`` snapshot."""

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .project import Project


logger = logging.getLogger(__name__)

AURA_DEFINITION_QUERY = (
    "SELECT Id, AuraDefinitionBundleId, AuraDefinitionBundle.DeveloperName, "
    "DefType, Format, LastModifiedDate FROM AuraDefinition"
)


class LightningService:
    """Reads Aura definitions through the Tooling API."""

    def __init__(self, project: "Project") -> None:
        self.project = project

    def get_all(self) -> list[dict[str, Any]]:
        """All Aura definitions in the org, without their sources."""
        records = self.project.client.tooling_query(AURA_DEFINITION_QUERY)
        logger.debug("found %d aura definitions", len(records))
        return records
