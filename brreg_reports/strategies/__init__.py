"""Discovery strategies, one per source, in descending priority.

Each strategy maps an organization number to ``ReportCandidate`` objects and
returns an empty list when its source has nothing.
"""

from brreg_reports.strategies.api import StructuredApiStrategy
from brreg_reports.strategies.base import SourceStrategy
from brreg_reports.strategies.body_text import BodyTextStrategy
from brreg_reports.strategies.embedded import EmbeddedPayloadStrategy
from brreg_reports.strategies.rendered_dom import RenderedDomStrategy
from brreg_reports.strategies.static_dom import StaticDomStrategy

__all__ = [
    "BodyTextStrategy",
    "EmbeddedPayloadStrategy",
    "RenderedDomStrategy",
    "SourceStrategy",
    "StaticDomStrategy",
    "StructuredApiStrategy",
]
