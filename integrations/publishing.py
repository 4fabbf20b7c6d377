from __future__ import annotations

from typing import Any, Optional, Protocol

from schemas.article import Draft, IntegrationDescriptor


class Publisher(Protocol):
    """
    Deployment/CMS connector.

    The pipeline only hands over a finished draft; how it reaches WordPress,
    Ghost, a webhook etc. is the connector's business. Raising signals that
    the draft was not accepted.
    """

    async def publish(self, draft: Draft, integration: Optional[IntegrationDescriptor]) -> Any:
        ...
