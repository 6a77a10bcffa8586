"""
HTTP-backed document and rule providers.

- HttpSubFormProvider: fetch-by-id sub-form source (404 means "not found")
- ChainedSubFormProvider: first provider that knows an id wins
- HttpRuleProvider: POSTs a CaseContext and parses the RuleDelta response

Sub-form lookup runs inside reference resolution, which is synchronous, so the
sub-form provider uses a blocking httpx.Client. Rule fetches belong to the
re-hydration loop and use httpx.AsyncClient.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .exceptions import ReferenceResolutionError, RuleProviderError
from .registry import SubFormProvider
from .schema import CaseContext, RuleDelta, SubFormDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class HttpSubFormProvider:
    """
    Fetch sub-form documents from a URL template.

    Example:
        provider = HttpSubFormProvider("https://forms.example.com/sub-forms/{id}")
        sub_form = provider.lookup("address")
    """

    def __init__(
        self,
        url_template: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if "{id}" not in url_template:
            raise ValueError(f"Sub-form URL template must contain '{{id}}': {url_template}")
        self.url_template = url_template
        self.headers = headers or {}
        self.timeout = timeout

    def url_for(self, sub_form_id: str) -> str:
        return self.url_template.replace("{id}", quote(sub_form_id, safe=""))

    def lookup(self, sub_form_id: str) -> SubFormDescriptor | None:
        """
        Fetch a sub-form by id.

        Returns:
            The validated sub-form, or None when the server answers 404

        Raises:
            ReferenceResolutionError: On transport failures, other HTTP errors
                or an invalid document
        """
        url = self.url_for(sub_form_id)
        logger.debug(f"Fetching sub-form '{sub_form_id}' from {url}")

        with httpx.Client(timeout=self.timeout) as client:
            try:
                response = client.get(url, headers=self.headers)
            except httpx.HTTPError as e:
                raise ReferenceResolutionError(
                    f"Failed to fetch sub-form '{sub_form_id}' from {url}: {e}"
                ) from e

        if response.status_code == 404:
            logger.info(f"Sub-form '{sub_form_id}' not found at {url}")
            return None
        if not 200 <= response.status_code < 300:
            raise ReferenceResolutionError(
                f"Sub-form '{sub_form_id}' fetch failed with HTTP {response.status_code}"
            )

        try:
            return SubFormDescriptor.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ReferenceResolutionError(
                f"Sub-form '{sub_form_id}' from {url} is not a valid document: {e}"
            ) from e


class ChainedSubFormProvider:
    """Ask each provider in order; the first one that knows the id wins."""

    def __init__(self, *providers: SubFormProvider):
        self.providers = list(providers)

    def lookup(self, sub_form_id: str) -> SubFormDescriptor | None:
        for provider in self.providers:
            sub_form = provider.lookup(sub_form_id)
            if sub_form is not None:
                return sub_form
        return None


class HttpRuleProvider:
    """
    Rule provider calling a remote endpoint with the current CaseContext.

    The endpoint receives the context as a JSON object and answers with a
    RuleDelta document (`{"blocks": [...], "fields": [...]}`).
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout

    async def __call__(self, context: CaseContext) -> RuleDelta:
        return await self.fetch(context)

    async def fetch(self, context: CaseContext) -> RuleDelta:
        """
        POST the context and parse the rule delta.

        Raises:
            RuleProviderError: On transport failures, non-2xx responses or an
                invalid response body
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.url, json=context, headers=self.headers)
            except httpx.TimeoutException as e:
                raise RuleProviderError(
                    f"Rule fetch timed out after {self.timeout}s: {self.url}"
                ) from e
            except httpx.HTTPError as e:
                raise RuleProviderError(f"Rule fetch failed for {self.url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise RuleProviderError(
                f"Rule provider answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload: Any = response.json()
        except ValueError as e:
            raise RuleProviderError(f"Rule provider returned invalid JSON: {e}") from e

        if payload is None:
            return RuleDelta()
        try:
            return RuleDelta.model_validate(payload)
        except ValidationError as e:
            raise RuleProviderError(f"Rule provider returned an invalid delta: {e}") from e
