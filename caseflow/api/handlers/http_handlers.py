#!/usr/bin/env python3
"""
HTTP Task Handlers for caseflow

Builds task handlers that call REST endpoints, for service tasks whose work
lives in another system.

Example:
    from caseflow.api.handlers import create_http_handler

    handler = create_http_handler(
        key="orders.chargeCard",
        url="https://payments.example.com/charges/${orderId}",
        method="POST",
        body_template={"amount": "${orderTotal}", "currency": "EUR"},
        response_variable="charge",
        error_codes={402: "PAYMENT_DECLINED"},
    )

Variable Substitution:
    ``${variableName}`` placeholders in the URL, header values and string
    values of the body template are replaced with case variables. A body
    value that is exactly one placeholder keeps the variable's type.

Error Mapping:
    Statuses listed in ``error_codes`` raise BusinessError with the mapped
    code, so a boundary error event on the service task can catch them. Any
    other non-2xx status raises ``requests.HTTPError`` and fails the case.
"""

import re
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from caseflow.api.messaging.handler_registry import FunctionTaskHandler
from caseflow.errors import BusinessError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{(\w+)\}")


class HTTPHandlers:
    """Factory for HTTP-backed task handlers sharing a default timeout."""

    def __init__(self, default_timeout: float = 30.0):
        """
        Initialize the factory.

        Args:
            default_timeout: Request timeout in seconds when a handler sets none
        """
        self.default_timeout = default_timeout

    def _substitute_variables(self, text: str, variables: Mapping[str, Any]) -> str:
        """Replace ``${name}`` placeholders; unknown names are left as-is."""
        if not text:
            return text

        def replace(match):
            name = match.group(1)
            return str(variables[name]) if name in variables else match.group(0)

        return PLACEHOLDER_PATTERN.sub(replace, text)

    def _render_body(self, template: Any, variables: Mapping[str, Any]) -> Any:
        if isinstance(template, dict):
            return {k: self._render_body(v, variables) for k, v in template.items()}
        if isinstance(template, list):
            return [self._render_body(v, variables) for v in template]
        if isinstance(template, str):
            whole = PLACEHOLDER_PATTERN.fullmatch(template)
            if whole and whole.group(1) in variables:
                return variables[whole.group(1)]
            return self._substitute_variables(template, variables)
        return template

    def _extract_response_data(
        self, response_data: Any, extraction_map: Dict[str, str]
    ) -> Dict[str, Any]:
        """
        Extract values from a JSON response.

        Args:
            response_data: Decoded JSON response
            extraction_map: {"variableName": "$.json.path"}

        Returns:
            Dictionary of extracted values; missing paths are skipped
        """
        extracted = {}
        for var_name, json_path in extraction_map.items():
            path = json_path[1:].lstrip(".") if json_path.startswith("$") else json_path
            value = response_data
            for part in path.split(".") if path else []:
                if isinstance(value, dict):
                    value = value.get(part)
                elif isinstance(value, list) and part.isdigit():
                    idx = int(part)
                    value = value[idx] if idx < len(value) else None
                else:
                    value = None
                if value is None:
                    break
            if value is not None:
                extracted[var_name] = value
        return extracted

    def create_http_handler(
        self,
        key: str,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body_template: Optional[Any] = None,
        response_variable: Optional[str] = None,
        response_extract: Optional[Dict[str, str]] = None,
        error_codes: Optional[Dict[int, str]] = None,
        timeout: Optional[float] = None,
    ) -> FunctionTaskHandler:
        """
        Create a task handler that performs one HTTP request.

        Args:
            key: Handler key the service task resolves to
            url: Request URL (supports ${variable} substitution)
            method: HTTP method
            headers: Request headers (values support substitution)
            body_template: JSON body sent for POST/PUT/PATCH
            response_variable: Variable receiving the decoded response
            response_extract: Extra variables pulled from the response by path
            error_codes: HTTP status to business error code
            timeout: Request timeout in seconds

        Returns:
            A task handler for the TaskHandlerRegistry
        """
        method = method.upper()
        error_codes = dict(error_codes or {})
        request_timeout = timeout if timeout is not None else self.default_timeout

        def handle(variables: Dict[str, Any]) -> Dict[str, Any]:
            final_url = self._substitute_variables(url, variables)
            final_headers = {
                name: self._substitute_variables(value, variables)
                for name, value in (headers or {}).items()
            }
            body = None
            if body_template is not None and method in ("POST", "PUT", "PATCH"):
                body = self._render_body(body_template, variables)

            logger.info(f"Handler {key}: {method} {final_url}")
            response = requests.request(
                method=method,
                url=final_url,
                headers=final_headers,
                json=body,
                timeout=request_timeout,
            )

            if response.status_code in error_codes:
                code = error_codes[response.status_code]
                logger.info(f"Handler {key}: HTTP {response.status_code} mapped to {code}")
                raise BusinessError(code, f"{method} {final_url} returned {response.status_code}")
            response.raise_for_status()

            try:
                data = response.json()
            except ValueError:
                data = {"text": response.text, "status_code": response.status_code}

            updates: Dict[str, Any] = {}
            if response_variable:
                updates[response_variable] = data
            if response_extract:
                updates.update(self._extract_response_data(data, response_extract))
            return updates

        return FunctionTaskHandler(key, handle, description=f"HTTP {method} {url}")


def create_http_handler(key: str, url: str, **kwargs) -> FunctionTaskHandler:
    """Convenience wrapper around HTTPHandlers().create_http_handler."""
    return HTTPHandlers().create_http_handler(key, url, **kwargs)
