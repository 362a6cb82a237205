"""
Error taxonomy for the ACME client.

Every failure raised by this package is an ``AcmeError``.  Transport failures
and CA problem documents share the same reportable shape (``problem_type``,
``detail``, ``subproblems``) so callers can branch on the reason uniformly.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import requests

PROBLEM_CONTENT_TYPE = "application/problem+json"
ERROR_PREFIX = "urn:ietf:params:acme:error:"
UNAUTHORIZED = ERROR_PREFIX + "unauthorized"


class AcmeError(Exception):
    """Base class for every error raised by acmelib."""

    problem_type: str = "acmeError"

    def __init__(
        self,
        detail: str = "",
        problem_type: Optional[str] = None,
        subproblems: Optional[list[dict]] = None,
    ) -> None:
        if problem_type is not None:
            self.problem_type = problem_type
        self.detail = detail
        self.subproblems = subproblems or []
        super().__init__(self._message())

    def _message(self) -> str:
        if self.detail:
            return f"{self.problem_type}: {self.detail}"
        return self.problem_type


class ApiProblem(AcmeError):
    """The CA rejected a request and (usually) sent a problem document."""

    def __init__(
        self,
        problem_type: str,
        detail: str = "",
        subproblems: Optional[list[dict]] = None,
        status_code: int = 0,
    ) -> None:
        self.status_code = status_code
        super().__init__(detail, problem_type, subproblems)

    def _message(self) -> str:
        prefix = f"ACME {self.status_code}: " if self.status_code else "ACME: "
        return prefix + super()._message()

    @property
    def code(self) -> str:
        """Short error code, e.g. ``badNonce`` for ``urn:ietf:params:acme:error:badNonce``."""
        if self.problem_type.startswith(ERROR_PREFIX):
            return self.problem_type[len(ERROR_PREFIX):]
        return self.problem_type

    @property
    def is_bad_nonce(self) -> bool:
        return self.code == "badNonce"

    @classmethod
    def from_json(cls, body: dict[str, Any], status_code: int = 0) -> "ApiProblem":
        return cls(
            problem_type=str(body.get("type", "about:blank")),
            detail=str(body.get("detail", "")),
            subproblems=body.get("subproblems") or [],
            status_code=status_code,
        )

    @classmethod
    def from_response(cls, resp: requests.Response) -> "ApiProblem":
        """Normalize a non-2xx response into an ``ApiProblem``."""
        content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
        if content_type == PROBLEM_CONTENT_TYPE:
            try:
                body = json.loads(resp.text)
                if not isinstance(body, dict):
                    raise ValueError("problem document is not a JSON object")
            except ValueError as exc:
                return cls(
                    "problemJsonFail",
                    f"Failed to deserialize {PROBLEM_CONTENT_TYPE} ({exc}) body: {resp.text}",
                    status_code=resp.status_code,
                )
            return cls.from_json(body, resp.status_code)

        return cls(
            "httpReqError",
            f"{resp.status_code} {resp.reason} body: {resp.text}",
            status_code=resp.status_code,
        )


class ValidationFailure(ApiProblem):
    """An authorization reached a terminal failure status."""

    def __init__(
        self,
        identifier: str,
        status: str,
        problem_type: str = UNAUTHORIZED,
        detail: str = "",
        subproblems: Optional[list[dict]] = None,
    ) -> None:
        self.identifier = identifier
        self.status = status
        super().__init__(problem_type, detail, subproblems)

    def _message(self) -> str:
        return f"Authorization for {self.identifier} is {self.status}: " + super()._message()


class TransportFailure(AcmeError):
    """Network, connection, TLS or per-call timeout failure; no body available."""

    problem_type = "httpReqError"


class CodecFailure(AcmeError):
    """Malformed JSON/base64 or a missing field where a structure was expected."""

    problem_type = "codecError"


class CryptoFailure(AcmeError):
    """Key generation, signing or certificate parsing failed."""

    problem_type = "cryptoError"


class PersistenceFailure(AcmeError):
    """The persistence backend failed to read or write."""

    problem_type = "persistError"


class PollTimeout(AcmeError):
    """The poll retry budget was exhausted before the resource settled."""

    problem_type = "timeout"


class OtherError(AcmeError):
    problem_type = "other"


class ConfigurationError(OtherError):
    """The caller asked for something the CA or the library does not offer."""

    problem_type = "configuration"


class OrderStateError(AcmeError):
    """An order is not in the state an operation requires, or it failed."""

    problem_type = "orderState"

    def __init__(
        self,
        detail: str,
        identifier: str = "",
        status: str = "",
        subproblems: Optional[list[dict]] = None,
    ) -> None:
        self.identifier = identifier
        self.status = status
        super().__init__(detail, subproblems=subproblems)
