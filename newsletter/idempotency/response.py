from __future__ import annotations

from dataclasses import dataclass, field

from starlette.responses import Response

# Recomputed by Starlette when the response is rebuilt.
_SKIP_HEADERS = frozenset({"content-length", "transfer-encoding"})


@dataclass(frozen=True)
class SavedResponse:
    """Status, headers and body of a response as stored in the ledger."""

    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @classmethod
    def from_response(cls, response: Response) -> SavedResponse:
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in response.raw_headers
            if name.decode("latin-1").lower() not in _SKIP_HEADERS
        ]
        return cls(status_code=response.status_code, headers=headers, body=bytes(response.body))

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code)
        for name, value in self.headers:
            response.headers.append(name, value)
        return response

    def headers_as_json(self) -> list[list[str]]:
        return [[name, value] for name, value in self.headers]

    @classmethod
    def from_columns(cls, status_code: int, headers: list | None, body: bytes | None) -> SavedResponse:
        return cls(
            status_code=status_code,
            headers=[(name, value) for name, value in headers or []],
            body=bytes(body or b""),
        )
