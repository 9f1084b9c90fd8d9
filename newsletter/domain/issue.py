from __future__ import annotations

from dataclasses import dataclass

from newsletter.core.errors import PublishValidationError


@dataclass(frozen=True)
class IssueContent:
    title: str
    html_content: str
    text_content: str

    @classmethod
    def parse(cls, title: str | None, html_content: str | None, text_content: str | None) -> IssueContent:
        """Validate publish input; blank fields are rejected."""
        missing = [
            name
            for name, value in (("title", title), ("html_content", html_content), ("text_content", text_content))
            if value is None or not value.strip()
        ]
        if missing:
            raise PublishValidationError(f"Missing newsletter fields: {', '.join(missing)}")
        return cls(title=title, html_content=html_content, text_content=text_content)
