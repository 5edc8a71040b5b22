"""Line extraction: find a replayable API path in an access-log line."""

import re

API_KEY_RE = re.compile(r"api_key=[a-zA-Z0-9]+")


class LineExtractor:
    """Extracts and rewrites API request paths from raw log lines.

    A line matches when it contains ``match_prefix``, then a ``/``, then at
    least one non-space character, and does not contain ``exclude_marker``.
    The captured path runs from the prefix up to the next whitespace.
    """

    def __init__(
        self,
        match_prefix: str = "/nitro/api",
        exclude_marker: str = "/nitro/api/v1/",
        path_rewrite: str | None = None,
        api_key: str = "abc123",
    ):
        self.match_prefix = match_prefix
        self.exclude_marker = exclude_marker
        self.path_rewrite = path_rewrite
        self.api_key = api_key
        self._path_re = re.compile(re.escape(match_prefix.rstrip("/") + "/") + r"\S+")

    @classmethod
    def from_config(cls, config) -> "LineExtractor":
        return cls(
            match_prefix=config.match_prefix,
            exclude_marker=config.exclude_marker,
            path_rewrite=config.path,
            api_key=config.key,
        )

    def extract(self, line: str) -> str | None:
        """Return the rewritten path, or None when the line is not replayable."""
        if self.exclude_marker and self.exclude_marker in line:
            return None
        m = self._path_re.search(line)
        if not m:
            return None
        path = m.group(0)

        if self.path_rewrite and self.path_rewrite != self.match_prefix:
            path = path.replace(self.match_prefix, self.path_rewrite, 1)

        replacement = f"api_key={self.api_key}"
        return API_KEY_RE.sub(lambda _: replacement, path, count=1)
