"""Parser for the Prometheus text exposition format.

Turns the body of a ``/metrics`` response into an ordered list of
:class:`MetricFamily`. The parser is a pure function of its input: it does
no I/O and keeps no state between calls.

Supported syntax::

    # HELP http_requests_total Total HTTP requests.
    # TYPE http_requests_total counter
    http_requests_total{method="GET",code="200"} 1027 1395066363000
    http_requests_total{method="POST"} +Inf

Any malformed line raises :class:`ParseError` and nothing is returned, so a
corrupt scrape never contributes partial data.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping

import structlog

from promstash.exceptions import ParseError
from promstash.exposition.models import MetricFamily, MetricKind, Sample

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)
_TIMESTAMP_RE = re.compile(r"-?\d+")
_HELP_ESCAPE_RE = re.compile(r"\\([\\n])")

_LABEL_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
_KINDS = {kind.value: kind for kind in MetricKind}


@dataclass
class _FamilyBuilder:
    name: str
    kind: MetricKind = MetricKind.UNTYPED
    help: str = ""
    kind_declared: bool = False
    help_declared: bool = False
    samples: list[Sample] = field(default_factory=list)

    def owns(self, sample_name: str) -> bool:
        if sample_name == self.name:
            return True
        return any(sample_name == self.name + s for s in self.kind.sample_suffixes)

    def build(self) -> MetricFamily:
        return MetricFamily(
            name=self.name,
            kind=self.kind,
            help=self.help,
            samples=tuple(self.samples),
        )


class ExpositionParser:
    """Parser for exposition text.

    Args:
        const_labels: Labels prepended to every sample (e.g. job, instance).
            A scraped label clashing with one of them is kept as
            ``exported_<name>``.
    """

    def __init__(self, const_labels: Mapping[str, str] | None = None):
        self.const_labels = dict(const_labels or {})

    def parse(self, text: str | bytes) -> list[MetricFamily]:
        """Parse a complete exposition payload.

        Args:
            text: Exposition text; bytes are decoded as UTF-8

        Returns:
            Metric families in first-seen order

        Raises:
            ParseError: On the first malformed line
        """
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError(f"payload is not valid UTF-8 at byte {e.start}", 0) from e

        families: dict[str, _FamilyBuilder] = {}
        current: _FamilyBuilder | None = None

        for line_number, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith("#"):
                descriptor = self._parse_descriptor(line, line_number, families)
                if descriptor is not None:
                    current = descriptor
                continue

            sample = self._parse_sample(line, line_number)
            if current is None or not current.owns(sample.name):
                current = families.get(sample.name)
                if current is None:
                    current = families[sample.name] = _FamilyBuilder(sample.name)
            current.samples.append(sample)

        return [builder.build() for builder in families.values()]

    def _parse_descriptor(
        self,
        line: str,
        line_number: int,
        families: dict[str, _FamilyBuilder],
    ) -> _FamilyBuilder | None:
        """Handle a comment line; returns the family a HELP/TYPE line names."""
        parts = line[1:].split(maxsplit=2)
        if not parts or parts[0] not in ("HELP", "TYPE"):
            return None

        keyword = parts[0]
        if len(parts) < 2:
            raise ParseError(f"{keyword} line without metric name", line_number, line)

        name = parts[1]
        if not _METRIC_NAME_RE.fullmatch(name):
            raise ParseError("invalid metric name", line_number, name)

        family = families.get(name)
        if family is None:
            family = families[name] = _FamilyBuilder(name)
        elif family.samples:
            raise ParseError(f"{keyword} line after samples of {name}", line_number, name)

        if keyword == "HELP":
            if family.help_declared:
                logger.warning("duplicate_help", metric=name, line=line_number)
            family.help = _HELP_ESCAPE_RE.sub(
                lambda m: "\n" if m.group(1) == "n" else "\\",
                parts[2] if len(parts) > 2 else "",
            )
            family.help_declared = True
        else:
            if len(parts) < 3:
                raise ParseError("TYPE line without metric type", line_number, name)
            kind = _KINDS.get(parts[2].strip())
            if kind is None:
                raise ParseError("unknown metric type", line_number, parts[2].strip())
            if family.kind_declared:
                logger.warning("duplicate_type", metric=name, line=line_number)
            family.kind = kind
            family.kind_declared = True

        return family

    def _parse_sample(self, line: str, line_number: int) -> Sample:
        match = _METRIC_NAME_RE.match(line)
        if not match:
            raise ParseError("invalid metric name", line_number, line.split()[0])

        name = match.group()
        pos = match.end()
        while pos < len(line) and line[pos] in " \t":
            pos += 1

        labels: dict[str, str] = {}
        if pos < len(line) and line[pos] == "{":
            labels, pos = self._parse_labels(line, pos + 1, line_number)
        elif pos == match.end() and pos < len(line):
            raise ParseError("invalid metric name", line_number, line.split()[0])

        fields = line[pos:].split()
        if not fields:
            raise ParseError("missing sample value", line_number, name)
        if len(fields) > 2:
            raise ParseError("unexpected token after sample", line_number, fields[2])

        return Sample(
            name=name,
            labels=self._with_const_labels(labels),
            value=self._parse_value(fields[0], line_number),
            timestamp=(
                self._parse_timestamp(fields[1], line_number) if len(fields) == 2 else None
            ),
        )

    def _parse_labels(
        self, line: str, pos: int, line_number: int
    ) -> tuple[dict[str, str], int]:
        """Parse ``name="value",...}`` starting just after the opening brace."""
        labels: dict[str, str] = {}
        end = len(line)

        while True:
            while pos < end and line[pos] in " \t":
                pos += 1
            if pos >= end:
                raise ParseError("unterminated label set", line_number, line)
            if line[pos] == "}":
                return labels, pos + 1

            match = _LABEL_NAME_RE.match(line, pos)
            if not match:
                raise ParseError("invalid label name", line_number, line[pos : pos + 16])
            label = match.group()
            pos = match.end()

            while pos < end and line[pos] in " \t":
                pos += 1
            if pos >= end or line[pos] != "=":
                raise ParseError("expected '=' after label name", line_number, label)
            pos += 1
            while pos < end and line[pos] in " \t":
                pos += 1
            if pos >= end or line[pos] != '"':
                raise ParseError("label value must be quoted", line_number, label)

            value, pos = self._read_quoted(line, pos + 1, line_number)
            if label in labels:
                raise ParseError("duplicate label name", line_number, label)
            labels[label] = value

            while pos < end and line[pos] in " \t":
                pos += 1
            if pos < end and line[pos] == ",":
                pos += 1
            elif pos < end and line[pos] == "}":
                return labels, pos + 1
            else:
                raise ParseError(
                    "expected ',' or '}' in label set", line_number, line[pos : pos + 16]
                )

    @staticmethod
    def _read_quoted(line: str, pos: int, line_number: int) -> tuple[str, int]:
        chars = []
        end = len(line)
        while pos < end:
            char = line[pos]
            if char == '"':
                return "".join(chars), pos + 1
            if char == "\\":
                if pos + 1 >= end or line[pos + 1] not in _LABEL_ESCAPES:
                    raise ParseError("invalid escape in label value", line_number, line[pos : pos + 2])
                chars.append(_LABEL_ESCAPES[line[pos + 1]])
                pos += 2
                continue
            chars.append(char)
            pos += 1
        raise ParseError("unterminated label value", line_number, "".join(chars))

    @staticmethod
    def _parse_value(token: str, line_number: int) -> float:
        if not _FLOAT_RE.fullmatch(token):
            raise ParseError("sample value is not a number", line_number, token)
        return float(token)

    @staticmethod
    def _parse_timestamp(token: str, line_number: int) -> datetime:
        if not _TIMESTAMP_RE.fullmatch(token):
            raise ParseError("timestamp is not an integer", line_number, token)
        try:
            return _EPOCH + timedelta(milliseconds=int(token))
        except OverflowError as e:
            raise ParseError("timestamp out of range", line_number, token) from e

    def _with_const_labels(self, labels: dict[str, str]) -> dict[str, str]:
        if not self.const_labels:
            return labels
        merged = dict(self.const_labels)
        for label, value in labels.items():
            key = label
            while key in merged:
                key = f"exported_{key}"
            merged[key] = value
        return merged


def parse_exposition(
    text: str | bytes,
    const_labels: Mapping[str, str] | None = None,
) -> list[MetricFamily]:
    """Parse exposition text into metric families.

    Example:
        >>> families = parse_exposition('up{job="node"} 1\\n')
        >>> families[0].samples[0].value
        1.0
    """
    return ExpositionParser(const_labels).parse(text)
