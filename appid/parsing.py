"""
Best-effort structural parse of the watched request document.

Tried in order: JSON (content starts with '[' or '{'), markdown (any '#'
present; one block per heading), then free text (one item per non-empty
line, with a coarse app-type/priority guess). Parsing never raises: any
failure is reported as {"format": "raw", "data": content, "error": ...}.
"""

import json
import logging
import re
from typing import Any, Optional

from .classifier import KeywordClassifier

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^#+\s+(.+)")


def parse_markdown(content: str) -> dict[str, Any]:
    requests = []
    current: Optional[dict[str, Any]] = None

    for i, raw_line in enumerate(content.split("\n")):
        line = raw_line.strip()
        m = _HEADING_RE.match(line)
        if m:
            if current:
                requests.append(current)
            current = {"title": m.group(1), "line_number": i + 1, "content": []}
        elif current and line:
            current["content"].append(line)

    if current:
        requests.append(current)

    return {"format": "markdown", "data": requests}


def parse_natural_language(content: str, classifier: KeywordClassifier) -> dict[str, Any]:
    lines = [line for line in content.split("\n") if line.strip()]
    requests = []
    for index, line in enumerate(lines):
        requests.append({
            "title": line,
            "line_number": index + 1,
            "detected_priority": classifier.detected_priority(line),
            "detected_app_type": classifier.detected_app_type(line),
            "confidence": classifier.confidence(line),
        })
    return {"format": "natural_language", "data": requests}


def parse_document(content: str, classifier: Optional[KeywordClassifier] = None) -> dict[str, Any]:
    """Parse document content into a structured form; never raises."""
    classifier = classifier or KeywordClassifier.from_config()
    try:
        stripped = content.strip()
        if stripped.startswith("[") or stripped.startswith("{"):
            return {"format": "json", "data": json.loads(content)}
        if "#" in content:
            return parse_markdown(content)
        return parse_natural_language(content, classifier)
    except Exception as e:
        logger.info("Parse failed, storing raw text: %s", e)
        return {"format": "raw", "data": content, "error": str(e)}
