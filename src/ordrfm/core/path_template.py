"""
Destination path templates

A template is a '/'-separated relative path with named placeholders:

    {quality}/{artist}/{artist} - {title}< ({year})>

A bare {name} is required: if it has no value, rendering raises
DecisionAmbiguityError. Text wrapped in <...> is optional and is dropped
as a whole when any placeholder inside it has no value.
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from .exceptions import DecisionAmbiguityError, ConfigurationError
from ..utils.naming import sanitize_component

_PLACEHOLDER = re.compile(r'\{([a-z_]+)\}')


class PathTemplate:
    """Parsed template; render() substitutes a typed placeholder map"""

    def __init__(self, template: str):
        self.template = template
        self._segments = self._parse(template)

    @staticmethod
    def _parse(template: str) -> List[Tuple[str, bool]]:
        """Split into (text, optional) segments"""
        segments = []
        buf = []
        optional = False

        for char in template:
            if char == '<':
                if optional:
                    raise ConfigurationError(f"Nested optional segment in template: {template}")
                if buf:
                    segments.append((''.join(buf), False))
                buf, optional = [], True
            elif char == '>':
                if not optional:
                    raise ConfigurationError(f"Unbalanced '>' in template: {template}")
                segments.append((''.join(buf), True))
                buf, optional = [], False
            else:
                buf.append(char)

        if optional:
            raise ConfigurationError(f"Unclosed optional segment in template: {template}")
        if buf:
            segments.append((''.join(buf), False))

        leftovers = re.sub(_PLACEHOLDER, '', template)
        if '{' in leftovers or '}' in leftovers:
            raise ConfigurationError(f"Malformed placeholder in template: {template}")
        return segments

    @property
    def placeholders(self) -> Set[str]:
        return set(_PLACEHOLDER.findall(self.template))

    @property
    def required_placeholders(self) -> Set[str]:
        names = set()
        for text, optional in self._segments:
            if not optional:
                names.update(_PLACEHOLDER.findall(text))
        return names

    def render(self, values: Dict[str, Optional[str]]) -> str:
        """
        Render to a relative path.

        Raises:
            DecisionAmbiguityError: a required placeholder is unresolved
        """
        clean = {}
        for name, value in values.items():
            if value is None:
                continue
            text = sanitize_component(str(value))
            if text:
                clean[name] = text

        parts = []
        for text, optional in self._segments:
            names = _PLACEHOLDER.findall(text)
            missing = [n for n in names if n not in clean]
            if missing:
                if optional:
                    continue
                raise DecisionAmbiguityError(
                    f"Unresolved placeholder '{{{missing[0]}}}' in template '{self.template}'",
                    placeholder=missing[0],
                )
            parts.append(_PLACEHOLDER.sub(lambda m: clean[m.group(1)], text))

        components = [sanitize_component(c) for c in ''.join(parts).split('/')]
        if not components or any(not c for c in components):
            raise DecisionAmbiguityError(f"Template '{self.template}' rendered an empty path component")
        return '/'.join(components)
