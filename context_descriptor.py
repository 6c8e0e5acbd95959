"""
Context descriptor for inline completion requests.

A descriptor is the immutable snapshot of "where is the cursor and what
surrounds it" that the completion cache compares and keys on. It is produced
by the editor-side feature extractor; this module only defines the contract
and the fingerprint derived from it.
"""

from dataclasses import dataclass, field
from typing import Tuple

# Number of variable names folded into the fingerprint
FINGERPRINT_VARIABLE_LIMIT = 5


@dataclass(frozen=True)
class ContextDescriptor:
    """
    Structured view of the code surrounding a completion request.

    Only ``current_line``, ``current_function``, ``current_class``,
    ``language`` and ``variables`` take part in similarity scoring. The
    remaining fields feed the request fingerprint and the generation prompt.
    """
    current_line: str = ""
    current_function: str = ""
    current_class: str = ""
    language: str = ""
    variables: Tuple[str, ...] = ()
    imports: Tuple[str, ...] = ()
    line_number: int = 0
    function_parameters: Tuple[str, ...] = ()
    class_fields: Tuple[str, ...] = ()
    file_function_count: int = 0
    file_class_count: int = 0
    previous_lines: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        # Accept any sequence from callers but store tuples so the snapshot
        # stays hashable and cannot be mutated in place.
        for name in ("variables", "imports", "function_parameters",
                     "class_fields", "previous_lines"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value or ()))

    @property
    def line_word_count(self) -> int:
        """Number of whitespace-separated words on the trimmed current line."""
        return len(self.current_line.split())

    def variable_set(self) -> frozenset:
        return frozenset(self.variables)


def is_defining_function(line: str) -> bool:
    return line.strip().startswith("def ")


def is_defining_class(line: str) -> bool:
    return line.strip().startswith("class ")


def build_fingerprint(descriptor: ContextDescriptor) -> str:
    """
    Build the exact-match cache key for a completion request.

    Two requests with the same fingerprint are treated as identical by the
    cache. The enclosing function and class are only included when the
    current line is not itself defining one, so that typing a new ``def``
    does not bind the key to the previous scope.

    Args:
        descriptor: Context of the request

    Returns:
        Fingerprint string
    """
    line = descriptor.current_line
    parts = [
        line.strip(),
        f"_lang_{descriptor.language}",
        f"_line_{descriptor.line_number}",
    ]

    if not is_defining_function(line) and descriptor.current_function:
        parts.append(f"_func_{descriptor.current_function}")
        parts.append(f"_params_{len(descriptor.function_parameters)}")

    if not is_defining_class(line) and descriptor.current_class:
        parts.append(f"_class_{descriptor.current_class}")
        parts.append(f"_fields_{len(descriptor.class_fields)}")

    sampled = sorted(descriptor.variables[:FINGERPRINT_VARIABLE_LIMIT])
    parts.append(f"_vars_{','.join(sampled)}")

    if "import" in line:
        parts.append(f"_imports_{len(descriptor.imports)}")

    parts.append(f"_structure_{descriptor.file_function_count}_{descriptor.file_class_count}")
    return "".join(parts)


def descriptor_from_dict(data: dict) -> ContextDescriptor:
    """Create a descriptor from a plain mapping, ignoring unknown keys."""
    known = {name for name in ContextDescriptor.__dataclass_fields__}
    return ContextDescriptor(**{k: v for k, v in data.items() if k in known})
