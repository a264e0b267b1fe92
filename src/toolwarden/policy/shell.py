"""Shell command analysis for policy checks.

Agents hand us a raw command string. Before a rule can be applied we
need to know which programs it runs and which operands it touches, even
when the command has been disguised:

- path-qualified binaries (``/usr/bin/rm``)
- backslash escapes and quoting (``r\\m``, ``"rm"``)
- chained commands (``&&``, ``;``, ``|``)
- command substitution (``$(echo rm)``, backticks)
- wrappers and nested shells (``sudo rm``, ``bash -c "rm ..."``)

Two passes run on every command and their findings are unioned:

1. A structural pass that parses the command with bashlex and walks the
   resulting tree. It understands quoting and nesting but rejects some
   valid inputs.
2. A lexical pass that un-escapes, strips quoting, splits on chain
   operators and tokenizes each segment. It never fails.

A structural failure only means the lexical findings stand alone.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

import bashlex

logger = logging.getLogger(__name__)

# Commands whose operand is itself a command
WRAPPER_COMMANDS = frozenset({
    "sudo", "doas", "env", "xargs", "nohup", "nice", "time",
    "command", "exec", "timeout", "stdbuf", "builtin",
})

SHELL_COMMANDS = frozenset({"sh", "bash", "zsh", "dash", "ksh"})

MAX_NESTING = 3

_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_QUOTING = re.compile(r"[\"'<>]")
# $IFS expands to whitespace, so it separates words
_IFS = re.compile(r"\$\{IFS\}|\$IFS(?![A-Za-z0-9_])")
_SEGMENT_SPLIT = re.compile(r"\$\(|[|;&\n()`]")
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_WRAPPER_VALUE = re.compile(r"^[\d.]+[smhd]?$")


@dataclass
class ShellAnalysis:
    """What a command string would do.

    ``actions`` are candidate program names, ``paths`` candidate
    operands, ``tokens`` every word in every form we could recover.
    All three are ordered and de-duplicated.
    """

    actions: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)

    def add_actions(self, values: Iterable[str]) -> None:
        _extend_unique(self.actions, values)

    def add_paths(self, values: Iterable[str]) -> None:
        _extend_unique(self.paths, values)

    def add_tokens(self, values: Iterable[str]) -> None:
        _extend_unique(self.tokens, values)

    def merge(self, other: "ShellAnalysis") -> None:
        self.add_actions(other.actions)
        self.add_paths(other.paths)
        self.add_tokens(other.tokens)


@dataclass
class StructuralParse:
    """Outcome of the bashlex pass."""

    ok: bool
    analysis: ShellAnalysis = field(default_factory=ShellAnalysis)
    error: str = ""


def _extend_unique(target: list[str], values: Iterable[str]) -> None:
    for value in values:
        if value and value not in target:
            target.append(value)


def _basename(word: str) -> str:
    return word.rstrip("/").rsplit("/", 1)[-1]


def action_forms(word: str) -> list[str]:
    """Case-folded action candidates for a command word.

    ``/usr/bin/rm`` yields both ``/usr/bin/rm`` and ``rm``.
    """
    lowered = word.lower()
    forms = [lowered]
    base = _basename(lowered)
    if base and base != lowered:
        forms.append(base)
    return forms


def token_forms(word: str) -> list[str]:
    """Case-folded tokens for a word: itself, de-dashed, and path parts."""
    lowered = word.lower()
    stripped = lowered.lstrip("-")
    forms = [lowered, stripped]
    if "/" in stripped:
        forms.extend(stripped.split("/"))
    return [form for form in forms if form]


# ── Structural pass ─────────────────────────────────────


def _children(node: Any) -> Iterable[Any]:
    for attr in ("parts", "list"):
        for child in getattr(node, attr, None) or ():
            yield child
    for attr in ("command", "body", "output"):
        child = getattr(node, attr, None)
        # redirect targets can be plain file descriptor ints
        if hasattr(child, "kind"):
            yield child


def _visit_command(node: Any, analysis: ShellAnalysis, depth: int) -> None:
    words = [part.word for part in node.parts if part.kind == "word"]
    if not words:
        return

    for word in words:
        analysis.add_tokens(token_forms(word))

    # Follow wrappers: `sudo -u admin rm x` runs rm
    index = 0
    analysis.add_actions(action_forms(words[0]))
    while _basename(words[index].lower()) in WRAPPER_COMMANDS:
        following = next(
            (
                k for k in range(index + 1, len(words))
                if not words[k].startswith("-")
                and not _ASSIGNMENT.match(words[k])
                and not _WRAPPER_VALUE.match(words[k])
            ),
            None,
        )
        if following is None:
            break
        index = following
        analysis.add_actions(action_forms(words[index]))

    operands = words[index + 1:]
    analysis.add_paths(word for word in operands if not word.startswith("-"))

    # `bash -c "<script>"` carries a whole command line in one word
    if _basename(words[index].lower()) in SHELL_COMMANDS and depth < MAX_NESTING:
        for k, word in enumerate(operands[:-1]):
            if word == "-c":
                analysis.merge(_analyze(operands[k + 1], depth + 1))
                break


def _walk(node: Any, analysis: ShellAnalysis, depth: int) -> None:
    if node.kind == "command":
        _visit_command(node, analysis, depth)
    for child in _children(node):
        _walk(child, analysis, depth)


def parse_structure(command: str, depth: int = 0) -> StructuralParse:
    """Run the bashlex pass over ``command``.

    Returns:
        A StructuralParse; ``ok`` is False when bashlex rejects the input.
    """
    try:
        trees = bashlex.parse(command)
    except Exception as e:  # bashlex raises ParsingError, NotImplementedError, ...
        logger.debug(f"Structural parse failed for {command!r}: {e}")
        return StructuralParse(ok=False, error=str(e))

    analysis = ShellAnalysis()
    for tree in trees:
        _walk(tree, analysis, depth)
    return StructuralParse(ok=True, analysis=analysis)


# ── Lexical pass ────────────────────────────────────────


def split_lexically(command: str) -> ShellAnalysis:
    """Tokenize ``command`` without parsing it."""
    text = _ESCAPE.sub(r"\1", command)
    text = _IFS.sub(" ", text)
    text = _QUOTING.sub(" ", text)

    analysis = ShellAnalysis()
    for segment in _SEGMENT_SPLIT.split(text):
        words = segment.split()
        while words and _ASSIGNMENT.match(words[0]):
            words = words[1:]
        if not words:
            continue

        for word in words:
            analysis.add_tokens(token_forms(word))

        # A segment that opens with a flag continues a substituted command
        if words[0].startswith("-"):
            operands = words
        else:
            analysis.add_actions(action_forms(words[0]))
            operands = words[1:]
        analysis.add_paths(word for word in operands if not word.startswith("-"))

    return analysis


# ── Entry point ─────────────────────────────────────────


def _analyze(command: str, depth: int) -> ShellAnalysis:
    analysis = ShellAnalysis()
    parsed = parse_structure(command, depth)
    if parsed.ok:
        analysis.merge(parsed.analysis)
    analysis.merge(split_lexically(command))
    return analysis


def analyze(command: str) -> ShellAnalysis:
    """Analyze a shell command string.

    Args:
        command: The raw command an agent wants to run.

    Returns:
        The union of the structural and lexical findings.
    """
    return _analyze(command, depth=0)
