"""
Tokenized safety validation for generated shell commands.

Generated commands are never executed here; this module decides whether one
may be handed to the user at all. Checks run in order and stop at the first
failure:

1. Denylist: known-destructive forms, matched both as patterns over the raw
   text and on tokenized simple commands (so ``/bin/rm``, ``sudo rm`` and
   ``\\rm`` are all seen as ``rm``).
2. Structure: the text must tokenize as one plausible shell statement.
3. Safe mode: every simple command must be confidently read-only.

Commands that are neither denylisted nor known to be read-only pass in normal
mode and fail in safe mode.

Usage:
    from askcmd.core.security.command import validate_command, CommandVerdict

    verdict, reason = validate_command("find . -name '*.py'", safe_mode=True)
    if verdict != CommandVerdict.ALLOWED:
        print(f"Blocked: {reason}")
"""

from __future__ import annotations

import re
import shlex
import unicodedata
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable


class CommandVerdict(Enum):
    """Result of command validation."""

    ALLOWED = auto()
    BLOCKED_DENYLIST = auto()
    BLOCKED_STRUCTURE = auto()
    BLOCKED_NOT_READ_ONLY = auto()


class RiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


_RISK_RANK = {RiskLevel.NONE: 0, RiskLevel.LOW: 1, RiskLevel.MODERATE: 2, RiskLevel.HIGH: 3}


@dataclass(frozen=True)
class SafetyWarning:
    """Display-only risk assessment of a command."""

    level: RiskLevel
    message: str
    reasons: tuple[str, ...] = ()

    @property
    def is_risky(self) -> bool:
        return self.level != RiskLevel.NONE


# ---------------------------------------------------------------------------
# Denylist
# ---------------------------------------------------------------------------

_SHELLS = r"(?:ba|z|da|k|c|tc|fi)?sh"
_INTERPRETERS = r"(?:python\d*(?:\.\d+)?|perl|ruby|node|nodejs|php|lua)"

DENYLIST_PATTERNS: dict[str, re.Pattern[str]] = {
    "no-preserve-root deletion": re.compile(r"--no-preserve-root\b"),
    "raw disk write": re.compile(
        r"\bdd\b[^|;&]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)"
    ),
    "redirect into a block device": re.compile(
        r">\s*/dev/(?:sd|hd|vd|xvd|nvme|mmcblk|disk|rdisk|md|mapper/)\w*"
    ),
    "fork bomb": re.compile(r"(?P<name>[\w:.]+)\s*\(\s*\)\s*\{[^}]*(?P=name)\s*\|\s*(?P=name)"),
    "downloaded code piped to an interpreter": re.compile(
        rf"\b(?:curl|wget|fetch)\b[^|;&]*\|\s*(?:sudo\s+)?(?:{_SHELLS}|{_INTERPRETERS})\b"
    ),
    "decoded code piped to an interpreter": re.compile(
        rf"\b(?:base64\s+(?:-d|-D|--decode)|xxd\s+-r|openssl\s+(?:enc\s+|base64\s+)?-d)\b"
        rf"[^;&]*\|\s*(?:sudo\s+)?(?:{_SHELLS}|{_INTERPRETERS})\b"
    ),
    "recursive permission change on /": re.compile(
        r"\b(?:chmod|chown|chgrp)\s+(?:\S+\s+)*?(?:-\w*R\w*|--recursive)\s+(?:\S+\s+)*?/\*?(?:\s|$)"
    ),
    "system account file overwrite": re.compile(
        r"(?:>|\btee\b(?:\s+-a)?)\s*/etc/(?:passwd|shadow|gshadow|group|sudoers)\b"
    ),
    "crontab removal": re.compile(r"\bcrontab\s+(?:-\w+\s+)*-\w*r\b"),
    "device shredding": re.compile(r"\bshred\b[^|;&]*\s/dev/"),
    "home moved to /dev/null": re.compile(r"\bmv\s+(?:\S+\s+)*(?:~|\$HOME|/)\S*\s+/dev/null\b"),
}

DENYLIST_BINARIES: frozenset[str] = frozenset(
    {
        "shutdown",
        "reboot",
        "halt",
        "poweroff",
        "telinit",
        "wipefs",
        "mke2fs",
        "mkswap",
    }
)

_PARTITION_TOOLS: frozenset[str] = frozenset(
    {"fdisk", "sfdisk", "cfdisk", "gdisk", "sgdisk", "parted"}
)

# Deleting any of these recursively is never what the user meant
CRITICAL_PATHS: frozenset[str] = frozenset(
    {
        "/",
        "*",
        ".",
        "..",
        "~",
        "$HOME",
        "${HOME}",
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/home",
        "/lib",
        "/lib64",
        "/opt",
        "/proc",
        "/root",
        "/sbin",
        "/srv",
        "/sys",
        "/usr",
        "/var",
        "/System",
        "/Users",
        "/Applications",
        "/Library",
    }
)
# find's filters narrow a "." or "*" walk; only absolute and home roots are denied
_FIND_CRITICAL_ROOTS: frozenset[str] = CRITICAL_PATHS - {".", "..", "*"}
_FIND_EXEC_ACTIONS = frozenset({"-exec", "-execdir", "-ok", "-okdir"})
_NESTED_SHELLS = frozenset({"sh", "bash", "zsh", "dash", "ksh"})
_MAX_NESTING = 3

# ---------------------------------------------------------------------------
# Read-only classification
# ---------------------------------------------------------------------------

READ_ONLY_BINARIES: frozenset[str] = frozenset(
    {
        # Directory listing
        "ls",
        "dir",
        "tree",
        "exa",
        "eza",
        "lsd",
        # File reading
        "cat",
        "tac",
        "head",
        "tail",
        "less",
        "more",
        "bat",
        "batcat",
        "nl",
        "od",
        "hexdump",
        "strings",
        "zcat",
        # Search
        "grep",
        "egrep",
        "fgrep",
        "zgrep",
        "rg",
        "ag",
        "find",
        "fd",
        "fdfind",
        "locate",
        # Git (read operations only - validated separately)
        "git",
        # Text utilities
        "wc",
        "sort",
        "uniq",
        "cut",
        "tr",
        "column",
        "rev",
        "fold",
        "sed",
        "diff",
        "cmp",
        "comm",
        "jq",
        "yq",
        # Paths and lookups
        "pwd",
        "realpath",
        "readlink",
        "dirname",
        "basename",
        "which",
        "whereis",
        "type",
        "command",
        "file",
        "stat",
        "du",
        "df",
        "md5sum",
        "sha1sum",
        "sha256sum",
        "cksum",
        # System information
        "ps",
        "pgrep",
        "lsof",
        "id",
        "whoami",
        "groups",
        "who",
        "uname",
        "uptime",
        "free",
        "nproc",
        "lsblk",
        "lscpu",
        "env",
        "printenv",
        # Output and arithmetic
        "echo",
        "printf",
        "seq",
        "expr",
        "date",
        "cal",
        "true",
        "false",
        "test",
        "[",
    }
)

# Git subcommands that are safe (read-only)
ALLOWED_GIT_SUBCOMMANDS: frozenset[str] = frozenset(
    {
        "status",
        "diff",
        "log",
        "show",
        "branch",
        "tag",
        "stash",
        "remote",
        "config",
        "reflog",
        "grep",
        "ls-files",
        "ls-tree",
        "ls-remote",
        "rev-parse",
        "rev-list",
        "describe",
        "shortlog",
        "blame",
        "annotate",
        "for-each-ref",
        "cat-file",
        "name-rev",
        "merge-base",
        "version",
        "help",
    }
)

# Git subcommands that are dangerous
FORBIDDEN_GIT_SUBCOMMANDS: frozenset[str] = frozenset(
    {
        "push",
        "pull",
        "fetch",
        "commit",
        "add",
        "rm",
        "mv",
        "reset",
        "revert",
        "rebase",
        "merge",
        "checkout",
        "switch",
        "restore",
        "clean",
        "gc",
        "prune",
        "filter-branch",
        "filter-repo",
        "submodule",
        "clone",
        "init",
        "am",
        "apply",
        "cherry-pick",
    }
)

_GIT_GLOBAL_VALUE_OPTIONS = frozenset({"-C", "-c", "--git-dir", "--work-tree", "--namespace"})
_GIT_LISTING_FLAGS = frozenset(
    {
        "-a",
        "--all",
        "-r",
        "--remotes",
        "-v",
        "-vv",
        "--verbose",
        "-l",
        "--list",
        "-n",
        "--contains",
        "--no-contains",
        "--merged",
        "--no-merged",
        "--points-at",
        "--show-current",
        "--sort",
        "--format",
        "--column",
        "--no-column",
        "--color",
        "--no-color",
        "-i",
        "--ignore-case",
    }
)
_GIT_CONFIG_READ_FLAGS = frozenset(
    {"--get", "--get-all", "--get-regexp", "--get-urlmatch", "-l", "--list"}
)
_GIT_CONFIG_WRITE_FLAGS = frozenset(
    {"--unset", "--unset-all", "--add", "--replace-all", "--rename-section", "--remove-section", "-e", "--edit"}
)
# Flags that make branch/tag treat a positional as a filter rather than a new name
_GIT_LISTING_SELECTORS = frozenset(
    {"-l", "--list", "--contains", "--no-contains", "--merged", "--no-merged", "--points-at", "--sort", "--format"}
)

_FIND_ACTIONS = frozenset(
    {"-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprint0", "-fprintf", "-fls"}
)
_NULL_TARGETS = frozenset({"/dev/null", "/dev/stdout", "/dev/stderr", "-"})
_SUBSTITUTION_MARKERS = ("`", "$(", "<(", ">(")
_SED_SCRIPT_WRITE = re.compile(r"(?:^|[/;{}])\s*[0-9$,]*[wWe](?:\s|$)")

# Programs that run another program given on their own command line
_WRAPPERS: dict[str, frozenset[str]] = {
    "sudo": frozenset({"-u", "-g", "-h", "-p", "-C", "-D", "-r", "-t", "-U"}),
    "doas": frozenset({"-u", "-C"}),
    "nohup": frozenset(),
    "exec": frozenset({"-a"}),
    "time": frozenset({"-f", "-o", "--format", "--output"}),
    "nice": frozenset({"-n", "--adjustment"}),
    "ionice": frozenset({"-c", "-n", "-p"}),
    "env": frozenset({"-u", "-C", "-S", "--unset", "--chdir"}),
    "command": frozenset(),
    "timeout": frozenset({"-s", "-k", "--signal", "--kill-after"}),
    "stdbuf": frozenset({"-i", "-o", "-e"}),
    "xargs": frozenset({"-I", "-n", "-P", "-L", "-d", "-s", "-E", "-a"}),
}
_WRAPPER_POSITIONALS: dict[str, int] = {"timeout": 1}
_READ_ONLY_WRAPPERS = frozenset({"env", "command", "time", "nice", "timeout", "stdbuf", "xargs"})
_WRITING_WRAPPER_OPTIONS: dict[str, frozenset[str]] = {"time": frozenset({"-o", "--output"})}

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_PUNCTUATION = frozenset("();<>|&")
_DANGLING_START = frozenset({";", "&", "&&", "||", "|", "|&", ";;"})


def _binary_name(token: str) -> str:
    """Extract the binary name from a command token."""
    # Handle full paths like /usr/bin/rm
    return Path(token).name.lower()


def _is_operator(token: str) -> bool:
    return bool(token) and all(ch in _PUNCTUATION for ch in token)


def _is_redirect(token: str) -> bool:
    return "<" in token or ">" in token


def _tokenize(command: str) -> list[str]:
    """Split into words and operator tokens. Raises ValueError on bad quoting."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    return list(lexer)


@dataclass
class _ParsedCommand:
    segments: list[list[str]] = field(default_factory=list)
    redirect_targets: list[str] = field(default_factory=list)
    paren_balanced: bool = True
    dangling_redirect: bool = False


def _parse(tokens: list[str]) -> _ParsedCommand:
    """Group tokens into simple commands and collect output redirect targets."""
    parsed = _ParsedCommand()
    current: list[str] = []
    depth = 0
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if not _is_operator(token):
            current.append(token)
            index += 1
            continue

        for ch in token:
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth < 0:
                    parsed.paren_balanced = False

        if _is_redirect(token):
            # "2>" tokenizes as "2" ">"; the fd number is not an argument
            if current and current[-1].isdigit():
                current.pop()
            target = tokens[index + 1] if index + 1 < len(tokens) else ""
            if not target or _is_operator(target):
                parsed.dangling_redirect = True
            elif ">" in token:
                parsed.redirect_targets.append(target)
            index += 2
            continue

        if current:
            parsed.segments.append(current)
        current = []
        index += 1

    if current:
        parsed.segments.append(current)
    if depth != 0:
        parsed.paren_balanced = False
    return parsed


def _unwrap(argv: list[str]) -> tuple[list[list[str]], list[str]]:
    """Peel variable assignments and wrapper programs off a simple command.

    Returns the wrapper invocations and the argv of the program that actually runs.
    """
    wrappers: list[list[str]] = []
    args = list(argv)
    while args:
        while args and _ASSIGNMENT.match(args[0]):
            args.pop(0)
        if not args:
            break
        name = _binary_name(args[0])
        if name not in _WRAPPERS:
            break
        if name == "command" and len(args) > 1 and args[1] in ("-v", "-V"):
            break

        consumed = [args.pop(0)]
        value_options = _WRAPPERS[name]
        positionals = _WRAPPER_POSITIONALS.get(name, 0)
        while args:
            token = args[0]
            if token == "--":
                consumed.append(args.pop(0))
                break
            if token.startswith("-") and len(token) > 1:
                consumed.append(args.pop(0))
                if token in value_options and args:
                    consumed.append(args.pop(0))
                continue
            if name == "env" and _ASSIGNMENT.match(token):
                consumed.append(args.pop(0))
                continue
            if positionals:
                consumed.append(args.pop(0))
                positionals -= 1
                continue
            break
        wrappers.append(consumed)
    return wrappers, args


def _split_flags(args: list[str]) -> tuple[list[str], list[str]]:
    flags: list[str] = []
    operands: list[str] = []
    end_of_options = False
    for token in args:
        if not end_of_options and token == "--":
            end_of_options = True
        elif not end_of_options and token.startswith("-") and len(token) > 1:
            flags.append(token)
        else:
            operands.append(token)
    return flags, operands


def _has_short_flag(flags: list[str], letters: str) -> bool:
    return any(
        not flag.startswith("--") and any(letter in flag[1:] for letter in letters)
        for flag in flags
    )


def _is_recursive(flags: list[str]) -> bool:
    return "--recursive" in flags or _has_short_flag(flags, "rR")


def _normalize_target(target: str) -> str:
    if target.endswith("/*") and len(target) > 2:
        target = target[:-2]
    stripped = target.rstrip("/")
    return stripped or "/"


def _shell_script(args: list[str]) -> str | None:
    """Return the ``-c`` script of a shell invocation, if any."""
    for index, token in enumerate(args):
        if token == "--" or not token.startswith("-"):
            return None
        if token.startswith("--"):
            continue
        if "c" in token[1:]:
            return args[index + 1] if index + 1 < len(args) else None
    return None


def _find_deletes_critical_path(args: list[str]) -> str | None:
    roots: list[str] = []
    for token in args:
        if token.startswith("-") or token in ("(", "!"):
            break
        roots.append(token)
    critical = [
        root
        for root in roots
        if root in ("/*", "~/*", "$HOME/*") or _normalize_target(root) in _FIND_CRITICAL_ROOTS
    ]
    if not critical:
        return None

    for index, token in enumerate(args):
        if token == "-delete":
            return f"find deletion under {critical[0]}"
        if token in _FIND_EXEC_ACTIONS and index + 1 < len(args):
            if _binary_name(args[index + 1]) in ("rm", "shred", "unlink"):
                return f"find deletion under {critical[0]}"
    return None


def _denylisted_segment(argv: list[str], depth: int = 0) -> str | None:
    _, args = _unwrap(argv)
    if not args:
        return None
    binary = _binary_name(args[0])

    if binary in _NESTED_SHELLS:
        script = _shell_script(args[1:])
        if script is not None:
            return _denylist_reason(script, depth + 1)
    if binary == "eval":
        return _denylist_reason(" ".join(args[1:]), depth + 1)
    if binary == "find":
        return _find_deletes_critical_path(args[1:])

    flags, operands = _split_flags(args[1:])

    if binary in DENYLIST_BINARIES or binary.startswith("mkfs"):
        return f"{binary} is a destructive system command"
    if binary in _PARTITION_TOOLS and not ({"-l", "--list"} & set(flags)):
        return f"{binary} modifies disk partitions"
    if binary in ("init", "telinit") and {"0", "6"} & set(operands):
        return f"{binary} changes the system runlevel"
    if binary == "systemctl" and {"poweroff", "reboot", "halt", "kexec"} & set(operands):
        return "systemctl power action"
    if binary == "rm" and _is_recursive(flags):
        for target in operands:
            if target in ("/*", "~/*", "$HOME/*") or _normalize_target(target) in CRITICAL_PATHS:
                return f"recursive deletion of {target}"
    return None


def find_denylist_match(command: str) -> str | None:
    """Return a description of the first destructive form found, or None.

    Scripts passed to ``sh -c`` (and the other shells) and to ``eval`` are
    checked as commands of their own.
    """
    return _denylist_reason(command, 0)


def _denylist_reason(command: str, depth: int) -> str | None:
    if depth > _MAX_NESTING:
        return "deeply nested shell invocation"
    for description, pattern in DENYLIST_PATTERNS.items():
        if pattern.search(command):
            return description

    try:
        # Backtick bodies are commands too; exposing them as separate segments
        tokens = _tokenize(command.replace("`", " ; "))
    except ValueError:
        return None
    for segment in _parse(tokens).segments:
        if reason := _denylisted_segment(segment, depth):
            return reason
    return None


def _structure_problem(command: str) -> str | None:
    if not command.strip():
        return "Empty command"
    for ch in command:
        if ch in "\n\r" or unicodedata.category(ch) in ("Cc", "Cf"):
            return f"Control character in command: {ch!r}"
    try:
        tokens = _tokenize(command)
    except ValueError as exc:
        return f"Unparseable command: {exc}"
    if not tokens:
        return "Empty command after parsing"
    if tokens[0] in _DANGLING_START:
        return f"Command starts with control operator {tokens[0]!r}"
    last = tokens[-1]
    if _is_operator(last) and (_is_redirect(last) or "|" in last or last == "&&"):
        return f"Command ends with operator {last!r}"

    parsed = _parse(tokens)
    if not parsed.paren_balanced:
        return "Unbalanced parentheses"
    if parsed.dangling_redirect:
        return "Redirection without a target"
    return None


# ---------------------------------------------------------------------------
# Per-binary argument checks for safe mode
# ---------------------------------------------------------------------------


def _check_git(args: list[str]) -> str | None:
    index = 0
    while index < len(args) and args[index].startswith("-"):
        option = args[index]
        index += 2 if option in _GIT_GLOBAL_VALUE_OPTIONS else 1
    if index >= len(args):
        return None  # bare git or git --version

    subcommand = args[index].lower()
    rest = args[index + 1 :]
    flags, operands = _split_flags(rest)
    flag_names = {flag.split("=", 1)[0] for flag in flags}

    if subcommand in FORBIDDEN_GIT_SUBCOMMANDS:
        return f"Git subcommand not allowed: {subcommand}"
    if subcommand not in ALLOWED_GIT_SUBCOMMANDS:
        return f"Git subcommand not in allowlist: {subcommand}"
    if "--output" in flag_names:
        return "git --output writes a file"

    if subcommand in ("branch", "tag"):
        if flag_names - _GIT_LISTING_FLAGS:
            return f"git {subcommand} with modifying flags"
        if operands and not flag_names & _GIT_LISTING_SELECTORS:
            return f"git {subcommand} with a name creates it"
    elif subcommand == "stash":
        if not operands or operands[0] not in ("list", "show"):
            return "git stash may modify the working tree"
    elif subcommand == "remote":
        if operands and operands[0] not in ("show", "get-url"):
            return f"git remote {operands[0]} modifies remotes"
    elif subcommand == "config":
        if flag_names & _GIT_CONFIG_WRITE_FLAGS:
            return "git config may write settings"
        if not flag_names & _GIT_CONFIG_READ_FLAGS and len(operands) != 1:
            return "git config may write settings"
    elif subcommand == "reflog":
        if operands and operands[0] in ("expire", "delete", "drop"):
            return f"git reflog {operands[0]} modifies the reflog"
    return None


def _check_find(args: list[str]) -> str | None:
    for token in args:
        if token in _FIND_ACTIONS:
            return f"find {token} is not read-only"
    return None


def _check_sed(args: list[str]) -> str | None:
    scripts: list[str] = []
    operands: list[str] = []
    index = 0
    while index < len(args):
        token = args[index]
        if token in ("-e", "--expression") and index + 1 < len(args):
            scripts.append(args[index + 1])
            index += 2
            continue
        if token.startswith("--expression="):
            scripts.append(token.split("=", 1)[1])
        elif token.startswith("--in-place") or (
            token.startswith("-") and not token.startswith("--") and "i" in token[1:]
        ):
            return "sed -i edits files in place"
        elif not token.startswith("-"):
            operands.append(token)
        index += 1
    if not scripts and operands:
        scripts.append(operands[0])
    for script in scripts:
        if _SED_SCRIPT_WRITE.search(script):
            return "sed script writes files or runs commands"
    return None


def _check_sort(args: list[str]) -> str | None:
    for token in args:
        if token == "--output" or token.startswith("--output="):
            return "sort --output writes a file"
        if token.startswith("-") and not token.startswith("--"):
            for letter in token[1:]:
                if letter == "o":
                    return "sort -o writes a file"
                if letter in "ktST":
                    break
    return None


def _check_uniq(args: list[str]) -> str | None:
    operands: list[str] = []
    index = 0
    while index < len(args):
        token = args[index]
        if token in ("-f", "-s", "-w"):
            index += 2
            continue
        if not token.startswith("-") or token == "-":
            operands.append(token)
        index += 1
    if len(operands) > 1:
        return "uniq with an output file writes it"
    return None


def _check_date(args: list[str]) -> str | None:
    index = 0
    while index < len(args):
        token = args[index]
        if token in ("-s", "--set") or token.startswith("--set="):
            return "date --set changes the system clock"
        if token in ("-d", "--date", "-f", "--file", "-r", "--reference"):
            index += 2
            continue
        if not token.startswith(("-", "+")):
            return "date with an operand sets the system clock"
        index += 1
    return None


def _forbid_flags(*names: str) -> Callable[[list[str]], str | None]:
    forbidden = frozenset(names)

    def check(args: list[str]) -> str | None:
        for token in args:
            if token.split("=", 1)[0] in forbidden:
                return f"{token} is not read-only"
        return None

    return check


_ARGUMENT_CHECKS: dict[str, Callable[[list[str]], str | None]] = {
    "git": _check_git,
    "find": _check_find,
    "sed": _check_sed,
    "sort": _check_sort,
    "uniq": _check_uniq,
    "date": _check_date,
    "tree": _forbid_flags("-o"),
    "fd": _forbid_flags("-x", "--exec", "-X", "--exec-batch"),
    "fdfind": _forbid_flags("-x", "--exec", "-X", "--exec-batch"),
    "rg": _forbid_flags("--pre"),
    "yq": _forbid_flags("-i", "--inplace"),
}


def _segment_not_read_only(argv: list[str]) -> str | None:
    wrappers, args = _unwrap(argv)
    for wrapper in wrappers:
        name = _binary_name(wrapper[0])
        if name not in _READ_ONLY_WRAPPERS:
            return f"{name} is not read-only"
        if set(wrapper[1:]) & _WRITING_WRAPPER_OPTIONS.get(name, frozenset()):
            return f"{name} writes an output file"
    if not args:
        return None

    binary = _binary_name(args[0])
    if binary not in READ_ONLY_BINARIES:
        return f"{binary} is not a known read-only command"
    check = _ARGUMENT_CHECKS.get(binary)
    return check(args[1:]) if check else None


def _not_read_only_reason(command: str) -> str | None:
    for marker in _SUBSTITUTION_MARKERS:
        if marker in command:
            return f"Command substitution {marker!r} is not allowed in safe mode"
    try:
        parsed = _parse(_tokenize(command))
    except ValueError as exc:
        return f"Unparseable command: {exc}"
    if not parsed.segments:
        return "Empty command"
    for target in parsed.redirect_targets:
        if target not in _NULL_TARGETS and not target.isdigit():
            return f"Output redirection to {target} is not read-only"
    for segment in parsed.segments:
        if reason := _segment_not_read_only(segment):
            return reason
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_command(command: str, safe_mode: bool = False) -> tuple[CommandVerdict, str]:
    """
    Validate a generated command before it is shown to the user.

    Args:
        command: The single-line command to validate
        safe_mode: If True, only read-only commands are accepted

    Returns:
        Tuple of (verdict, reason) where reason explains the decision
    """
    if reason := find_denylist_match(command):
        return CommandVerdict.BLOCKED_DENYLIST, f"Destructive command: {reason}"

    if reason := _structure_problem(command):
        return CommandVerdict.BLOCKED_STRUCTURE, reason

    if safe_mode and (reason := _not_read_only_reason(command)):
        return CommandVerdict.BLOCKED_NOT_READ_ONLY, reason

    return CommandVerdict.ALLOWED, "OK"


def is_command_safe(command: str, safe_mode: bool = False) -> bool:
    """Convenience function returning True if command is safe."""
    verdict, _ = validate_command(command, safe_mode)
    return verdict == CommandVerdict.ALLOWED


def is_read_only(command: str) -> bool:
    """True when every part of ``command`` is a known read-only operation."""
    return _not_read_only_reason(command) is None


_VERB_RISK: dict[str, tuple[RiskLevel, str]] = {
    "dd": (RiskLevel.HIGH, "dd writes raw data"),
    "shred": (RiskLevel.HIGH, "shred destroys file contents"),
    "rm": (RiskLevel.MODERATE, "deletes files"),
    "rmdir": (RiskLevel.LOW, "removes directories"),
    "mv": (RiskLevel.MODERATE, "moves or renames files"),
    "truncate": (RiskLevel.MODERATE, "truncates files"),
    "chmod": (RiskLevel.MODERATE, "changes permissions"),
    "chown": (RiskLevel.MODERATE, "changes ownership"),
    "chgrp": (RiskLevel.MODERATE, "changes group ownership"),
    "kill": (RiskLevel.MODERATE, "signals processes"),
    "pkill": (RiskLevel.MODERATE, "signals processes by name"),
    "killall": (RiskLevel.MODERATE, "signals processes by name"),
    "cp": (RiskLevel.LOW, "may overwrite files"),
    "tee": (RiskLevel.LOW, "writes files"),
    "ln": (RiskLevel.LOW, "creates links"),
}


def _git_risk(args: list[str]) -> tuple[RiskLevel, str] | None:
    flags, operands = _split_flags(args)
    if not operands:
        return None
    subcommand = operands[0]
    if subcommand == "push" and ({"--force", "--force-with-lease"} & set(flags) or _has_short_flag(flags, "f")):
        return RiskLevel.HIGH, "force-pushes history"
    if subcommand == "reset" and "--hard" in flags:
        return RiskLevel.HIGH, "discards uncommitted changes"
    if subcommand == "clean" and ("--force" in flags or _has_short_flag(flags, "f")):
        return RiskLevel.HIGH, "deletes untracked files"
    if subcommand in FORBIDDEN_GIT_SUBCOMMANDS:
        return RiskLevel.LOW, f"git {subcommand} modifies the repository"
    return None


def _segment_risks(argv: list[str]) -> list[tuple[RiskLevel, str]]:
    risks: list[tuple[RiskLevel, str]] = []
    wrappers, args = _unwrap(argv)
    for wrapper in wrappers:
        if _binary_name(wrapper[0]) in ("sudo", "doas"):
            risks.append((RiskLevel.MODERATE, "runs with elevated privileges"))
    if not args:
        return risks

    binary = _binary_name(args[0])
    flags, _ = _split_flags(args[1:])
    if binary == "rm" and _is_recursive(flags) and ("--force" in flags or _has_short_flag(flags, "f")):
        risks.append((RiskLevel.HIGH, "forced recursive deletion"))
    elif binary in ("chmod", "chown", "chgrp") and _is_recursive(flags):
        risks.append((RiskLevel.HIGH, "recursive permission change"))
    elif binary in _VERB_RISK:
        risks.append(_VERB_RISK[binary])
    elif binary == "git" and (git_risk := _git_risk(args[1:])):
        risks.append(git_risk)
    elif binary == "find" and (reason := _check_find(args[1:])):
        risks.append((RiskLevel.MODERATE, reason))
    elif binary == "sed" and (reason := _check_sed(args[1:])):
        risks.append((RiskLevel.MODERATE, reason))
    return risks


def generate_safety_warning(command: str) -> SafetyWarning:
    """Classify how risky ``command`` looks, for display only.

    Never affects whether the command is accepted; ``validate_command`` decides that.
    """
    risks: list[tuple[RiskLevel, str]] = []
    if reason := find_denylist_match(command):
        risks.append((RiskLevel.HIGH, reason))

    try:
        parsed = _parse(_tokenize(command))
    except ValueError:
        risks.append((RiskLevel.MODERATE, "command could not be parsed"))
    else:
        for segment in parsed.segments:
            risks.extend(_segment_risks(segment))
        for target in parsed.redirect_targets:
            if target not in _NULL_TARGETS and not target.isdigit():
                risks.append((RiskLevel.MODERATE, f"writes output to {target}"))

    if not risks and not is_read_only(command):
        risks.append((RiskLevel.LOW, "not a recognized read-only command"))

    if not risks:
        return SafetyWarning(level=RiskLevel.NONE, message="No risks detected")

    level = max((risk for risk, _ in risks), key=_RISK_RANK.__getitem__)
    reasons = tuple(dict.fromkeys(reason for _, reason in risks))
    return SafetyWarning(
        level=level,
        message=f"{level.value.capitalize()} risk: {'; '.join(reasons)}",
        reasons=reasons,
    )


__all__ = [
    "ALLOWED_GIT_SUBCOMMANDS",
    "CRITICAL_PATHS",
    "DENYLIST_BINARIES",
    "DENYLIST_PATTERNS",
    "FORBIDDEN_GIT_SUBCOMMANDS",
    "READ_ONLY_BINARIES",
    "CommandVerdict",
    "RiskLevel",
    "SafetyWarning",
    "find_denylist_match",
    "generate_safety_warning",
    "is_command_safe",
    "is_read_only",
    "validate_command",
]
