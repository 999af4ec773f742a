"""Environment variable expansion and reference scanning.

Definitions may write ``${VAR}`` in environment values; the runner expands
them from the process environment before any stage runs. Shell scripts are
left for the shell to expand, but validation scans them for ``$VAR`` and
``${VAR}`` references.
"""

import re
from typing import Mapping, Set

# $VAR, ${VAR}, ${VAR:-default}; escaped \$VAR is ignored
_REFERENCE_PATTERN = re.compile(
    r"(?<!\\)\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?:[:?+=-][^}]*)?\}|([A-Za-z_][A-Za-z0-9_]*))"
)
_EXPANSION_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Set by every POSIX shell, never worth flagging as unbound
SHELL_BUILTIN_VARIABLES = frozenset(
    {"HOME", "PATH", "PWD", "OLDPWD", "SHELL", "USER", "IFS", "PPID", "RANDOM", "LINENO"}
)


def expand_variables(value: str, env: Mapping[str, str]) -> str:
    """Replace ``${VAR}`` with its value from ``env``; unknown names expand to "".

    Example:
        >>> expand_variables("token=${TOKEN}", {"TOKEN": "abc"})
        'token=abc'
    """
    return _EXPANSION_PATTERN.sub(lambda match: env.get(match.group(1), ""), value)


def referenced_variables(script: str) -> Set[str]:
    """Names of variables a shell snippet reads.

    Example:
        >>> sorted(referenced_variables("docker run --env A=$A ${B} $(pwd)"))
        ['A', 'B']
    """
    names = set()
    for braced, bare in _REFERENCE_PATTERN.findall(script):
        names.add(braced or bare)
    return names
