# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Helpers shared by the file-mutating tools: a line diff for approval previews,
preview truncation and atomic writes.
"""

import os
import tempfile

from pathlib import Path

PREVIEW_LIMIT = 2000
DIFF_CONTEXT = 3

# Above this many DP cells the diff degrades to a whole-file replacement
MAX_LCS_CELLS = 4_000_000


def truncate_preview(content: str, limit: int = PREVIEW_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + f"\n... ({len(content) - limit} more characters)"


def lcs_opcodes(old: list[str], new: list[str]) -> list[tuple[str, int, int, int, int]]:
    """Align two line sequences with a longest-common-subsequence table.

    The walk keeps the number of changed lines minimal, and on ties prefers
    consuming a line of the old side (a deletion) before one of the new side.

    Returns:
        difflib-style opcodes: (tag, i1, i2, j1, j2) with tags equal, delete,
        insert and replace.
    """
    n, m = len(old), len(new)
    if n * m > MAX_LCS_CELLS:
        if old == new:
            return [("equal", 0, n, 0, m)] if n else []
        return [("replace", 0, n, 0, m)]

    # table[i][j] is the LCS length of old[i:] and new[j:]
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row, below = table[i], table[i + 1]
        for j in range(m - 1, -1, -1):
            if old[i] == new[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = below[j] if below[j] >= row[j + 1] else row[j + 1]

    ops: list[tuple[str, int, int]] = []  # (tag, i, j) per line
    i = j = 0
    while i < n and j < m:
        if old[i] == new[j]:
            ops.append(("equal", i, j))
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            ops.append(("delete", i, j))
            i += 1
        else:
            ops.append(("insert", i, j))
            j += 1
    ops.extend(("delete", k, j) for k in range(i, n))
    ops.extend(("insert", n, k) for k in range(j, m))

    # Group per-line operations into runs, merging adjacent deletes and
    # inserts into a single replace
    opcodes: list[tuple[str, int, int, int, int]] = []
    for tag, i, j in ops:
        di, dj = (1, 1) if tag == "equal" else (1, 0) if tag == "delete" else (0, 1)
        if opcodes:
            last_tag, i1, i2, j1, j2 = opcodes[-1]
            changed = {last_tag, tag} <= {"delete", "insert", "replace"}
            if last_tag == tag or (changed and tag != "equal"):
                merged = last_tag if last_tag == tag else "replace"
                opcodes[-1] = (merged, i1, i2 + di, j1, j2 + dj)
                continue
        opcodes.append((tag, i, i + di, j, j + dj))
    return opcodes


def group_hunks(
    opcodes: list[tuple[str, int, int, int, int]], context: int = DIFF_CONTEXT
) -> list[list[tuple[str, int, int, int, int]]]:
    """Split opcodes into hunks, keeping at most `context` equal lines around
    each change."""
    codes = list(opcodes)
    if codes and codes[0][0] == "equal":
        tag, i1, i2, j1, j2 = codes[0]
        codes[0] = tag, max(i1, i2 - context), i2, max(j1, j2 - context), j2
    if codes and codes[-1][0] == "equal":
        tag, i1, i2, j1, j2 = codes[-1]
        codes[-1] = tag, i1, min(i2, i1 + context), j1, min(j2, j1 + context)

    hunks = []
    group: list[tuple[str, int, int, int, int]] = []
    for tag, i1, i2, j1, j2 in codes:
        # Long equal runs end one hunk and start the next
        if tag == "equal" and i2 - i1 > context * 2:
            group.append((tag, i1, min(i2, i1 + context), j1, min(j2, j1 + context)))
            hunks.append(group)
            group = []
            i1, j1 = max(i1, i2 - context), max(j1, j2 - context)
        group.append((tag, i1, i2, j1, j2))
    if group and not (len(group) == 1 and group[0][0] == "equal"):
        hunks.append(group)
    return hunks


NO_NEWLINE_MARKER = "\\ No newline at end of file"


def _diff_lines(prefix: str, lines: list[str]) -> list[str]:
    """Render lines kept with their endings, marking a missing final newline"""
    out = []
    for line in lines:
        text = line.splitlines()[0]
        out.append(prefix + text)
        if text == line:
            out.append(NO_NEWLINE_MARKER)
    return out


def unified_line_diff(old_content: str, new_content: str, path: str) -> str:
    """A unified-style diff between two versions of a file.

    Lines are compared with their line endings, so adding or removing the
    final newline shows up as a change. Returns "No changes" when the
    contents are identical.
    """
    if old_content == new_content:
        return "No changes"
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)

    opcodes = lcs_opcodes(old_lines, new_lines)
    out = [f"--- a/{path}", f"+++ b/{path}"]
    for group in group_hunks(opcodes):
        first, last = group[0], group[-1]
        old_start, old_len = first[1], last[2] - first[1]
        new_start, new_len = first[3], last[4] - first[3]
        out.append(
            f"@@ -{old_start + 1 if old_len else old_start},{old_len} "
            f"+{new_start + 1 if new_len else new_start},{new_len} @@"
        )
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                out.extend(_diff_lines(" ", old_lines[i1:i2]))
                continue
            out.extend(_diff_lines("-", old_lines[i1:i2]))
            out.extend(_diff_lines("+", new_lines[j1:j2]))
    return "\n".join(out)


def atomic_write(path: Path, content: str) -> None:
    """Write content via a temporary file in the same directory and rename it
    into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp.write(content)
        tmp_name = tmp.name
    try:
        os.replace(tmp_name, path)
    except OSError:
        os.unlink(tmp_name)
        raise
