"""Line-range patching of artifact content."""
from artifact_engine.core.artifact_types import LineRange
from artifact_engine.core.errors import InvalidRange

LINE_SEPARATOR = "\n"


def clamp_range(line_count: int, line_range: LineRange) -> LineRange:
    """
    Clamp both bounds of a range to lines 1..line_count.

    Raises:
        InvalidRange: If the clamped start is after the clamped end
    """
    last = max(line_count, 1)
    start = min(max(line_range.start, 1), last)
    end = min(max(line_range.end, 1), last)
    if start > end:
        raise InvalidRange(line_range.start, line_range.end, line_count)
    return LineRange(start, end)


def patch(original: str, replacement: str, line_range: LineRange) -> str:
    """
    Replace an inclusive, 1-indexed block of lines with new lines.

    Both bounds are clamped to the existing lines, so a range past the end
    of the content targets the last line.

    Args:
        original: Existing content
        replacement: Lines to splice in (may span any number of lines)
        line_range: Inclusive 1-indexed range to replace

    Returns:
        Patched content joined with "\\n"

    Raises:
        InvalidRange: If the clamped start is after the clamped end

    Example:
        >>> patch("a\\nb\\nc\\nd", "X\\nY", LineRange(2, 3))
        'a\\nX\\nY\\nd'
    """
    lines = original.split(LINE_SEPARATOR)
    target = clamp_range(len(lines), line_range)
    start = target.start - 1
    end = target.end - 1

    before = lines[:start]
    after = lines[end + 1:]
    replacement_lines = replacement.split(LINE_SEPARATOR)

    return LINE_SEPARATOR.join(before + replacement_lines + after)
