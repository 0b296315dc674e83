# ABOUTME: Splits chapter text into bounded chunks for the full-text index.
# ABOUTME: Prefers sentence or line boundaries in the back half of each window.

DEFAULT_CHUNK_SIZE = 10_000


def chunk_text(text: str, max_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split ``text`` into trimmed chunks of at most ``max_size`` characters.

    Each window ends just after the last "." or newline inside it when that
    boundary falls past the window's midpoint; otherwise the window is cut
    hard at ``max_size``. Chunks that are empty after trimming are dropped.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")

    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = start + max_size
        if end < length:
            breakpoint_at = max(text.rfind(".", start, end), text.rfind("\n", start, end))
            if breakpoint_at > start + max_size // 2:
                end = breakpoint_at + 1
        else:
            end = length
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        start = end
    return chunks
