"""Human-readable formatting helpers."""


def format_size(num_bytes: int) -> str:
    """Format a byte count as B, KB or MB with one decimal."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    elif num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    else:
        return f"{num_bytes / (1024 * 1024):.1f} MB"
