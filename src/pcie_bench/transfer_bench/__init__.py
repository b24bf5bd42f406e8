"""Host<->device transfer bandwidth benchmark.

This package times pinned-host <-> device copies on CUDA streams and compares
three transfer patterns: unidirectional, bidirectional (both directions
contending for the link at once), and sequential round-trip. Results are
printed as labeled sections followed by a summary table and a short heuristic
analysis of the link.
"""

from __future__ import annotations
