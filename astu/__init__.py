"""All-Seeing Trace Utility: kubectl/fzf shortcuts and a concurrent port checker."""

__version__ = "0.3.0"
__commit__ = "none"
__date__ = "unknown"
__built_by__ = "source"
