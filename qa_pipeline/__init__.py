"""Helper scripts called from the QA automation Jenkins pipelines."""

__VERSION__ = "1.0.0"
