"""metrics-reporter: code-quality metrics reports for .NET solutions."""

__version__ = "0.1.0"
