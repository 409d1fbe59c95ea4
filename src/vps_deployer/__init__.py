"""Deploy Node.js web apps from git onto a single VPS over SSH."""

__version__ = "0.1.0"
