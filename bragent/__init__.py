"""
Bragent - an LLM agent that completes tasks in a web browser.

Drives the user's own browser through an extension relay, or a local
Chromium through Playwright, one observed step at a time with security
confirmations for risky actions.
"""

__version__ = "0.1.0"
__author__ = "Bragent Contributors"
