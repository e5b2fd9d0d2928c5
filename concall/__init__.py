"""
concall package

Ingests earnings-call ("concall") transcript announcements from the exchange
disclosure feed, asks Gemini for the management guidance line of each transcript,
stores the result, and streams visit analytics to connected dashboards.
"""

__version__ = "0.3.0"
