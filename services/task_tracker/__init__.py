"""
Task Tracker Service for the team coding challenge.

This service is responsible for:
- Authenticating GitHub push webhook deliveries
- Detecting completed tasks from commit messages and file paths
- Recording each team's completions exactly once
- Serving the per-category leaderboard and the activity feed
"""

__version__ = "1.0.0"
__description__ = "GitHub push webhook task tracking and leaderboard service"
