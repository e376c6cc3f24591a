#!/usr/bin/env python3
"""
Task Tracker Service Entry Point

This script starts the Task Tracker microservice.
"""

import uvicorn

from config.settings import get_settings


def main():
    """Start the Task Tracker service."""
    settings = get_settings()

    uvicorn.run(
        "services.task_tracker.main:app",
        host=settings.service.host,
        port=settings.service.task_tracker_port,
        reload=settings.debug,
        log_level=settings.monitoring.log_level.lower(),
    )


if __name__ == "__main__":
    main()
